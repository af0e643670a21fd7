"""
Тесты Response Validator: контракты, одна перегенерация, шаблоны.
"""

import pytest

from conftest import ScriptedGenerator, make_state
from guided_dialogue.fallback_templates import (
    GENERIC_TEMPLATES,
    assert_and_align_template,
    graceful_exit_template,
)
from guided_dialogue.feature_flags import flags
from guided_dialogue.models import Action, ConstraintCategory, OrchestratorDecision
from guided_dialogue.response_contracts import (
    GRACEFUL_EXIT,
    RESPONSE_CONTRACTS,
    contract_key,
)
from guided_dialogue.response_validator import ResponseValidator, count_sentences


EXPLORE = OrchestratorDecision(action=Action.EXPLORE, reasoning="explore", overlays=["exploration"])
ASSERT = OrchestratorDecision(
    action=Action.CLOSE,
    reasoning="gate",
    overlays=["closing", "closing_assert_and_align"],
    focus_area="assert_and_align",
)
GRACEFUL = OrchestratorDecision(
    action=Action.CLOSE,
    reasoning="exit",
    overlays=["closing", "closing_graceful_exit"],
    focus_area="offer_solution",
)

GOOD_QUESTION = "What does a typical week look like for you?"


@pytest.fixture
def validator():
    return ResponseValidator()


@pytest.fixture
def state():
    return make_state(ConstraintCategory.STRATEGY, 0.8, validated=True)


class TestValidate:

    def test_valid_question(self, validator):
        result = validator.validate(GOOD_QUESTION, RESPONSE_CONTRACTS["explore"])
        assert result.valid is True
        assert result.violations == []

    @pytest.mark.parametrize("text,violation", [
        ("", "empty_response"),
        ("   ", "empty_response"),
        ("That sounds hard.", "missing_question"),
        ("[Book your call here] What do you think?", "bracketed_placeholder"),
        ("Good luck with it! What's next?", "forbidden_goodbye"),
        ("Click here to schedule. Ready?", "forbidden_cta"),
    ])
    def test_violations(self, validator, text, violation):
        result = validator.validate(text, RESPONSE_CONTRACTS["explore"])
        assert result.valid is False
        assert violation in result.violations

    def test_offering_before_gate(self, validator):
        result = validator.validate(
            "Our team does exactly this. Does that land?",
            RESPONSE_CONTRACTS["assert_and_align"],
        )
        assert result.violations == ["forbidden_offering"]

    def test_offering_allowed_at_offer_step(self, validator):
        result = validator.validate(
            "Our specialists do exactly this. Want me to set up a free session?",
            RESPONSE_CONTRACTS["offer_solution"],
        )
        assert result.valid is True

    def test_sentence_tolerance(self, validator):
        contract = RESPONSE_CONTRACTS["explore"]
        six = "One. Two. Three. Four. Five. Six?"
        eight = "One. Two. Three. Four. Five. Six. Seven. Eight?"

        warned = validator.validate(six, contract)
        assert warned.valid is True
        assert warned.warnings

        assert "too_many_sentences" in validator.validate(eight, contract).violations

    def test_facilitate_forbids_question(self, validator):
        assert validator.validate("Here's the path forward.", RESPONSE_CONTRACTS["facilitate"]).valid is True

    def test_count_sentences(self):
        assert count_sentences("Hi. How are you?! Fine...") == 3


class TestContractKey:

    def test_keys(self):
        assert contract_key(EXPLORE) == "explore"
        assert contract_key(ASSERT) == "assert_and_align"
        assert contract_key(GRACEFUL) == GRACEFUL_EXIT


class TestProduce:

    def test_valid_first_try(self, validator, state):
        generate = ScriptedGenerator(GOOD_QUESTION)

        result = validator.produce(EXPLORE, state, generate)

        assert result.response == GOOD_QUESTION
        assert result.valid is True
        assert len(generate.calls) == 1
        assert generate.calls[0]["overlays"] == ["exploration"]

    def test_retry_fixes_response(self, validator, state):
        generate = ScriptedGenerator("That sounds hard.", GOOD_QUESTION)

        result = validator.produce(EXPLORE, state, generate)

        assert result.response == GOOD_QUESTION
        assert result.valid is True
        assert result.retry_used is True
        assert "missing_question" in generate.calls[1]["correction"]

    def test_non_critical_accepts_imperfect(self, validator, state):
        generate = ScriptedGenerator("That sounds hard.")

        result = validator.produce(EXPLORE, state, generate)

        assert result.response == "That sounds hard."
        assert result.valid is False
        assert result.fallback_used is False
        assert len(generate.calls) == 2
        assert validator.get_metrics()["response_validation.accepted_imperfect"] == 1

    def test_critical_uses_template(self, validator, state):
        generate = ScriptedGenerator("Our team can fix this. Interested?")

        result = validator.produce(ASSERT, state, generate)

        assert result.fallback_used is True
        assert result.retry_used is True
        assert result.response == assert_and_align_template(ConstraintCategory.STRATEGY)
        assert validator.validate(result.response, RESPONSE_CONTRACTS["assert_and_align"]).valid

    def test_graceful_exit_template(self, validator, state):
        result = validator.produce(GRACEFUL, state, ScriptedGenerator("Book a call with us today!"))
        assert result.response == graceful_exit_template()

    def test_generator_error_falls_back(self, validator, state):
        def broken(decision, overlays, state, correction=None):
            raise RuntimeError("generator down")

        result = validator.produce(EXPLORE, state, broken)

        assert result.response == GENERIC_TEMPLATES["explore"]
        assert result.fallback_used is True

    def test_retry_flag_off(self, validator, state):
        flags.set_override("response_validator_retry", False)
        generate = ScriptedGenerator("Our team can fix this. Interested?")

        result = validator.produce(ASSERT, state, generate)

        assert len(generate.calls) == 1
        assert result.retry_used is False
        assert result.fallback_used is True

    def test_templates_flag_off_accepts_imperfect(self, validator, state):
        flags.set_override("closing_fallback_templates", False)
        text = "Our team can fix this. Interested?"

        result = validator.produce(ASSERT, state, ScriptedGenerator(text))

        assert result.response == text
        assert result.fallback_used is False

    def test_validator_flag_off(self, validator, state):
        flags.set_override("response_validator", False)
        generate = ScriptedGenerator("That sounds hard.")

        result = validator.produce(EXPLORE, state, generate)

        assert result.response == "That sounds hard."
        assert result.valid is True
        assert len(generate.calls) == 1

    def test_metrics_reset(self, validator, state):
        validator.produce(EXPLORE, state, ScriptedGenerator("That sounds hard."))
        assert validator.get_metrics()["response_validation.total"] == 1

        validator.reset_metrics()
        assert validator.get_metrics()["response_validation.total"] == 0
