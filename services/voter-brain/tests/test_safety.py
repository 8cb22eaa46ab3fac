"""Tests for the non-persuasion, scope and PII checks."""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from safety import NEUTRAL_RESPONSES, OUT_OF_SCOPE_RESPONSES, check, is_out_of_scope, is_political_query


class TestPolitical:
    @pytest.mark.parametrize(
        "text",
        [
            "Should I vote for the LDF?",
            "Which party is better for Kerala?",
            "Who will win in Kottayam?",
            "recommend a candidate",
            "ഏത് പാർട്ടി ആണ് നല്ലത്?",
        ],
    )
    def test_persuasion_detected(self, text: str):
        assert is_political_query(text)

    @pytest.mark.parametrize(
        "text",
        ["How do I register to vote?", "Where is my polling booth?", "What documents do I need for Form 6?"],
    )
    def test_voter_education_allowed(self, text: str):
        assert not is_political_query(text)


class TestScope:
    def test_out_of_scope(self):
        assert is_out_of_scope("What's the cricket score?")

    def test_in_scope(self):
        assert not is_out_of_scope("When is the election in Kottayam?")


class TestCheck:
    def test_clean_answer_passes(self):
        result = check("Use Form 6 to register.", "How do I register?")
        assert not result.flagged
        assert result.safe_text == "Use Form 6 to register."
        assert result.reason is None

    def test_political_query_english(self):
        result = check("Some answer", "Which party is better?")
        assert result.flagged
        assert result.safe_text == NEUTRAL_RESPONSES["en"]

    def test_political_query_malayalam(self):
        result = check("Some answer", "ഏത് പാർട്ടി ആണ് നല്ലത്?")
        assert result.safe_text == NEUTRAL_RESPONSES["ml"]

    def test_out_of_scope_query(self):
        result = check("Some answer", "tell me a joke")
        assert result.flagged
        assert result.safe_text == OUT_OF_SCOPE_RESPONSES["en"]

    def test_political_response(self):
        result = check("You should vote for the UDF candidate.", "Tell me about the election")
        assert result.flagged
        assert result.reason == "Political content detected in response"

    def test_unflagged_answer_returned_verbatim(self):
        # Extraction answers echo the user's own card details back to them
        result = check("Your EPIC is ABC1234567.", "What is my EPIC number?")
        assert not result.flagged
        assert result.safe_text == "Your EPIC is ABC1234567."
