"""
Unit tests for utils.text and utils.validators.
"""
import pytest

from twokinds.errors import ValidationError
from twokinds.utils.text import collapse_whitespace, render_sentence
from twokinds.utils.validators import validate_kind, validate_type_name


class TestText:

    def test_collapse_whitespace(self):
        assert collapse_whitespace("  read   the\nending\tfirst ") == "read the ending first"
        assert collapse_whitespace("") == ""

    def test_render_sentence(self):
        sentence = render_sentence(
            "There are two kinds of people in the world...", "drivers", "signal early", "never signal."
        )
        assert sentence == (
            "There are two kinds of people in the world... drivers: "
            "Those who signal early and those who never signal."
        )

    def test_render_sentence_with_missing_intro(self):
        assert render_sentence(None, "cooks", "taste.", "guess") == "cooks: Those who taste and those who guess."


class TestValidators:

    @pytest.mark.parametrize("value", ["abc", "x" * 100, "  a b  "])
    def test_kind_within_bounds(self, value):
        assert validate_kind("first_kind", value) == collapse_whitespace(value)

    @pytest.mark.parametrize("value,message", [
        ("ab", "First kind must be at least 3 characters"),
        ("   ", "First kind must be at least 3 characters"),
        (None, "First kind must be at least 3 characters"),
        ("x" * 101, "First kind must not exceed 100 characters"),
    ])
    def test_kind_out_of_bounds(self, value, message):
        with pytest.raises(ValidationError) as exc_info:
            validate_kind("first_kind", value)
        assert exc_info.value.field == "first_kind"
        assert exc_info.value.message == message

    def test_type_name_bounds(self):
        assert validate_type_name(" cooks ") == "cooks"
        with pytest.raises(ValidationError) as exc_info:
            validate_type_name("x" * 51)
        assert exc_info.value.field == "new_type"
        assert exc_info.value.message == "New type must not exceed 50 characters"
