"""
Scalar coercion of path and query tokens.
"""

import uuid

import pytest

from adorn.controller import ScalarHint, coerce
from adorn.controller.coercion import coerce_all
from adorn.faults import ValidationError


class TestCoerce:

    @pytest.mark.parametrize("raw,expected", [
        ("100", 100),
        ("-3", -3),
        ("0", 0),
    ])
    def test_int(self, raw, expected):
        assert coerce(raw, ScalarHint.INT, "params", "id") == expected

    @pytest.mark.parametrize("raw", ["abc", "1.5", "", "1e3", " 1"])
    def test_int_rejects(self, raw):
        with pytest.raises(ValidationError) as exc:
            coerce(raw, ScalarHint.INT, "params", "id")
        (issue,) = exc.value.issues
        assert issue.source == "params"
        assert issue.path == ["id"]
        assert issue.message.startswith("Expected integer")

    def test_number(self):
        assert coerce("2.5", ScalarHint.NUMBER, "query", "ratio") == 2.5
        value = coerce("2", ScalarHint.NUMBER, "query", "ratio")
        assert value == 2 and isinstance(value, int)
        with pytest.raises(ValidationError, match="Query validation failed"):
            coerce("two", ScalarHint.NUMBER, "query", "ratio")

    @pytest.mark.parametrize("raw,expected", [
        ("true", True), ("TRUE", True), ("1", True),
        ("false", False), ("False", False), ("0", False),
    ])
    def test_boolean(self, raw, expected):
        assert coerce(raw, ScalarHint.BOOLEAN, "query", "on") is expected

    def test_boolean_rejects(self):
        with pytest.raises(ValidationError) as exc:
            coerce("yes", ScalarHint.BOOLEAN, "query", "on")
        assert exc.value.issues[0].message == "Expected boolean, received 'yes'"

    def test_uuid(self):
        raw = "12345678-1234-5678-1234-567812345678"
        assert coerce(raw, ScalarHint.UUID, "params", "user_uuid") == uuid.UUID(raw)
        with pytest.raises(ValidationError, match="Params validation failed"):
            coerce("not-a-uuid", ScalarHint.UUID, "params", "user_uuid")

    def test_string_passthrough(self):
        assert coerce("abc", ScalarHint.STRING, "params", "slug") == "abc"

    def test_no_hint_or_none(self):
        assert coerce("100", None, "query", "x") == "100"
        assert coerce(None, ScalarHint.INT, "query", "x") is None

    def test_repeated_value_for_scalar(self):
        with pytest.raises(ValidationError) as exc:
            coerce(["1", "2"], ScalarHint.INT, "query", "limit")
        (issue,) = exc.value.issues
        assert issue.path == ["limit"]
        assert issue.message == "Expected a single value, received 2"

    def test_repeated_value_without_hint(self):
        assert coerce(["a", "b"], None, "query", "tags") == ["a", "b"]

    def test_non_string_passthrough(self):
        assert coerce(5, ScalarHint.INT, "query", "n") == 5


class TestCoerceAll:

    def test_collects_every_issue(self):
        with pytest.raises(ValidationError) as exc:
            coerce_all(
                {"page": "x", "size": "y", "q": "z"},
                {"page": ScalarHint.INT, "size": ScalarHint.INT, "q": ScalarHint.STRING},
                "query",
            )
        assert [i.path for i in exc.value.issues] == [["page"], ["size"]]

    def test_unhinted_and_missing_keys(self):
        out = coerce_all({"page": "2", "extra": "e"}, {"page": ScalarHint.INT, "size": ScalarHint.INT}, "query")
        assert out == {"page": 2, "extra": "e"}
