from datetime import date, datetime, timezone
from decimal import Decimal

from deploy_lens.domain.models import MatchingMethod
from deploy_lens.utils.jsonschema import validate_payload
from deploy_lens.utils.serialization import json_default


def test_validate_payload():
    schema = {"type": "object", "properties": {"a": {"type": "integer"}}, "required": ["a"]}

    assert validate_payload(schema, {"a": 1}) == []

    errors = validate_payload(schema, {"a": "bad"})
    assert errors == ["a: 'bad' is not of type 'integer'"]


def test_validate_payload_orders_errors_by_path():
    schema = {
        "type": "object",
        "properties": {"b": {"type": "string"}, "a": {"type": "integer"}},
        "additionalProperties": False,
    }

    errors = validate_payload(schema, {"b": 1, "a": "x", "c": True})

    assert errors[0].startswith("Additional properties")
    assert errors[1].startswith("a: ")
    assert errors[2].startswith("b: ")


def test_json_default():
    class WithDict:
        def to_dict(self):
            return {"k": 1}

    assert json_default(datetime(2025, 9, 20, tzinfo=timezone.utc)) == "2025-09-20T00:00:00+00:00"
    assert json_default(date(2025, 9, 20)) == "2025-09-20"
    assert json_default(MatchingMethod.IMAGE_TAG) == "image-tag"
    assert json_default(Decimal("1.5")) == 1.5
    assert json_default(Decimal("3")) == 3
    assert json_default(WithDict()) == {"k": 1}
    assert sorted(json_default({"b", "a"})) == ["a", "b"]
    assert json_default(object()).startswith("<object")
