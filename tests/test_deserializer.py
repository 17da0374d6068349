import io

import pytest

from thinglink.deserializer import (
    DeserializationError,
    ErrorCode,
    JsonDeserializer,
    deserialize_json,
)
from thinglink.serializer import serialize_json


def _error_code(source, **kwargs):
    with pytest.raises(DeserializationError) as info:
        deserialize_json(source, **kwargs)
    return info.value.code


def test_object_with_nested_array():
    assert deserialize_json('{"a":1,"b":[true,false,null]}') == {"a": 1, "b": [True, False, None]}


def test_round_trip_through_serializer():
    document = {"name": "sensor", "values": [1, -2, 3.5], "ok": True, "none": None}
    assert deserialize_json(serialize_json(document)) == document


def test_class_and_function_agree():
    text = '{"x":[1,2,{"y":"z"}]}'
    assert JsonDeserializer(text).parse() == deserialize_json(text)


def test_bytes_and_stream_inputs():
    assert deserialize_json(b"[1,2]") == [1, 2]
    assert deserialize_json(io.BytesIO(b'{"k":"v"}')) == {"k": "v"}


@pytest.mark.parametrize("text", ["", "   ", "\r\n\t"])
def test_empty_input(text):
    assert _error_code(text) is ErrorCode.EMPTY_INPUT


@pytest.mark.parametrize("text", ["[1,", "{", '"abc', "tru", '{"a":'])
def test_incomplete_input(text):
    assert _error_code(text) is ErrorCode.INCOMPLETE_INPUT


@pytest.mark.parametrize("text", ["[1 2]", "trux", '{"a" 1}', '"\\q"', "-", "[1,]"])
def test_invalid_input(text):
    assert _error_code(text) is ErrorCode.INVALID_INPUT


def test_trailing_characters_after_number_are_rejected():
    assert _error_code("12x") is ErrorCode.INVALID_INPUT
    assert _error_code("12 ") is ErrorCode.INVALID_INPUT


def test_trailing_characters_after_enclosed_value_are_ignored():
    assert deserialize_json("true x") is True
    assert deserialize_json("[1] junk") == [1]


def test_nesting_limit():
    assert _error_code("[[1]]", nesting_limit=1) is ErrorCode.TOO_DEEP
    assert deserialize_json("[[1]]", nesting_limit=2) == [[1]]
    assert deserialize_json("1", nesting_limit=0) == 1


def test_negative_nesting_limit_rejected():
    with pytest.raises(ValueError):
        JsonDeserializer("1", nesting_limit=-1)


def test_unquoted_keys_and_single_quotes():
    assert deserialize_json("{key_1:'value'}") == {"key_1": "value"}


def test_escape_sequences():
    assert deserialize_json('"a\\nb\\t\\"\\/\\\\"') == "a\nb\t\"/\\"


def test_unicode_escapes():
    assert deserialize_json('"\\u00e9"') == "\u00e9"
    assert deserialize_json('"\\ud83d\\ude00"') == "\U0001F600"


def test_bad_unicode_escapes():
    assert _error_code('"\\u00G0"') is ErrorCode.INVALID_INPUT
    assert _error_code('"\\u12') is ErrorCode.INCOMPLETE_INPUT


def test_raw_utf8_passes_through():
    assert deserialize_json('"caf\u00e9"') == "caf\u00e9"


def test_integers_and_floats():
    assert deserialize_json("-42") == -42
    assert deserialize_json("18446744073709551615") == 18446744073709551615
    big = deserialize_json("18446744073709551616")
    assert isinstance(big, float) and big == float("18446744073709551616")
    assert deserialize_json("1.5e3") == 1.5e3


def test_overlong_number_is_rejected():
    assert _error_code("1" * 70) is ErrorCode.INVALID_INPUT


def test_duplicate_key_with_null_keeps_first_value():
    assert deserialize_json('{"a":1,"a":null}') == {"a": 1}
    assert deserialize_json('{"a":1,"a":2}') == {"a": 2}


def test_filter_selects_members():
    assert deserialize_json('{"a":1,"b":2}', filter={"a": True}) == {"a": 1}


def test_filter_wildcard_and_arrays():
    text = '{"list":[{"x":1,"y":2},{"x":3,"y":4}],"other":true}'
    result = deserialize_json(text, filter={"*": [{"x": True}]})
    assert result == {"list": [{"x": 1}, {"x": 3}], "other": None}


def test_filter_false_keeps_nothing():
    assert deserialize_json('{"a":[1,2]}', filter=False) is None


def test_skipped_parts_must_still_be_complete():
    assert _error_code('{"a":1,"b":[1,2', filter={"a": True}) is ErrorCode.INCOMPLETE_INPUT


def test_error_message_is_code_name():
    with pytest.raises(DeserializationError, match="TooDeep"):
        deserialize_json("[[[]]]", nesting_limit=2)