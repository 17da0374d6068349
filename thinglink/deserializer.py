"""Lenient JSON parser with optional filtering and a nesting limit."""

from __future__ import annotations

import re
from enum import Enum
from typing import Any

from thinglink.codec import Utf16Codepoint, encode_codepoint, unescape_char

DEFAULT_NESTING_LIMIT = 10
MAX_NUMBER_LENGTH = 63

_NUMBER_PATTERN = re.compile(rb"[+-]?(?=[0-9.])[0-9]*(?:\.[0-9]*)?(?:[eE][+-]?[0-9]+)?")
_UINT64_MAX = (1 << 64) - 1
_INT64_MIN = -(1 << 63)


class ErrorCode(Enum):
    """Outcome of a parse, named as the parser reports it."""

    OK = "Ok"
    EMPTY_INPUT = "EmptyInput"
    INCOMPLETE_INPUT = "IncompleteInput"
    INVALID_INPUT = "InvalidInput"
    NO_MEMORY = "NoMemory"
    TOO_DEEP = "TooDeep"


class DeserializationError(ValueError):
    """Raised when the input cannot be parsed."""

    def __init__(self, code: ErrorCode) -> None:
        super().__init__(code.value)
        self.code = code


def _is_true(spec: Any) -> bool:
    return isinstance(spec, (bool, int, float)) and spec == 1


def _as_boolean(spec: Any) -> bool:
    if spec is None:
        return False
    if isinstance(spec, (bool, int, float)):
        return spec != 0
    return True


class _Filter:
    """Decides which parts of the input are kept."""

    def __init__(self, spec: Any) -> None:
        self._spec = spec

    def allow(self) -> bool:
        return _as_boolean(self._spec)

    def allow_array(self) -> bool:
        return _is_true(self._spec) or isinstance(self._spec, list)

    def allow_object(self) -> bool:
        return _is_true(self._spec) or isinstance(self._spec, dict)

    def allow_value(self) -> bool:
        return _is_true(self._spec)

    def member(self, key: str) -> _Filter:
        if _is_true(self._spec):
            return self
        if isinstance(self._spec, dict):
            chosen = self._spec.get(key)
            if chosen is None:
                chosen = self._spec.get("*")
            return _Filter(chosen)
        return _Filter(None)

    def element(self) -> _Filter:
        if _is_true(self._spec):
            return self
        if isinstance(self._spec, list) and self._spec:
            return _Filter(self._spec[0])
        return _Filter(None)


def _to_bytes(source: Any) -> bytes:
    if hasattr(source, "read"):
        source = source.read()
    if isinstance(source, str):
        return source.encode("utf-8", "surrogatepass")
    if isinstance(source, (bytes, bytearray, memoryview)):
        return bytes(source)
    raise TypeError(f"cannot parse JSON from {type(source).__name__}")


def _decode(raw: bytearray) -> str:
    try:
        return raw.decode("utf-8", "surrogatepass")
    except UnicodeDecodeError:
        return raw.decode("utf-8", "replace")


def _is_between(c: int, low: str, high: str) -> bool:
    return ord(low) <= c <= ord(high)


def _can_be_in_number(c: int) -> bool:
    return _is_between(c, "0", "9") or c in b"+-.eE" and c != 0


def _can_be_in_non_quoted_string(c: int) -> bool:
    return _is_between(c, "0", "9") or _is_between(c, "_", "z") or _is_between(c, "A", "Z")


def _is_quote(c: int) -> bool:
    return c in (ord("'"), ord('"'))


def _decode_hex(c: int) -> int:
    if c < ord("A") or c >= 0x80:
        return (c - ord("0")) & 0xFF
    return ((c & ~0x20) - ord("A") + 10) & 0xFF


def _parse_number(text: bytes) -> int | float | None:
    if not _NUMBER_PATTERN.fullmatch(text):
        return None
    is_integer = not any(c in text for c in b".eE")
    if is_integer:
        digits = text.lstrip(b"+-")
        magnitude = int(digits) if digits else 0
        if text.startswith(b"-"):
            if -magnitude >= _INT64_MIN:
                return -magnitude
        elif magnitude <= _UINT64_MAX:
            return magnitude
    body = text
    if body.lstrip(b"+-").startswith(b"."):
        sign = body[: len(body) - len(body.lstrip(b"+-"))]
        body = sign + b"0" + body[len(sign):]
    mantissa, _, exponent = body.replace(b"E", b"e").partition(b"e")
    if mantissa.endswith(b"."):
        mantissa += b"0"
    return float(mantissa + (b"e" + exponent if exponent else b""))


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class JsonDeserializer:
    """Parses one JSON document into plain Python values."""

    def __init__(self, source: Any, filter: Any = None, nesting_limit: int = DEFAULT_NESTING_LIMIT) -> None:
        if nesting_limit < 0:
            raise ValueError("nesting_limit must not be negative")
        self._data = _to_bytes(source)
        self._pos = 0
        self._found_something = False
        self._filter = _Filter(True if filter is None else filter)
        self._nesting_limit = nesting_limit

    def parse(self) -> Any:
        """Parse the whole input; raise DeserializationError on failure."""
        self._pos = 0
        self._found_something = False
        value = self._parse_variant(None, self._filter, self._nesting_limit)
        # Trailing characters are only noticed after a bare number.
        if _is_number(value) and self._current() != 0:
            raise DeserializationError(ErrorCode.INVALID_INPUT)
        return value

    def _current(self) -> int:
        return self._data[self._pos] if self._pos < len(self._data) else 0

    def _move(self) -> None:
        self._pos += 1

    def _eat(self, char: str) -> bool:
        if self._current() != ord(char):
            return False
        self._move()
        return True

    def _parse_variant(self, current: Any, flt: _Filter, limit: int) -> Any:
        self._skip_spaces()
        c = self._current()
        if c == ord("["):
            if flt.allow_array():
                return self._parse_array(flt, limit)
            self._skip_array(limit)
            return current
        if c == ord("{"):
            if flt.allow_object():
                return self._parse_object(flt, limit)
            self._skip_object(limit)
            return current
        if _is_quote(c):
            if flt.allow_value():
                return self._parse_quoted_string()
            self._skip_quoted_string()
            return current
        if c == ord("t"):
            self._skip_keyword(b"true")
            return True if flt.allow_value() else current
        if c == ord("f"):
            self._skip_keyword(b"false")
            return False if flt.allow_value() else current
        if c == ord("n"):
            self._skip_keyword(b"null")
            return current
        if flt.allow_value():
            return self._parse_numeric_value()
        self._skip_numeric_value()
        return current

    def _skip_variant(self, limit: int) -> None:
        self._skip_spaces()
        c = self._current()
        if c == ord("["):
            self._skip_array(limit)
        elif c == ord("{"):
            self._skip_object(limit)
        elif _is_quote(c):
            self._skip_quoted_string()
        elif c == ord("t"):
            self._skip_keyword(b"true")
        elif c == ord("f"):
            self._skip_keyword(b"false")
        elif c == ord("n"):
            self._skip_keyword(b"null")
        else:
            self._skip_numeric_value()

    def _parse_array(self, flt: _Filter, limit: int) -> list[Any]:
        if limit == 0:
            raise DeserializationError(ErrorCode.TOO_DEEP)
        self._move()
        self._skip_spaces()
        result: list[Any] = []
        if self._eat("]"):
            return result
        member_filter = flt.element()
        while True:
            if member_filter.allow():
                result.append(self._parse_variant(None, member_filter, limit - 1))
            else:
                self._skip_variant(limit - 1)
            self._skip_spaces()
            if self._eat("]"):
                return result
            if not self._eat(","):
                raise DeserializationError(ErrorCode.INVALID_INPUT)

    def _skip_array(self, limit: int) -> None:
        if limit == 0:
            raise DeserializationError(ErrorCode.TOO_DEEP)
        self._move()
        while True:
            self._skip_variant(limit - 1)
            self._skip_spaces()
            if self._eat("]"):
                return
            if not self._eat(","):
                raise DeserializationError(ErrorCode.INVALID_INPUT)

    def _parse_object(self, flt: _Filter, limit: int) -> dict[str, Any]:
        if limit == 0:
            raise DeserializationError(ErrorCode.TOO_DEEP)
        self._move()
        self._skip_spaces()
        result: dict[str, Any] = {}
        if self._eat("}"):
            return result
        while True:
            key = self._parse_key()
            self._skip_spaces()
            if not self._eat(":"):
                raise DeserializationError(ErrorCode.INVALID_INPUT)
            member_filter = flt.member(key)
            if member_filter.allow():
                result[key] = self._parse_variant(result.get(key), member_filter, limit - 1)
            else:
                self._skip_variant(limit - 1)
            self._skip_spaces()
            if self._eat("}"):
                return result
            if not self._eat(","):
                raise DeserializationError(ErrorCode.INVALID_INPUT)
            self._skip_spaces()

    def _skip_object(self, limit: int) -> None:
        if limit == 0:
            raise DeserializationError(ErrorCode.TOO_DEEP)
        self._move()
        self._skip_spaces()
        if self._eat("}"):
            return
        while True:
            self._skip_key()
            self._skip_spaces()
            if not self._eat(":"):
                raise DeserializationError(ErrorCode.INVALID_INPUT)
            self._skip_variant(limit - 1)
            self._skip_spaces()
            if self._eat("}"):
                return
            if not self._eat(","):
                raise DeserializationError(ErrorCode.INVALID_INPUT)
            self._skip_spaces()

    def _parse_key(self) -> str:
        if _is_quote(self._current()):
            return self._parse_quoted_string()
        return self._parse_non_quoted_string()

    def _parse_quoted_string(self) -> str:
        codepoint = Utf16Codepoint()
        stop = self._current()
        self._move()
        raw = bytearray()
        while True:
            c = self._current()
            self._move()
            if c == stop:
                break
            if c == 0:
                raise DeserializationError(ErrorCode.INCOMPLETE_INPUT)
            if c == ord("\\"):
                c = self._current()
                if c == 0:
                    raise DeserializationError(ErrorCode.INCOMPLETE_INPUT)
                if c == ord("u"):
                    self._move()
                    if codepoint.append(self._parse_hex4()):
                        raw += encode_codepoint(codepoint.value())
                    continue
                replacement = unescape_char(chr(c))
                if replacement is None:
                    raise DeserializationError(ErrorCode.INVALID_INPUT)
                self._move()
                c = ord(replacement)
            raw.append(c)
        return _decode(raw)

    def _parse_non_quoted_string(self) -> str:
        c = self._current()
        if not _can_be_in_non_quoted_string(c):
            raise DeserializationError(ErrorCode.INVALID_INPUT)
        raw = bytearray()
        while _can_be_in_non_quoted_string(c):
            self._move()
            raw.append(c)
            c = self._current()
        return _decode(raw)

    def _skip_key(self) -> None:
        if _is_quote(self._current()):
            self._skip_quoted_string()
        else:
            while _can_be_in_non_quoted_string(self._current()):
                self._move()

    def _skip_quoted_string(self) -> None:
        stop = self._current()
        self._move()
        while True:
            c = self._current()
            self._move()
            if c == stop:
                return
            if c == 0:
                raise DeserializationError(ErrorCode.INCOMPLETE_INPUT)
            if c == ord("\\") and self._current() != 0:
                self._move()

    def _parse_numeric_value(self) -> int | float:
        text = bytearray()
        c = self._current()
        while _can_be_in_number(c) and len(text) < MAX_NUMBER_LENGTH:
            self._move()
            text.append(c)
            c = self._current()
        value = _parse_number(bytes(text))
        if value is None:
            raise DeserializationError(ErrorCode.INVALID_INPUT)
        return value

    def _skip_numeric_value(self) -> None:
        while _can_be_in_number(self._current()):
            self._move()

    def _parse_hex4(self) -> int:
        result = 0
        for _ in range(4):
            digit = self._current()
            if digit == 0:
                raise DeserializationError(ErrorCode.INCOMPLETE_INPUT)
            value = _decode_hex(digit)
            if value > 0x0F:
                raise DeserializationError(ErrorCode.INVALID_INPUT)
            result = ((result << 4) | value) & 0xFFFF
            self._move()
        return result

    def _skip_spaces(self) -> None:
        while True:
            c = self._current()
            if c == 0:
                code = ErrorCode.INCOMPLETE_INPUT if self._found_something else ErrorCode.EMPTY_INPUT
                raise DeserializationError(code)
            if c in b" \t\r\n":
                self._move()
                continue
            self._found_something = True
            return

    def _skip_keyword(self, keyword: bytes) -> None:
        for expected in keyword:
            c = self._current()
            if c == 0:
                raise DeserializationError(ErrorCode.INCOMPLETE_INPUT)
            if c != expected:
                raise DeserializationError(ErrorCode.INVALID_INPUT)
            self._move()


def deserialize_json(source: Any, filter: Any = None, nesting_limit: int = DEFAULT_NESTING_LIMIT) -> Any:
    """Parse ``source`` (str, bytes or a readable stream) and return the value."""
    return JsonDeserializer(source, filter, nesting_limit).parse()