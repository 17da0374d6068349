"""Compact and indented JSON text output for plain Python values."""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from thinglink.codec import escape_char

INDENT = "  "

_POSITIVE_THRESHOLD = 1e7
_NEGATIVE_THRESHOLD = 1e-5

_POSITIVE_POWERS = [10.0 ** (1 << i) for i in range(9)]
_NEGATIVE_POWERS = [10.0 ** -(1 << i) for i in range(9)]
_NEGATIVE_POWERS_PLUS_ONE = [10.0 ** -((1 << i) - 1) for i in range(9)]


@dataclass(frozen=True)
class RawJson:
    """Text that is copied into the output as-is, without quoting."""

    text: str


def format_string(value: str) -> str:
    """Quote and escape a string as JSON."""
    parts = ['"']
    for char in value:
        special = escape_char(char)
        if special:
            parts.append("\\" + special)
        elif char == "\0":
            parts.append("\\u0000")
        else:
            parts.append(char)
    parts.append('"')
    return "".join(parts)


def _normalize(value: float) -> tuple[float, int]:
    powers_of_ten = 0
    if value >= _POSITIVE_THRESHOLD:
        for index in reversed(range(9)):
            if value >= _POSITIVE_POWERS[index]:
                value *= _NEGATIVE_POWERS[index]
                powers_of_ten += 1 << index
    elif 0 < value <= _NEGATIVE_THRESHOLD:
        for index in reversed(range(9)):
            if value < _NEGATIVE_POWERS_PLUS_ONE[index]:
                value *= _POSITIVE_POWERS[index]
                powers_of_ten -= 1 << index
    return value, powers_of_ten


def _float_parts(value: float) -> tuple[int, int, int, int]:
    value, exponent = _normalize(value)
    max_decimal = 1_000_000_000
    places = 9

    integral = int(value)
    tmp = integral
    while tmp >= 10:
        max_decimal //= 10
        places -= 1
        tmp //= 10

    remainder = (value - integral) * max_decimal
    decimal = int(remainder)
    remainder -= decimal
    decimal += int(remainder * 2)
    if decimal >= max_decimal:
        decimal = 0
        integral += 1
        if exponent and integral >= 10:
            exponent += 1
            integral = 1

    while places > 0 and decimal % 10 == 0:
        decimal //= 10
        places -= 1
    return integral, decimal, places, exponent


def format_float(value: float) -> str:
    """Render a float with up to nine significant decimals; NaN and infinities become null."""
    if math.isnan(value) or math.isinf(value):
        return "null"
    sign = ""
    if value < 0.0:
        sign = "-"
        value = -value
    integral, decimal, places, exponent = _float_parts(value)
    text = sign + str(integral)
    if places:
        text += "." + str(decimal).rjust(places, "0")
    if exponent:
        text += "e" + str(exponent)
    return text


class _Writer:
    def __init__(self) -> None:
        self._parts: list[str] = []

    def text(self) -> str:
        return "".join(self._parts)

    def value(self, value: Any) -> None:
        if value is None:
            self._parts.append("null")
        elif isinstance(value, bool):
            self._parts.append("true" if value else "false")
        elif isinstance(value, int):
            self._parts.append(str(value))
        elif isinstance(value, float):
            self._parts.append(format_float(value))
        elif isinstance(value, str):
            self._parts.append(format_string(value))
        elif isinstance(value, RawJson):
            self._parts.append(value.text)
        elif isinstance(value, Mapping):
            self.object(list(value.items()))
        elif isinstance(value, (list, tuple)):
            self.array(list(value))
        else:
            raise TypeError(f"cannot serialize {type(value).__name__}")

    def key(self, key: Any) -> None:
        if not isinstance(key, str):
            raise TypeError(f"object keys must be str, not {type(key).__name__}")
        self._parts.append(format_string(key))

    def array(self, items: list[Any]) -> None:
        self._parts.append("[")
        for position, item in enumerate(items):
            if position:
                self._parts.append(",")
            self.value(item)
        self._parts.append("]")

    def object(self, members: list[tuple[Any, Any]]) -> None:
        self._parts.append("{")
        for position, (key, item) in enumerate(members):
            if position:
                self._parts.append(",")
            self.key(key)
            self._parts.append(":")
            self.value(item)
        self._parts.append("}")


class _PrettyWriter(_Writer):
    def __init__(self) -> None:
        super().__init__()
        self._nesting = 0

    def _indent(self) -> None:
        self._parts.append(INDENT * self._nesting)

    def array(self, items: list[Any]) -> None:
        if not items:
            self._parts.append("[]")
            return
        self._parts.append("[\r\n")
        self._nesting += 1
        for position, item in enumerate(items):
            self._indent()
            self.value(item)
            self._parts.append(",\r\n" if position < len(items) - 1 else "\r\n")
        self._nesting -= 1
        self._indent()
        self._parts.append("]")

    def object(self, members: list[tuple[Any, Any]]) -> None:
        if not members:
            self._parts.append("{}")
            return
        self._parts.append("{\r\n")
        self._nesting += 1
        for position, (key, item) in enumerate(members):
            self._indent()
            self.key(key)
            self._parts.append(": ")
            self.value(item)
            self._parts.append(",\r\n" if position < len(members) - 1 else "\r\n")
        self._nesting -= 1
        self._indent()
        self._parts.append("}")


def serialize_json(value: Any) -> str:
    """Serialize ``value`` as minified JSON."""
    writer = _Writer()
    writer.value(value)
    return writer.text()


def serialize_json_pretty(value: Any) -> str:
    """Serialize ``value`` as indented JSON with CRLF line breaks."""
    writer = _PrettyWriter()
    writer.value(value)
    return writer.text()


def _byte_length(text: str) -> int:
    return len(text.encode("utf-8", "surrogatepass"))


def measure_json(value: Any) -> int:
    """Number of UTF-8 bytes that ``serialize_json`` produces."""
    return _byte_length(serialize_json(value))


def measure_json_pretty(value: Any) -> int:
    """Number of UTF-8 bytes that ``serialize_json_pretty`` produces."""
    return _byte_length(serialize_json_pretty(value))