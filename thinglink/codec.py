"""Character-level helpers for JSON text: escapes, UTF-16 surrogates, UTF-8."""

from __future__ import annotations

# (escape letter, character) pairs; the solidus is only ever unescaped.
_SOLIDUS = ("/", "/")
_ESCAPES = (
    ('"', '"'),
    ("\\", "\\"),
    ("b", "\b"),
    ("f", "\f"),
    ("n", "\n"),
    ("r", "\r"),
    ("t", "\t"),
)

_ESCAPE_BY_CHAR = {char: letter for letter, char in _ESCAPES}
_CHAR_BY_ESCAPE = {letter: char for letter, char in (_SOLIDUS, *_ESCAPES)}


def escape_char(c: str) -> str | None:
    """Return the letter that follows a backslash for ``c``, or None if ``c`` needs no escape."""
    return _ESCAPE_BY_CHAR.get(c)


def unescape_char(c: str) -> str | None:
    """Return the character denoted by the escape letter ``c``, or None if it is not one."""
    return _CHAR_BY_ESCAPE.get(c)


def is_high_surrogate(codeunit: int) -> bool:
    """True for a UTF-16 leading surrogate."""
    return 0xD800 <= codeunit < 0xDC00


def is_low_surrogate(codeunit: int) -> bool:
    """True for a UTF-16 trailing surrogate."""
    return 0xDC00 <= codeunit < 0xE000


class Utf16Codepoint:
    """Assembles code points from a sequence of UTF-16 code units."""

    def __init__(self) -> None:
        self._high_surrogate = 0
        self._codepoint = 0

    def append(self, codeunit: int) -> bool:
        """Feed one code unit; return True when a complete code point is available."""
        if is_high_surrogate(codeunit):
            self._high_surrogate = codeunit & 0x3FF
            return False
        if is_low_surrogate(codeunit):
            self._codepoint = 0x10000 + ((self._high_surrogate << 10) | (codeunit & 0x3FF))
            return True
        self._codepoint = codeunit
        return True

    def value(self) -> int:
        """The last completed code point."""
        return self._codepoint


def encode_codepoint(codepoint: int) -> bytes:
    """Encode a code point as UTF-8 bytes (surrogates are encoded as-is)."""
    if codepoint < 0x80:
        return bytes([codepoint])

    reversed_bytes = [(codepoint | 0x80) & 0xBF]
    rest = (codepoint >> 6) & 0xFFFF
    if rest < 0x20:
        reversed_bytes.append((rest | 0xC0) & 0xFF)
    else:
        reversed_bytes.append((rest | 0x80) & 0xBF)
        rest >>= 6
        if rest < 0x10:
            reversed_bytes.append((rest | 0xE0) & 0xFF)
        else:
            reversed_bytes.append((rest | 0x80) & 0xBF)
            rest >>= 6
            reversed_bytes.append((rest | 0xF0) & 0xFF)
    return bytes(reversed(reversed_bytes))