"""Small string helpers with C semantics: case mapping, comparison, radix output."""

from __future__ import annotations

from itertools import chain, islice, repeat
from typing import Iterator, Union

__all__ = ["toupper", "tolower", "strcmp", "strncmp", "itob"]

_DIGITS = "0123456789ABCDEF"
_U64_MASK = (1 << 64) - 1

Char = Union[int, str]
CString = Union[str, bytes, bytearray]


def _shift_range(c: Char, lo: str, hi: str, delta: int) -> Char:
    if isinstance(c, str):
        return "".join(chr(ord(ch) + delta) if lo <= ch <= hi else ch for ch in c)
    return c + delta if ord(lo) <= c <= ord(hi) else c


def toupper(c: Char) -> Char:
    """Upper-case ASCII letters; a code stays a code, a string stays a string."""
    return _shift_range(c, "a", "z", -0x20)


def tolower(c: Char) -> Char:
    """Lower-case ASCII letters; a code stays a code, a string stays a string."""
    return _shift_range(c, "A", "Z", 0x20)


def _codes(s: CString) -> Iterator[int]:
    raw = s.encode("utf-8") if isinstance(s, str) else bytes(s)
    # Characters are signed, and the string ends in an endless run of NULs.
    signed = (b - 256 if b >= 128 else b for b in raw)
    return chain(signed, repeat(0))


def _compare(pairs: Iterator[tuple[int, int]]) -> int:
    for c1, c2 in pairs:
        if c1 != c2:
            return -1 if c1 < c2 else 1
        if not c1:
            return 0
    return 0


def strcmp(s1: CString, s2: CString) -> int:
    """Compare two NUL-terminated strings, returning -1, 0 or 1."""
    return _compare(zip(_codes(s1), _codes(s2)))


def strncmp(s1: CString, s2: CString, n: int) -> int:
    """Compare at most n characters of two NUL-terminated strings."""
    if n < 0:
        raise ValueError("n must not be negative")
    return _compare(islice(zip(_codes(s1), _codes(s2)), n))


def itob(num: int, base: int) -> str:
    """Write an unsigned 64-bit number in the given base (2 to 16), upper case."""
    if not 2 <= base <= len(_DIGITS):
        raise ValueError(f"base must be between 2 and {len(_DIGITS)}")
    num &= _U64_MASK
    digits: list[str] = []
    while True:
        num, digit = divmod(num, base)
        digits.append(_DIGITS[digit])
        if num == 0:
            break
    return "".join(reversed(digits))