"""Parsing and formatting of duration strings such as ``1h30m`` or ``250ms``."""

from __future__ import annotations

import re
from datetime import timedelta

__all__ = ["DurationError", "parse_duration", "format_duration"]

_NANOS_PER_UNIT = {
    "ns": 1,
    "us": 1_000,
    "\u00b5s": 1_000,  # micro sign
    "\u03bcs": 1_000,  # greek small letter mu
    "ms": 1_000_000,
    "s": 1_000_000_000,
    "m": 60 * 1_000_000_000,
    "h": 3600 * 1_000_000_000,
}

_LIMIT = 1 << 63
_NUMBER = re.compile(r"([0-9]*)(\.([0-9]*))?")
_UNIT = re.compile(r"[^0-9.]*")


class DurationError(ValueError):
    """Raised when a duration string cannot be parsed."""


def _parse_nanoseconds(text: str) -> int:
    original = text
    negative = False
    if text and text[0] in "+-":
        negative = text[0] == "-"
        text = text[1:]
    if text == "0":
        return 0
    if not text:
        raise DurationError(f'invalid duration "{original}"')

    total = 0
    pos = 0
    while pos < len(text):
        number = _NUMBER.match(text, pos)
        whole, fraction = number.group(1), number.group(3) or ""
        if not whole and not fraction:
            raise DurationError(f'invalid duration "{original}"')
        pos = number.end()

        unit_match = _UNIT.match(text, pos)
        unit = unit_match.group()
        pos = unit_match.end()
        if not unit:
            raise DurationError(f'missing unit in duration "{original}"')
        scale = _NANOS_PER_UNIT.get(unit)
        if scale is None:
            raise DurationError(f'unknown unit "{unit}" in duration "{original}"')

        value = int(whole or "0") * scale
        if fraction:
            value += int(fraction) * scale // 10 ** len(fraction)
        total += value
        if total > _LIMIT:
            raise DurationError(f'invalid duration "{original}"')

    if not negative and total > _LIMIT - 1:
        raise DurationError(f'invalid duration "{original}"')
    return -total if negative else total


def parse_duration(text: str) -> timedelta:
    """Parse a duration such as ``"1h15m30.5s"`` into a timedelta.

    Valid units are ``ns``, ``us`` (or ``µs``), ``ms``, ``s``, ``m`` and ``h``.
    Sub-microsecond parts are rounded to the nearest microsecond.
    """
    nanoseconds = _parse_nanoseconds(text)
    return timedelta(microseconds=(nanoseconds + 500) // 1000)


def _to_nanoseconds(value: timedelta) -> int:
    return ((value.days * 86400 + value.seconds) * 1_000_000 + value.microseconds) * 1000


def _with_fraction(amount: int, scale: int) -> str:
    whole, fraction = divmod(amount, scale)
    if not fraction:
        return str(whole)
    digits = len(str(scale)) - 1
    return f"{whole}.{str(fraction).zfill(digits).rstrip('0')}"


def format_duration(value: timedelta) -> str:
    """Render a timedelta in the canonical form, e.g. ``1h0m0s`` or ``250ms``."""
    nanoseconds = _to_nanoseconds(value)
    if nanoseconds == 0:
        return "0s"
    sign = "-" if nanoseconds < 0 else ""
    amount = abs(nanoseconds)

    if amount < 1_000_000_000:
        if amount < 1_000:
            return f"{sign}{amount}ns"
        if amount < 1_000_000:
            return f"{sign}{_with_fraction(amount, 1_000)}\u00b5s"
        return f"{sign}{_with_fraction(amount, 1_000_000)}ms"

    seconds_text = _with_fraction(amount, 1_000_000_000)
    whole_seconds = amount // 1_000_000_000
    hours, rest = divmod(whole_seconds, 3600)
    minutes, seconds = divmod(rest, 60)
    seconds_text = f"{seconds}{seconds_text[len(str(whole_seconds)):]}s"
    if hours:
        return f"{sign}{hours}h{minutes}m{seconds_text}"
    if minutes:
        return f"{sign}{minutes}m{seconds_text}"
    return f"{sign}{seconds_text}"