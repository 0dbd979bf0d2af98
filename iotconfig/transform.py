"""Shared helpers for turning raw configuration sections into validated objects.

Parsing functions return a ``(result, errors)`` pair: validation problems are
collected as messages so that all of them can be reported at once. Structural
problems (wrong types, unknown keys) raise :class:`ConfigError` immediately.
"""

from __future__ import annotations

import re
import secrets
import string
from datetime import timedelta
from typing import Any, Callable, Iterable, Mapping, Sequence, TypeVar

from iotconfig.duration import DurationError, parse_duration

__all__ = [
    "NAME_REGEXP",
    "ConfigError",
    "is_valid_name",
    "exists_by_name",
    "names_of",
    "transform_map_to_list",
    "transform_map",
    "transform_list_unique",
    "random_string",
]

NAME_REGEXP = r"^[a-zA-Z0-9\-]{1,32}$"
_NAME_PATTERN = re.compile(r"[a-zA-Z0-9\-]{1,32}")

I = TypeVar("I")
O = TypeVar("O")


class ConfigError(Exception):
    """Raised when a configuration cannot be read; holds every problem found."""

    def __init__(self, errors: Iterable[str]):
        self.errors = list(errors)
        super().__init__("\n".join(self.errors))


def is_valid_name(name: str) -> bool:
    """Tell whether a name is 1 to 32 letters, digits or dashes."""
    return isinstance(name, str) and _NAME_PATTERN.fullmatch(name) is not None


def exists_by_name(needle: str, haystack: Iterable[Any]) -> bool:
    """Tell whether any item in the haystack carries the given name."""
    return any(item.name == needle for item in haystack)


def names_of(items: Iterable[Any]) -> list[str]:
    """Return the names of the items, in order."""
    return [item.name for item in items]


def transform_map_to_list(
    mapping: Mapping[Any, I] | None,
    transformer: Callable[[I, str], tuple[O, list[str]]],
) -> tuple[list[O], list[str]]:
    """Transform every entry of a mapping, ordered by key, into a list."""
    results: list[O] = []
    errors: list[str] = []
    for name, value in sorted(((str(k), v) for k, v in (mapping or {}).items()), key=lambda kv: kv[0]):
        result, problems = transformer(value, name)
        results.append(result)
        errors.extend(problems)
    return results, errors


def transform_map(
    mapping: Mapping[Any, I] | None,
    transformer: Callable[[I, str], tuple[O, list[str]]],
) -> tuple[dict[str, O], list[str]]:
    """Transform every value of a mapping, keeping the keys."""
    results: dict[str, O] = {}
    errors: list[str] = []
    for key, value in (mapping or {}).items():
        name = str(key)
        results[name], problems = transformer(value, name)
        errors.extend(problems)
    return results, errors


def transform_list_unique(
    items: Iterable[I] | None,
    transformer: Callable[[I], tuple[O, list[str]]],
    unique_errors: Callable[[O, list[O]], list[str] | None],
) -> tuple[list[O], list[str]]:
    """Transform a list, reporting items that clash with earlier ones."""
    results: list[O] = []
    errors: list[str] = []
    for item in items or ():
        result, problems = transformer(item)
        errors.extend(unique_errors(result, results) or ())
        results.append(result)
        errors.extend(problems)
    return results, errors


def random_string(length: int) -> str:
    """Return a cryptographically random string of letters and digits."""
    alphabet = string.ascii_letters + string.digits
    return "".join(secrets.choice(alphabet) for _ in range(length))


def _section(raw: Any, where: str, known: Iterable[str] | None = None) -> dict:
    """Return a raw section as a dict, rejecting other types and unknown keys."""
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        raise ConfigError([f"cannot parse yaml: {where}: expected a mapping"])
    section = dict(raw)
    if known is not None:
        allowed = set(known)
        for key in section:
            if str(key) not in allowed:
                raise ConfigError([f"cannot parse yaml: field {key} not found in {where}"])
    return section


def _scalar_text(value: Any) -> str | None:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (str, int, float)):
        return str(value)
    return None


def _field(section: Mapping, key: str, kind: type, where: str) -> Any:
    """Fetch an optional typed value from a section; None when absent."""
    value = section.get(key)
    if value is None:
        return None
    if kind is str:
        text = _scalar_text(value)
        if text is not None:
            return text
    elif kind is bool:
        if isinstance(value, bool):
            return value
    elif kind is int:
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    elif kind is float:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
    elif kind is list:
        if isinstance(value, Sequence) and not isinstance(value, (str, bytes)):
            texts = [_scalar_text(item) for item in value]
            if all(text is not None for text in texts):
                return tuple(texts)
    elif kind is dict:
        if isinstance(value, Mapping):
            return dict(value)
    raise ConfigError([f"cannot parse yaml: {where}->{key}: expected {kind.__name__}"])


def _duration_field(
    text: str | None,
    default: timedelta,
    where: str,
    check: Callable[[timedelta], str | None] | None = None,
) -> tuple[timedelta, list[str]]:
    """Parse an optional duration setting, falling back to a default when empty."""
    if not text:
        return default, []
    try:
        value = parse_duration(text)
    except DurationError as exc:
        return timedelta(0), [f"{where}='{text}' parse error: {exc}"]
    if check is not None:
        problem = check(value)
        if problem:
            return timedelta(0), [f"{where}='{text}' {problem}"]
    return value, []