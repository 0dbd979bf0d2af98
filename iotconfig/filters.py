"""Register filters and the settings shared by every device."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable

from iotconfig.transform import (
    NAME_REGEXP,
    _duration_field,
    _field,
    _section,
    is_valid_name,
)

__all__ = [
    "FILTER_KEYS",
    "DEVICE_KEYS",
    "FilterConfig",
    "DeviceConfig",
    "parse_filter",
    "parse_device",
]

FILTER_KEYS = frozenset(
    {"IncludeRegisters", "SkipRegisters", "IncludeCategories", "SkipCategories", "DefaultInclude"}
)
DEVICE_KEYS = frozenset(
    {"Filter", "RestartInterval", "RestartIntervalMaxBackoff", "LogDebug", "LogComDebug"}
)


@dataclass(frozen=True)
class FilterConfig:
    """Which registers and categories of a device are included."""

    include_registers: tuple[str, ...] = ()
    skip_registers: tuple[str, ...] = ()
    include_categories: tuple[str, ...] = ()
    skip_categories: tuple[str, ...] = ()
    default_include: bool = True


@dataclass(frozen=True)
class DeviceConfig:
    """Settings common to all kinds of devices."""

    name: str
    filter: FilterConfig = field(default_factory=FilterConfig)
    restart_interval: timedelta = timedelta(milliseconds=200)
    restart_interval_max_backoff: timedelta = timedelta(minutes=1)
    log_debug: bool = False
    log_com_debug: bool = False


def parse_filter(raw: Any) -> tuple[FilterConfig, list[str]]:
    """Build a filter from a raw section; a missing section includes everything."""
    where = "Filter"
    section = _section(raw, where, FILTER_KEYS)
    default_include = _field(section, "DefaultInclude", bool, where)
    result = FilterConfig(
        include_registers=_field(section, "IncludeRegisters", list, where) or (),
        skip_registers=_field(section, "SkipRegisters", list, where) or (),
        include_categories=_field(section, "IncludeCategories", list, where) or (),
        skip_categories=_field(section, "SkipCategories", list, where) or (),
        default_include=True if default_include is None else default_include,
    )
    return result, []


def _minimum(limit: timedelta, message: str) -> Callable[[timedelta], str | None]:
    """Return a check that reports ``message`` for durations below ``limit``."""

    def check(value: timedelta) -> str | None:
        if value < limit:
            return message
        return None

    return check


_at_least_10ms = _minimum(timedelta(milliseconds=10), "must be >=10ms")


def parse_device(raw: Any, name: str) -> tuple[DeviceConfig, list[str]]:
    """Build the common device settings.

    Only the keys in DEVICE_KEYS are read; callers embedding these settings in
    a larger section are responsible for rejecting unknown keys.
    """
    where = f"Devices->{name}"
    section = _section(raw, where)
    errors: list[str] = []

    if not is_valid_name(name):
        errors.append(f"Devices->Name='{name}' does not match {NAME_REGEXP}")

    device_filter, problems = parse_filter(section.get("Filter"))
    errors.extend(problems)

    restart_interval, problems = _duration_field(
        _field(section, "RestartInterval", str, where),
        timedelta(milliseconds=200),
        f"{where}->RestartInterval",
        _at_least_10ms,
    )
    errors.extend(problems)

    max_backoff, problems = _duration_field(
        _field(section, "RestartIntervalMaxBackoff", str, where),
        timedelta(minutes=1),
        f"{where}->RestartIntervalMaxBackoff",
        _at_least_10ms,
    )
    errors.extend(problems)

    result = DeviceConfig(
        name=name,
        filter=device_filter,
        restart_interval=restart_interval,
        restart_interval_max_backoff=max_backoff,
        log_debug=bool(_field(section, "LogDebug", bool, where)),
        log_com_debug=bool(_field(section, "LogComDebug", bool, where)),
    )
    return result, errors