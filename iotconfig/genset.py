"""Settings of a generator set controlled through bindings to other devices."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Sequence

from iotconfig.devices import _base_fields
from iotconfig.filters import DEVICE_KEYS, DeviceConfig, parse_device
from iotconfig.transform import _duration_field, _field, _section, exists_by_name

__all__ = [
    "GENSET_KEYS",
    "GensetDeviceBindingConfig",
    "GensetDeviceConfig",
    "parse_bindings",
    "parse_genset_device",
]

GENSET_KEYS = DEVICE_KEYS | {
    "InputBindings",
    "OutputBindings",
    "PrimingTimeout",
    "CrankingTimeout",
    "WarmUpTimeout",
    "WarmUpMinTime",
    "WarmUpTemp",
    "EngineCoolDownTimeout",
    "EngineCoolDownMinTime",
    "EngineCoolDownTemp",
    "EnclosureCoolDownTimeout",
    "EnclosureCoolDownMinTime",
    "EnclosureCoolDownTemp",
    "EngineTempMin",
    "EngineTempMax",
    "AuxTemp0Min",
    "AuxTemp0Max",
    "AuxTemp1Min",
    "AuxTemp1Max",
    "SinglePhase",
    "UMin",
    "UMax",
    "FMin",
    "FMax",
    "PMax",
    "PTotMax",
}


@dataclass(frozen=True, order=True)
class GensetDeviceBindingConfig:
    """Connects a register of another device to a named genset input or output."""

    device_name: str
    register_name: str
    name: str


@dataclass(frozen=True)
class GensetDeviceConfig(DeviceConfig):
    """Timeouts, temperatures and electrical limits of a generator set."""

    input_bindings: tuple[GensetDeviceBindingConfig, ...] = ()
    output_bindings: tuple[GensetDeviceBindingConfig, ...] = ()
    priming_timeout: timedelta = timedelta(seconds=10)
    cranking_timeout: timedelta = timedelta(seconds=10)
    warm_up_timeout: timedelta = timedelta(minutes=10)
    warm_up_min_time: timedelta = timedelta(minutes=2)
    warm_up_temp: float = 50.0
    engine_cool_down_timeout: timedelta = timedelta(minutes=5)
    engine_cool_down_min_time: timedelta = timedelta(minutes=2)
    engine_cool_down_temp: float = 70.0
    enclosure_cool_down_timeout: timedelta = timedelta(minutes=10)
    enclosure_cool_down_min_time: timedelta = timedelta(minutes=2)
    enclosure_cool_down_temp: float = 30.0
    engine_temp_min: float = -20.0
    engine_temp_max: float = 90.0
    aux_temp0_min: float = -20.0
    aux_temp0_max: float = 120.0
    aux_temp1_min: float = -20.0
    aux_temp1_max: float = 120.0
    single_phase: bool = False
    u_min: float = 220.0
    u_max: float = 240.0
    f_min: float = 45.0
    f_max: float = 55.0
    p_max: float = 1_000_000.0
    p_tot_max: float = 1_000_000.0


def parse_bindings(
    raw: Any, devices: Sequence[DeviceConfig]
) -> tuple[list[GensetDeviceBindingConfig], list[str]]:
    """Build bindings from a mapping of device name to register name to binding name.

    The result is sorted by device name, register name and binding name.
    """
    where = "Bindings"
    section = _section(raw, where)
    bindings: list[GensetDeviceBindingConfig] = []
    errors: list[str] = []

    for device_key, registers in section.items():
        device_name = str(device_key)
        if not exists_by_name(device_name, devices):
            errors.append(f"device='{device_name}' is not defined")
        inner_where = f"{where}->{device_name}"
        inner = _section(registers, inner_where)
        for register_key in inner:
            register_name = str(register_key)
            name = _field(inner, register_key, str, inner_where) or ""
            bindings.append(GensetDeviceBindingConfig(device_name, register_name, name))

    bindings.sort()
    return bindings, errors


def _float_setting(
    section: dict, key: str, default: float, where: str, non_negative: bool = False
) -> tuple[float, list[str]]:
    value = _field(section, key, float, where)
    if value is None:
        return default, []
    if non_negative and value < 0:
        return 0.0, [f"{where}->{key}='{value:f}' must be >=0"]
    return value, []


def parse_genset_device(
    raw: Any, name: str, devices: Sequence[DeviceConfig]
) -> tuple[GensetDeviceConfig, list[str]]:
    """Build the settings of a generator set bound to the given devices."""
    where = f"GensetDevices->{name}"
    section = _section(raw, where, GENSET_KEYS)
    errors: list[str] = []

    base, problems = parse_device(section, name)
    errors.extend(problems)

    input_bindings, problems = parse_bindings(section.get("InputBindings"), devices)
    errors.extend(problems)
    output_bindings, problems = parse_bindings(section.get("OutputBindings"), devices)
    errors.extend(problems)

    durations: dict[str, timedelta] = {}
    texts: dict[str, str] = {}
    for key, default in (
        ("PrimingTimeout", timedelta(seconds=10)),
        ("CrankingTimeout", timedelta(seconds=10)),
        ("WarmUpTimeout", timedelta(minutes=10)),
        ("WarmUpMinTime", timedelta(minutes=2)),
        ("EngineCoolDownTimeout", timedelta(minutes=5)),
        ("EngineCoolDownMinTime", timedelta(minutes=2)),
        ("EnclosureCoolDownTimeout", timedelta(minutes=10)),
        ("EnclosureCoolDownMinTime", timedelta(minutes=2)),
    ):
        texts[key] = _field(section, key, str, where) or ""
        durations[key], problems = _duration_field(texts[key], default, f"{where}->{key}")
        errors.extend(problems)

    for phase in ("WarmUp", "EngineCoolDown", "EnclosureCoolDown"):
        min_key, timeout_key = f"{phase}MinTime", f"{phase}Timeout"
        if durations[min_key] > durations[timeout_key]:
            errors.append(
                f"{where}->{min_key}='{texts[min_key]}' must be less or equal than "
                f"{timeout_key}='{texts[timeout_key]}'"
            )

    floats: dict[str, float] = {}
    for key, default, non_negative in (
        ("WarmUpTemp", 50.0, False),
        ("EngineCoolDownTemp", 70.0, False),
        ("EnclosureCoolDownTemp", 30.0, False),
        ("EngineTempMin", -20.0, False),
        ("EngineTempMax", 90.0, False),
        ("AuxTemp0Min", -20.0, False),
        ("AuxTemp0Max", 120.0, False),
        ("AuxTemp1Min", -20.0, False),
        ("AuxTemp1Max", 120.0, False),
        ("UMin", 220.0, True),
        ("UMax", 240.0, True),
        ("FMin", 45.0, True),
        ("FMax", 55.0, True),
        ("PMax", 1_000_000.0, True),
        ("PTotMax", 1_000_000.0, True),
    ):
        floats[key], problems = _float_setting(section, key, default, where, non_negative)
        errors.extend(problems)

    result = GensetDeviceConfig(
        **_base_fields(base),
        input_bindings=tuple(input_bindings),
        output_bindings=tuple(output_bindings),
        priming_timeout=durations["PrimingTimeout"],
        cranking_timeout=durations["CrankingTimeout"],
        warm_up_timeout=durations["WarmUpTimeout"],
        warm_up_min_time=durations["WarmUpMinTime"],
        warm_up_temp=floats["WarmUpTemp"],
        engine_cool_down_timeout=durations["EngineCoolDownTimeout"],
        engine_cool_down_min_time=durations["EngineCoolDownMinTime"],
        engine_cool_down_temp=floats["EngineCoolDownTemp"],
        enclosure_cool_down_timeout=durations["EnclosureCoolDownTimeout"],
        enclosure_cool_down_min_time=durations["EnclosureCoolDownMinTime"],
        enclosure_cool_down_temp=floats["EnclosureCoolDownTemp"],
        engine_temp_min=floats["EngineTempMin"],
        engine_temp_max=floats["EngineTempMax"],
        aux_temp0_min=floats["AuxTemp0Min"],
        aux_temp0_max=floats["AuxTemp0Max"],
        aux_temp1_min=floats["AuxTemp1Min"],
        aux_temp1_max=floats["AuxTemp1Max"],
        single_phase=bool(_field(section, "SinglePhase", bool, where)),
        u_min=floats["UMin"],
        u_max=floats["UMax"],
        f_min=floats["FMin"],
        f_max=floats["FMax"],
        p_max=floats["PMax"],
        p_tot_max=floats["PTotMax"],
    )
    return result, errors