"""Victron, Modbus, GPIO, HTTP and MQTT device settings."""

from __future__ import annotations

import re
from dataclasses import dataclass, field, fields
from datetime import timedelta
from enum import Enum
from typing import Any, Sequence, TypeVar
from urllib.parse import SplitResult, urlsplit

from iotconfig.filters import DEVICE_KEYS, DeviceConfig, parse_device
from iotconfig.server import ModbusConfig
from iotconfig.transform import (
    NAME_REGEXP,
    _duration_field,
    _field,
    _section,
    exists_by_name,
    is_valid_name,
    transform_map,
    transform_map_to_list,
)

__all__ = [
    "VictronDeviceKind",
    "ModbusDeviceKind",
    "HttpDeviceKind",
    "MqttDeviceKind",
    "VictronDeviceConfig",
    "ModbusDeviceConfig",
    "RelayConfig",
    "GpioDeviceConfig",
    "PinConfig",
    "HttpDeviceConfig",
    "MqttDeviceConfig",
    "parse_victron_device",
    "parse_modbus_device",
    "parse_relay",
    "parse_gpio_device",
    "parse_pin",
    "parse_http_device",
    "parse_mqtt_device",
]


class VictronDeviceKind(Enum):
    UNDEFINED = "Undefined"
    RANDOM_BMV = "RandomBmv"
    RANDOM_SOLAR = "RandomSolar"
    VEDIRECT = "Vedirect"


class ModbusDeviceKind(Enum):
    UNDEFINED = "Undefined"
    WAVESHARE_RTU_RELAY8 = "WaveshareRtuRelay8"
    FINDER_7M38 = "Finder7M38"


class HttpDeviceKind(Enum):
    UNDEFINED = "Undefined"
    TERACOM = "Teracom"
    SHELLY_EM3 = "ShellyEm3"


class MqttDeviceKind(Enum):
    UNDEFINED = "Undefined"
    GO_IOTDEVICE_V3 = "GoIotdeviceV3"


K = TypeVar("K", VictronDeviceKind, ModbusDeviceKind, HttpDeviceKind, MqttDeviceKind)


def _kind(kind_type: type[K], text: str | None) -> K:
    try:
        return kind_type(text)
    except ValueError:
        return kind_type.UNDEFINED


VICTRON_KEYS = DEVICE_KEYS | {"Kind", "Device", "IoLog", "PollInterval"}
MODBUS_DEVICE_KEYS = DEVICE_KEYS | {"Kind", "Bus", "Address", "Relays", "PollInterval"}
RELAY_KEYS = frozenset({"Description", "OpenLabel", "ClosedLabel"})
GPIO_KEYS = DEVICE_KEYS | {"Chip", "InputDebounce", "InputOptions", "OutputOptions", "Inputs", "Outputs"}
PIN_KEYS = frozenset({"Pin", "Description", "LowLabel", "HighLabel"})
HTTP_DEVICE_KEYS = DEVICE_KEYS | {"Url", "Kind", "Username", "Password", "PollInterval"}
MQTT_DEVICE_KEYS = DEVICE_KEYS | {"Kind"}

INPUT_OPTIONS = ("WithBiasDisabled", "WithPullDown", "WithPullUp")
OUTPUT_OPTIONS = ("AsOpenDrain", "AsOpenSource", "AsPushPull")

_SCHEME = re.compile(r"[A-Za-z][A-Za-z0-9+.\-]*:")
_HEX_ADDRESS = re.compile(r"0x([0-9a-fA-F]+)")
_DECIMAL_ADDRESS = re.compile(r"\s*([+-]?[0-9]+)")


def _base_fields(base: DeviceConfig) -> dict[str, Any]:
    return {f.name: getattr(base, f.name) for f in fields(DeviceConfig)}


def _parse_request_uri(text: str) -> SplitResult:
    """Parse an absolute URL or absolute path; raise ValueError otherwise."""
    if not (_SCHEME.match(text) or text.startswith("/")):
        raise ValueError(f'parse "{text}": invalid URI for request')
    return urlsplit(text)


def _parse_address(text: str, hex_form: bool) -> int:
    match = (_HEX_ADDRESS if hex_form else _DECIMAL_ADDRESS).match(text)
    if match is None:
        raise ValueError("expected integer")
    value = int(match.group(1), 16 if hex_form else 10)
    if not 0 <= value <= 255:
        raise ValueError("value out of range")
    return value


@dataclass(frozen=True)
class VictronDeviceConfig(DeviceConfig):
    """A Victron Energy device attached via VE.Direct, or a simulated one."""

    kind: VictronDeviceKind = VictronDeviceKind.UNDEFINED
    device: str = ""
    poll_interval: timedelta = timedelta(milliseconds=500)
    io_log: str = ""


@dataclass(frozen=True)
class RelayConfig:
    """Labels of one relay of a Modbus relay board."""

    description: str = ""
    open_label: str = ""
    closed_label: str = ""


@dataclass(frozen=True)
class ModbusDeviceConfig(DeviceConfig):
    """A device on a Modbus bus."""

    kind: ModbusDeviceKind = ModbusDeviceKind.UNDEFINED
    bus: str = ""
    address: int = 0
    relays: dict[str, RelayConfig] = field(default_factory=dict)
    poll_interval: timedelta = timedelta(seconds=1)

    def relay_description(self, name: str) -> str:
        """Return the configured description of a relay, or its name."""
        relay = self.relays.get(name)
        return name if relay is None else relay.description

    def relay_open_label(self, name: str) -> str:
        """Return the label of the open state of a relay."""
        relay = self.relays.get(name)
        return "open" if relay is None else relay.open_label

    def relay_closed_label(self, name: str) -> str:
        """Return the label of the closed state of a relay."""
        relay = self.relays.get(name)
        return "closed" if relay is None else relay.closed_label


@dataclass(frozen=True)
class PinConfig:
    """One GPIO line used as an input or output."""

    pin: str
    name: str
    description: str
    low_label: str = "low"
    high_label: str = "high"


@dataclass(frozen=True)
class GpioDeviceConfig(DeviceConfig):
    """A set of GPIO lines of one chip."""

    chip: str = "gpiochip0"
    input_debounce: timedelta = timedelta(milliseconds=100)
    input_options: tuple[str, ...] = ()
    output_options: tuple[str, ...] = ()
    inputs: tuple[PinConfig, ...] = ()
    outputs: tuple[PinConfig, ...] = ()


@dataclass(frozen=True)
class HttpDeviceConfig(DeviceConfig):
    """A device polled over HTTP."""

    url: SplitResult | None = None
    kind: HttpDeviceKind = HttpDeviceKind.UNDEFINED
    username: str = ""
    password: str = field(default="", repr=False)
    poll_interval: timedelta = timedelta(seconds=1)


@dataclass(frozen=True)
class MqttDeviceConfig(DeviceConfig):
    """A device whose values are received over MQTT."""

    kind: MqttDeviceKind = MqttDeviceKind.UNDEFINED


def _at_least(limit: timedelta, text: str):
    def check(value: timedelta) -> str | None:
        return f"must be >={text}" if value < limit else None

    return check


def parse_victron_device(raw: Any, name: str) -> tuple[VictronDeviceConfig, list[str]]:
    """Build the settings of a Victron device."""
    where = f"VictronDevices->{name}"
    section = _section(raw, where, VICTRON_KEYS)
    errors: list[str] = []

    base, problems = parse_device(section, name)
    errors.extend(problems)

    kind_text = _field(section, "Kind", str, where) or ""
    kind = _kind(VictronDeviceKind, kind_text)
    device = _field(section, "Device", str, where) or ""
    if kind is VictronDeviceKind.UNDEFINED:
        errors.append(f"{where}->Kind='{kind_text}' is invalid")
    if kind is VictronDeviceKind.VEDIRECT and not device:
        errors.append(f"{where}->Device must not be empty")

    poll_interval, problems = _duration_field(
        _field(section, "PollInterval", str, where),
        timedelta(milliseconds=500),
        f"{where}->PollInterval",
        _at_least(timedelta(milliseconds=1), "1ms"),
    )
    errors.extend(problems)

    result = VictronDeviceConfig(
        **_base_fields(base),
        kind=kind,
        device=device,
        poll_interval=poll_interval,
        io_log=_field(section, "IoLog", str, where) or "",
    )
    return result, errors


def parse_relay(raw: Any) -> tuple[RelayConfig, list[str]]:
    """Build the labels of one relay."""
    where = "Relays"
    section = _section(raw, where, RELAY_KEYS)
    result = RelayConfig(
        description=_field(section, "Description", str, where) or "",
        open_label=_field(section, "OpenLabel", str, where) or "",
        closed_label=_field(section, "ClosedLabel", str, where) or "",
    )
    return result, []


def parse_modbus_device(
    raw: Any, name: str, modbus: Sequence[ModbusConfig]
) -> tuple[ModbusDeviceConfig, list[str]]:
    """Build the settings of a Modbus device attached to one of the given buses."""
    where = f"ModbusDevices->{name}"
    section = _section(raw, where, MODBUS_DEVICE_KEYS)
    errors: list[str] = []

    base, problems = parse_device(section, name)
    errors.extend(problems)

    kind_text = _field(section, "Kind", str, where) or ""
    kind = _kind(ModbusDeviceKind, kind_text)
    if kind is ModbusDeviceKind.UNDEFINED:
        errors.append(f"{where}->Kind='{kind_text}' is invalid")

    bus = _field(section, "Bus", str, where) or ""
    if not exists_by_name(bus, modbus):
        errors.append(f"{where}: Bus='{bus}' is not defined")

    address_text = _field(section, "Address", str, where) or ""
    hex_form = "0x" in address_text
    address = 0
    try:
        address = _parse_address(address_text, hex_form)
    except ValueError as exc:
        form = "hex" if hex_form else "decimal"
        errors.append(f"{where}: {form} Address={address_text} is invalid: {exc}")

    relays, problems = transform_map(
        _field(section, "Relays", dict, where),
        lambda inp, _relay: parse_relay(inp),
    )
    errors.extend(problems)

    poll_interval, problems = _duration_field(
        _field(section, "PollInterval", str, where),
        timedelta(seconds=1),
        f"{where}->PollInterval",
        _at_least(timedelta(milliseconds=1), "1ms"),
    )
    errors.extend(problems)

    result = ModbusDeviceConfig(
        **_base_fields(base),
        kind=kind,
        bus=bus,
        address=address,
        relays=relays,
        poll_interval=poll_interval,
    )
    return result, errors


def parse_pin(raw: Any, name: str, error_prefix: str) -> tuple[PinConfig, list[str]]:
    """Build the settings of one GPIO line."""
    section = _section(raw, error_prefix, PIN_KEYS)
    errors: list[str] = []

    pin = _field(section, "Pin", str, error_prefix) or ""
    if not pin:
        errors.append(f"{error_prefix}->Pin must not be empty")
    if not is_valid_name(name):
        errors.append(f"{error_prefix} name '{name}' does not match {NAME_REGEXP}")

    description = _field(section, "Description", str, error_prefix)
    low_label = _field(section, "LowLabel", str, error_prefix)
    high_label = _field(section, "HighLabel", str, error_prefix)
    result = PinConfig(
        pin=pin,
        name=name,
        description=name if description is None else description,
        low_label="low" if low_label is None else low_label,
        high_label="high" if high_label is None else high_label,
    )
    return result, errors


def _options(values: tuple[str, ...], allowed: Sequence[str], where: str) -> tuple[tuple[str, ...], list[str]]:
    errors = [f"{where}='{opt}' is invalid" for opt in values if opt not in allowed]
    accepted = tuple(opt for opt in values if opt in allowed)
    if len(accepted) > 1:
        errors.append(f"{where} must not contain more than one option")
    return accepted, errors


def parse_gpio_device(raw: Any, name: str) -> tuple[GpioDeviceConfig, list[str]]:
    """Build the settings of a GPIO device."""
    where = f"GpioDevices->{name}"
    section = _section(raw, where, GPIO_KEYS)
    errors: list[str] = []

    base, problems = parse_device(section, name)
    errors.extend(problems)

    chip = _field(section, "Chip", str, where)
    if chip is None:
        chip = "gpiochip0"
    elif not chip:
        errors.append(f"{where}->Chip must not be empty")

    input_debounce, problems = _duration_field(
        _field(section, "InputDebounce", str, where),
        timedelta(milliseconds=100),
        f"{where}->InputDebounce",
    )
    errors.extend(problems)

    input_options, problems = _options(
        _field(section, "InputOptions", list, where) or (), INPUT_OPTIONS, f"{where}->InputOptions"
    )
    errors.extend(problems)
    output_options, problems = _options(
        _field(section, "OutputOptions", list, where) or (), OUTPUT_OPTIONS, f"{where}->OutputOptions"
    )
    errors.extend(problems)

    inputs, problems = transform_map_to_list(
        _field(section, "Inputs", dict, where),
        lambda inp, pin_name: parse_pin(inp, pin_name, f"{where}->Inputs->{pin_name}"),
    )
    errors.extend(problems)
    outputs, problems = transform_map_to_list(
        _field(section, "Outputs", dict, where),
        lambda inp, pin_name: parse_pin(inp, pin_name, f"{where}->Outputs->{pin_name}"),
    )
    errors.extend(problems)

    result = GpioDeviceConfig(
        **_base_fields(base),
        chip=chip,
        input_debounce=input_debounce,
        input_options=input_options,
        output_options=output_options,
        inputs=tuple(inputs),
        outputs=tuple(outputs),
    )
    return result, errors


def parse_http_device(raw: Any, name: str) -> tuple[HttpDeviceConfig, list[str]]:
    """Build the settings of a device polled over HTTP."""
    where = f"HttpDevices->{name}"
    section = _section(raw, where, HTTP_DEVICE_KEYS)
    errors: list[str] = []

    base, problems = parse_device(section, name)
    errors.extend(problems)

    url = None
    url_text = _field(section, "Url", str, where) or ""
    if not url_text:
        errors.append(f"{where}->Url must not be empty")
    else:
        try:
            url = _parse_request_uri(url_text)
        except ValueError as exc:
            errors.append(f"{where}->Url invalid url: {exc}")

    kind_text = _field(section, "Kind", str, where) or ""
    kind = _kind(HttpDeviceKind, kind_text)
    if kind is HttpDeviceKind.UNDEFINED:
        errors.append(f"{where}->Kind='{kind_text}' is invalid")

    poll_interval, problems = _duration_field(
        _field(section, "PollInterval", str, where),
        timedelta(seconds=1),
        f"{where}->PollInterval",
        _at_least(timedelta(milliseconds=100), "100ms"),
    )
    errors.extend(problems)

    result = HttpDeviceConfig(
        **_base_fields(base),
        url=url,
        kind=kind,
        username=_field(section, "Username", str, where) or "",
        password=_field(section, "Password", str, where) or "",
        poll_interval=poll_interval,
    )
    return result, errors


def parse_mqtt_device(raw: Any, name: str) -> tuple[MqttDeviceConfig, list[str]]:
    """Build the settings of a device fed by MQTT messages."""
    where = f"MqttDevices->{name}"
    section = _section(raw, where, MQTT_DEVICE_KEYS)
    errors: list[str] = []

    kind_text = _field(section, "Kind", str, where) or ""
    kind = _kind(MqttDeviceKind, kind_text)
    if kind is MqttDeviceKind.UNDEFINED:
        errors.append(f"{where}->Kind='{kind_text}' is invalid")

    base, problems = parse_device(section, name)
    errors.extend(problems)

    return MqttDeviceConfig(**_base_fields(base), kind=kind), errors