"""Reading, validating and printing the complete configuration."""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field, fields, is_dataclass
from datetime import timedelta
from enum import Enum
from pathlib import Path
from typing import Any, Sequence
from urllib.parse import SplitResult

import yaml

from iotconfig.devices import (
    GpioDeviceConfig,
    HttpDeviceConfig,
    ModbusDeviceConfig,
    MqttDeviceConfig,
    VictronDeviceConfig,
    parse_gpio_device,
    parse_http_device,
    parse_modbus_device,
    parse_mqtt_device,
    parse_victron_device,
)
from iotconfig.duration import format_duration
from iotconfig.filters import DeviceConfig, FilterConfig, parse_filter
from iotconfig.genset import GensetDeviceConfig, parse_genset_device
from iotconfig.mqtt import MqttClientConfig, parse_mqtt_client
from iotconfig.server import (
    AuthenticationConfig,
    HttpServerConfig,
    ModbusConfig,
    parse_authentication,
    parse_http_server,
    parse_modbus,
)
from iotconfig.transform import (
    NAME_REGEXP,
    ConfigError,
    _field,
    _section,
    exists_by_name,
    is_valid_name,
    transform_list_unique,
    transform_map_to_list,
)

__all__ = [
    "CONFIG_KEYS",
    "VIEW_KEYS",
    "VIEW_DEVICE_KEYS",
    "ViewDeviceConfig",
    "ViewConfig",
    "Config",
    "parse_view_device",
    "parse_view",
    "parse_config",
    "read_config",
    "read_config_file",
]

_log = logging.getLogger(__name__)

CONFIG_KEYS = frozenset(
    {
        "Version",
        "ProjectTitle",
        "LogConfig",
        "LogWorkerStart",
        "LogStateStorageDebug",
        "LogCommandStorageDebug",
        "HttpServer",
        "Authentication",
        "MqttClients",
        "Modbus",
        "VictronDevices",
        "ModbusDevices",
        "GpioDevices",
        "HttpDevices",
        "MqttDevices",
        "GensetDevices",
        "Views",
    }
)
VIEW_KEYS = frozenset({"Name", "Title", "Devices", "Autoplay", "AllowedUsers", "Hidden"})
VIEW_DEVICE_KEYS = frozenset({"Name", "Title", "Filter"})

_ENV_REFERENCE = re.compile(r"\$\{([^}]*)\}|\$([A-Za-z0-9_]+)")


@dataclass(frozen=True)
class ViewDeviceConfig:
    """A device shown in a view, with its title and register filter."""

    name: str
    title: str = ""
    filter: FilterConfig = field(default_factory=FilterConfig)


@dataclass(frozen=True)
class ViewConfig:
    """A page of the frontend showing a selection of devices."""

    name: str
    title: str = ""
    devices: tuple[ViewDeviceConfig, ...] = ()
    autoplay: bool = True
    allowed_users: frozenset[str] = frozenset()
    hidden: bool = False

    def is_allowed(self, user: str) -> bool:
        """Tell whether the user is explicitly allowed to see this view."""
        return user in self.allowed_users

    def is_public(self) -> bool:
        """Tell whether the view is visible without logging in."""
        return not self.allowed_users


def _plain(value: Any) -> Any:
    """Turn configuration objects into YAML-friendly data, leaving out secrets."""
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: _plain(getattr(value, f.name)) for f in fields(value) if f.repr}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, timedelta):
        return format_duration(value)
    if isinstance(value, SplitResult):
        return value.geturl()
    if isinstance(value, dict):
        return {str(key): _plain(item) for key, item in value.items()}
    if isinstance(value, (set, frozenset)):
        return sorted(_plain(item) for item in value)
    if isinstance(value, (list, tuple)):
        return [_plain(item) for item in value]
    if isinstance(value, bytes):
        return None
    return value


@dataclass(frozen=True)
class Config:
    """The complete, validated configuration."""

    version: int = 2
    project_title: str = "go-iotdevice"
    log_config: bool = True
    log_worker_start: bool = True
    log_state_storage_debug: bool = False
    log_command_storage_debug: bool = False
    http_server: HttpServerConfig = field(default_factory=HttpServerConfig)
    authentication: AuthenticationConfig = field(default_factory=AuthenticationConfig)
    mqtt_clients: tuple[MqttClientConfig, ...] = ()
    modbus: tuple[ModbusConfig, ...] = ()
    devices: tuple[DeviceConfig, ...] = ()
    victron_devices: tuple[VictronDeviceConfig, ...] = ()
    modbus_devices: tuple[ModbusDeviceConfig, ...] = ()
    gpio_devices: tuple[GpioDeviceConfig, ...] = ()
    http_devices: tuple[HttpDeviceConfig, ...] = ()
    mqtt_devices: tuple[MqttDeviceConfig, ...] = ()
    genset_devices: tuple[GensetDeviceConfig, ...] = ()
    views: tuple[ViewConfig, ...] = ()

    def dump(self) -> str:
        """Render the configuration as YAML, without passwords and secrets."""
        return yaml.safe_dump(_plain(self), sort_keys=False, allow_unicode=True)

    def print_config(self) -> None:
        """Log the configuration in use, one line per message."""
        _log.info("config: use the following config:")
        for line in self.dump().split("\n"):
            _log.info("config: %s", line)


def _section_list(raw: Any, where: str) -> list[Any]:
    if raw is None:
        return []
    if not isinstance(raw, (list, tuple)):
        raise ConfigError([f"cannot parse yaml: {where}: expected a list"])
    return list(raw)


def _unique_names(needle: Any, haystack: list[Any]) -> list[str]:
    if exists_by_name(needle.name, haystack):
        return [f"duplicate name='{needle.name}'"]
    return []


def parse_view_device(raw: Any, devices: Sequence[DeviceConfig]) -> tuple[ViewDeviceConfig, list[str]]:
    """Build one device entry of a view."""
    where = "Views->Devices"
    section = _section(raw, where, VIEW_DEVICE_KEYS)
    errors: list[str] = []

    name = _field(section, "Name", str, where) or ""
    title = _field(section, "Title", str, where) or ""

    if not exists_by_name(name, devices):
        errors.append(f"device='{name}' is not defined")

    view_filter, problems = parse_filter(section.get("Filter"))
    errors.extend(problems)

    return ViewDeviceConfig(name=name, title=title, filter=view_filter), errors


def parse_view(raw: Any, devices: Sequence[DeviceConfig]) -> tuple[ViewConfig, list[str]]:
    """Build one view; device names must be unique within it."""
    where = "Views"
    section = _section(raw, where, VIEW_KEYS)
    errors: list[str] = []

    name = _field(section, "Name", str, where) or ""
    title = _field(section, "Title", str, where) or ""

    if not is_valid_name(name):
        errors.append(f"Views->Name='{name}' does not match {NAME_REGEXP}")
    if not title:
        errors.append(f"Views->{name}->Title must not be empty")

    view_devices, problems = transform_list_unique(
        _section_list(section.get("Devices"), f"{where}->{name}->Devices"),
        lambda inp: parse_view_device(inp, devices),
        _unique_names,
    )
    errors.extend(f"section Views->{name}: {problem}" for problem in problems)

    autoplay = _field(section, "Autoplay", bool, where)
    allowed_users = _field(section, "AllowedUsers", list, where) or ()

    result = ViewConfig(
        name=name,
        title=title,
        devices=tuple(view_devices),
        autoplay=autoplay is not False,
        allowed_users=frozenset(allowed_users),
        hidden=bool(_field(section, "Hidden", bool, where)),
    )
    return result, errors


def parse_config(raw: Any, bypass_file_check: bool = False) -> Config:
    """Validate a decoded configuration document.

    Raises ConfigError listing every problem found.
    """
    where = "Config"
    section = _section(raw, where, CONFIG_KEYS)
    errors: list[str] = []

    version = _field(section, "Version", int, where)
    if version is None:
        errors.append("Version must be defined. Use Version=2")
        version = 0
    elif version != 2:
        errors.append(f"version={version} is not supported, only version=2 is supported")

    project_title = _field(section, "ProjectTitle", str, where) or "go-iotdevice"

    http_server, problems = parse_http_server(section.get("HttpServer"))
    errors.extend(problems)

    authentication, problems = parse_authentication(section.get("Authentication"), bypass_file_check)
    errors.extend(problems)

    modbus, problems = transform_map_to_list(_field(section, "Modbus", dict, where), parse_modbus)
    errors.extend(problems)

    victron_devices, problems = transform_map_to_list(
        _field(section, "VictronDevices", dict, where), parse_victron_device
    )
    errors.extend(problems)

    modbus_devices, problems = transform_map_to_list(
        _field(section, "ModbusDevices", dict, where),
        lambda inp, name: parse_modbus_device(inp, name, modbus),
    )
    errors.extend(problems)

    gpio_devices, problems = transform_map_to_list(
        _field(section, "GpioDevices", dict, where), parse_gpio_device
    )
    errors.extend(problems)

    http_devices, problems = transform_map_to_list(
        _field(section, "HttpDevices", dict, where), parse_http_device
    )
    errors.extend(problems)

    mqtt_devices, problems = transform_map_to_list(
        _field(section, "MqttDevices", dict, where), parse_mqtt_device
    )
    errors.extend(problems)

    devices: list[DeviceConfig] = [
        *victron_devices,
        *modbus_devices,
        *gpio_devices,
        *http_devices,
        *mqtt_devices,
    ]

    genset_devices, problems = transform_map_to_list(
        _field(section, "GensetDevices", dict, where),
        lambda inp, name: parse_genset_device(inp, name, list(devices)),
    )
    errors.extend(problems)
    devices.extend(genset_devices)

    mqtt_clients, problems = transform_map_to_list(
        _field(section, "MqttClients", dict, where),
        lambda inp, name: parse_mqtt_client(inp, name, devices, mqtt_devices),
    )
    errors.extend(problems)

    views, problems = transform_list_unique(
        _section_list(section.get("Views"), "Views"),
        lambda inp: parse_view(inp, devices),
        _unique_names,
    )
    errors.extend(f"section Views: {problem}" for problem in problems)

    if errors:
        raise ConfigError(errors)

    return Config(
        version=version,
        project_title=project_title,
        log_config=_field(section, "LogConfig", bool, where) is not False,
        log_worker_start=_field(section, "LogWorkerStart", bool, where) is not False,
        log_state_storage_debug=bool(_field(section, "LogStateStorageDebug", bool, where)),
        log_command_storage_debug=bool(_field(section, "LogCommandStorageDebug", bool, where)),
        http_server=http_server,
        authentication=authentication,
        mqtt_clients=tuple(mqtt_clients),
        modbus=tuple(modbus),
        devices=tuple(devices),
        victron_devices=tuple(victron_devices),
        modbus_devices=tuple(modbus_devices),
        gpio_devices=tuple(gpio_devices),
        http_devices=tuple(http_devices),
        mqtt_devices=tuple(mqtt_devices),
        genset_devices=tuple(genset_devices),
        views=tuple(views),
    )


def _expand_env(text: str) -> str:
    """Replace $NAME and ${NAME} by environment values; unset names become empty."""
    return _ENV_REFERENCE.sub(
        lambda match: os.environ.get(match.group(1) if match.group(1) is not None else match.group(2), ""),
        text,
    )


def read_config(text: str | bytes, bypass_file_check: bool = False) -> Config:
    """Parse a YAML configuration after expanding environment variables."""
    if isinstance(text, bytes):
        text = text.decode("utf-8")
    try:
        document = yaml.safe_load(_expand_env(text))
    except yaml.YAMLError as exc:
        raise ConfigError([f"cannot parse yaml: {exc}"]) from exc
    if document is None:
        raise ConfigError(["cannot parse yaml: EOF"])
    return parse_config(document, bypass_file_check)


def read_config_file(path: str | os.PathLike, bypass_file_check: bool = False) -> Config:
    """Read and validate a YAML configuration file."""
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError([f"cannot read configuration: {exc}"]) from exc
    return read_config(text, bypass_file_check)