"""MQTT client settings and the sections that control what a client publishes."""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable, Sequence
from urllib.parse import SplitResult

from iotconfig.devices import MqttDeviceConfig, _parse_request_uri
from iotconfig.filters import DeviceConfig, FilterConfig, parse_filter
from iotconfig.transform import (
    NAME_REGEXP,
    _duration_field,
    _field,
    _section,
    exists_by_name,
    is_valid_name,
    transform_map_to_list,
)

__all__ = [
    "MQTT_SECTION_KEYS",
    "MQTT_DEVICE_SECTION_KEYS",
    "MQTT_CLIENT_DEVICE_KEYS",
    "MQTT_CLIENT_KEYS",
    "MqttDeviceSectionConfig",
    "MqttSectionConfig",
    "MqttClientDeviceConfig",
    "MqttClientConfig",
    "parse_mqtt_device_section",
    "parse_mqtt_section",
    "parse_mqtt_client_device",
    "parse_mqtt_client",
]

MQTT_SECTION_KEYS = frozenset({"Enabled", "TopicTemplate", "Interval", "Retain", "Qos", "Devices"})
MQTT_DEVICE_SECTION_KEYS = frozenset({"Filter"})
MQTT_CLIENT_DEVICE_KEYS = frozenset({"MqttTopics"})
MQTT_CLIENT_KEYS = frozenset(
    {
        "Broker",
        "ProtocolVersion",
        "User",
        "Password",
        "ClientId",
        "KeepAlive",
        "ConnectRetryDelay",
        "ConnectTimeout",
        "TopicPrefix",
        "ReadOnly",
        "MaxBacklogSize",
        "MqttDevices",
        "AvailabilityClient",
        "AvailabilityDevice",
        "Structure",
        "Telemetry",
        "Realtime",
        "HomeassistantDiscovery",
        "Command",
        "LogDebug",
        "LogMessages",
    }
)


@dataclass(frozen=True)
class MqttDeviceSectionConfig:
    """One device published by an MQTT section, with its register filter."""

    name: str
    filter: FilterConfig = field(default_factory=FilterConfig)


@dataclass(frozen=True)
class MqttSectionConfig:
    """Settings of one kind of MQTT messages (availability, telemetry, ...)."""

    enabled: bool = False
    topic_template: str = ""
    interval: timedelta = timedelta(0)
    retain: bool = False
    qos: int = 0
    devices: tuple[MqttDeviceSectionConfig, ...] = ()


@dataclass(frozen=True)
class MqttClientDeviceConfig:
    """The topics an MQTT device listens to on a given client."""

    name: str
    mqtt_topics: tuple[str, ...] = ()


def _replace(template: str, pairs: Sequence[tuple[str, str]]) -> str:
    """Replace placeholders in a single pass; earlier pairs win over later ones."""
    mapping: dict[str, str] = {}
    for old, new in pairs:
        if old:
            mapping.setdefault(old, new)
    if not mapping:
        return template
    pattern = re.compile("|".join(re.escape(old) for old in mapping))
    return pattern.sub(lambda match: mapping[match.group()], template)


@dataclass(frozen=True)
class MqttClientConfig:
    """Connection settings of one MQTT broker and what is exchanged with it."""

    name: str
    broker: SplitResult | None = None
    protocol_version: int = 5
    user: str = ""
    password: str = field(default="", repr=False)
    client_id: str = ""
    keep_alive: timedelta = timedelta(minutes=1)
    connect_retry_delay: timedelta = timedelta(seconds=10)
    connect_timeout: timedelta = timedelta(seconds=5)
    topic_prefix: str = "go-iotdevice/"
    read_only: bool = False
    max_backlog_size: int = 256
    mqtt_devices: tuple[MqttClientDeviceConfig, ...] = ()
    availability_client: MqttSectionConfig = field(default_factory=MqttSectionConfig)
    availability_device: MqttSectionConfig = field(default_factory=MqttSectionConfig)
    structure: MqttSectionConfig = field(default_factory=MqttSectionConfig)
    telemetry: MqttSectionConfig = field(default_factory=MqttSectionConfig)
    realtime: MqttSectionConfig = field(default_factory=MqttSectionConfig)
    homeassistant_discovery: MqttSectionConfig = field(default_factory=MqttSectionConfig)
    command: MqttSectionConfig = field(default_factory=MqttSectionConfig)
    log_debug: bool = False
    log_messages: bool = False

    def _topic(self, template: str, *extra: tuple[str, str]) -> str:
        pairs = [*extra, ("%Prefix%", self.topic_prefix), ("%ClientId%", self.client_id)]
        return _replace(template, pairs)

    def availability_client_topic(self) -> str:
        """Return the topic announcing whether this client is online."""
        return self._topic(self.availability_client.topic_template)

    def availability_device_topic(self, device_name: str) -> str:
        """Return the topic announcing whether a device is available."""
        return self._topic(self.availability_device.topic_template, ("%DeviceName%", device_name))

    def structure_topic(self, device_name: str) -> str:
        """Return the topic describing the registers of a device."""
        return self._topic(self.structure.topic_template, ("%DeviceName%", device_name))

    def telemetry_topic(self, device_name: str) -> str:
        """Return the topic of periodic telemetry messages of a device."""
        return self._topic(self.telemetry.topic_template, ("%DeviceName%", device_name))

    def realtime_topic(self, device_name: str, register_name: str) -> str:
        """Return the topic of realtime updates of one register."""
        return self._topic(
            self.realtime.topic_template,
            ("%DeviceName%", device_name),
            ("%RegisterName%", register_name),
        )

    def homeassistant_discovery_topic(self, component: str, node_id: str, object_id: str) -> str:
        """Return the Home Assistant discovery topic of one entity."""
        return self._topic(
            self.homeassistant_discovery.topic_template,
            ("%Component%", component),
            ("%NodeId%", node_id),
            ("%ObjectId%", object_id),
        )

    def command_topic(self, device_name: str, register_name: str) -> str:
        """Return the topic on which commands for one register are received."""
        return self._topic(
            self.command.topic_template,
            ("%DeviceName%", device_name),
            ("%RegisterName%", register_name),
        )


def _where(log_prefix: str) -> str:
    return log_prefix.removesuffix("->") or "Mqtt"


def parse_mqtt_device_section(
    raw: Any,
    name: str,
    devices: Sequence[DeviceConfig],
    log_prefix: str,
    allow_filter: bool,
) -> tuple[MqttDeviceSectionConfig, list[str]]:
    """Build the entry of one device within an MQTT section."""
    section = _section(raw, _where(log_prefix), MQTT_DEVICE_SECTION_KEYS)
    errors: list[str] = []

    if not exists_by_name(name, devices):
        errors.append(f"{log_prefix}Devices: device='{name}' is not defined or is an MqttDevice")

    raw_filter = section.get("Filter")
    if not allow_filter and raw_filter is not None:
        errors.append(f"{log_prefix}Filter must not be set")

    device_filter, problems = parse_filter(raw_filter)
    errors.extend(problems)

    return MqttDeviceSectionConfig(name=name, filter=device_filter), errors


def parse_mqtt_section(
    raw: Any,
    log_prefix: str,
    devices: Sequence[DeviceConfig],
    read_only: bool,
    default_enabled: bool,
    default_topic_template: str,
    default_interval: timedelta,
    allow_interval: bool,
    allow_zero_interval: bool,
    allow_retain: bool,
    default_retain: bool,
    allow_devices: bool,
    allow_filter: bool,
) -> tuple[MqttSectionConfig, list[str]]:
    """Build one MQTT section; without listed devices all given devices are used."""
    where = _where(log_prefix)
    section = _section(raw, where, MQTT_SECTION_KEYS)
    errors: list[str] = []

    enabled = _field(section, "Enabled", bool, where)
    if read_only:
        enabled = False
    elif enabled is None:
        enabled = default_enabled

    topic_template = _field(section, "TopicTemplate", str, where)
    if topic_template is None:
        topic_template = default_topic_template
    elif not topic_template:
        errors.append(f"{log_prefix}TopicTemplate must no be empty")

    interval_text = _field(section, "Interval", str, where) or ""
    interval = timedelta(0)
    if not allow_interval:
        if interval_text:
            errors.append(f"{log_prefix}Interval not supported")
    else:
        def check_interval(value: timedelta) -> str | None:
            if allow_zero_interval:
                return "must be >= 0" if value < timedelta(0) else None
            return "must be > 0" if value <= timedelta(0) else None

        interval, problems = _duration_field(
            interval_text, default_interval, f"{log_prefix}Interval", check_interval
        )
        errors.extend(problems)

    retain_value = _field(section, "Retain", bool, where)
    retain = False
    if not allow_retain:
        if retain_value is not None:
            errors.append(f"{log_prefix}Retain not supported")
    else:
        retain = default_retain if retain_value is None else retain_value

    qos_value = _field(section, "Qos", int, where)
    qos = 0
    if qos_value is None:
        qos = 1
    elif qos_value in (0, 1, 2):
        qos = qos_value
    else:
        errors.append(f"{log_prefix}Qos={qos_value} but must be 0, 1 or 2")

    raw_devices = _field(section, "Devices", dict, where) or {}
    section_devices: list[MqttDeviceSectionConfig] = []
    if not allow_devices:
        if raw_devices:
            errors.append(f"{log_prefix}Devices must not be set")
    else:
        if not raw_devices:
            raw_devices = {device.name: None for device in devices}
        section_devices, problems = transform_map_to_list(
            raw_devices,
            lambda inp, device_name: parse_mqtt_device_section(
                inp, device_name, devices, f"{log_prefix}{device_name}->", allow_filter
            ),
        )
        errors.extend(problems)

    result = MqttSectionConfig(
        enabled=enabled,
        topic_template=topic_template,
        interval=interval,
        retain=retain,
        qos=qos,
        devices=tuple(section_devices),
    )
    return result, errors


def parse_mqtt_client_device(
    raw: Any,
    name: str,
    log_prefix: str,
    mqtt_devices: Sequence[MqttDeviceConfig],
) -> tuple[MqttClientDeviceConfig, list[str]]:
    """Build the topics one MQTT device subscribes to on a client."""
    where = f"{log_prefix}{name}"
    section = _section(raw, where, MQTT_CLIENT_DEVICE_KEYS)
    errors: list[str] = []

    mqtt_topics = _field(section, "MqttTopics", list, where) or ()

    if not exists_by_name(name, mqtt_devices):
        errors.append(f"{log_prefix}: MqttDevice='{name}' is not defined")
    if not mqtt_topics:
        errors.append(f"{log_prefix}{name}->MqttTopics must not be empty")

    return MqttClientDeviceConfig(name=name, mqtt_topics=mqtt_topics), errors


def _keep_alive_check(value: timedelta) -> str | None:
    if value < timedelta(seconds=1):
        return "must be >=1s"
    if value % timedelta(seconds=1):
        return "must be a multiple of a second"
    return None


def _minimum(limit: timedelta, message: str) -> Callable[[timedelta], str | None]:
    """Return a check that reports ``message`` for durations below ``limit``."""

    def check(value: timedelta) -> str | None:
        if value < limit:
            return message
        return None

    return check


_at_least_100ms = _minimum(timedelta(milliseconds=100), "must be >=100ms")


def parse_mqtt_client(
    raw: Any,
    name: str,
    devices: Sequence[DeviceConfig],
    mqtt_devices: Sequence[MqttDeviceConfig],
) -> tuple[MqttClientConfig, list[str]]:
    """Build the settings of one MQTT client."""
    prefix = f"MqttClients->{name}"
    section = _section(raw, prefix, MQTT_CLIENT_KEYS)
    errors: list[str] = []

    if not is_valid_name(name):
        errors.append(f"{prefix} name does not match {NAME_REGEXP}")

    broker = None
    broker_text = _field(section, "Broker", str, prefix) or ""
    if not broker_text:
        errors.append(f"{prefix}->Broker must not be empty")
    else:
        try:
            broker = _parse_request_uri(broker_text)
        except ValueError as exc:
            errors.append(f"{prefix}->Broker invalid url: {exc}")

    protocol_value = _field(section, "ProtocolVersion", int, prefix)
    protocol_version = 0
    if protocol_value is None or protocol_value == 5:
        protocol_version = 5
    else:
        errors.append(
            f"{prefix}->Protocol={protocol_value} but must be 5 (3 is not supported anymore)"
        )

    client_id = _field(section, "ClientId", str, prefix)
    if client_id is None:
        client_id = f"go-iotdevice-{uuid.uuid4()}"

    keep_alive, problems = _duration_field(
        _field(section, "KeepAlive", str, prefix),
        timedelta(minutes=1),
        f"{prefix}->KeepAlive",
        _keep_alive_check,
    )
    errors.extend(problems)

    connect_retry_delay, problems = _duration_field(
        _field(section, "ConnectRetryDelay", str, prefix),
        timedelta(seconds=10),
        f"{prefix}->ConnectRetryDelay",
        _at_least_100ms,
    )
    errors.extend(problems)

    connect_timeout, problems = _duration_field(
        _field(section, "ConnectTimeout", str, prefix),
        timedelta(seconds=5),
        f"{prefix}->ConnectTimeout",
        _at_least_100ms,
    )
    errors.extend(problems)

    topic_prefix = _field(section, "TopicPrefix", str, prefix)
    if topic_prefix is None:
        topic_prefix = "go-iotdevice/"

    read_only = bool(_field(section, "ReadOnly", bool, prefix))

    backlog = _field(section, "MaxBacklogSize", int, prefix)
    if read_only:
        max_backlog_size = 0
    elif backlog is None:
        max_backlog_size = 256
    else:
        max_backlog_size = backlog

    client_devices, problems = transform_map_to_list(
        _field(section, "MqttDevices", dict, prefix),
        lambda inp, device_name: parse_mqtt_client_device(
            inp, device_name, f"{prefix}->MqttDevices->", mqtt_devices
        ),
    )
    errors.extend(problems)

    # Devices fed by this client are not published back to it, avoiding loops.
    non_loop_devices = [d for d in devices if not exists_by_name(d.name, client_devices)]

    def section_of(key: str, ro: bool, *settings: Any) -> MqttSectionConfig:
        result, section_problems = parse_mqtt_section(
            section.get(key), f"{prefix}->{key}->", non_loop_devices, ro, *settings
        )
        errors.extend(section_problems)
        return result

    availability_client = section_of(
        "AvailabilityClient", read_only,
        True, "%Prefix%avail/%ClientId%", timedelta(0),
        False, True, True, True, False, False,
    )
    availability_device = section_of(
        "AvailabilityDevice", read_only,
        True, "%Prefix%avail/%DeviceName%", timedelta(0),
        False, True, True, True, True, False,
    )
    structure = section_of(
        "Structure", read_only,
        False, "%Prefix%struct/%DeviceName%", timedelta(0),
        True, True, True, True, True, True,
    )
    telemetry = section_of(
        "Telemetry", read_only,
        False, "%Prefix%tele/%DeviceName%", timedelta(seconds=1),
        True, False, True, False, True, True,
    )
    realtime = section_of(
        "Realtime", read_only,
        False, "%Prefix%real/%DeviceName%/%RegisterName%", timedelta(0),
        True, True, True, False, True, True,
    )
    homeassistant_discovery = section_of(
        "HomeassistantDiscovery", read_only,
        False, "homeassistant/%Component%/%NodeId%/%ObjectId%/config", timedelta(0),
        True, True, True, False, True, True,
    )
    # Commands are received, so they are not affected by read only mode.
    command = section_of(
        "Command", False,
        False, "%Prefix%cmnd/%DeviceName%/%RegisterName%", timedelta(0),
        False, True, False, False, True, True,
    )

    result = MqttClientConfig(
        name=name,
        broker=broker,
        protocol_version=protocol_version,
        user=_field(section, "User", str, prefix) or "",
        password=_field(section, "Password", str, prefix) or "",
        client_id=client_id,
        keep_alive=keep_alive,
        connect_retry_delay=connect_retry_delay,
        connect_timeout=connect_timeout,
        topic_prefix=topic_prefix,
        read_only=read_only,
        max_backlog_size=max_backlog_size,
        mqtt_devices=tuple(client_devices),
        availability_client=availability_client,
        availability_device=availability_device,
        structure=structure,
        telemetry=telemetry,
        realtime=realtime,
        homeassistant_discovery=homeassistant_discovery,
        command=command,
        log_debug=bool(_field(section, "LogDebug", bool, prefix)),
        log_messages=bool(_field(section, "LogMessages", bool, prefix)),
    )
    return result, errors