from datetime import timedelta

import pytest

from iotconfig.devices import (
    GpioDeviceConfig,
    HttpDeviceKind,
    ModbusDeviceKind,
    MqttDeviceKind,
    VictronDeviceKind,
    parse_gpio_device,
    parse_http_device,
    parse_modbus_device,
    parse_mqtt_device,
    parse_pin,
    parse_relay,
    parse_victron_device,
)
from iotconfig.filters import DeviceConfig
from iotconfig.server import ModbusConfig
from iotconfig.transform import ConfigError, exists_by_name

BUSES = [ModbusConfig(name="bus0", device="/dev/ttyUSB0", baud_rate=9600)]


def _modbus(**extra):
    raw = {"Kind": "WaveshareRtuRelay8", "Bus": "bus0", "Address": "1"}
    raw.update(extra)
    return raw


def test_victron_vedirect_device():
    cfg, errors = parse_victron_device({"Kind": "Vedirect", "Device": "/dev/ttyUSB1"}, "bmv0")
    assert errors == []
    assert cfg.name == "bmv0"
    assert cfg.kind is VictronDeviceKind.VEDIRECT
    assert cfg.device == "/dev/ttyUSB1"
    assert cfg.poll_interval == timedelta(milliseconds=500)
    assert cfg.restart_interval == timedelta(milliseconds=200)
    assert isinstance(cfg, DeviceConfig)
    assert exists_by_name("bmv0", [cfg])


def test_victron_invalid_kind():
    cfg, errors = parse_victron_device({"Kind": "Toaster"}, "dev")
    assert errors == ["VictronDevices->dev->Kind='Toaster' is invalid"]
    assert cfg.kind is VictronDeviceKind.UNDEFINED


def test_victron_vedirect_requires_device():
    _, errors = parse_victron_device({"Kind": "Vedirect"}, "dev")
    assert errors == ["VictronDevices->dev->Device must not be empty"]


def test_victron_random_kind_needs_no_device():
    cfg, errors = parse_victron_device({"Kind": "RandomBmv", "IoLog": "/tmp/io.log"}, "sim")
    assert errors == []
    assert cfg.io_log == "/tmp/io.log"


def test_victron_poll_interval_too_short():
    _, errors = parse_victron_device({"Kind": "RandomSolar", "PollInterval": "500us"}, "sim")
    assert len(errors) == 1
    assert errors[0].endswith("must be >=1ms")


def test_victron_base_errors_come_first():
    _, errors = parse_victron_device({"Kind": "Toaster"}, "bad name")
    assert len(errors) == 2
    assert errors[0].startswith("Devices->Name='bad name'")
    assert "Kind='Toaster'" in errors[1]


def test_victron_unknown_key():
    with pytest.raises(ConfigError):
        parse_victron_device({"Kind": "Vedirect", "Device": "x", "Colour": "red"}, "dev")


def test_modbus_device_decimal_address():
    cfg, errors = parse_modbus_device(_modbus(Address="3"), "relay0", BUSES)
    assert errors == []
    assert cfg.address == 3
    assert cfg.kind is ModbusDeviceKind.WAVESHARE_RTU_RELAY8
    assert cfg.bus == "bus0"
    assert cfg.poll_interval == timedelta(seconds=1)


def test_modbus_device_hex_address():
    cfg, errors = parse_modbus_device(_modbus(Address="0x1F"), "relay0", BUSES)
    assert errors == []
    assert cfg.address == 31


@pytest.mark.parametrize(
    "address, form",
    [("0xZZ", "hex"), ("300", "decimal"), ("abc", "decimal"), ("", "decimal"), ("0x100", "hex")],
)
def test_modbus_device_invalid_address(address, form):
    cfg, errors = parse_modbus_device(_modbus(Address=address), "relay0", BUSES)
    assert len(errors) == 1
    assert f"{form} Address={address} is invalid" in errors[0]
    assert cfg.address == 0


def test_modbus_device_unknown_bus():
    _, errors = parse_modbus_device(_modbus(Bus="bus9"), "relay0", BUSES)
    assert errors == ["ModbusDevices->relay0: Bus='bus9' is not defined"]


def test_modbus_device_invalid_kind():
    cfg, errors = parse_modbus_device(_modbus(Kind="Nope"), "relay0", BUSES)
    assert errors == ["ModbusDevices->relay0->Kind='Nope' is invalid"]
    assert cfg.kind is ModbusDeviceKind.UNDEFINED


def test_modbus_device_relays():
    raw = _modbus(Relays={"CH1": {"Description": "Pump", "OpenLabel": "off", "ClosedLabel": "on"}})
    cfg, errors = parse_modbus_device(raw, "relay0", BUSES)
    assert errors == []
    assert cfg.relay_description("CH1") == "Pump"
    assert cfg.relay_open_label("CH1") == "off"
    assert cfg.relay_closed_label("CH1") == "on"
    assert cfg.relay_description("CH2") == "CH2"
    assert cfg.relay_open_label("CH2") == "open"
    assert cfg.relay_closed_label("CH2") == "closed"


def test_parse_relay_missing_fields_are_empty():
    relay, errors = parse_relay({"Description": "Light"})
    assert errors == []
    assert relay.description == "Light"
    assert relay.open_label == ""
    assert relay.closed_label == ""


def test_gpio_defaults():
    cfg, errors = parse_gpio_device({}, "gpio0")
    assert errors == []
    assert isinstance(cfg, GpioDeviceConfig)
    assert cfg.chip == "gpiochip0"
    assert cfg.input_debounce == timedelta(milliseconds=100)
    assert cfg.input_options == ()
    assert cfg.inputs == ()


def test_gpio_empty_chip():
    _, errors = parse_gpio_device({"Chip": ""}, "gpio0")
    assert errors == ["GpioDevices->gpio0->Chip must not be empty"]


def test_gpio_options():
    cfg, errors = parse_gpio_device(
        {"InputOptions": ["WithPullUp"], "OutputOptions": ["AsPushPull"]}, "gpio0"
    )
    assert errors == []
    assert cfg.input_options == ("WithPullUp",)
    assert cfg.output_options == ("AsPushPull",)


def test_gpio_invalid_and_multiple_options():
    _, errors = parse_gpio_device(
        {"InputOptions": ["Sideways"], "OutputOptions": ["AsOpenDrain", "AsPushPull"]}, "gpio0"
    )
    assert errors == [
        "GpioDevices->gpio0->InputOptions='Sideways' is invalid",
        "GpioDevices->gpio0->OutputOptions must not contain more than one option",
    ]


def test_gpio_pins_sorted_by_name():
    cfg, errors = parse_gpio_device(
        {"Inputs": {"zeta": {"Pin": "GPIO2"}, "alpha": {"Pin": "GPIO3"}}, "Outputs": {"out": {"Pin": 17}}},
        "gpio0",
    )
    assert errors == []
    assert [pin.name for pin in cfg.inputs] == ["alpha", "zeta"]
    assert cfg.outputs[0].pin == "17"


def test_pin_defaults():
    pin, errors = parse_pin({"Pin": "GPIO4"}, "door", "prefix")
    assert errors == []
    assert pin.description == "door"
    assert pin.low_label == "low"
    assert pin.high_label == "high"


def test_pin_errors():
    _, errors = parse_pin({}, "bad name", "prefix")
    assert len(errors) == 2
    assert errors[0] == "prefix->Pin must not be empty"
    assert errors[1].startswith("prefix name 'bad name' does not match")


def test_http_device_valid():
    username = "user"
    password = "password"
    cfg, errors = parse_http_device(
        {"Kind": "Teracom", "Url": "http://localhost:8080/status", "Username": username, "Password": password},
        "tcw",
    )
    assert errors == []
    assert cfg.kind is HttpDeviceKind.TERACOM
    assert cfg.url.hostname == "localhost"
    assert cfg.url.path == "/status"
    assert cfg.username == username
    assert cfg.password == password
    assert cfg.poll_interval == timedelta(seconds=1)


def test_http_device_relative_url():
    cfg, errors = parse_http_device({"Kind": "Teracom", "Url": "status"}, "tcw")
    assert len(errors) == 1
    assert errors[0].startswith("HttpDevices->tcw->Url invalid url")
    assert cfg.url is None


def test_http_device_missing_url_and_kind():
    _, errors = parse_http_device({}, "tcw")
    assert errors == [
        "HttpDevices->tcw->Url must not be empty",
        "HttpDevices->tcw->Kind='' is invalid",
    ]


def test_http_device_poll_interval_too_short():
    _, errors = parse_http_device({"Kind": "Teracom", "Url": "/x", "PollInterval": "50ms"}, "tcw")
    assert len(errors) == 1
    assert errors[0].endswith("must be >=100ms")


def test_mqtt_device():
    cfg, errors = parse_mqtt_device({"Kind": "GoIotdeviceV3"}, "remote")
    assert errors == []
    assert cfg.kind is MqttDeviceKind.GO_IOTDEVICE_V3
    assert cfg.name == "remote"


def test_mqtt_device_invalid_kind_before_base_errors():
    _, errors = parse_mqtt_device({"Kind": "x"}, "bad name")
    assert len(errors) == 2
    assert errors[0] == "MqttDevices->bad name->Kind='x' is invalid"
    assert errors[1].startswith("Devices->Name='bad name'")