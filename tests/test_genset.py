from datetime import timedelta

import pytest

from iotconfig.filters import DeviceConfig
from iotconfig.genset import (
    GensetDeviceBindingConfig,
    GensetDeviceConfig,
    parse_bindings,
    parse_genset_device,
)
from iotconfig.transform import ConfigError

DEVICES = [DeviceConfig(name="bmv0"), DeviceConfig(name="relay0")]


def test_defaults_when_section_is_empty():
    genset, errors = parse_genset_device({}, "genset0", DEVICES)
    assert errors == []
    assert genset.name == "genset0"
    assert genset.priming_timeout == timedelta(seconds=10)
    assert genset.cranking_timeout == timedelta(seconds=10)
    assert genset.warm_up_timeout == timedelta(minutes=10)
    assert genset.warm_up_min_time == timedelta(minutes=2)
    assert genset.warm_up_temp == 50
    assert genset.engine_cool_down_timeout == timedelta(minutes=5)
    assert genset.engine_cool_down_temp == 70
    assert genset.enclosure_cool_down_temp == 30
    assert genset.engine_temp_min == -20
    assert genset.engine_temp_max == 90
    assert genset.aux_temp1_max == 120
    assert genset.u_min == 220
    assert genset.u_max == 240
    assert genset.f_min == 45
    assert genset.f_max == 55
    assert genset.p_max == 1000000
    assert genset.p_tot_max == 1000000
    assert genset.single_phase is False
    assert genset.input_bindings == ()


def test_configured_values_are_used():
    raw = {
        "PrimingTimeout": "3s",
        "WarmUpTemp": 40,
        "SinglePhase": True,
        "UMin": 200,
        "RestartInterval": "1s",
    }
    genset, errors = parse_genset_device(raw, "genset0", DEVICES)
    assert errors == []
    assert genset.priming_timeout == timedelta(seconds=3)
    assert genset.warm_up_temp == 40.0
    assert genset.single_phase is True
    assert genset.u_min == 200.0
    assert genset.restart_interval == timedelta(seconds=1)
    assert isinstance(genset, GensetDeviceConfig) and isinstance(genset, DeviceConfig)


def test_bindings_are_sorted():
    raw = {"relay0": {"r2": "ignition", "r1": "fuel"}, "bmv0": {"V": "batteryVoltage"}}
    bindings, errors = parse_bindings(raw, DEVICES)
    assert errors == []
    assert bindings == sorted(bindings)
    assert bindings[0] == GensetDeviceBindingConfig("bmv0", "V", "batteryVoltage")
    assert [b.register_name for b in bindings] == ["V", "r1", "r2"]


def test_binding_to_undefined_device_is_reported():
    bindings, errors = parse_bindings({"ghost": {"x": "y"}}, DEVICES)
    assert errors == ["device='ghost' is not defined"]
    assert bindings == [GensetDeviceBindingConfig("ghost", "x", "y")]


def test_missing_bindings_give_empty_list():
    assert parse_bindings(None, DEVICES) == ([], [])


def test_genset_bindings_are_passed_through():
    raw = {"InputBindings": {"bmv0": {"V": "u"}}, "OutputBindings": {"ghost": {"a": "b"}}}
    genset, errors = parse_genset_device(raw, "genset0", DEVICES)
    assert genset.input_bindings == (GensetDeviceBindingConfig("bmv0", "V", "u"),)
    assert errors == ["device='ghost' is not defined"]


def test_min_time_above_timeout_is_reported():
    raw = {"WarmUpTimeout": "1m", "WarmUpMinTime": "5m"}
    _, errors = parse_genset_device(raw, "genset0", DEVICES)
    assert errors == [
        "GensetDevices->genset0->WarmUpMinTime='5m' must be less or equal than WarmUpTimeout='1m'"
    ]


def test_invalid_duration_is_reported():
    genset, errors = parse_genset_device({"CrankingTimeout": "soon"}, "genset0", DEVICES)
    assert len(errors) == 1
    assert errors[0].startswith("GensetDevices->genset0->CrankingTimeout='soon' parse error")
    assert genset.cranking_timeout == timedelta(0)


@pytest.mark.parametrize("key", ["UMin", "UMax", "FMin", "FMax", "PMax", "PTotMax"])
def test_negative_electrical_limits_are_reported(key):
    _, errors = parse_genset_device({key: -1}, "genset0", DEVICES)
    assert len(errors) == 1
    assert errors[0].startswith(f"GensetDevices->genset0->{key}=")
    assert errors[0].endswith("must be >=0")


def test_negative_temperatures_are_allowed():
    genset, errors = parse_genset_device({"EngineTempMin": -40}, "genset0", DEVICES)
    assert errors == []
    assert genset.engine_temp_min == -40.0


def test_invalid_name_is_reported():
    _, errors = parse_genset_device({}, "bad name", DEVICES)
    assert any("does not match" in e for e in errors)


def test_unknown_key_raises():
    with pytest.raises(ConfigError):
        parse_genset_device({"Unknown": 1}, "genset0", DEVICES)


def test_wrong_type_raises():
    with pytest.raises(ConfigError):
        parse_genset_device({"SinglePhase": "maybe"}, "genset0", DEVICES)