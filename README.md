# iotconfig

Reads, validates and normalises the YAML configuration of an IoT device
gateway. The configuration describes HTTP server and authentication settings,
Modbus buses, Victron, Modbus, GPIO, HTTP, MQTT and genset devices, MQTT
clients with their publishing sections, and views for a web frontend.

Validation collects every problem it finds instead of stopping at the first
one. If anything is wrong, a `ConfigError` (from `iotconfig.transform`) is
raised whose `errors` attribute lists all messages. Structural problems, such
as an unknown key or a value of the wrong type, raise `ConfigError` at once.

## Installation

```
pip install iotconfig
```

## Usage

```python
from iotconfig.config import read_config_file
from iotconfig.transform import ConfigError

try:
    config = read_config_file("config.yaml", bypass_file_check=False)
except ConfigError as exc:
    for message in exc.errors:
        print(message)
    raise SystemExit(1)

for device in config.devices:
    print(device.name, device.restart_interval)

for client in config.mqtt_clients:
    print(client.telemetry_topic("bmv0"))
```

`read_config(text, bypass_file_check)` takes the YAML as a string or bytes, and
`parse_config(document, bypass_file_check)` takes an already decoded mapping.
Environment variables written as `$NAME` or `${NAME}` are expanded before the
document is parsed; unset variables become empty. With `bypass_file_check` set,
the `Authentication` `HtaccessFile` is not checked on disk.

A minimal configuration:

```yaml
Version: 2
ProjectTitle: My Installation
HttpServer:
  Bind: "::"
  Port: 8000
VictronDevices:
  bmv0:
    Kind: Vedirect
    Device: /dev/ttyUSB0
MqttClients:
  local:
    Broker: tcp://localhost:1883
Views:
  - Name: public
    Title: Public
    Devices:
      - Name: bmv0
        Title: Battery Monitor
```

With this configuration `config.mqtt_clients[0].telemetry_topic("bmv0")`
returns `go-iotdevice/tele/bmv0`. The other topic helpers of
`MqttClientConfig` (`availability_client_topic`, `availability_device_topic`,
`structure_topic`, `realtime_topic`, `homeassistant_discovery_topic`,
`command_topic`) fill in the placeholders of their section's topic template
in the same way.

Durations such as `PollInterval: 500ms` or `KeepAlive: 1m30s` are accepted in
the `h`, `m`, `s`, `ms`, `us` (or `µs`), `ns` unit form; see
`iotconfig.duration.parse_duration` and `iotconfig.duration.format_duration`.

`Config.dump()` returns the normalised configuration as YAML text, leaving out
passwords and the JWT secret, and `Config.print_config()` writes it line by
line to the `iotconfig.config` logger at INFO level.

## Modules

- `iotconfig.config`: `Config`, views, and the `read_config*` / `parse_config` entry points
- `iotconfig.server`: HTTP server, authentication and Modbus bus settings
- `iotconfig.devices`: Victron, Modbus, GPIO, HTTP and MQTT device settings
- `iotconfig.genset`: generator set settings and register bindings
- `iotconfig.mqtt`: MQTT client settings and publishing sections
- `iotconfig.filters`: register filters and settings common to all devices
- `iotconfig.duration`: duration parsing and formatting
- `iotconfig.transform`: `ConfigError` and shared validation helpers

## What this package does not do

It only reads and checks configuration. It does not talk to any device, does
not connect to MQTT brokers, does not serve HTTP or a frontend, does not check
logins against the htaccess file, and has no command-line program.

## Development

```
pip install -e ".[test]"
pytest
```