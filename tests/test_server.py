from datetime import timedelta

import pytest

from iotconfig.server import (
    parse_authentication,
    parse_http_server,
    parse_modbus,
)
from iotconfig.transform import ConfigError


def test_missing_http_server_section_is_disabled():
    cfg, errors = parse_http_server(None)
    assert errors == []
    assert cfg.enabled is False
    assert cfg.port == 8000
    assert cfg.log_requests is True


def test_http_server_defaults():
    cfg, errors = parse_http_server({"Bind": "127.0.0.1"})
    assert errors == []
    assert cfg.enabled is True
    assert cfg.bind == "127.0.0.1"
    assert cfg.port == 8000
    assert cfg.frontend_path == "./frontend-build/"
    assert cfg.frontend_expires == timedelta(minutes=5)
    assert cfg.config_expires == timedelta(minutes=1)
    assert cfg.frontend_proxy is None
    assert cfg.log_debug is False
    assert cfg.log_requests is True


def test_http_server_custom_values():
    cfg, errors = parse_http_server(
        {
            "Bind": "0.0.0.0",
            "Port": 8080,
            "LogRequests": False,
            "LogDebug": True,
            "FrontendPath": "/srv/www",
            "FrontendExpires": "10m",
        }
    )
    assert errors == []
    assert cfg.port == 8080
    assert cfg.log_requests is False
    assert cfg.log_debug is True
    assert cfg.frontend_path == "/srv/www"
    assert cfg.frontend_expires == timedelta(minutes=10)


def test_http_server_missing_bind():
    _, errors = parse_http_server({})
    assert errors == ["HttpServer->Bind must be either set or the whole section must be missing"]


def test_http_server_negative_expires():
    cfg, errors = parse_http_server({"Bind": "::", "FrontendExpires": "-1s"})
    assert len(errors) == 1
    assert errors[0].startswith("HttpServer->FrontendExpires='-1s'")
    assert "must be positive" in errors[0]
    assert cfg.frontend_expires == timedelta(0)


def test_http_server_unparsable_expires():
    _, errors = parse_http_server({"Bind": "::", "ConfigExpires": "soon"})
    assert len(errors) == 1
    assert "ConfigExpires='soon' parse error" in errors[0]


def test_http_server_frontend_proxy():
    cfg, errors = parse_http_server({"Bind": "::", "FrontendProxy": "http://localhost:3000/"})
    assert errors == []
    assert cfg.frontend_proxy.hostname == "localhost"
    assert cfg.frontend_proxy.port == 3000
    assert cfg.frontend_proxy.scheme == "http"


def test_http_server_invalid_frontend_proxy():
    cfg, errors = parse_http_server({"Bind": "::", "FrontendProxy": "http://[::1"})
    assert len(errors) == 1
    assert errors[0].startswith("HttpServer->FrontendProxy must not be empty")
    assert cfg.frontend_proxy is None


def test_http_server_unknown_key():
    with pytest.raises(ConfigError):
        parse_http_server({"Bind": "::", "Unknown": 1})


def test_http_server_wrong_type():
    with pytest.raises(ConfigError):
        parse_http_server({"Bind": "::", "Port": "abc"})


def test_authentication_disabled_by_default():
    cfg, errors = parse_authentication(None, False)
    assert errors == []
    assert cfg.enabled is False
    assert len(cfg.jwt_secret) == 64
    assert cfg.jwt_validity_period == timedelta(hours=1)


def test_authentication_random_secrets_are_alphanumeric_and_distinct():
    first, _ = parse_authentication(None, False)
    second, _ = parse_authentication(None, False)
    assert first.jwt_secret.decode().isalnum()
    assert first.jwt_secret != second.jwt_secret


def test_authentication_with_file(tmp_path):
    htaccess = tmp_path / "htpasswd"
    htaccess.write_text("user:hash\n")
    jwt_secret = "secret" * 6
    cfg, errors = parse_authentication(
        {"HtaccessFile": str(htaccess), "JwtSecret": jwt_secret, "JwtValidityPeriod": "2h"}, False
    )
    assert errors == []
    assert cfg.enabled is True
    assert cfg.jwt_secret == jwt_secret.encode()
    assert cfg.jwt_validity_period == timedelta(hours=2)
    assert cfg.htaccess_file == str(htaccess)


def test_authentication_short_secret(tmp_path):
    htaccess = tmp_path / "htpasswd"
    htaccess.write_text("")
    cfg, errors = parse_authentication({"HtaccessFile": str(htaccess), "JwtSecret": "secret"}, False)
    assert errors == ["Authentication->JwtSecret must be empty or >= 32 chars"]
    assert len(cfg.jwt_secret) == 64


def test_authentication_missing_file(tmp_path):
    missing = tmp_path / "nope"
    _, errors = parse_authentication({"HtaccessFile": str(missing)}, False)
    assert len(errors) == 1
    assert "cannot open file" in errors[0]


def test_authentication_directory_instead_of_file(tmp_path):
    _, errors = parse_authentication({"HtaccessFile": str(tmp_path)}, False)
    assert len(errors) == 1
    assert errors[0].endswith("must be a file, not a directory")


def test_authentication_bypass_file_check(tmp_path):
    missing = tmp_path / "nope"
    cfg, errors = parse_authentication({"HtaccessFile": str(missing)}, True)
    assert errors == []
    assert cfg.htaccess_file == str(missing)


def test_authentication_empty_file():
    _, errors = parse_authentication({}, True)
    assert errors == ["Authentication->HtaccessFile must not be empty"]


def test_authentication_negative_validity():
    cfg, errors = parse_authentication({"HtaccessFile": "x", "JwtValidityPeriod": "-1h"}, True)
    assert len(errors) == 1
    assert "must be positive" in errors[0]
    assert cfg.jwt_validity_period == timedelta(hours=1)


def test_modbus_valid():
    cfg, errors = parse_modbus({"Device": "/dev/ttyUSB0", "BaudRate": 9600}, "bus0")
    assert errors == []
    assert cfg.name == "bus0"
    assert cfg.device == "/dev/ttyUSB0"
    assert cfg.baud_rate == 9600
    assert cfg.read_timeout == timedelta(milliseconds=100)
    assert cfg.log_debug is False


def test_modbus_errors():
    _, errors = parse_modbus({}, "bad name")
    assert len(errors) == 3
    assert errors[0].startswith("Modbus->Name='bad name' does not match")
    assert errors[1].endswith("Device must not be empty")
    assert errors[2].endswith("BaudRate must be positive")


def test_modbus_read_timeout_too_short():
    _, errors = parse_modbus({"Device": "/dev/ttyS0", "BaudRate": 19200, "ReadTimeout": "500us"}, "bus")
    assert len(errors) == 1
    assert errors[0].endswith("must be >=1ms")