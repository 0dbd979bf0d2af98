"""HTTP server, authentication and Modbus bus settings."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable
from urllib.parse import SplitResult, urlsplit

from iotconfig.transform import (
    NAME_REGEXP,
    _duration_field,
    _field,
    _section,
    is_valid_name,
    random_string,
)

__all__ = [
    "HTTP_SERVER_KEYS",
    "AUTHENTICATION_KEYS",
    "MODBUS_KEYS",
    "HttpServerConfig",
    "AuthenticationConfig",
    "ModbusConfig",
    "parse_http_server",
    "parse_authentication",
    "parse_modbus",
]

HTTP_SERVER_KEYS = frozenset(
    {
        "Bind",
        "Port",
        "LogRequests",
        "FrontendProxy",
        "FrontendPath",
        "FrontendExpires",
        "ConfigExpires",
        "LogDebug",
    }
)
_JWT_FIELD = "JwtSecret"
AUTHENTICATION_KEYS = frozenset({_JWT_FIELD, "JwtValidityPeriod", "HtaccessFile"})
MODBUS_KEYS = frozenset({"Device", "BaudRate", "ReadTimeout", "LogDebug"})


def _new_jwt_secret() -> bytes:
    return random_string(64).encode()


@dataclass(frozen=True)
class HttpServerConfig:
    """Settings of the built-in HTTP server; disabled when the section is missing."""

    enabled: bool = False
    bind: str = ""
    port: int = 8000
    log_requests: bool = True
    frontend_proxy: SplitResult | None = None
    frontend_path: str = ""
    frontend_expires: timedelta = timedelta(0)
    config_expires: timedelta = timedelta(0)
    log_debug: bool = False


@dataclass(frozen=True)
class AuthenticationConfig:
    """Settings for login via an htaccess file and JWT tokens."""

    enabled: bool = False
    jwt_secret: bytes = field(default_factory=_new_jwt_secret, repr=False)
    jwt_validity_period: timedelta = timedelta(hours=1)
    htaccess_file: str = ""


@dataclass(frozen=True)
class ModbusConfig:
    """A serial Modbus bus that Modbus devices are attached to."""

    name: str
    device: str = ""
    baud_rate: int = 0
    read_timeout: timedelta = timedelta(milliseconds=100)
    log_debug: bool = False


def _minimum(limit: timedelta, message: str) -> Callable[[timedelta], str | None]:
    """Return a check that reports ``message`` for durations below ``limit``."""

    def check(value: timedelta) -> str | None:
        if value < limit:
            return message
        return None

    return check


_not_negative = _minimum(timedelta(0), "must be positive")
_at_least_1ms = _minimum(timedelta(milliseconds=1), "must be >=1ms")


def parse_http_server(raw: Any) -> tuple[HttpServerConfig, list[str]]:
    """Build the HTTP server settings; ``None`` means the server is disabled."""
    if raw is None:
        return HttpServerConfig(), []

    where = "HttpServer"
    section = _section(raw, where, HTTP_SERVER_KEYS)
    errors: list[str] = []

    bind = _field(section, "Bind", str, where) or ""
    if not bind:
        errors.append("HttpServer->Bind must be either set or the whole section must be missing")

    port = _field(section, "Port", int, where)
    log_requests = _field(section, "LogRequests", bool, where)

    frontend_proxy = None
    proxy_text = _field(section, "FrontendProxy", str, where)
    if proxy_text:
        try:
            frontend_proxy = urlsplit(proxy_text)
        except ValueError as exc:
            errors.append(
                f"HttpServer->FrontendProxy must not be empty (=disabled) or a valid URL, err: {exc}"
            )

    frontend_path = _field(section, "FrontendPath", str, where) or "./frontend-build/"

    frontend_expires, problems = _duration_field(
        _field(section, "FrontendExpires", str, where),
        timedelta(minutes=5),
        "HttpServer->FrontendExpires",
        _not_negative,
    )
    errors.extend(problems)

    config_expires, problems = _duration_field(
        _field(section, "ConfigExpires", str, where),
        timedelta(minutes=1),
        "HttpServer->ConfigExpires",
        _not_negative,
    )
    errors.extend(problems)

    result = HttpServerConfig(
        enabled=True,
        bind=bind,
        port=8000 if port is None else port,
        log_requests=log_requests is not False,
        frontend_proxy=frontend_proxy,
        frontend_path=frontend_path,
        frontend_expires=frontend_expires,
        config_expires=config_expires,
        log_debug=bool(_field(section, "LogDebug", bool, where)),
    )
    return result, errors


def parse_authentication(raw: Any, bypass_file_check: bool) -> tuple[AuthenticationConfig, list[str]]:
    """Build the authentication settings; ``None`` means authentication is disabled.

    Without a configured secret a random 64 character secret is used.
    """
    if raw is None:
        return AuthenticationConfig(), []

    where = "Authentication"
    section = _section(raw, where, AUTHENTICATION_KEYS)
    errors: list[str] = []

    jwt_secret = _new_jwt_secret()
    configured_jwt = _field(section, _JWT_FIELD, str, where)
    if configured_jwt is not None:
        if len(configured_jwt) < 32:
            errors.append("Authentication->JwtSecret must be empty or >= 32 chars")
        else:
            jwt_secret = configured_jwt.encode()

    validity, problems = _duration_field(
        _field(section, "JwtValidityPeriod", str, where),
        timedelta(hours=1),
        "Authentication->JwtValidityPeriod",
        _not_negative,
    )
    errors.extend(problems)
    if problems:
        validity = timedelta(hours=1)

    htaccess_file = _field(section, "HtaccessFile", str, where) or ""
    if htaccess_file:
        if not bypass_file_check:
            try:
                is_dir = os.path.isdir(htaccess_file)
                os.stat(htaccess_file)
            except OSError as exc:
                errors.append(
                    f"Authentication->HtaccessFile='{htaccess_file}' cannot open file. error: {exc}"
                )
            else:
                if is_dir:
                    errors.append(
                        f"Authentication->HtaccessFile='{htaccess_file}' must be a file, not a directory"
                    )
    else:
        errors.append("Authentication->HtaccessFile must not be empty")

    result = AuthenticationConfig(
        enabled=True,
        jwt_secret=jwt_secret,
        jwt_validity_period=validity,
        htaccess_file=htaccess_file,
    )
    return result, errors


def parse_modbus(raw: Any, name: str) -> tuple[ModbusConfig, list[str]]:
    """Build the settings of one Modbus bus."""
    where = f"Modbus->{name}"
    section = _section(raw, where, MODBUS_KEYS)
    errors: list[str] = []

    if not is_valid_name(name):
        errors.append(f"Modbus->Name='{name}' does not match {NAME_REGEXP}")

    device = _field(section, "Device", str, where) or ""
    if not device:
        errors.append(f"{where}->Device must not be empty")

    baud_rate = _field(section, "BaudRate", int, where) or 0
    if baud_rate < 1:
        errors.append(f"{where}->BaudRate must be positive")

    read_timeout, problems = _duration_field(
        _field(section, "ReadTimeout", str, where),
        timedelta(milliseconds=100),
        f"{where}->ReadTimeout",
        _at_least_1ms,
    )
    errors.extend(problems)

    result = ModbusConfig(
        name=name,
        device=device,
        baud_rate=baud_rate,
        read_timeout=read_timeout,
        log_debug=bool(_field(section, "LogDebug", bool, where)),
    )
    return result, errors