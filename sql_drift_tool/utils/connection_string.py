"""Parsing for ad-hoc connection-string overrides.

Two forms are understood:

* URL form ``scheme://[user[:pass]@]host[:port][/db]``
* ADO form ``Server=host,port;Database=db;User Id=..;Password=..;...``
"""
from __future__ import annotations

from typing import Any, Dict, Optional

from sql_drift_tool.core.errors import ConfigError

_SERVER_KEYS = {"server", "data source", "addr", "address", "network address"}
_DATABASE_KEYS = {"database", "initial catalog"}
_USER_KEYS = {"user id", "uid", "user"}
_PASSWORD_KEYS = {"password", "pwd"}
_TRUST_KEYS = {"trustservercertificate", "trust server certificate"}
_TIMEOUT_KEYS = {"connection timeout", "connect timeout"}
_INTEGRATED_KEYS = {"trusted_connection", "integrated security"}

_TRUE = {"1", "true", "yes", "y", "on"}
_FALSE = {"0", "false", "no", "n", "off"}


def parse_bool(value: Any) -> Optional[bool]:
    """Boolean-ish parsing; returns None for anything unrecognized."""
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    return None


def _parse_port(text: str) -> Optional[int]:
    text = text.strip()
    if not text.isdigit():
        return None
    port = int(text)
    return port if 0 < port <= 65535 else None


def parse_connection_url(raw: str) -> Dict[str, Any]:
    """Split a URL-style connection string into its parts.

    Only the parts present in the URL appear in the returned dict (keys:
    server, port, database, user, password).
    """
    remaining = raw.strip()
    if "://" in remaining:
        remaining = remaining.split("://", 1)[1]

    parts: Dict[str, Any] = {}
    host_part = remaining
    if "@" in remaining:
        auth, host_part = remaining.split("@", 1)
        user, _, password = auth.partition(":")
        if user:
            parts["user"] = user
        if password:
            parts["password"] = password

    host_port, _, path = host_part.partition("/")
    database = path.split("?", 1)[0]
    if database:
        parts["database"] = database

    if host_port:
        host, _, port_text = host_port.partition(":")
        if host:
            parts["server"] = host
        if port_text:
            port = _parse_port(port_text)
            if port is None:
                raise ConfigError(f"Invalid port '{port_text}' in connection URL")
            parts["port"] = port

    if not any(k in parts for k in ("server", "database", "user")):
        raise ConfigError(f"Invalid connection URL: {raw!r}")
    return parts


def parse_ado_string(raw: str) -> Dict[str, Any]:
    """Parse an ADO/ODBC ``key=value;...`` string.

    Unknown keys are ignored. ``timeout_ms`` is converted from seconds.
    Integrated security clears any user and password seen so far.
    """
    parts: Dict[str, Any] = {}
    recognized = False
    for segment in raw.split(";"):
        segment = segment.strip()
        if not segment:
            continue
        if "=" not in segment:
            raise ConfigError(f"Malformed connection string segment: {segment!r}")
        key, value = (s.strip() for s in segment.split("=", 1))
        key = key.lower()

        if key in _SERVER_KEYS:
            host, sep, port_text = value.partition(",")
            parts["server"] = host.strip()
            if sep:
                port = _parse_port(port_text)
                if port is not None:
                    parts["port"] = port
        elif key in _DATABASE_KEYS:
            parts["database"] = value
        elif key in _USER_KEYS:
            parts["user"] = value
        elif key in _PASSWORD_KEYS:
            parts["password"] = value
        elif key == "encrypt":
            flag = parse_bool(value)
            if flag is not None:
                parts["encrypt"] = flag
        elif key in _TRUST_KEYS:
            flag = parse_bool(value)
            if flag is not None:
                parts["trust_cert"] = flag
        elif key in _TIMEOUT_KEYS:
            if value.isdigit():
                parts["timeout_ms"] = int(value) * 1000
        elif key in _INTEGRATED_KEYS:
            if parse_bool(value):
                parts["user"] = None
                parts["password"] = None
                parts["auth_type"] = "windows"
        else:
            continue
        recognized = True

    if not recognized:
        raise ConfigError("Connection string does not contain any recognized keys")
    return parts


def parse_connection_string(raw: str) -> Dict[str, Any]:
    """Parse either form; the URL form is chosen when ``://`` is present."""
    if not raw or not raw.strip():
        raise ConfigError("Connection string is empty")
    if "://" in raw:
        return parse_connection_url(raw)
    return parse_ado_string(raw)
