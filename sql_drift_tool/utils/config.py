"""Configuration management for SQL Drift Tool.

Connection profiles are read from a JSON or YAML config file and layered:
built-in defaults < profile < environment < command-line overrides.
"""
from __future__ import annotations

import json
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml
from dotenv import load_dotenv

from sql_drift_tool.core.database import DEFAULT_DRIVER
from sql_drift_tool.core.errors import ConfigError
from sql_drift_tool.utils.connection_string import parse_bool, parse_connection_string, parse_connection_url
from sql_drift_tool.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_PROFILE = "default"
OUTPUT_FORMATS = ("pretty", "markdown", "json")

_LOCAL_CANDIDATES = (
    ".sql-server/config.yaml",
    ".sql-server/config.yml",
    ".sql-server/config.json",
    ".sqlserver/config.yaml",
    ".sqlserver/config.yml",
    ".sqlserver/config.json",
)
_GLOBAL_CANDIDATES = (
    "sql-server/config.yaml",
    "sql-server/config.yml",
    "sql-server/config.json",
)


@dataclass
class ConnectionSettings:
    server: str = "localhost"
    port: int = 1433
    database: str = "master"
    user: Optional[str] = None
    password: Optional[str] = None
    auth_type: Optional[str] = None
    encrypt: bool = True
    trust_cert: bool = True
    timeout_ms: int = 30_000
    default_schemas: List[str] = field(default_factory=lambda: ["dbo"])
    driver: str = DEFAULT_DRIVER


@dataclass
class OutputSettings:
    default_format: str = "pretty"
    json_pretty: bool = True


@dataclass
class CliOverrides:
    config_path: Optional[str] = None
    profile: Optional[str] = None
    server: Optional[str] = None
    port: Optional[int] = None
    database: Optional[str] = None
    user: Optional[str] = None
    password: Optional[str] = None
    timeout_ms: Optional[int] = None
    encrypt: Optional[bool] = None
    trust_cert: Optional[bool] = None


@dataclass
class ResolvedConfig:
    config_path: Optional[Path]
    profile_name: str
    connection: ConnectionSettings
    output: OutputSettings


class Config:
    """A loaded config file: optional default profile, settings, and named profiles."""

    def __init__(self, config_path: Optional[Path] = None, data: Optional[Dict[str, Any]] = None):
        """Initialize configuration.

        Args:
            config_path: Path to a .json/.yaml/.yml file. None means built-in defaults.
            data: Already-parsed document, used instead of reading config_path.
        """
        self.config_path = Path(config_path) if config_path else None
        self._config: Dict[str, Any] = {}
        if data is not None:
            self._config = data
        elif self.config_path is not None:
            self._load_config()
        self._validate()

    def _load_config(self) -> None:
        """Parse the file according to its extension."""
        path = self.config_path
        suffix = path.suffix.lower()
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigError(f"Failed to read config file {path}: {e}") from e

        try:
            if suffix in (".yaml", ".yml"):
                loaded = yaml.safe_load(text)
            elif suffix == ".json":
                loaded = json.loads(text)
            else:
                raise ConfigError(f"Unsupported config file extension: {path}")
        except (yaml.YAMLError, json.JSONDecodeError) as e:
            raise ConfigError(f"Failed to parse config file {path}: {e}") from e

        self._config = loaded or {}
        logger.info(f"Loaded config from {path}")

    def _validate(self) -> None:
        if not isinstance(self._config, dict):
            raise ConfigError(f"Config file {self.config_path} must contain a mapping")
        profiles = self._config.get("profiles") or {}
        if not isinstance(profiles, dict):
            raise ConfigError("'profiles' must be a mapping of profile name to settings")
        for name, profile in profiles.items():
            if not isinstance(profile, dict):
                raise ConfigError(f"Profile '{name}' must be a mapping")

    @property
    def default_profile(self) -> Optional[str]:
        return self._config.get("defaultProfile")

    def get(self, section: str, key: Optional[str] = None, default: Any = None) -> Any:
        """Get configuration value.

        Args:
            section: Configuration section name
            key: Optional key within section. If None, returns entire section.
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        if section not in self._config:
            return default

        if key is None:
            return self._config[section]

        return (self._config[section] or {}).get(key, default)

    def get_section(self, section: str) -> Dict[str, Any]:
        return self._config.get(section) or {}

    def profile(self, name: str) -> Optional[Dict[str, Any]]:
        return self.get_section("profiles").get(name)

    def profile_names(self) -> List[str]:
        return sorted(self.get_section("profiles"))

    def reload(self) -> None:
        """Reload configuration from file."""
        if self.config_path is not None:
            self._load_config()
            self._validate()


def load_environment(dotenv_path: Optional[str] = None) -> Dict[str, str]:
    """Load a local .env file (never overriding set variables) and snapshot os.environ."""
    load_dotenv(dotenv_path=dotenv_path, override=False)
    return dict(os.environ)


def _env_any(env: Mapping[str, str], *keys: str) -> Optional[str]:
    for key in keys:
        if key in env:
            return env[key]
    return None


def find_local_config(start: Path, home: Optional[Path] = None) -> Optional[Path]:
    """Walk from start up through its ancestors, stopping at the home directory."""
    for directory in (start, *start.parents):
        for candidate in _LOCAL_CANDIDATES:
            path = directory / candidate
            if path.is_file():
                return path
        if home is not None and directory == home:
            break
    return None


def find_global_config(xdg_config: Optional[Path]) -> Optional[Path]:
    if xdg_config is None:
        return None
    for candidate in _GLOBAL_CANDIDATES:
        path = xdg_config / candidate
        if path.is_file():
            return path
    return None


def resolve_config_path(
    explicit: Optional[str],
    env: Mapping[str, str],
    cwd: Optional[Path] = None,
    home: Optional[Path] = None,
) -> Optional[Path]:
    if explicit:
        path = Path(explicit)
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}")
        return path

    from_env = _env_any(env, "SQL_SERVER_CONFIG", "SQLSERVER_CONFIG")
    if from_env:
        path = Path(from_env)
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}")
        return path

    cwd = cwd or Path.cwd()
    home = home if home is not None else Path.home()
    local = find_local_config(cwd, home)
    if local:
        return local

    xdg = env.get("XDG_CONFIG_HOME")
    return find_global_config(Path(xdg) if xdg else home / ".config")


def _as_int(value: Any, field_name: str) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"'{field_name}' must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"'{field_name}' must be an integer, got {value!r}") from e


def _as_bool(value: Any, field_name: str) -> bool:
    parsed = parse_bool(value)
    if parsed is None:
        raise ConfigError(f"'{field_name}' must be a boolean, got {value!r}")
    return parsed


def _apply_output(output: OutputSettings, section: Mapping[str, Any]) -> None:
    out = section.get("output") or {}
    fmt = out.get("defaultFormat")
    if fmt is not None:
        fmt = str(fmt).lower()
        if fmt not in OUTPUT_FORMATS:
            raise ConfigError(f"Unsupported output format '{fmt}' (expected one of {', '.join(OUTPUT_FORMATS)})")
        output.default_format = fmt
    pretty = (out.get("json") or {}).get("pretty")
    if pretty is not None:
        output.json_pretty = _as_bool(pretty, "settings.output.json.pretty")


def apply_profile(conn: ConnectionSettings, output: OutputSettings, profile: Mapping[str, Any], env: Mapping[str, str]) -> None:
    if profile.get("server") is not None:
        conn.server = str(profile["server"])
    if profile.get("port") is not None:
        conn.port = _as_int(profile["port"], "port")
    if profile.get("database") is not None:
        conn.database = str(profile["database"])
    if profile.get("user") is not None:
        conn.user = str(profile["user"])
    if profile.get("password") is not None:
        conn.password = str(profile["password"])
    elif profile.get("passwordEnv") and profile["passwordEnv"] in env:
        conn.password = env[profile["passwordEnv"]]
    if profile.get("authType") is not None:
        conn.auth_type = str(profile["authType"]).lower()
    if profile.get("encrypt") is not None:
        conn.encrypt = _as_bool(profile["encrypt"], "encrypt")
    if profile.get("trustCert") is not None:
        conn.trust_cert = _as_bool(profile["trustCert"], "trustCert")
    if profile.get("timeout") is not None:
        conn.timeout_ms = _as_int(profile["timeout"], "timeout")
    if profile.get("defaultSchemas") is not None:
        schemas = profile["defaultSchemas"]
        if isinstance(schemas, str):
            schemas = schemas.split(",")
        conn.default_schemas = [str(s).strip() for s in schemas if str(s).strip()]
    if profile.get("driver") is not None:
        conn.driver = str(profile["driver"])
    if profile.get("settings"):
        _apply_output(output, profile["settings"])


def apply_env_overrides(conn: ConnectionSettings, env: Mapping[str, str]) -> None:
    url = _env_any(env, "DATABASE_URL", "DB_URL", "SQLSERVER_URL")
    if url:
        try:
            for key, value in parse_connection_url(url).items():
                setattr(conn, key, value)
        except ConfigError as e:
            logger.warning(f"Ignoring database URL from environment: {e.message}")

    server = _env_any(env, "SQL_SERVER", "SQLSERVER_HOST", "DB_HOST")
    if server:
        conn.server = server
    port = _env_any(env, "SQL_PORT", "SQLSERVER_PORT", "DB_PORT")
    if port and port.strip().isdigit():
        conn.port = int(port)
    database = _env_any(env, "SQL_DATABASE", "SQLSERVER_DB", "DATABASE", "DB_NAME")
    if database:
        conn.database = database
    user = _env_any(env, "SQL_USER", "SQLSERVER_USER", "DB_USER")
    if user:
        conn.user = user
    password = _env_any(env, "SQL_PASSWORD", "SQLSERVER_PASSWORD", "DB_PASSWORD")
    if password:
        conn.password = password
    encrypt = parse_bool(env["SQL_ENCRYPT"]) if "SQL_ENCRYPT" in env else None
    if encrypt is not None:
        conn.encrypt = encrypt
    trust = parse_bool(env["SQL_TRUST_SERVER_CERTIFICATE"]) if "SQL_TRUST_SERVER_CERTIFICATE" in env else None
    if trust is not None:
        conn.trust_cert = trust
    timeout = _env_any(env, "SQL_CONNECT_TIMEOUT", "DB_CONNECT_TIMEOUT")
    if timeout and timeout.strip().isdigit():
        conn.timeout_ms = int(timeout)


def apply_cli_overrides(conn: ConnectionSettings, cli: CliOverrides) -> None:
    for name in ("server", "port", "database", "user", "password", "timeout_ms", "encrypt", "trust_cert"):
        value = getattr(cli, name)
        if value is not None:
            setattr(conn, name, value)


def apply_connection_override(conn: ConnectionSettings, raw: str) -> ConnectionSettings:
    """Replace connection details with an ad-hoc connection string.

    Everything the string names starts from the built-in defaults; the profile's
    default schemas and ODBC driver are kept.
    """
    parsed = parse_connection_string(raw)
    base = ConnectionSettings(default_schemas=list(conn.default_schemas), driver=conn.driver)
    return replace(base, **parsed)


def resolve_profile_name(explicit: Optional[str], env: Mapping[str, str], config: Config) -> str:
    if explicit:
        return explicit
    from_env = _env_any(env, "SQL_SERVER_PROFILE", "SQLSERVER_PROFILE")
    if from_env:
        return from_env
    return config.default_profile or DEFAULT_PROFILE


def load_config(
    cli: Optional[CliOverrides] = None,
    env: Optional[Mapping[str, str]] = None,
    cwd: Optional[Path] = None,
    home: Optional[Path] = None,
    apply_env: bool = True,
    config: Optional[Config] = None,
) -> ResolvedConfig:
    """Resolve one connection profile.

    Args:
        cli: Command-line overrides (also carries --config and --profile).
        env: Environment mapping; defaults to os.environ after loading .env.
        cwd: Starting directory for config discovery.
        home: Home directory; discovery stops there.
        apply_env: Whether the environment layer applies to this profile.
        config: An already-loaded Config; skips discovery when given.

    Returns:
        ResolvedConfig with the layered connection and output settings.
    """
    cli = cli or CliOverrides()
    env = load_environment() if env is None else env

    if config is None:
        path = resolve_config_path(cli.config_path, env, cwd, home)
        config = Config(path)

    profile_env = env if apply_env else {}
    explicit = cli.profile or _env_any(profile_env, "SQL_SERVER_PROFILE", "SQLSERVER_PROFILE")
    profile_name = resolve_profile_name(cli.profile, profile_env, config)

    conn = ConnectionSettings()
    output = OutputSettings()
    _apply_output(output, config.get_section("settings"))

    profile = config.profile(profile_name)
    if profile is not None:
        apply_profile(conn, output, profile, env)
    elif explicit or config.default_profile:
        # Only the implicit "default" profile may be absent.
        if config.config_path is None:
            raise ConfigError(f"Profile '{profile_name}' requested but no config file was found")
        available = ", ".join(config.profile_names()) or "none"
        raise ConfigError(f"Profile '{profile_name}' not found in {config.config_path} (available: {available})")

    if apply_env:
        apply_env_overrides(conn, env)
    apply_cli_overrides(conn, cli)

    logger.debug(f"Resolved profile '{profile_name}' -> {conn.server}:{conn.port}/{conn.database}")
    return ResolvedConfig(
        config_path=config.config_path,
        profile_name=profile_name,
        connection=conn,
        output=output,
    )
