"""Database connection helper for SQL Server.
Supports SQL login, Windows integrated, and Microsoft Entra (msal) auth.
"""
from __future__ import annotations

import re
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

import msal
import pyodbc

from sql_drift_tool.core.errors import ConfigError, DatabaseConnectionError, QueryError
from sql_drift_tool.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_DRIVER = "ODBC Driver 18 for SQL Server"
# SQL_COPT_SS_ACCESS_TOKEN
_ACCESS_TOKEN_ATTR = 1256
_INVALID_SERVER_CHARS = re.compile(r'[;<>"{}]')


@dataclass(frozen=True)
class QueryResult:
    columns: List[str] = field(default_factory=list)
    rows: List[Tuple[Any, ...]] = field(default_factory=list)

    def as_dicts(self) -> List[Dict[str, Any]]:
        """Rows keyed by lower-cased column name."""
        names = [c.lower() for c in self.columns]
        return [dict(zip(names, row)) for row in self.rows]


class DatabaseConnection:
    def __init__(
        self,
        server: str,
        database: str,
        auth_type: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        port: Optional[int] = 1433,
        encrypt: bool = True,
        trust_cert: bool = True,
        timeout_ms: int = 30_000,
        driver: str = DEFAULT_DRIVER,
    ) -> None:
        self.server = server
        self.database = database
        self.auth_type = (auth_type or ("sql" if username else "windows")).lower()
        self.username = username
        self.password = password
        self.port = port
        self.encrypt = encrypt
        self.trust_cert = trust_cert
        self.timeout_ms = timeout_ms
        self.driver = driver
        self.client_id = "04b07795-8ddb-461a-bbee-02f9e1bf7b46"
        self.scope = ["https://database.windows.net/.default"]
        self.token_cache_path = Path.home() / ".sql_drift_token_cache.bin"
        self._conn: Optional[pyodbc.Connection] = None

    @classmethod
    def from_settings(cls, settings: Any) -> "DatabaseConnection":
        """Build a connection from resolved ConnectionSettings."""
        return cls(
            server=settings.server,
            database=settings.database,
            auth_type=settings.auth_type,
            username=settings.user,
            password=settings.password,
            port=settings.port,
            encrypt=settings.encrypt,
            trust_cert=settings.trust_cert,
            timeout_ms=settings.timeout_ms,
            driver=settings.driver,
        )

    def describe(self) -> str:
        return f"{self.server}/{self.database} ({self.auth_type} auth)"

    def _conn_str(self) -> str:
        server = (self.server or "").strip()
        if not server:
            raise ConfigError("Server name cannot be empty")
        if _INVALID_SERVER_CHARS.search(server):
            raise ConfigError(f"Invalid characters in server name: {server}")

        if not server.lower().startswith(("tcp:", "np:")):
            # Force TCP so the driver does not fall back to Named Pipes.
            server = f"tcp:{server}"
        # Named instances resolve their port through the browser service.
        if self.port and "\\" not in server and "," not in server:
            server = f"{server},{self.port}"

        parts = [
            f"Driver={{{self.driver}}};",
            f"Server={server};",
            f"Database={self.database};",
            f"Encrypt={'yes' if self.encrypt else 'no'};",
            f"TrustServerCertificate={'yes' if self.trust_cert else 'no'};",
        ]
        if self.auth_type == "windows":
            parts.append("Trusted_Connection=yes;")
        elif self.auth_type == "sql":
            if self.username:
                parts.append(f"UID={self.username};")
            if self.password:
                parts.append(f"PWD={self.password};")
        elif self.auth_type != "entra":
            raise ConfigError(f"Unsupported auth type: {self.auth_type}")
        # entra: the token goes through attrs_before, not the connection string
        return "".join(parts)

    def _login_timeout(self) -> int:
        return max(1, int(self.timeout_ms // 1000)) if self.timeout_ms else 0

    def connect(self) -> pyodbc.Connection:
        conn_str = self._conn_str()
        logger.info(f"Connecting to {self.describe()}")
        try:
            if self.auth_type == "entra":
                token = self._acquire_token()
                return pyodbc.connect(
                    conn_str,
                    attrs_before={_ACCESS_TOKEN_ATTR: token},
                    timeout=self._login_timeout(),
                    autocommit=True,
                )
            return pyodbc.connect(conn_str, timeout=self._login_timeout(), autocommit=True)
        except pyodbc.Error as exc:
            logger.error(f"Connection to {self.describe()} failed: {exc}", exc_info=True)
            raise DatabaseConnectionError(f"Cannot connect to {self.describe()}: {exc}") from exc

    @contextmanager
    def session(self) -> Iterator["DatabaseConnection"]:
        """Keep one connection open for every query issued inside the block."""
        self._conn = self.connect()
        try:
            yield self
        finally:
            conn, self._conn = self._conn, None
            try:
                conn.close()
            except pyodbc.Error:
                logger.debug("Ignoring error while closing connection", exc_info=True)

    def execute_query(self, query: str, params: Sequence[Any] = ()) -> QueryResult:
        if self._conn is None:
            with self.session():
                return self._run(query, params)
        return self._run(query, params)

    def _run(self, query: str, params: Sequence[Any]) -> QueryResult:
        logger.debug(f"Executing query on {self.describe()}:\n{query}")
        try:
            cursor = self._conn.cursor()
            cursor.execute(query, *params)
            columns = [d[0] for d in (cursor.description or [])]
            rows = [tuple(r) for r in cursor.fetchall()] if cursor.description else []
        except pyodbc.Error as exc:
            logger.error(f"Query failed on {self.describe()}: {exc}", exc_info=True)
            raise QueryError(f"Catalog query failed on {self.describe()}: {exc}") from exc
        return QueryResult(columns=columns, rows=rows)

    def _acquire_token(self) -> bytes:
        cache = msal.SerializableTokenCache()
        if self.token_cache_path.exists():
            cache.deserialize(self.token_cache_path.read_text())

        app = msal.PublicClientApplication(
            self.client_id,
            authority="https://login.microsoftonline.com/common",
            token_cache=cache,
        )

        accounts = app.get_accounts(username=self.username) if self.username else app.get_accounts()
        result = None
        if accounts:
            result = app.acquire_token_silent(self.scope, account=accounts[0])

        if not result:
            result = app.acquire_token_interactive(scopes=self.scope, login_hint=self.username)

        if cache.has_state_changed:
            self.token_cache_path.write_text(cache.serialize())

        if not result or "access_token" not in result:
            error_desc = result.get("error_description", "Unknown error") if result else "No result"
            raise DatabaseConnectionError(f"Token acquisition failed: {error_desc}")

        # ACCESSTOKEN struct: 4-byte little-endian length + UTF-16LE token
        token_utf16 = result["access_token"].encode("utf-16-le")
        return len(token_utf16).to_bytes(4, byteorder="little") + token_utf16
