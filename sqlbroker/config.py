"""Configuration loading: environment settings and the multi-database file."""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Mapping

import tomllib

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import DatabaseConfig

if TYPE_CHECKING:
    from .registry import DatabaseRegistry

LOG = logging.getLogger(__name__)

CONFIG_FILE = Path.home() / ".config" / "sqlbroker" / "databases.toml"
ENTRY_REQUIRED_FIELDS = ("id", "server", "database", "user", "password")

_ENV_REFERENCE = re.compile(r"\$\{([^}]+)\}")


class DefaultDatabaseSettings(BaseSettings):
    """``DB_*`` environment variables describing the ``default`` database."""

    model_config = SettingsConfigDict(
        env_prefix="DB_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    user: str = "sa"
    password: SecretStr = SecretStr("")
    server: str | None = None
    database: str = "master"
    port: int = 1433
    encrypt: bool = False
    connection_timeout: int = 15000
    request_timeout: int = 15000
    pool_max: int = 10
    pool_min: int = 0
    pool_idle_timeout: int = 30000

    @property
    def configured(self) -> bool:
        """True when ``DB_SERVER`` names a single database to connect to."""

        return bool(self.server)

    def to_config(self) -> DatabaseConfig:
        return DatabaseConfig(
            user=self.user,
            password=self.password,
            server=self.server or "localhost",
            database=self.database,
            port=self.port,
            options={
                "encrypt": self.encrypt,
                "trust_server_certificate": True,
                "connection_timeout_ms": self.connection_timeout,
                "request_timeout_ms": self.request_timeout,
                "pool": {
                    "max": self.pool_max,
                    "min": self.pool_min,
                    "idle_timeout_ms": self.pool_idle_timeout,
                },
            },
        )


@dataclass(slots=True)
class MultiDatabaseConfig:
    """Database entries read from the config file after ``${VAR}`` substitution."""

    databases: list[dict[str, Any]] = field(default_factory=list)
    missing_env: set[str] = field(default_factory=set)


@dataclass(slots=True)
class RegistrationReport:
    """Outcome of registering every entry of a ``MultiDatabaseConfig``."""

    registered: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    missing_env: set[str] = field(default_factory=set)

    @property
    def ok(self) -> bool:
        return bool(self.registered)


def multi_database_config_present(path: Path | None = None) -> bool:
    return (path or CONFIG_FILE).is_file()


def load_multi_database_config(
    path: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> MultiDatabaseConfig | None:
    """Read the ``[[databases]]`` tables; ``None`` when the file does not exist."""

    config_path = path or CONFIG_FILE
    try:
        with config_path.open("rb") as handle:
            raw = tomllib.load(handle)
    except FileNotFoundError:
        return None
    except (tomllib.TOMLDecodeError, OSError) as exc:
        LOG.error("Failed to load multi-database configuration %s: %s", config_path, exc)
        return MultiDatabaseConfig()

    databases = raw.get("databases")
    if not isinstance(databases, list):
        LOG.error("Invalid configuration: 'databases' array not found in %s", config_path)
        return MultiDatabaseConfig()

    missing: set[str] = set()
    env = os.environ if environ is None else environ
    entries = [
        substitute_env(entry, env, missing)
        for entry in databases
        if isinstance(entry, dict)
    ]
    for name in sorted(missing):
        LOG.warning("Environment variable %s is not set", name)
    return MultiDatabaseConfig(databases=entries, missing_env=missing)


def substitute_env(value: Any, environ: Mapping[str, str], missing: set[str], key: str = "") -> Any:
    """Replace ``${VAR}`` references recursively; unknown names are kept and recorded."""

    if isinstance(value, str):

        def _lookup(match: re.Match[str]) -> str:
            name = match.group(1)
            if name not in environ:
                missing.add(name)
                return match.group(0)
            return environ[name]

        substituted = _ENV_REFERENCE.sub(_lookup, value)
        if key == "port":
            try:
                return int(substituted)
            except ValueError:
                return 1433
        return substituted
    if isinstance(value, list):
        return [substitute_env(item, environ, missing, key) for item in value]
    if isinstance(value, dict):
        return {name: substitute_env(item, environ, missing, name) for name, item in value.items()}
    return value


def register_from_config(registry: DatabaseRegistry, config: MultiDatabaseConfig) -> RegistrationReport:
    """Register every well-formed entry; entries with missing fields or unresolved variables are skipped."""

    report = RegistrationReport(missing_env=set(config.missing_env))
    for entry in config.databases:
        database_id = str(entry.get("id") or "unknown")
        missing_fields = [name for name in ENTRY_REQUIRED_FIELDS if not entry.get(name)]
        if missing_fields:
            LOG.error("%s: Missing required fields: %s", database_id, ", ".join(missing_fields))
            report.failed.append(database_id)
            continue
        unresolved = [
            name
            for name in ENTRY_REQUIRED_FIELDS
            if isinstance(entry[name], str) and _ENV_REFERENCE.search(entry[name])
        ]
        if unresolved:
            LOG.error("%s: Unresolved environment variables in %s", database_id, ", ".join(unresolved))
            report.failed.append(database_id)
            continue
        payload = {
            "user": entry["user"],
            "password": entry["password"],
            "server": entry["server"],
            "database": entry["database"],
            "port": entry.get("port"),
            "options": entry.get("options"),
        }
        LOG.info(
            "Processing %s: %s:%s/%s",
            database_id,
            entry["server"],
            entry.get("port") or 1433,
            entry["database"],
        )
        if registry.register(database_id, payload):
            report.registered.append(database_id)
        else:
            report.failed.append(database_id)
    LOG.info(
        "Registration summary: %d succeeded, %d failed",
        len(report.registered),
        len(report.failed),
    )
    return report


__all__ = [
    "CONFIG_FILE",
    "DefaultDatabaseSettings",
    "MultiDatabaseConfig",
    "RegistrationReport",
    "load_multi_database_config",
    "multi_database_config_present",
    "register_from_config",
    "substitute_env",
]
