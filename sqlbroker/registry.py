"""Registry of database targets keyed by database id."""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterator, Mapping

from pydantic import ValidationError

from .errors import ConfigurationError
from .models import DatabaseConfig, DatabaseSummary

LOG = logging.getLogger(__name__)

DEFAULT_DATABASE_ID = "default"
REQUIRED_FIELDS = ("user", "password", "server", "database")


class DatabaseRegistry:
    """Holds one immutable ``DatabaseConfig`` per database id."""

    def __init__(self, default: DatabaseConfig) -> None:
        self._configs: dict[str, DatabaseConfig] = {DEFAULT_DATABASE_ID: default}
        self._current_id = DEFAULT_DATABASE_ID

    def __contains__(self, database_id: object) -> bool:
        return database_id in self._configs

    def __iter__(self) -> Iterator[str]:
        return iter(tuple(self._configs))

    def __len__(self) -> int:
        return len(self._configs)

    @property
    def current_id(self) -> str:
        """Database id used when callers omit one."""

        return self._current_id

    def register(self, database_id: str, config: DatabaseConfig | Mapping[str, Any] | None) -> bool:
        """Validate, complete and store *config*; ``False`` leaves state untouched."""

        try:
            resolved = self.build_config(database_id, config)
        except ConfigurationError as exc:
            LOG.error("Failed to register database %s: %s", database_id, exc)
            return False
        self._configs[database_id] = resolved
        LOG.info("Registered database: %s (%s/%s)", database_id, resolved.server, resolved.database)
        return True

    @staticmethod
    def build_config(
        database_id: str,
        config: DatabaseConfig | Mapping[str, Any] | None,
    ) -> DatabaseConfig:
        """Return a fully defaulted config or raise ``ConfigurationError``."""

        if not database_id or not config:
            raise ConfigurationError("Database ID and configuration are required")
        if isinstance(config, DatabaseConfig):
            return config
        if not isinstance(config, Mapping):
            raise ConfigurationError("Configuration must be a mapping")
        for field in REQUIRED_FIELDS:
            if not config.get(field):
                raise ConfigurationError(f"Missing required field: {field}")
        try:
            return DatabaseConfig.model_validate(config)
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid configuration: {exc}") from exc

    def set_current(self, database_id: str) -> bool:
        if database_id not in self._configs:
            LOG.error("Database %s not found", database_id)
            return False
        self._current_id = database_id
        LOG.info("Switched to database: %s", database_id)
        return True

    def resolve(self, database_id: str | None) -> str:
        """Return *database_id* or the current id when it is omitted."""

        return database_id or self._current_id

    def require(self, database_id: str) -> DatabaseConfig:
        try:
            return self._configs[database_id]
        except KeyError:
            raise ConfigurationError(f"Database configuration not found: {database_id}") from None

    def get(self, database_id: str | None = None, *, mask_password: bool = False) -> DatabaseConfig:
        """Return a copy of the config, optionally with the password masked."""

        config = self.require(self.resolve(database_id))
        if mask_password:
            return config.masked()
        return config.model_copy()

    def summaries(self, is_connected: Callable[[str], bool]) -> list[DatabaseSummary]:
        return [
            DatabaseSummary(
                id=database_id,
                server=config.server,
                database=config.database,
                user=config.user,
                is_connected=is_connected(database_id),
            )
            for database_id, config in tuple(self._configs.items())
        ]


__all__ = ["DEFAULT_DATABASE_ID", "DatabaseRegistry", "REQUIRED_FIELDS"]
