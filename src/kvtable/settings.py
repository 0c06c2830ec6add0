"""Configuration for kvtable.

Two layers:

- ``TableParams`` — the per-table parameters a :class:`~kvtable.table.HashTable`
  is built from. It is what gets serialized when a table's configuration has
  to cross a process boundary; the live backend handle never does.
- ``HashTableSettings`` — environment-driven settings (``KVTABLE_*`` and
  ``.env``) used by the factory and the CLI to pick a backend and build
  ``TableParams``.

Examples:
    >>> params = TableParams(prefix="app_")
    >>> TableParams.model_validate_json(params.model_dump_json()) == params
    True

    $ KVTABLE_PREFIX=app_ KVTABLE_BACKEND=memory kvtable exists user:1
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_PREFIX = "hht_"


class BackendKind(str, Enum):
    """Supported backends."""

    REDIS = "redis"
    MEMORY = "memory"


class TableParams(BaseModel):
    """Serializable table parameters.

    Fields
    ──────
    prefix              : Prepended to every physical key
    lock_timeout        : Seconds before a held lock self-expires
    lock_retry_interval : Seconds between lock attempts
    lock_jitter         : Upper bound of random extra wait per attempt
    strict_unlock       : Only release locks still holding our token
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    prefix: str = DEFAULT_PREFIX
    lock_timeout: int = Field(default=30, gt=0)
    lock_retry_interval: float = Field(default=0.1, gt=0)
    lock_jitter: float = Field(default=0.0, ge=0)
    strict_unlock: bool = False


class HashTableSettings(BaseSettings):
    """Environment settings for kvtable."""

    model_config = SettingsConfigDict(
        env_prefix="KVTABLE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Backend ──────────────────────────────────────────────────
    backend: BackendKind = BackendKind.REDIS
    redis_url: str = "redis://localhost:6379/0"

    # ── Table ────────────────────────────────────────────────────
    prefix: str = DEFAULT_PREFIX
    lock_timeout: int = Field(default=30, gt=0)
    lock_retry_interval: float = Field(default=0.1, gt=0)
    lock_jitter: float = Field(default=0.0, ge=0)
    strict_unlock: bool = False

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    log_json: bool | None = None

    def table_params(self) -> TableParams:
        """Extract the per-table parameters."""
        return TableParams(
            prefix=self.prefix,
            lock_timeout=self.lock_timeout,
            lock_retry_interval=self.lock_retry_interval,
            lock_jitter=self.lock_jitter,
            strict_unlock=self.strict_unlock,
        )


__all__ = [
    "DEFAULT_PREFIX",
    "BackendKind",
    "TableParams",
    "HashTableSettings",
]
