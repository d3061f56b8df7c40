"""
Configuration management for kvdoc stores.

A store directory holds kvdoc.toml, naming the backend that keeps the
documents and the defaults applied to every store round-trip.
"""

import os
import tomllib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import tomli_w


CONFIG_FILENAME = "kvdoc.toml"
CONFIG_VERSION = 1
DEFAULT_DATABASE = "documents.db"
DEFAULT_TIMEOUT = 5.0


@dataclass
class StoreConfig:
    """Settings for one store directory."""
    path: Path
    version: int = CONFIG_VERSION
    created: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    # "sqlite", "memory", or the name of a kvdoc.backends entry point
    backend: str = "sqlite"
    database: str = DEFAULT_DATABASE

    # Seconds per store round-trip; None waits indefinitely
    timeout: Optional[float] = DEFAULT_TIMEOUT

    retry_generated_id: bool = True
    ops_log: bool = True

    @property
    def config_path(self) -> Path:
        return self.path / CONFIG_FILENAME

    @property
    def database_path(self) -> Path:
        return self.path / self.database

    def exists(self) -> bool:
        return self.config_path.exists()


def get_default_store_path() -> Path:
    """Store directory from KVDOC_STORE_PATH, else ~/.kvdoc."""
    env = os.environ.get("KVDOC_STORE_PATH")
    if env:
        return Path(env).expanduser()
    return Path.home() / ".kvdoc"


def _parse_timeout(value) -> Optional[float]:
    # TOML has no null: 0 or a negative number means "no timeout"
    if value is None:
        return None
    value = float(value)
    return value if value > 0 else None


def load_config(store_path: Path) -> StoreConfig:
    """
    Read kvdoc.toml from a store directory.

    Raises:
        FileNotFoundError: If the directory has no kvdoc.toml
        ValueError: On an unsupported version, backend or timeout
    """
    config_path = store_path / CONFIG_FILENAME

    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    with open(config_path, "rb") as f:
        data = tomllib.load(f)

    store = data.get("store", {})
    version = store.get("version", 1)
    if version > CONFIG_VERSION:
        raise ValueError(f"Config version {version} is newer than supported ({CONFIG_VERSION})")

    backend = store.get("backend", "sqlite")
    if not isinstance(backend, str) or not backend:
        raise ValueError(f"Invalid backend in {config_path}: {backend!r}")

    try:
        timeout = _parse_timeout(store.get("timeout", DEFAULT_TIMEOUT))
    except (TypeError, ValueError):
        raise ValueError(f"Invalid timeout in {config_path}: {store.get('timeout')!r}") from None

    ids = data.get("ids", {})
    logging_section = data.get("logging", {})

    return StoreConfig(
        path=store_path,
        version=version,
        created=store.get("created", ""),
        backend=backend,
        database=store.get("database", DEFAULT_DATABASE),
        timeout=timeout,
        retry_generated_id=bool(ids.get("retry_generated_id", True)),
        ops_log=bool(logging_section.get("ops_log", True)),
    )


def save_config(config: StoreConfig) -> None:
    """
    Write kvdoc.toml, creating the store directory if needed. A missing
    timeout is written as 0.
    """
    config.path.mkdir(parents=True, exist_ok=True)

    data = {
        "store": {
            "version": config.version,
            "created": config.created,
            "backend": config.backend,
            "database": config.database,
            "timeout": config.timeout if config.timeout is not None else 0,
        },
        "ids": {
            "retry_generated_id": config.retry_generated_id,
        },
        "logging": {
            "ops_log": config.ops_log,
        },
    }

    with open(config.config_path, "wb") as f:
        tomli_w.dump(data, f)


def load_or_create_config(store_path: Path) -> StoreConfig:
    """
    Read the store's config, writing one with defaults on first use.
    """
    config_path = store_path / CONFIG_FILENAME

    if config_path.exists():
        return load_config(store_path)
    config = StoreConfig(path=store_path)
    save_config(config)
    return config
