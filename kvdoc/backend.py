"""
Pluggable storage backend factory.

Creates the shared store handle from configuration. Built-in backends are
``sqlite`` (durable, multi-process) and ``memory`` (process-local).
External backends register via the ``kvdoc.backends`` entry point group.

External backend packages provide a factory function::

    def create_store(config: StoreConfig) -> DocumentStoreProtocol:
        ...

and register it in their pyproject.toml::

    [project.entry-points."kvdoc.backends"]
    my-backend = "my_package.backend:create_store"

The store handle is process-wide and thread-safe. Open it once with
open_session() and close the session explicitly when done.
"""

import logging
from pathlib import Path
from typing import Optional

from .config import StoreConfig, get_default_store_path, load_or_create_config
from .id_generator import IdGenerator
from .logging_config import configure_ops_log, remove_ops_log
from .persistence import PersistenceController
from .protocol import DocumentStoreProtocol

logger = logging.getLogger(__name__)


def create_store(config: StoreConfig) -> DocumentStoreProtocol:
    """
    Create the store named by ``config.backend``.

    For other values than the built-ins, loads the backend via the
    ``kvdoc.backends`` entry point group.
    """
    if config.backend == "sqlite":
        from .document_store import SQLiteStore
        return SQLiteStore(config.database_path, timeout=config.timeout)
    if config.backend == "memory":
        from .document_store import MemoryStore
        return MemoryStore()
    return _load_backend(config.backend, config)


def _load_backend(name: str, config: StoreConfig) -> DocumentStoreProtocol:
    """Load a backend by entry point name."""
    from importlib.metadata import entry_points

    eps = entry_points(group="kvdoc.backends")
    for ep in eps:
        if ep.name == name:
            factory = ep.load()
            return factory(config)

    available = [ep.name for ep in eps]
    if available:
        raise ValueError(
            f"Unknown backend: {name!r}. Available: sqlite, memory, {', '.join(available)}"
        )
    raise ValueError(f"Unknown backend: {name!r}. Available: sqlite, memory")


class Session:
    """
    An open store plus the controller that persists documents through it.

    Use as a context manager, or call close() when done.
    """

    def __init__(
        self,
        config: StoreConfig,
        store: DocumentStoreProtocol,
        *,
        id_generator: Optional[IdGenerator] = None,
        log_handler=None,
    ):
        self.config = config
        self.store = store
        self.controller = PersistenceController(
            store,
            id_generator=id_generator,
            timeout=config.timeout,
            retry_generated_id=config.retry_generated_id,
        )
        self._log_handler = log_handler
        self._closed = False

    @property
    def indexes(self):
        return self.controller.indexes

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.store.close()
        if self._log_handler is not None:
            remove_ops_log(self._log_handler)
            self._log_handler = None
        logger.debug("Closed store at %s", self.config.path)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


def open_session(
    store_path: Optional[Path] = None,
    *,
    config: Optional[StoreConfig] = None,
    id_generator: Optional[IdGenerator] = None,
) -> Session:
    """
    Open the store at ``store_path`` (default: KVDOC_STORE_PATH or ~/.kvdoc).

    Creates the config file with defaults if the directory has none.
    """
    if config is None:
        config = load_or_create_config(Path(store_path) if store_path else get_default_store_path())
    store = create_store(config)
    handler = None
    if config.ops_log and config.backend == "sqlite":
        handler = configure_ops_log(config.path)
    logger.debug("Opened %s store at %s", config.backend, config.path)
    return Session(config, store, id_generator=id_generator, log_handler=handler)
