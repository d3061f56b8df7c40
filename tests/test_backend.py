"""
Tests for backend selection, sessions, logging setup and the error log.
"""

import logging

import pytest

from kvdoc.backend import create_store, open_session
from kvdoc.config import StoreConfig, save_config
from kvdoc.document_store import MemoryStore, SQLiteStore
from kvdoc.errors import log_exception
from kvdoc.logging_config import LOGGER_NAME, OPS_LOG_FILENAME, configure_ops_log, remove_ops_log
from kvdoc.schema import Attribute, DocumentKind, unique


@pytest.fixture
def kvdoc_logger():
    """Restore the kvdoc logger's level and handlers after a test."""
    logger = logging.getLogger(LOGGER_NAME)
    level, handlers = logger.level, list(logger.handlers)
    yield logger
    logger.setLevel(level)
    for handler in list(logger.handlers):
        if handler not in handlers:
            logger.removeHandler(handler)
            handler.close()


class TestCreateStore:

    def test_sqlite(self, tmp_path):
        store = create_store(StoreConfig(path=tmp_path))
        assert isinstance(store, SQLiteStore)
        assert store.path == tmp_path / "documents.db"
        store.close()

    def test_memory(self, tmp_path):
        assert isinstance(create_store(StoreConfig(path=tmp_path, backend="memory")), MemoryStore)

    def test_unknown_backend(self, tmp_path):
        with pytest.raises(ValueError, match="Unknown backend"):
            create_store(StoreConfig(path=tmp_path, backend="nosuch"))


class TestSession:

    def test_open_creates_config_and_database(self, tmp_path, kvdoc_logger):
        with open_session(tmp_path / "store") as session:
            assert session.config.config_path.exists()
            assert session.config.database_path.exists()
            assert session.controller.store is session.store
            assert session.indexes is session.controller.indexes

    def test_session_persists_documents(self, tmp_path, kvdoc_logger):
        users = DocumentKind("user", attributes=[Attribute("email", str)], indexes=[unique("email")])
        with open_session(tmp_path) as session:
            joe = session.controller.create_strict(users, {"email": "joe@example.com"})
        with open_session(tmp_path) as session:
            assert session.controller.find_by(users, "email", "joe@example.com") == joe

    def test_config_applied_to_controller(self, tmp_path, kvdoc_logger):
        save_config(StoreConfig(path=tmp_path, backend="memory", timeout=2.0, retry_generated_id=False))
        with open_session(tmp_path) as session:
            assert isinstance(session.store, MemoryStore)
            assert session.controller._timeout == 2.0
            assert session.controller._retry_generated_id is False

    def test_close_is_idempotent(self, tmp_path, kvdoc_logger):
        session = open_session(tmp_path)
        session.close()
        session.close()

    def test_ops_log_written_and_detached(self, tmp_path, kvdoc_logger):
        users = DocumentKind("user", attributes=["email"])
        with open_session(tmp_path) as session:
            doc = session.controller.create_strict(users, {"email": "a"})
        text = (tmp_path / OPS_LOG_FILENAME).read_text()
        assert f"Created user {doc.id}" in text
        assert not any(
            getattr(h, "baseFilename", "").endswith(OPS_LOG_FILENAME)
            for h in kvdoc_logger.handlers
        )

    def test_ops_log_disabled(self, tmp_path, kvdoc_logger):
        save_config(StoreConfig(path=tmp_path, ops_log=False))
        with open_session(tmp_path):
            pass
        assert not (tmp_path / OPS_LOG_FILENAME).exists()


class TestLogging:

    def test_ops_log_handler(self, tmp_path, kvdoc_logger):
        handler = configure_ops_log(tmp_path)
        logging.getLogger("kvdoc.persistence").info("hello ops")
        remove_ops_log(handler)
        assert "hello ops" in (tmp_path / OPS_LOG_FILENAME).read_text()
        assert handler not in kvdoc_logger.handlers


class TestErrorLog:

    def test_log_exception_writes_traceback(self, tmp_path, monkeypatch):
        monkeypatch.setenv("KVDOC_STORE_PATH", str(tmp_path))
        try:
            raise RuntimeError("boom")
        except RuntimeError as e:
            path = log_exception(e, context="test")
        assert path == tmp_path / "kvdoc-errors.log"
        text = path.read_text()
        assert "RuntimeError test" in text
        assert "boom" in text
