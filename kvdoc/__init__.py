"""
kvdoc

Documents with secondary indexes and uniqueness on a plain key-value store
that only offers single-key get/add/replace/delete with CAS tokens.

Quick Start:
    from kvdoc import Attribute, DocumentKind, MemoryStore, PersistenceController, unique

    users = DocumentKind(
        "user",
        attributes=[Attribute("email", str), Attribute("age", int, default=23)],
        indexes=[unique("email", normalizer=str.lower)],
    )
    controller = PersistenceController(MemoryStore())

    joe = users.new(email="joe@example.com")
    assert controller.save(joe)
    assert controller.lookup(users, "email", "joe@example.com") == joe.id

CLI Usage:
    kvdoc init
    kvdoc get user-3kd9Xw2
    kvdoc lookup user email joe@example.com

Default Store:
    ~/.kvdoc/ (SQLite). Override with KVDOC_STORE_PATH or --store.

Environment Variables:
    KVDOC_STORE_PATH  - Override default store location
    KVDOC_VERBOSE     - Set to 1 for debug logging in the CLI
"""

from .backend import Session, create_store, open_session
from .config import StoreConfig, load_config, load_or_create_config, save_config
from .document import Document, Metadata
from .document_store import MemoryStore, SQLiteStore
from .errors import (
    ConflictError,
    DocumentDestroyedError,
    DocumentTypeMismatchError,
    DuplicateKeyError,
    ImmutableIdError,
    InvalidStateError,
    KvdocError,
    NotFoundError,
    NotPersistedError,
    RecordInvalid,
    StoreError,
    StoreTimeoutError,
    UnknownAttributeError,
)
from .id_generator import IdGenerator
from .index import IndexEngine, pointer_key_for
from .persistence import PersistenceController, SaveResult, Violation
from .protocol import DocumentStoreProtocol, StoreRecord
from .schema import Attribute, DocumentKind, EnumAttribute, Index, required, unique

__version__ = "0.1.0"
__all__ = [
    "Attribute",
    "ConflictError",
    "Document",
    "DocumentDestroyedError",
    "DocumentKind",
    "DocumentStoreProtocol",
    "DocumentTypeMismatchError",
    "DuplicateKeyError",
    "EnumAttribute",
    "IdGenerator",
    "ImmutableIdError",
    "Index",
    "IndexEngine",
    "InvalidStateError",
    "KvdocError",
    "MemoryStore",
    "Metadata",
    "NotFoundError",
    "NotPersistedError",
    "PersistenceController",
    "RecordInvalid",
    "SQLiteStore",
    "SaveResult",
    "Session",
    "StoreConfig",
    "StoreError",
    "StoreRecord",
    "StoreTimeoutError",
    "UnknownAttributeError",
    "Violation",
    "create_store",
    "load_config",
    "load_or_create_config",
    "open_session",
    "pointer_key_for",
    "required",
    "save_config",
    "unique",
]
