"""
Shared pytest fixtures for kvdoc tests.

Stores are parametrized so behavioural tests run against both the in-memory
and the SQLite backend.
"""

import pytest

from kvdoc.document_store import MemoryStore, SQLiteStore
from kvdoc.persistence import PersistenceController
from kvdoc.schema import Attribute, DocumentKind, EnumAttribute, Index, required, unique


class RecordingStore:
    """
    Store wrapper that records every call and can be told to fail.

    ``fail_on`` maps an operation name to an exception (or a callable
    taking the key and returning one, or None to pass through).
    """

    def __init__(self, real_store):
        self._real = real_store
        self.calls: list[tuple[str, str]] = []
        self.fail_on: dict = {}

    def __getattr__(self, name):
        return getattr(self._real, name)

    def _maybe_fail(self, op: str, key: str):
        self.calls.append((op, key))
        failure = self.fail_on.get(op)
        if callable(failure) and not isinstance(failure, BaseException):
            failure = failure(key)
        if failure is not None:
            raise failure

    def mutations(self) -> list[tuple[str, str]]:
        return [c for c in self.calls if c[0] != "get"]

    def get(self, key, **kwargs):
        self._maybe_fail("get", key)
        return self._real.get(key, **kwargs)

    def add(self, key, value, **kwargs):
        self._maybe_fail("add", key)
        return self._real.add(key, value, **kwargs)

    def replace(self, key, value, cas=None, **kwargs):
        self._maybe_fail("replace", key)
        return self._real.replace(key, value, cas, **kwargs)

    def delete(self, key, cas=None, **kwargs):
        self._maybe_fail("delete", key)
        return self._real.delete(key, cas, **kwargs)


@pytest.fixture
def memory_store():
    store = MemoryStore()
    yield store
    store.close()


@pytest.fixture
def sqlite_store(tmp_path):
    store = SQLiteStore(tmp_path / "documents.db")
    yield store
    store.close()


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    """Each backend in turn."""
    if request.param == "memory":
        s = MemoryStore()
    else:
        s = SQLiteStore(tmp_path / "documents.db")
    yield s
    s.close()


@pytest.fixture
def recording_store(memory_store):
    return RecordingStore(memory_store)


@pytest.fixture
def controller(store):
    return PersistenceController(store)


# -----------------------------------------------------------------------------
# Sample kinds
# -----------------------------------------------------------------------------

@pytest.fixture
def users():
    """Users with a unique, case-insensitive email."""
    return DocumentKind(
        "user",
        attributes=[
            Attribute("email", str),
            Attribute("name", str),
            Attribute("age", int, default=23),
        ],
        indexes=[unique("email", normalizer=lambda email: email.lower())],
    )


@pytest.fixture
def memberships():
    """Join-style kind indexed on a pair of ids."""
    return DocumentKind(
        "membership",
        attributes=["user_id", "group_id", Attribute("role", str, default="member")],
        indexes=[Index(("user_id", "group_id"), name="join", unique=True)],
    )


@pytest.fixture
def articles():
    """Non-unique index plus an enum and a required title."""
    return DocumentKind(
        "article",
        attributes=[
            Attribute("title", str),
            Attribute("slug", str),
            EnumAttribute("visibility", ["group", "authority", "public"], default="authority"),
            Attribute("tags", list, default=list),
        ],
        indexes=[Index("slug")],
        validators=[required("title")],
    )
