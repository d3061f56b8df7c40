"""
Secondary lookup and uniqueness on a store that has neither.

For each index over a kind, a pointer record is kept in the same keyspace
as the documents:

    <kind>#<index>|<component>|<component>...  ->  "<document id>"

Each component is the JSON form of one indexed value, percent-encoded so it
can never contain the separator. A null value is the empty component, so
"find by null" is a bucket of its own and no other value maps onto it.

Pointer records are an accelerator, not a source of truth. Writing a
document and writing its pointer are separate round-trips, so readers can
briefly see one without the other. lookup() repairs a pointer whose
document is gone; the document record always wins.

Uniqueness is checked before a save and is advisory: two writers can both
pass the check before either writes its pointer. The store offers no
multi-key transaction that could close that window.
"""

import json
import logging
from typing import Any, NamedTuple, Optional, Sequence
from urllib.parse import quote

from .errors import ConflictError, DuplicateKeyError, NotFoundError, StoreError
from .protocol import DocumentStoreProtocol
from .schema import DocumentKind, Index, validate_name

logger = logging.getLogger(__name__)

KIND_SEPARATOR = "#"
COMPONENT_SEPARATOR = "|"

# Characters left unescaped in key components, for readable keys
_SAFE = "@.:,+=!$&'()*/\"[]{}"


def _kind_name(kind) -> str:
    return kind.name if isinstance(kind, DocumentKind) else str(kind)


def _component(value: Any) -> str:
    if value is None:
        return ""
    text = json.dumps(value, ensure_ascii=False, sort_keys=True, separators=(",", ":"))
    return quote(text, safe=_SAFE)


def pointer_key_for(kind, index_name: str, values: Sequence[Any]) -> str:
    """
    Derive the pointer record key for an index and its value tuple.

    Deterministic, and injective over value tuples for a fixed kind and
    index; kind and index names are validated so namespaces cannot overlap.
    """
    kind_name = _kind_name(kind)
    validate_name(kind_name, "kind name")
    validate_name(index_name, "index name")
    components = COMPONENT_SEPARATOR.join(_component(v) for v in values)
    return f"{kind_name}{KIND_SEPARATOR}{index_name}{COMPONENT_SEPARATOR}{components}"


class PendingPointer(NamedTuple):
    """A pointer change captured before a save and applied after it."""
    index: Index
    previous_key: Optional[str]


class IndexEngine:
    """
    Maintains pointer records for the indexes declared on document kinds.

    Holds only the store handle; documents are passed into each call and
    never retained.
    """

    def __init__(self, store: DocumentStoreProtocol, timeout: Optional[float] = None):
        self._store = store
        self._timeout = timeout

    # -------------------------------------------------------------------------
    # Keys
    # -------------------------------------------------------------------------

    @staticmethod
    def values_for(index: Index, document, *, persisted: bool = False) -> tuple:
        """Normalized key components from a document's current (or last persisted) values."""
        if persisted:
            raw = [document.attribute_was(a) for a in index.attrs]
        else:
            raw = [document.read_attribute(a) for a in index.attrs]
        return index.normalize(raw)

    def key_for_values(self, kind: DocumentKind, index_name: str, values: Sequence[Any]) -> str:
        index = kind.index(index_name)
        if len(values) != len(index.attrs):
            raise ValueError(
                f"Index {index.name!r} takes {len(index.attrs)} value(s), got {len(values)}"
            )
        # Same coercion as a write, so "3" finds a stored 3
        coerced = [kind.attribute(a).coerce(v) for a, v in zip(index.attrs, values)]
        return pointer_key_for(kind, index.name, index.normalize(coerced))

    def key_for_document(self, index: Index, document, *, persisted: bool = False) -> str:
        return pointer_key_for(
            document.kind, index.name, self.values_for(index, document, persisted=persisted)
        )

    # -------------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------------

    def lookup(
        self, kind: DocumentKind, index_name: str, *values: Any, timeout: Optional[float] = None
    ) -> Optional[str]:
        """
        Resolve an index value tuple to a document id.

        Values are coerced by their attribute types first. A pointer whose
        document no longer exists is deleted and None is returned.
        """
        return self.resolve_key(self.key_for_values(kind, index_name, values), timeout=timeout)

    def resolve_key(self, key: str, *, timeout: Optional[float] = None) -> Optional[str]:
        """Follow a pointer key to a live document id, repairing it if stale."""
        timeout = self._timeout if timeout is None else timeout
        pointer = self._store.get(key, quiet=True, timeout=timeout)
        if pointer is None:
            return None
        doc_id = pointer.value
        if isinstance(doc_id, str) and self._store.get(doc_id, quiet=True, timeout=timeout) is not None:
            return doc_id

        # Only remove the pointer as read; a concurrent writer may have re-pointed it
        try:
            self._store.delete(key, pointer.cas, quiet=True, timeout=timeout)
            logger.info("Removed stale index pointer %s -> %r", key, doc_id)
        except ConflictError:
            logger.debug("Stale pointer %s was re-pointed concurrently", key)
        return None

    def is_unique(self, document, index: Optional[Index] = None) -> bool:
        """
        True if no other document owns the pointer for this document's
        current values (on ``index``, or on every unique index of its kind).

        Value tuples containing null share a bucket and never conflict.
        """
        indexes = [index] if index is not None else [i for i in document.kind.indexes if i.unique]
        for idx in indexes:
            values = self.values_for(idx, document)
            if any(v is None for v in values):
                continue
            owner = self.resolve_key(pointer_key_for(document.kind, idx.name, values))
            if owner is not None and owner != document.id:
                return False
        return True

    def violations(self, document) -> list[tuple[str, str]]:
        """(index name, message) for each unique index this document would take over."""
        return [
            (idx.name, "has already been taken")
            for idx in document.kind.indexes
            if idx.unique and not self.is_unique(document, idx)
        ]

    # -------------------------------------------------------------------------
    # Save and destroy hooks
    # -------------------------------------------------------------------------

    def before_save(self, document) -> list[PendingPointer]:
        """
        Capture, per index, the pointer key of the last persisted values when
        an indexed attribute changed. Must run while the dirty set is intact.
        """
        pending = []
        dirty = document.dirty
        for index in document.kind.indexes:
            previous = None
            if document.is_persisted and dirty.intersection(index.attrs):
                previous = self.key_for_document(index, document, persisted=True)
            pending.append(PendingPointer(index, previous))
        return pending

    def after_save(self, document, pending: list[PendingPointer], *, timeout: Optional[float] = None) -> None:
        """Point each index at the saved document and drop superseded pointers."""
        timeout = self._timeout if timeout is None else timeout
        for index, previous_key in pending:
            new_key = self.key_for_document(index, document)
            if previous_key is not None and previous_key != new_key:
                self._delete_pointer(previous_key, timeout)
            self.write_pointer(new_key, document.id, timeout=timeout)

    def before_destroy(self, document, *, timeout: Optional[float] = None) -> None:
        """
        Delete the pointers for the document's last persisted values.

        Best effort: a failure leaves a dangling pointer for lookup to repair.
        """
        timeout = self._timeout if timeout is None else timeout
        for index in document.kind.indexes:
            self._delete_pointer(self.key_for_document(index, document, persisted=True), timeout)

    def write_pointer(self, key: str, doc_id: str, *, timeout: Optional[float] = None) -> None:
        """
        Create or overwrite a pointer record using add/replace only.

        A pointer that vanished between the two steps is re-added; one that
        was re-pointed concurrently is overwritten on the next pass.
        """
        timeout = self._timeout if timeout is None else timeout
        for _attempt in range(5):
            try:
                self._store.add(key, doc_id, timeout=timeout)
                logger.debug("Added index pointer %s -> %s", key, doc_id)
                return
            except DuplicateKeyError:
                pass
            existing = self._store.get(key, quiet=True, timeout=timeout)
            if existing is None:
                continue
            if existing.value == doc_id:
                return
            try:
                self._store.replace(key, doc_id, existing.cas, timeout=timeout)
                logger.debug("Replaced index pointer %s -> %s (was %r)", key, doc_id, existing.value)
                return
            except (ConflictError, NotFoundError):
                continue
        raise ConflictError(f"Index pointer kept changing under write: {key}", key)

    def _delete_pointer(self, key: str, timeout: Optional[float]) -> None:
        try:
            self._store.delete(key, quiet=True, timeout=timeout)
            logger.debug("Deleted index pointer %s", key)
        except StoreError as e:
            logger.warning("Could not delete index pointer %s: %s", key, e)
