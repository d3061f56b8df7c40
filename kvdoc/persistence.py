"""
Create, update and destroy documents with optimistic concurrency.

    new --save--> persisted        add(): create-if-absent, id collision fails
    persisted --save--> persisted  replace() with the held CAS, stale CAS fails
    persisted --destroy--> destroyed

Validation (including indexed uniqueness) runs before any store mutation
and is reported on the returned SaveResult rather than raised. Conflicts,
duplicate keys, missing keys and timeouts are raised and never retried
here, except that a collision on a freshly generated id may be retried once
with a new id.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from .document import Document
from .errors import (
    DocumentDestroyedError,
    DuplicateKeyError,
    NotPersistedError,
    RecordInvalid,
)
from .id_generator import IdGenerator, default_generator
from .index import IndexEngine
from .protocol import DocumentStoreProtocol
from .schema import DocumentKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Violation:
    """One failed constraint: the attribute (or index) name and a message."""
    attribute: str
    message: str

    @property
    def full_message(self) -> str:
        return f"{self.attribute} {self.message}"


@dataclass
class SaveResult:
    """Outcome of a save. Truthy on success; violations explain a refusal."""
    document: Document
    ok: bool
    violations: list = field(default_factory=list)
    written: bool = False

    def __bool__(self) -> bool:
        return self.ok


class PersistenceController:
    """
    Persists Documents through a shared store handle.

    The controller keeps no per-document state between calls, so one
    instance can serve many threads.

    Args:
        store: The key-value store (shared, thread-safe)
        id_generator: Source of ids for documents saved without one
        index_engine: Pointer-record maintenance; built on ``store`` if omitted
        timeout: Default per-round-trip timeout in seconds
        retry_generated_id: Retry once with a fresh id when a generated id
            collides on create
    """

    def __init__(
        self,
        store: DocumentStoreProtocol,
        *,
        id_generator: Optional[IdGenerator] = None,
        index_engine: Optional[IndexEngine] = None,
        timeout: Optional[float] = None,
        retry_generated_id: bool = True,
    ):
        self._store = store
        self._ids = id_generator or default_generator
        self._timeout = timeout
        self._indexes = index_engine or IndexEngine(store, timeout=timeout)
        self._retry_generated_id = retry_generated_id

    @property
    def store(self) -> DocumentStoreProtocol:
        return self._store

    @property
    def indexes(self) -> IndexEngine:
        return self._indexes

    def _t(self, timeout: Optional[float]) -> Optional[float]:
        return self._timeout if timeout is None else timeout

    # -------------------------------------------------------------------------
    # Finders
    # -------------------------------------------------------------------------

    def find(
        self,
        kind: DocumentKind,
        *ids: str,
        quiet: bool = False,
        ignore_doc_type: bool = False,
        timeout: Optional[float] = None,
    ) -> Union[Document, list[Document], None]:
        """
        Load documents by id.

        One id returns a Document (None if missing and ``quiet``); several
        return a list, omitting missing ones when ``quiet``.

        Raises:
            NotFoundError: If an id is missing and not ``quiet``
            DocumentTypeMismatchError: If a stored document is of another kind
        """
        docs = []
        for doc_id in ids:
            record = self._store.get(doc_id, quiet=quiet, timeout=self._t(timeout))
            if record is None:
                continue
            docs.append(Document.from_record(kind, record, ignore_doc_type=ignore_doc_type))
        if len(ids) == 1:
            return docs[0] if docs else None
        return docs

    def find_by_id(self, kind: DocumentKind, *ids: str, **options: Any):
        """Like find(), returning None or omitting ids that do not exist."""
        options["quiet"] = True
        return self.find(kind, *ids, **options)

    def lookup(
        self, kind: DocumentKind, index_name: str, *values: Any, timeout: Optional[float] = None
    ) -> Optional[str]:
        return self._indexes.lookup(kind, index_name, *values, timeout=self._t(timeout))

    def find_by(
        self, kind: DocumentKind, index_name: str, *values: Any, timeout: Optional[float] = None
    ) -> Optional[Document]:
        """Load the document an index currently points at for ``values``."""
        timeout = self._t(timeout)
        doc_id = self._indexes.lookup(kind, index_name, *values, timeout=timeout)
        if doc_id is None:
            return None
        return self.find_by_id(kind, doc_id, timeout=timeout)

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    def validate(self, document: Document) -> list[Violation]:
        """
        Run the kind's validators and the uniqueness checks.

        Sets and returns ``document.errors``. Reads the store but never
        writes it.
        """
        violations = []
        for validator in document.kind.validators:
            for attribute, message in validator(document) or ():
                violations.append(Violation(attribute, message))
        for index_name, message in self._indexes.violations(document):
            violations.append(Violation(index_name, message))
        document.errors = violations
        return violations

    def is_valid(self, document: Document) -> bool:
        return not self.validate(document)

    # -------------------------------------------------------------------------
    # Save
    # -------------------------------------------------------------------------

    def save(
        self,
        document: Document,
        *,
        validate: bool = True,
        timeout: Optional[float] = None,
    ) -> SaveResult:
        """
        Create or update a document.

        Returns:
            SaveResult, falsy with violations when validation refused the save

        Raises:
            DocumentDestroyedError: If the document was destroyed
            DuplicateKeyError: If the document's id already exists on create
            ConflictError: If the held CAS is stale on update
            NotFoundError: If the stored document vanished before an update
            StoreTimeoutError: If a round-trip timed out
        """
        if document.is_destroyed:
            raise DocumentDestroyedError(f"Cannot save a destroyed {document.kind.name}")

        if validate:
            violations = self.validate(document)
            if violations:
                logger.debug(
                    "Refused save of %s %s: %s",
                    document.kind.name, document.id,
                    ", ".join(v.full_message for v in violations),
                )
                return SaveResult(document, False, violations)
        else:
            document.errors = []

        if document.is_new:
            self._create(document, self._t(timeout))
            return SaveResult(document, True, written=True)
        if not document.changed:
            return SaveResult(document, True)
        self._update(document, self._t(timeout))
        return SaveResult(document, True, written=True)

    def _create(self, document: Document, timeout: Optional[float]) -> None:
        kind = document.kind
        pending = self._indexes.before_save(document)
        payload = document.payload()

        key = document.id
        generated = key is None
        if generated:
            key = self._ids.next(kind.name)
        try:
            cas = self._store.add(key, payload, timeout=timeout)
        except DuplicateKeyError:
            if not (generated and self._retry_generated_id):
                raise
            logger.warning("Generated id %s collided, retrying with a fresh id", key)
            key = self._ids.next(kind.name)
            cas = self._store.add(key, payload, timeout=timeout)

        document._mark_saved(key, cas, payload)
        logger.info("Created %s %s", kind.name, key)
        self._indexes.after_save(document, pending, timeout=timeout)

    def _update(self, document: Document, timeout: Optional[float]) -> None:
        pending = self._indexes.before_save(document)
        payload = document.payload()
        key = document.metadata.key

        cas = self._store.replace(key, payload, document.cas, timeout=timeout)

        document._mark_saved(key, cas, payload)
        logger.debug("Updated %s %s", document.kind.name, key)
        self._indexes.after_save(document, pending, timeout=timeout)

    def save_strict(self, document: Document, **options: Any) -> Document:
        """save(), raising RecordInvalid instead of returning a failed result."""
        result = self.save(document, **options)
        if not result:
            raise RecordInvalid(document, result.violations)
        return document

    def create(self, kind: DocumentKind, attributes=None, **options: Any):
        """
        Build and save one document (or one per mapping in a list).

        Returns the document(s) whether or not the save succeeded; check
        ``is_persisted`` or ``errors``.
        """
        if isinstance(attributes, list):
            return [self.create(kind, attrs, **options) for attrs in attributes]
        document = Document(kind, **(attributes or {}))
        self.save(document, **options)
        return document

    def create_strict(self, kind: DocumentKind, attributes=None, **options: Any):
        if isinstance(attributes, list):
            return [self.create_strict(kind, attrs, **options) for attrs in attributes]
        return self.save_strict(Document(kind, **(attributes or {})), **options)

    def update(self, document: Document, attributes: dict[str, Any], **options: Any) -> SaveResult:
        """Assign attributes and save."""
        document.assign_attributes(attributes)
        return self.save(document, **options)

    def update_strict(self, document: Document, attributes: dict[str, Any], **options: Any) -> Document:
        document.assign_attributes(attributes)
        return self.save_strict(document, **options)

    def update_attribute(self, document: Document, name: str, value: Any, **options: Any) -> SaveResult:
        """Set one attribute and save without validation."""
        document.write_attribute(name, value)
        options["validate"] = False
        return self.save(document, **options)

    # -------------------------------------------------------------------------
    # Reload, destroy, delete
    # -------------------------------------------------------------------------

    def reload(self, document: Document, *, timeout: Optional[float] = None) -> Document:
        """
        Re-read a persisted document in place, discarding unsaved changes.

        Raises:
            NotPersistedError: If the document has no storage key
            NotFoundError: If the stored document no longer exists
        """
        key = document.metadata.key
        if key is None:
            raise NotPersistedError("Unable to reload, document not persisted")
        record = self._store.get(key, timeout=self._t(timeout))
        document._load(record)
        document.errors = []
        return document

    def destroy(
        self,
        document: Document,
        *,
        with_cas: bool = False,
        timeout: Optional[float] = None,
    ) -> Document:
        """
        Remove the document and its index pointers, then freeze the handle.

        Pointers are removed first, so a failed delete leaves the document
        without pointers until its next save.

        Raises:
            NotPersistedError: If the document was never saved
            DocumentDestroyedError: If it was already destroyed
            ConflictError: If ``with_cas`` and the stored CAS moved on
            NotFoundError: If the stored document is already gone
        """
        self._check_removable(document)
        timeout = self._t(timeout)
        key = document.metadata.key
        self._indexes.before_destroy(document, timeout=timeout)
        self._remove(document, with_cas, timeout)
        logger.info("Destroyed %s %s", document.kind.name, key)
        return document

    def delete(
        self,
        document: Document,
        *,
        with_cas: bool = False,
        timeout: Optional[float] = None,
    ) -> Document:
        """Remove the stored document only; its index pointers are left to self-heal."""
        self._check_removable(document)
        self._remove(document, with_cas, self._t(timeout))
        return document

    def _check_removable(self, document: Document) -> None:
        if document.is_destroyed:
            raise DocumentDestroyedError(f"{document.kind.name} is already destroyed")
        if document.is_new:
            raise NotPersistedError(f"Cannot destroy a {document.kind.name} that was never saved")

    def _remove(self, document: Document, with_cas: bool, timeout: Optional[float]) -> None:
        cas = document.cas if with_cas else None
        self._store.delete(document.metadata.key, cas, timeout=timeout)
        document._mark_destroyed()
