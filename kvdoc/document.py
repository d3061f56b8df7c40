"""
In-memory representation of one stored document.

A Document holds its kind, an attribute map that always carries the
``type`` discriminator, persistence metadata (storage key and CAS token),
the set of attributes changed since the last load or save, and a snapshot
of the values as last persisted.

Lifecycle, derived from the metadata:

    new        key absent, cas absent
    persisted  key present
    destroyed  key absent, cas present (frozen handle)
"""

import json
from dataclasses import dataclass
from typing import Any, Iterable, Optional

from .errors import (
    DocumentDestroyedError,
    DocumentTypeMismatchError,
    ImmutableIdError,
    UnknownAttributeError,
)
from .protocol import StoreRecord
from .schema import DocumentKind


@dataclass
class Metadata:
    """Where the document lives in the store and the CAS token last seen there."""
    key: Optional[str] = None
    cas: Optional[int] = None


class Document:
    """
    One document of a given DocumentKind.

    Attributes are read and written by name through ``doc["name"]`` or
    read_attribute/write_attribute. Writes are coerced through the
    attribute's declared type and tracked in ``dirty``.
    """

    def __init__(self, kind: DocumentKind, /, id: Optional[str] = None, **attributes: Any):
        self._kind = kind
        self._metadata = Metadata()
        self._id: Optional[str] = None
        self._values: dict[str, Any] = {"type": kind.name}
        self._values.update(kind.defaults())
        self._persisted: dict[str, Any] = {}
        self._dirty: set[str] = set()
        self._frozen = False
        self.errors: list = []

        if id is not None:
            self.id = id
        self.assign_attributes(attributes)

    @classmethod
    def from_record(
        cls,
        kind: DocumentKind,
        record: StoreRecord,
        *,
        ignore_doc_type: bool = False,
    ) -> "Document":
        """
        Build a persisted Document from a store record.

        Raises:
            DocumentTypeMismatchError: If the stored discriminator names
                another kind (unless ``ignore_doc_type``)
            ValueError: If the stored value is not a document
        """
        if not isinstance(record.value, dict):
            raise ValueError(f"Stored value at {record.key!r} is not a document")
        doc = cls(kind)
        doc._load(record, ignore_doc_type=ignore_doc_type)
        return doc

    def _load(self, record: StoreRecord, *, ignore_doc_type: bool = False) -> None:
        data = dict(record.value)
        stored_type = data.pop("type", None)
        data.pop("id", None)
        if stored_type and not ignore_doc_type and str(stored_type) != self._kind.name:
            raise DocumentTypeMismatchError(self._kind.name, str(stored_type), record.key)

        values = {"type": self._kind.name}
        values.update(self._kind.defaults())
        values.update(data)
        self._values = values
        self._id = None
        self._metadata = Metadata(key=record.key, cas=record.cas)
        self._snapshot()

    def _snapshot(self) -> None:
        self._persisted = dict(self._values)
        self._dirty.clear()

    # -------------------------------------------------------------------------
    # Identity and lifecycle
    # -------------------------------------------------------------------------

    @property
    def kind(self) -> DocumentKind:
        return self._kind

    @property
    def metadata(self) -> Metadata:
        return self._metadata

    @property
    def id(self) -> Optional[str]:
        """Storage key once persisted, otherwise any id assigned before the first save."""
        return self._metadata.key or self._id

    @id.setter
    def id(self, value: Optional[str]) -> None:
        if self._metadata.cas is not None:
            raise ImmutableIdError(f"ID cannot be changed: {self.id!r}")
        self._id = None if value is None else str(value)

    @property
    def cas(self) -> Optional[int]:
        return self._metadata.cas

    @property
    def is_new(self) -> bool:
        return self._metadata.cas is None and self._metadata.key is None

    @property
    def is_persisted(self) -> bool:
        return self._metadata.key is not None

    @property
    def is_destroyed(self) -> bool:
        return self._metadata.cas is not None and self._metadata.key is None

    @property
    def is_frozen(self) -> bool:
        return self._frozen

    # -------------------------------------------------------------------------
    # Attribute access
    # -------------------------------------------------------------------------

    def read_attribute(self, name: str) -> Any:
        if name == "id":
            return self.id
        if name in self._values:
            return self._values[name]
        # Raises for undeclared names
        self._kind.attribute(name)
        return None

    def write_attribute(self, name: str, value: Any) -> None:
        if self._frozen:
            raise DocumentDestroyedError(f"Cannot modify a destroyed {self._kind.name}")
        if name == "id":
            self.id = value
            return
        if name == "type":
            raise ValueError("'type' is set by the document kind and cannot be assigned")
        value = self._kind.attribute(name).coerce(value)
        if self._values.get(name) == value and name in self._values:
            return
        self._values[name] = value
        if name in self._persisted and self._persisted[name] == value:
            self._dirty.discard(name)
        else:
            self._dirty.add(name)

    __getitem__ = read_attribute
    __setitem__ = write_attribute

    def __contains__(self, name: str) -> bool:
        return name in self._values or self._kind.has_attribute(name)

    def get(self, name: str, default: Any = None) -> Any:
        try:
            value = self.read_attribute(name)
        except UnknownAttributeError:
            return default
        return default if value is None else value

    def assign_attributes(self, attributes: dict[str, Any]) -> None:
        for name, value in attributes.items():
            self.write_attribute(name, value)

    def attribute_was(self, name: str) -> Any:
        """Value as of the last load or save (current value for a new document)."""
        if name in self._persisted:
            return self._persisted[name]
        return self.read_attribute(name)

    def persisted_attributes(self) -> dict[str, Any]:
        return dict(self._persisted)

    @property
    def dirty(self) -> frozenset:
        return frozenset(self._dirty)

    @property
    def changed(self) -> bool:
        return bool(self._dirty)

    @property
    def changes(self) -> dict[str, tuple[Any, Any]]:
        """Changed attributes mapped to (previous, current) values."""
        return {
            name: (self._persisted.get(name), self._values.get(name))
            for name in sorted(self._dirty)
        }

    # -------------------------------------------------------------------------
    # Persistence support (used by PersistenceController)
    # -------------------------------------------------------------------------

    def payload(self) -> dict[str, Any]:
        """
        The value to store: current attributes after each attribute's
        before_write adjustment, ``type`` forced to the kind, no ``id``.
        """
        data = dict(self._values)
        for attr in self._kind.attributes:
            data[attr.name] = attr.before_write(data.get(attr.name))
        data.pop("id", None)
        data["type"] = self._kind.name
        return data

    def _mark_saved(self, key: str, cas: int, payload: dict[str, Any]) -> None:
        self._values = dict(payload)
        self._metadata.key = key
        self._metadata.cas = cas
        self._snapshot()

    def _mark_destroyed(self) -> None:
        self._metadata.key = None
        self._id = None
        self._dirty.clear()
        self._frozen = True

    # -------------------------------------------------------------------------
    # Serialization
    # -------------------------------------------------------------------------

    @property
    def attributes(self) -> dict[str, Any]:
        """Copy of the attribute map with ``id`` and without ``type``."""
        copy = dict(self._values)
        copy.pop("type", None)
        copy["id"] = self.id
        return copy

    def to_dict(
        self,
        only: Optional[Iterable[str]] = None,
        exclude: Optional[Iterable[str]] = None,
    ) -> dict[str, Any]:
        data = self.attributes
        if only is not None:
            wanted = [only] if isinstance(only, str) else list(only)
            data = {k: data[k] for k in wanted if k in data}
        if exclude is not None:
            dropped = {exclude} if isinstance(exclude, str) else set(exclude)
            data = {k: v for k, v in data.items() if k not in dropped}
        return data

    def to_json(self, **kwargs: Any) -> str:
        return json.dumps(self.to_dict(**kwargs), ensure_ascii=False)

    # -------------------------------------------------------------------------
    # Comparison
    # -------------------------------------------------------------------------

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Document):
            return NotImplemented
        return (
            self._kind.name == other._kind.name
            and self.id == other.id
            and self._metadata.cas == other._metadata.cas
            and self._values == other._values
        )

    def __hash__(self) -> int:
        return hash((self._kind.name, self.id))

    def __repr__(self) -> str:
        state = "new" if self.is_new else "destroyed" if self.is_destroyed else "persisted"
        return f"<{self._kind.name} id={self.id!r} {state}>"
