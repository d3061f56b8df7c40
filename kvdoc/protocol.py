"""
Protocol definition for the key-value store beneath kvdoc.

The store offers single-key operations only. Every successful mutation
returns a fresh CAS token, and replace/delete can be made conditional on the
token from the last read or write. There are no multi-key transactions,
secondary indexes or uniqueness constraints: those are synthesized on top
(see kvdoc.index).

Implemented by:
- MemoryStore (process-local dict, tests and ephemeral use)
- SQLiteStore (durable, shared across processes)
- any backend registered under the ``kvdoc.backends`` entry point group
"""

from typing import Any, NamedTuple, Optional, Protocol, runtime_checkable


class StoreRecord(NamedTuple):
    """A value read from the store together with its CAS token."""
    key: str
    value: Any
    cas: int


@runtime_checkable
class DocumentStoreProtocol(Protocol):
    """
    Single-key store with compare-and-swap.

    All methods accept ``timeout`` (seconds); exceeding it raises
    StoreTimeoutError. None means the backend default.
    """

    def get(
        self,
        key: str,
        *,
        quiet: bool = False,
        timeout: Optional[float] = None,
    ) -> Optional[StoreRecord]:
        """Read a key. Raises NotFoundError unless ``quiet``, which returns None."""
        ...

    def add(self, key: str, value: Any, *, timeout: Optional[float] = None) -> int:
        """Create a key. Raises DuplicateKeyError if it exists. Returns the CAS."""
        ...

    def replace(
        self,
        key: str,
        value: Any,
        cas: Optional[int] = None,
        *,
        timeout: Optional[float] = None,
    ) -> int:
        """
        Overwrite an existing key.

        Raises NotFoundError if absent, ConflictError if ``cas`` is given and
        stale. Returns the new CAS.
        """
        ...

    def delete(
        self,
        key: str,
        cas: Optional[int] = None,
        *,
        quiet: bool = False,
        timeout: Optional[float] = None,
    ) -> None:
        """
        Remove a key.

        Raises NotFoundError if absent (unless ``quiet``), ConflictError if
        ``cas`` is given and stale.
        """
        ...

    def close(self) -> None: ...
