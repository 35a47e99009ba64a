"""
Document Ledger Store (optimistic compare-and-set)

DESIGN DECISION: Document databases rarely offer multi-document locks,
but they do offer versioned documents and atomic batch commits. So an
atomic_apply here is:

1. Read every touched document together with its version
2. Compute the new documents in memory
3. Commit all of them in one batch, each guarded by the version read in 1
4. If any guard fails, someone else wrote in between: start over at 1

Retries use tenacity with jittered exponential backoff. When the retry
budget is exhausted the caller gets ConflictError and nothing was written.

TRADEOFFS:
- No server-side arithmetic: increments are computed in Python, which is
  why the version guard is mandatory
- Invoice items are embedded in the invoice document
- Listing and ordering happen in Python (fine for one station's ledger)
"""

import asyncio
import copy
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, NamedTuple, Optional, Sequence

from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from fuelcharge.audit import get_logger
from fuelcharge.config import get_settings
from fuelcharge.errors import (
    ConflictError,
    DuplicateError,
    LedgerError,
    NotFoundError,
    PreconditionFailedError,
    StorageError,
    StorageUnavailableError,
)
from fuelcharge.models.ledger import Collection
from fuelcharge.services.storage.interface import (
    Increment,
    Insert,
    LedgerStore,
    Operation,
    Record,
    Update,
    apply_increment,
)


logger = get_logger(__name__)


class VersionConflictError(Exception):
    """A guarded write found a newer version than the one it read."""
    pass


class DocumentSnapshot(NamedTuple):
    """A document as read, with the version that guards writing it back."""
    data: Optional[dict]
    version: Any = None

    @property
    def exists(self) -> bool:
        return self.data is not None


class DocumentWrite(NamedTuple):
    """
    One write of a batch commit.

    ``expected_version`` is the version seen at read time; None means
    the document did not exist and must still not exist.
    """
    collection: str
    doc_id: str
    data: dict
    expected_version: Any = None


class DocumentClient(ABC):
    """Minimal versioned document database the store is built on."""

    @abstractmethod
    async def open(self) -> None:
        pass

    @abstractmethod
    async def close(self) -> None:
        pass

    @abstractmethod
    async def read(self, collection: str, doc_id: str) -> DocumentSnapshot:
        """Read one document; a missing document has ``data=None``."""
        pass

    @abstractmethod
    async def read_all(self, collection: str) -> list[tuple[str, dict]]:
        pass

    @abstractmethod
    async def write(self, collection: str, doc_id: str, data: dict) -> None:
        """Unconditional full overwrite."""
        pass

    @abstractmethod
    async def commit(self, writes: Sequence[DocumentWrite]) -> None:
        """
        Apply all writes atomically, each guarded by its expected version.

        Raises:
            VersionConflictError: Any guard failed; nothing was written
        """
        pass

    @abstractmethod
    async def ping(self) -> None:
        pass


class InMemoryDocumentClient(DocumentClient):
    """
    Process-local document client.

    Used for tests and local development. Versions are per-document
    counters; commits are atomic with respect to the event loop.
    Every read yields to the loop so concurrent callers really do
    interleave between read and commit.
    """

    def __init__(self):
        self._docs: dict[str, dict[str, tuple[dict, int]]] = {}
        self._open = False

    async def open(self) -> None:
        self._open = True

    async def close(self) -> None:
        self._open = False

    def _require_open(self) -> None:
        if not self._open:
            raise StorageUnavailableError("Document client is not open")

    async def read(self, collection: str, doc_id: str) -> DocumentSnapshot:
        self._require_open()
        await asyncio.sleep(0)
        entry = self._docs.get(collection, {}).get(doc_id)
        if entry is None:
            return DocumentSnapshot(data=None, version=None)
        data, version = entry
        return DocumentSnapshot(data=copy.deepcopy(data), version=version)

    async def read_all(self, collection: str) -> list[tuple[str, dict]]:
        self._require_open()
        return [
            (doc_id, copy.deepcopy(data))
            for doc_id, (data, _) in self._docs.get(collection, {}).items()
        ]

    async def write(self, collection: str, doc_id: str, data: dict) -> None:
        self._require_open()
        docs = self._docs.setdefault(collection, {})
        _, version = docs.get(doc_id, (None, 0))
        docs[doc_id] = (copy.deepcopy(data), version + 1)

    async def commit(self, writes: Sequence[DocumentWrite]) -> None:
        self._require_open()
        # Check every guard before touching anything; no await in between
        for write in writes:
            entry = self._docs.get(write.collection, {}).get(write.doc_id)
            current = entry[1] if entry else None
            if current != write.expected_version:
                raise VersionConflictError(
                    f"{write.collection}/{write.doc_id} is at version {current}, "
                    f"expected {write.expected_version}"
                )
        for write in writes:
            docs = self._docs.setdefault(write.collection, {})
            version = (write.expected_version or 0) + 1
            docs[write.doc_id] = (copy.deepcopy(write.data), version)

    async def ping(self) -> None:
        self._require_open()


class DocumentLedgerStore(LedgerStore):
    """
    Ledger store over a versioned document database.

    Each record is one document keyed by its id. The record's own
    ``id`` field is stored in the document as well.
    """

    def __init__(
        self,
        client: DocumentClient,
        max_attempts: Optional[int] = None,
        max_backoff_seconds: float = 0.5,
    ):
        self._client = client
        self._max_attempts = max_attempts or get_settings().app.store_max_attempts
        self._max_backoff = max_backoff_seconds

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> None:
        await self._client.open()
        logger.info("ledger_store_opened", backend="document")

    async def close(self) -> None:
        await self._client.close()
        logger.info("ledger_store_closed", backend="document")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, collection: Collection, record_id: str) -> Record:
        snapshot = await self._guard(self._client.read(collection.value, record_id))
        if not snapshot.exists:
            raise NotFoundError(f"{collection.value} record not found: {record_id}")
        return {**snapshot.data, "id": record_id}

    async def list_all(
        self,
        collection: Collection,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> list[Record]:
        docs = await self._guard(self._client.read_all(collection.value))
        records = [{**data, "id": doc_id} for doc_id, data in docs]
        if order_by is not None:
            numeric = order_by in _MONEY_FIELDS
            records.sort(
                key=lambda record: _sort_key(record.get(order_by), numeric),
                reverse=descending,
            )
        return records

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def put(self, collection: Collection, record_id: str, record: Record) -> None:
        await self._guard(
            self._client.write(collection.value, record_id, {**record, "id": record_id})
        )

    async def _apply_once(self, operations: Sequence[Operation]) -> None:
        keys: list[tuple[str, str]] = []
        for op in operations:
            key = (op.collection.value, op.id)
            if key not in keys:
                keys.append(key)

        snapshots = {key: await self._client.read(*key) for key in keys}
        docs = {key: snapshot.data for key, snapshot in snapshots.items()}

        for op in operations:
            key = (op.collection.value, op.id)
            doc = docs[key]

            if isinstance(op, Insert):
                if doc is not None:
                    raise DuplicateError(f"{op.collection.value} record already exists: {op.id}")
                docs[key] = {**copy.deepcopy(op.record), "id": op.id}
                continue

            if doc is None:
                raise NotFoundError(f"{op.collection.value} record not found: {op.id}")

            if isinstance(op, Update):
                for field, expected in op.expect.items():
                    if doc.get(field) != expected:
                        raise PreconditionFailedError(
                            f"{op.collection.value} {op.id}: {field} is "
                            f"{doc.get(field)!r}, expected {expected!r}"
                        )
                doc.update(copy.deepcopy(op.changes))
            elif isinstance(op, Increment):
                current = Decimal(str(doc.get(op.field) or "0"))
                doc[op.field] = str(apply_increment(current, op))
            else:
                raise TypeError(f"Unsupported operation: {type(op).__name__}")

        await self._client.commit([
            DocumentWrite(
                collection=key[0],
                doc_id=key[1],
                data=docs[key],
                expected_version=snapshots[key].version,
            )
            for key in keys
        ])

    async def atomic_apply(self, operations: Sequence[Operation]) -> None:
        operations = list(operations)
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_random_exponential(multiplier=0.01, max=self._max_backoff),
            retry=retry_if_exception_type(VersionConflictError),
        )
        try:
            async for attempt in retrying:
                with attempt:
                    await self._guard(self._apply_once(operations))
        except RetryError as e:
            logger.warning(
                "compare_and_set_exhausted",
                attempts=self._max_attempts,
                records=[f"{op.collection.value}/{op.id}" for op in operations],
            )
            raise ConflictError(
                f"Gave up after {self._max_attempts} conflicting attempts"
            ) from e

    # ------------------------------------------------------------------
    # Health & plumbing
    # ------------------------------------------------------------------

    async def health(self) -> dict:
        try:
            await self._guard(self._client.ping())
        except LedgerError as e:
            logger.warning("ledger_store_unreachable", backend="document", error=str(e))
            return {"status": "online", "database": "unreachable", "error": str(e)}
        return {"status": "online", "database": "connected"}

    async def _guard(self, awaitable):
        """
        Await a client call, translating unexpected client errors.

        Ledger errors and version conflicts pass through; anything else
        the client raises becomes a StorageError.
        """
        try:
            return await awaitable
        except (LedgerError, VersionConflictError):
            raise
        except Exception as e:
            raise StorageError(f"Document store error: {e}") from e


# Fields stored as decimal strings that must order by value
_MONEY_FIELDS = frozenset({"amount", "credit_limit", "current_balance"})


def _sort_key(value: Any, numeric: bool = False) -> tuple:
    """Missing values sort last; money strings compare numerically."""
    if value is None:
        return (1, 0, "")
    if isinstance(value, str):
        if numeric:
            try:
                return (0, 0, Decimal(value))
            except ArithmeticError:
                pass
        return (0, 1, value)
    return (0, 0, value)
