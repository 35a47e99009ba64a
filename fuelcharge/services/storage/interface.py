"""
Abstract Ledger Store Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Run the same ledger service on a relational database or a document store
2. Use a local store for tests
3. Keep the balance rules in ONE place (the ledger service), not per backend

The interface is intentionally small - we're not building a full ORM.
Reads, a full upsert, and one atomic multi-record apply.

CRITICAL: atomic_apply is the only way to change more than one record.
Either every operation in the batch is applied or none is, and no other
reader can observe a half-applied batch.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field

from fuelcharge.models.ledger import Collection


Record = dict[str, Any]


# =============================================================================
# OPERATIONS
# =============================================================================

class Insert(BaseModel):
    """Create a record. Fails with DuplicateError if the id is taken."""
    model_config = ConfigDict(frozen=True)

    collection: Collection
    id: str
    record: Record


class Update(BaseModel):
    """
    Set fields on an existing record.

    If ``expect`` is given, every listed field must currently hold the
    listed value or the whole batch fails with PreconditionFailedError.
    """
    model_config = ConfigDict(frozen=True)

    collection: Collection
    id: str
    changes: Record
    expect: Record = Field(default_factory=dict)


class Increment(BaseModel):
    """
    Add ``delta`` to a numeric field in place.

    With ``floor`` set, the result is clamped so it never drops below it.
    """
    model_config = ConfigDict(frozen=True)

    collection: Collection
    id: str
    field: str
    delta: Decimal
    floor: Optional[Decimal] = None


Operation = Union[Insert, Update, Increment]


def apply_increment(current: Decimal, op: Increment) -> Decimal:
    """The value a field holds after ``op``; shared by all adapters."""
    result = current + op.delta
    if op.floor is not None and result < op.floor:
        return op.floor
    return result


# =============================================================================
# STORE
# =============================================================================

class LedgerStore(ABC):
    """
    Abstract interface for the ledger store.

    Any storage implementation (SQL database, document store, etc.)
    must implement these methods. Every method may block on I/O.

    Stores have an explicit lifecycle: construct, ``await open()``,
    use, ``await close()``. They can also be used as async context
    managers.
    """

    @abstractmethod
    async def open(self) -> None:
        """
        Connect to the backend and prepare collections.

        Raises:
            StorageUnavailableError: If the backend cannot be reached
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release connections. Safe to call more than once."""
        pass

    @abstractmethod
    async def get(self, collection: Collection, record_id: str) -> Record:
        """
        Fetch one record.

        Invoices are returned with their ``items`` inlined.

        Raises:
            NotFoundError: If no record has this id
            StorageError: If the read fails
        """
        pass

    @abstractmethod
    async def list_all(
        self,
        collection: Collection,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> list[Record]:
        """
        List every record in a collection.

        Args:
            collection: Which collection to read
            order_by: Field to sort by (store order if None)
            descending: Sort direction
        """
        pass

    @abstractmethod
    async def put(self, collection: Collection, record_id: str, record: Record) -> None:
        """
        Full upsert of a single record.

        CRITICAL: Never use this to change a balance. Balance changes
        go through atomic_apply together with the record that causes them.
        """
        pass

    @abstractmethod
    async def atomic_apply(self, operations: Sequence[Operation]) -> None:
        """
        Apply all operations as one unit.

        Raises:
            NotFoundError: An Update/Increment target does not exist
            DuplicateError: An Insert id already exists
            PreconditionFailedError: An Update expectation did not hold
            StorageError: The backend failed (nothing was applied)
        """
        pass

    @abstractmethod
    async def health(self) -> dict:
        """
        Report connectivity without raising.

        Returns:
            {"status": "online", "database": "connected" | "unreachable",
             "error": <message, only when unreachable>}
        """
        pass

    async def __aenter__(self) -> "LedgerStore":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
