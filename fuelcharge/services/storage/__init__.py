"""
Storage Services Package

Provides the abstract ledger store and its implementations:
a relational store (SQLAlchemy) and a document store (Firestore, or an
in-memory client for tests). Business logic only ever sees LedgerStore.
"""

from fuelcharge.services.storage.interface import (
    Increment,
    Insert,
    LedgerStore,
    Operation,
    Record,
    Update,
    apply_increment,
)
from fuelcharge.services.storage.sql import SqlLedgerStore, create_ledger_engine
from fuelcharge.services.storage.document import (
    DocumentClient,
    DocumentLedgerStore,
    DocumentSnapshot,
    DocumentWrite,
    InMemoryDocumentClient,
    VersionConflictError,
)
from fuelcharge.services.storage.firestore import FirestoreDocumentClient

__all__ = [
    # Interface
    "Increment",
    "Insert",
    "LedgerStore",
    "Operation",
    "Record",
    "Update",
    "apply_increment",
    # Relational implementation
    "SqlLedgerStore",
    "create_ledger_engine",
    # Document implementation
    "DocumentClient",
    "DocumentLedgerStore",
    "DocumentSnapshot",
    "DocumentWrite",
    "FirestoreDocumentClient",
    "InMemoryDocumentClient",
    "VersionConflictError",
]
