"""
Relational Ledger Store (SQLAlchemy)

DESIGN DECISION: Each atomic_apply runs inside a single
``engine.begin()`` block. SQLAlchemy issues BEGIN, COMMIT on success and
ROLLBACK on any exception, so a failed batch leaves nothing behind.

Balance changes are single UPDATE statements computed by the database
(``current_balance = current_balance + :delta``), never a read in Python
followed by a write. The row write lock serializes concurrent writers on
the same account; different accounts do not contend.

SQLite is supported for local use and tests. It has no row locks, so
transactions start with BEGIN IMMEDIATE and writers queue on the
database lock instead of deadlocking on lock upgrade.
"""

import asyncio
import datetime as dt
from decimal import Decimal
from typing import Any, Optional, Sequence

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    case,
    create_engine,
    delete,
    event,
    insert,
    select,
    text,
    update,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import DBAPIError, OperationalError, SQLAlchemyError
from sqlalchemy.pool import NullPool
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from fuelcharge.audit import get_logger
from fuelcharge.config import DatabaseSettings, get_settings
from fuelcharge.errors import (
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
)


logger = get_logger(__name__)

metadata = MetaData()

accounts_table = Table(
    "accounts",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("name", String(200), nullable=False),
    Column("email", String(320), nullable=False),
    Column("phone", String(64), nullable=True),
    Column("credit_limit", Numeric(12, 2), nullable=False, default=0),
    Column("current_balance", Numeric(12, 2), nullable=False, default=0),
    Column("created_at", DateTime(timezone=True), nullable=False),
)

invoices_table = Table(
    "invoices",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("account_id", String(32), ForeignKey("accounts.id"), nullable=False, index=True),
    Column("date", Date, nullable=False),
    Column("due_date", Date, nullable=False),
    Column("amount", Numeric(12, 2), nullable=False),
    Column("status", String(16), nullable=False, default="UNPAID"),
    Column("email_sent", Boolean, nullable=False, default=False),
)

invoice_items_table = Table(
    "invoice_items",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column(
        "invoice_id",
        String(32),
        ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    Column("position", Integer, nullable=False),
    Column("description", String(200), nullable=False),
    Column("quantity", Numeric(12, 3), nullable=False),
    Column("price", Numeric(12, 3), nullable=False),
)

transactions_table = Table(
    "transactions",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("account_id", String(32), ForeignKey("accounts.id"), nullable=False, index=True),
    Column("date", Date, nullable=False),
    Column("type", String(16), nullable=False),
    Column("amount", Numeric(12, 2), nullable=False),
    Column("description", String(500), nullable=True),
    Column("items", JSON, nullable=False, default=list),
    Column("invoice_id", String(32), nullable=True),
)

TABLES = {
    Collection.ACCOUNTS: accounts_table,
    Collection.INVOICES: invoices_table,
    Collection.TRANSACTIONS: transactions_table,
}

ITEM_FIELDS = ("description", "quantity", "price")


def create_ledger_engine(settings: Optional[DatabaseSettings] = None) -> Engine:
    """
    Build an engine with pooling suited to the backend.

    SQLite: NullPool (a fresh connection per checkout, safe across
    worker threads) and BEGIN IMMEDIATE transactions.
    Others: QueuePool with pre-ping and recycling.
    """
    settings = settings or get_settings().database

    if settings.url.startswith("sqlite"):
        engine = create_engine(
            settings.url,
            connect_args={"check_same_thread": False, "timeout": 30},
            poolclass=NullPool,
            echo=settings.echo,
        )

        @event.listens_for(engine, "connect")
        def _on_connect(dbapi_connection, connection_record):
            # Let SQLAlchemy (not pysqlite) decide when transactions begin
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        @event.listens_for(engine, "begin")
        def _on_begin(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

        return engine

    return create_engine(
        settings.url,
        pool_size=settings.pool_size,
        max_overflow=settings.max_overflow,
        pool_timeout=30,
        pool_recycle=settings.pool_recycle_seconds,
        pool_pre_ping=True,
        echo=settings.echo,
    )


def _to_db(column: Column, value: Any) -> Any:
    """Convert a JSON-compatible record value to the column's Python type."""
    if value is None:
        return None
    column_type = column.type
    if isinstance(column_type, Numeric):
        return Decimal(str(value))
    if isinstance(column_type, DateTime):
        return value if isinstance(value, dt.datetime) else dt.datetime.fromisoformat(value)
    if isinstance(column_type, Date):
        return value if isinstance(value, dt.date) else dt.date.fromisoformat(value)
    return value


def _from_db(value: Any) -> Any:
    """Convert a column value back to its JSON-compatible form."""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (dt.date, dt.datetime)):
        return value.isoformat()
    return value


class SqlLedgerStore(LedgerStore):
    """
    SQLAlchemy implementation of the ledger store.

    Invoices live in two tables (``invoices`` and ``invoice_items``);
    the store inlines items on read and writes them with the invoice
    in the same transaction.
    """

    def __init__(
        self,
        engine: Optional[Engine] = None,
        settings: Optional[DatabaseSettings] = None,
    ):
        self._engine = engine
        self._settings = settings
        self._owns_engine = engine is None

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise StorageUnavailableError("Ledger store is not open")
        return self._engine

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(OperationalError),
        reraise=True,
    )
    def _connect(self) -> None:
        if self._engine is None:
            self._engine = create_ledger_engine(self._settings)
        metadata.create_all(self._engine)

    async def open(self) -> None:
        try:
            await asyncio.to_thread(self._connect)
        except SQLAlchemyError as e:
            raise StorageUnavailableError(f"Failed to connect to database: {e}") from e
        logger.info("ledger_store_opened", backend="sql", url=str(self.engine.url))

    async def close(self) -> None:
        if self._engine is not None:
            await asyncio.to_thread(self._engine.dispose)
            if self._owns_engine:
                self._engine = None
            logger.info("ledger_store_closed", backend="sql")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _row_to_record(self, row) -> Record:
        return {key: _from_db(value) for key, value in row._mapping.items()}

    def _load_items(self, conn: Connection, invoice_ids: list[str]) -> dict[str, list]:
        items: dict[str, list] = {invoice_id: [] for invoice_id in invoice_ids}
        if not invoice_ids:
            return items
        rows = conn.execute(
            select(invoice_items_table)
            .where(invoice_items_table.c.invoice_id.in_(invoice_ids))
            .order_by(invoice_items_table.c.invoice_id, invoice_items_table.c.position)
        )
        for row in rows:
            items[row.invoice_id].append(
                {field: _from_db(getattr(row, field)) for field in ITEM_FIELDS}
            )
        return items

    def _get_sync(self, collection: Collection, record_id: str) -> Record:
        table = TABLES[collection]
        with self.engine.connect() as conn:
            row = conn.execute(select(table).where(table.c.id == record_id)).first()
            if row is None:
                raise NotFoundError(f"{collection.value} record not found: {record_id}")
            record = self._row_to_record(row)
            if collection == Collection.INVOICES:
                record["items"] = self._load_items(conn, [record_id])[record_id]
            return record

    def _list_sync(
        self,
        collection: Collection,
        order_by: Optional[str],
        descending: bool,
    ) -> list[Record]:
        table = TABLES[collection]
        stmt = select(table)
        if order_by is not None:
            if order_by not in table.c:
                raise ValueError(f"Cannot order {collection.value} by {order_by!r}")
            column = table.c[order_by]
            stmt = stmt.order_by(column.desc() if descending else column.asc())
        with self.engine.connect() as conn:
            records = [self._row_to_record(row) for row in conn.execute(stmt)]
            if collection == Collection.INVOICES:
                items = self._load_items(conn, [r["id"] for r in records])
                for record in records:
                    record["items"] = items[record["id"]]
            return records

    async def get(self, collection: Collection, record_id: str) -> Record:
        return await self._run(self._get_sync, collection, record_id)

    async def list_all(
        self,
        collection: Collection,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> list[Record]:
        return await self._run(self._list_sync, collection, order_by, descending)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _row_values(self, collection: Collection, record: Record) -> dict:
        table = TABLES[collection]
        return {
            key: _to_db(table.c[key], value)
            for key, value in record.items()
            if key in table.c and key != "id"
        }

    def _write_items(self, conn: Connection, invoice_id: str, items: list) -> None:
        conn.execute(
            delete(invoice_items_table).where(invoice_items_table.c.invoice_id == invoice_id)
        )
        for position, item in enumerate(items):
            conn.execute(
                insert(invoice_items_table).values(
                    invoice_id=invoice_id,
                    position=position,
                    description=item["description"],
                    quantity=Decimal(str(item["quantity"])),
                    price=Decimal(str(item["price"])),
                )
            )

    def _exists(self, conn: Connection, collection: Collection, record_id: str) -> bool:
        table = TABLES[collection]
        return conn.execute(select(table.c.id).where(table.c.id == record_id)).first() is not None

    def _insert(self, conn: Connection, op: Insert) -> None:
        if self._exists(conn, op.collection, op.id):
            raise DuplicateError(f"{op.collection.value} record already exists: {op.id}")
        table = TABLES[op.collection]
        conn.execute(insert(table).values(id=op.id, **self._row_values(op.collection, op.record)))
        if op.collection == Collection.INVOICES:
            self._write_items(conn, op.id, op.record.get("items", []))

    def _update(self, conn: Connection, op: Update) -> None:
        table = TABLES[op.collection]
        stmt = update(table).where(table.c.id == op.id)
        for key, expected in op.expect.items():
            stmt = stmt.where(table.c[key] == _to_db(table.c[key], expected))
        result = conn.execute(stmt.values(**self._row_values(op.collection, op.changes)))
        if result.rowcount == 0:
            if not self._exists(conn, op.collection, op.id):
                raise NotFoundError(f"{op.collection.value} record not found: {op.id}")
            raise PreconditionFailedError(
                f"{op.collection.value} {op.id} does not match {op.expect}"
            )

    def _increment(self, conn: Connection, op: Increment) -> None:
        table = TABLES[op.collection]
        column = table.c[op.field]
        new_value = column + op.delta
        if op.floor is not None:
            new_value = case((new_value < op.floor, op.floor), else_=new_value)
        result = conn.execute(
            update(table).where(table.c.id == op.id).values({op.field: new_value})
        )
        if result.rowcount == 0:
            raise NotFoundError(f"{op.collection.value} record not found: {op.id}")

    def _apply_sync(self, operations: Sequence[Operation]) -> None:
        with self.engine.begin() as conn:
            for op in operations:
                if isinstance(op, Insert):
                    self._insert(conn, op)
                elif isinstance(op, Update):
                    self._update(conn, op)
                elif isinstance(op, Increment):
                    self._increment(conn, op)
                else:
                    raise TypeError(f"Unsupported operation: {type(op).__name__}")

    def _put_sync(self, collection: Collection, record_id: str, record: Record) -> None:
        table = TABLES[collection]
        values = self._row_values(collection, record)
        with self.engine.begin() as conn:
            if self._exists(conn, collection, record_id):
                conn.execute(update(table).where(table.c.id == record_id).values(**values))
            else:
                conn.execute(insert(table).values(id=record_id, **values))
            if collection == Collection.INVOICES and "items" in record:
                self._write_items(conn, record_id, record["items"])

    async def put(self, collection: Collection, record_id: str, record: Record) -> None:
        await self._run(self._put_sync, collection, record_id, record)

    async def atomic_apply(self, operations: Sequence[Operation]) -> None:
        await self._run(self._apply_sync, list(operations))

    # ------------------------------------------------------------------
    # Health & plumbing
    # ------------------------------------------------------------------

    def _ping(self) -> None:
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))

    async def health(self) -> dict:
        try:
            await self._run(self._ping)
        except LedgerError as e:
            logger.warning("ledger_store_unreachable", backend="sql", error=str(e))
            return {"status": "online", "database": "unreachable", "error": str(e)}
        return {"status": "online", "database": "connected"}

    async def _run(self, fn, *args):
        """
        Run blocking database work in a worker thread.

        SQLAlchemy errors are translated here; ledger errors raised by
        the work itself pass through untouched.
        """
        try:
            return await asyncio.to_thread(fn, *args)
        except LedgerError:
            raise
        except OperationalError as e:
            raise StorageUnavailableError(f"Database unavailable: {e}") from e
        except DBAPIError as e:
            if e.connection_invalidated:
                raise StorageUnavailableError(f"Database connection lost: {e}") from e
            raise StorageError(f"Database error: {e}") from e
        except SQLAlchemyError as e:
            raise StorageError(f"Database error: {e}") from e
