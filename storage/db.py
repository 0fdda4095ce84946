"""SQLite persistence for the invoice ingestion pipeline.

This module handles all database operations the pipeline performs:
- Schema initialization
- Client lookups (tax id, normalized name search), creation and updates
- Invoice lookups by fiscal UUID, creation and updates
- Line item creation and listing
- Operations and their attached files

Every store method opens its own connection and commits before returning,
so each attachment's writes are independent. sqlite3 errors are re-raised as
PersistenceFailure.
"""

import sqlite3
import uuid
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel

from client_resolver.normalize import normalize_client_name
from core.config import DEFAULT_CONFIG
from core.errors import PersistenceFailure
from core.observability.logging import get_logger
from models.records import (
    AttachmentRecord,
    ClientRecord,
    InvoiceLineItemRecord,
    InvoiceRecord,
    OperationRecord,
)


logger = get_logger(__name__)

DEFAULT_DB_PATH = DEFAULT_CONFIG.db_path

RecordT = TypeVar("RecordT", bound=BaseModel)


SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS clients (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        email TEXT,
        legal_name TEXT,
        tax_id TEXT,
        currency TEXT NOT NULL DEFAULT 'MXN',
        address TEXT,
        city TEXT,
        state TEXT,
        postal_code TEXT,
        country TEXT,
        fiscal_regime TEXT,
        cfdi_usage TEXT,
        notes TEXT,
        created_from_invoice INTEGER NOT NULL DEFAULT 0,
        source_attachment_id TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_clients_tax_id ON clients(tax_id)",
    """
    CREATE TABLE IF NOT EXISTS operations (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL DEFAULT '',
        client_id TEXT REFERENCES clients(id),
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS operation_files (
        id TEXT PRIMARY KEY,
        operation_id TEXT NOT NULL REFERENCES operations(id),
        filename TEXT NOT NULL,
        mime_type TEXT,
        size_bytes INTEGER,
        is_inline INTEGER NOT NULL DEFAULT 0,
        storage_key TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_operation_files_operation ON operation_files(operation_id)",
    """
    CREATE TABLE IF NOT EXISTS invoices (
        id TEXT PRIMARY KEY,
        invoice_number TEXT NOT NULL,
        fiscal_uuid TEXT UNIQUE,
        operation_id TEXT REFERENCES operations(id),
        client_id TEXT REFERENCES clients(id),
        owner_id TEXT,
        issue_date TEXT,
        due_date TEXT,
        status TEXT NOT NULL DEFAULT 'pending',
        subtotal TEXT NOT NULL DEFAULT '0',
        tax TEXT NOT NULL DEFAULT '0',
        total TEXT NOT NULL DEFAULT '0',
        currency TEXT NOT NULL DEFAULT 'MXN',
        issuer_tax_id TEXT,
        issuer_name TEXT,
        issuer_fiscal_regime TEXT,
        payment_method TEXT,
        payment_form TEXT,
        cfdi_usage TEXT,
        created_automatically INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        updated_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS invoice_line_items (
        id TEXT PRIMARY KEY,
        invoice_id TEXT NOT NULL REFERENCES invoices(id),
        product_code TEXT,
        description TEXT NOT NULL DEFAULT '',
        quantity TEXT NOT NULL DEFAULT '0',
        unit_code TEXT,
        unit_price TEXT NOT NULL DEFAULT '0',
        amount TEXT NOT NULL DEFAULT '0',
        tax_rate TEXT,
        tax_amount TEXT NOT NULL DEFAULT '0',
        tax_object TEXT,
        identification TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_invoice_line_items_invoice ON invoice_line_items(invoice_id)",
]


def _to_db(value: Any) -> Any:
    """Convert a model value to a SQLite-compatible value."""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, Path):
        return str(value)
    return value


def _row_to_model(row: sqlite3.Row, model: Type[RecordT]) -> RecordT:
    """Convert a database row to a record model."""
    return model.model_validate(dict(row))


class SqliteStore:
    """Persistence collaborator backed by a SQLite file.

    Example:
        store = SqliteStore("invoice_intake.db")
        store.init_db()
        client = store.find_client_by_tax_id("XAXX010101000")
    """

    def __init__(self, db_path: Path = DEFAULT_DB_PATH):
        self.db_path = Path(db_path)

    # =========================================================================
    # Connection handling
    # =========================================================================

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.create_function("normalize_name", 1, normalize_client_name, deterministic=True)
        return conn

    def _query(self, operation: str, sql: str, params: tuple = ()) -> List[sqlite3.Row]:
        """Run a read query and return all rows."""
        try:
            conn = self._connect()
            try:
                return conn.execute(sql, params).fetchall()
            finally:
                conn.close()
        except sqlite3.Error as exc:
            raise PersistenceFailure(f"{operation} failed: {exc}", operation=operation) from exc

    def _execute(self, operation: str, sql: str, params: tuple = ()) -> int:
        """Run a write statement, commit, and return the affected row count."""
        try:
            conn = self._connect()
            try:
                cursor = conn.execute(sql, params)
                conn.commit()
                return cursor.rowcount
            finally:
                conn.close()
        except sqlite3.Error as exc:
            raise PersistenceFailure(f"{operation} failed: {exc}", operation=operation) from exc

    def _insert(self, operation: str, table: str, record: BaseModel) -> None:
        data = {k: _to_db(v) for k, v in record.model_dump().items()}
        columns = ", ".join(data)
        placeholders = ", ".join("?" for _ in data)
        self._execute(
            operation,
            f"INSERT INTO {table} ({columns}) VALUES ({placeholders})",
            tuple(data.values()),
        )

    def _update(
        self,
        operation: str,
        table: str,
        model: Type[BaseModel],
        record_id: str,
        updates: Dict[str, Any],
    ) -> None:
        unknown = set(updates) - set(model.model_fields) - {"id"}
        if unknown:
            raise ValueError(f"Unknown {table} columns: {sorted(unknown)}")
        updates = {k: v for k, v in updates.items() if k != "id"}
        if "updated_at" in model.model_fields:
            updates["updated_at"] = datetime.utcnow()
        if not updates:
            return

        assignments = ", ".join(f"{column} = ?" for column in updates)
        params = tuple(_to_db(v) for v in updates.values()) + (record_id,)
        rowcount = self._execute(operation, f"UPDATE {table} SET {assignments} WHERE id = ?", params)
        if rowcount == 0:
            raise PersistenceFailure(f"{operation}: no {table} row with id {record_id}", operation=operation)

    def init_db(self) -> None:
        """Initialize database tables.

        Creates:
        - clients: customers, indexed by tax id
        - operations / operation_files: freight operations and their attachments
        - invoices: invoice headers, unique by fiscal UUID
        - invoice_line_items: line items per invoice
        """
        try:
            conn = self._connect()
            try:
                cursor = conn.cursor()
                for statement in SCHEMA:
                    cursor.execute(statement)
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as exc:
            raise PersistenceFailure(f"init_db failed: {exc}", operation="init_db") from exc

        logger.info(f"Database initialized at {self.db_path}")

    # =========================================================================
    # Clients
    # =========================================================================

    def find_client_by_tax_id(self, tax_id: str) -> Optional[ClientRecord]:
        rows = self._query(
            "find_client_by_tax_id",
            "SELECT * FROM clients WHERE tax_id = ? ORDER BY created_at, rowid LIMIT 1",
            (tax_id,),
        )
        return _row_to_model(rows[0], ClientRecord) if rows else None

    def search_clients_by_name(self, normalized_name: str, limit: int = 5) -> List[ClientRecord]:
        """Clients whose normalized name or legal name contains `normalized_name`."""
        pattern = f"%{normalized_name}%"
        rows = self._query(
            "search_clients_by_name",
            """
            SELECT * FROM clients
            WHERE normalize_name(name) LIKE ? OR normalize_name(legal_name) LIKE ?
            ORDER BY created_at, rowid
            LIMIT ?
            """,
            (pattern, pattern, limit),
        )
        return [_row_to_model(row, ClientRecord) for row in rows]

    def get_client(self, client_id: str) -> Optional[ClientRecord]:
        rows = self._query("get_client", "SELECT * FROM clients WHERE id = ?", (client_id,))
        return _row_to_model(rows[0], ClientRecord) if rows else None

    def list_clients(self) -> List[ClientRecord]:
        rows = self._query("list_clients", "SELECT * FROM clients ORDER BY created_at, rowid")
        return [_row_to_model(row, ClientRecord) for row in rows]

    def create_client(self, client: ClientRecord) -> ClientRecord:
        """Insert a client; id and created_at are assigned when missing."""
        client = client.model_copy(update={
            "id": client.id or str(uuid.uuid4()),
            "created_at": client.created_at or datetime.utcnow(),
        })
        self._insert("create_client", "clients", client)
        return client

    def update_client(self, client_id: str, updates: Dict[str, Any]) -> ClientRecord:
        self._update("update_client", "clients", ClientRecord, client_id, updates)
        return self.get_client(client_id)

    # =========================================================================
    # Invoices
    # =========================================================================

    def find_invoice_by_fiscal_uuid(self, fiscal_uuid: str) -> Optional[InvoiceRecord]:
        rows = self._query(
            "find_invoice_by_fiscal_uuid",
            "SELECT * FROM invoices WHERE UPPER(fiscal_uuid) = UPPER(?)",
            (fiscal_uuid,),
        )
        return _row_to_model(rows[0], InvoiceRecord) if rows else None

    def get_invoice(self, invoice_id: str) -> Optional[InvoiceRecord]:
        rows = self._query("get_invoice", "SELECT * FROM invoices WHERE id = ?", (invoice_id,))
        return _row_to_model(rows[0], InvoiceRecord) if rows else None

    def list_invoices(self, operation_id: Optional[str] = None) -> List[InvoiceRecord]:
        if operation_id is None:
            rows = self._query("list_invoices", "SELECT * FROM invoices ORDER BY created_at, rowid")
        else:
            rows = self._query(
                "list_invoices",
                "SELECT * FROM invoices WHERE operation_id = ? ORDER BY created_at, rowid",
                (operation_id,),
            )
        return [_row_to_model(row, InvoiceRecord) for row in rows]

    def create_invoice(self, invoice: InvoiceRecord) -> InvoiceRecord:
        """Insert an invoice.

        Raises:
            PersistenceFailure: Also when the fiscal UUID already exists
        """
        invoice = invoice.model_copy(update={
            "id": invoice.id or str(uuid.uuid4()),
            "created_at": invoice.created_at or datetime.utcnow(),
        })
        self._insert("create_invoice", "invoices", invoice)
        return invoice

    def update_invoice(self, invoice_id: str, updates: Dict[str, Any]) -> InvoiceRecord:
        self._update("update_invoice", "invoices", InvoiceRecord, invoice_id, updates)
        return self.get_invoice(invoice_id)

    # =========================================================================
    # Line items
    # =========================================================================

    def create_line_item(self, item: InvoiceLineItemRecord) -> InvoiceLineItemRecord:
        item = item.model_copy(update={"id": item.id or str(uuid.uuid4())})
        self._insert("create_line_item", "invoice_line_items", item)
        return item

    def create_line_items(self, items: List[InvoiceLineItemRecord]) -> List[InvoiceLineItemRecord]:
        """Insert several line items in one transaction; none are kept if any insert fails."""
        items = [item.model_copy(update={"id": item.id or str(uuid.uuid4())}) for item in items]
        if not items:
            return items

        columns = list(InvoiceLineItemRecord.model_fields)
        sql = (
            f"INSERT INTO invoice_line_items ({', '.join(columns)}) "
            f"VALUES ({', '.join('?' for _ in columns)})"
        )
        rows = [tuple(_to_db(getattr(item, column)) for column in columns) for item in items]
        try:
            conn = self._connect()
            try:
                with conn:
                    conn.executemany(sql, rows)
            finally:
                conn.close()
        except sqlite3.Error as exc:
            raise PersistenceFailure(f"create_line_items failed: {exc}", operation="create_line_items") from exc
        return items

    def list_line_items(self, invoice_id: str) -> List[InvoiceLineItemRecord]:
        rows = self._query(
            "list_line_items",
            "SELECT * FROM invoice_line_items WHERE invoice_id = ? ORDER BY rowid",
            (invoice_id,),
        )
        return [_row_to_model(row, InvoiceLineItemRecord) for row in rows]

    # =========================================================================
    # Operations & attachments
    # =========================================================================

    def create_operation(self, operation: OperationRecord) -> OperationRecord:
        operation = operation.model_copy(update={
            "id": operation.id or str(uuid.uuid4()),
            "created_at": operation.created_at or datetime.utcnow(),
        })
        self._insert("create_operation", "operations", operation)
        return operation

    def get_operation(self, operation_id: str) -> Optional[OperationRecord]:
        rows = self._query("get_operation", "SELECT * FROM operations WHERE id = ?", (operation_id,))
        return _row_to_model(rows[0], OperationRecord) if rows else None

    def list_operations(self, limit: Optional[int] = None, offset: int = 0) -> List[OperationRecord]:
        # LIMIT -1 means no limit in SQLite
        rows = self._query(
            "list_operations",
            "SELECT * FROM operations ORDER BY created_at, rowid LIMIT ? OFFSET ?",
            (-1 if limit is None else limit, offset),
        )
        return [_row_to_model(row, OperationRecord) for row in rows]

    def list_operations_without_client(self, limit: int = 50) -> List[OperationRecord]:
        rows = self._query(
            "list_operations_without_client",
            "SELECT * FROM operations WHERE client_id IS NULL ORDER BY created_at, rowid LIMIT ?",
            (limit,),
        )
        return [_row_to_model(row, OperationRecord) for row in rows]

    def update_operation(self, operation_id: str, updates: Dict[str, Any]) -> OperationRecord:
        self._update("update_operation", "operations", OperationRecord, operation_id, updates)
        return self.get_operation(operation_id)

    def add_attachment(self, attachment: AttachmentRecord) -> AttachmentRecord:
        attachment = attachment.model_copy(update={
            "id": attachment.id or str(uuid.uuid4()),
            "created_at": attachment.created_at or datetime.utcnow(),
        })
        self._insert("add_attachment", "operation_files", attachment)
        return attachment

    def list_attachments(self, operation_id: str) -> List[AttachmentRecord]:
        rows = self._query(
            "list_attachments",
            "SELECT * FROM operation_files WHERE operation_id = ? ORDER BY created_at, rowid",
            (operation_id,),
        )
        return [_row_to_model(row, AttachmentRecord) for row in rows]
