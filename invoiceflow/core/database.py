"""
Invoiceflow Database

Single store for companies, users, approval rules, invoices, notifications,
audit log, accounting entries and extraction logs. SQLite by default;
Postgres when DATABASE_URL points at one.
"""
from __future__ import annotations

import json
import logging
import os
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from invoiceflow.services.errors import ConflictError, DependencyError

try:
    import psycopg
    from psycopg.rows import dict_row
    HAS_POSTGRES = True
except ImportError:  # pragma: no cover
    psycopg = None
    dict_row = None
    HAS_POSTGRES = False


logger = logging.getLogger(__name__)

_INTEGRITY_ERRORS: tuple = (sqlite3.IntegrityError,)
_STORE_ERRORS: tuple = (sqlite3.Error,)
if HAS_POSTGRES:  # pragma: no cover
    _INTEGRITY_ERRORS += (psycopg.IntegrityError,)
    _STORE_ERRORS += (psycopg.Error,)


class DuplicateRecordError(ConflictError):
    """A uniqueness constraint rejected the write."""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex}"


class InvoiceflowDB:
    def __init__(self, db_path: str = "invoiceflow.db", dsn: Optional[str] = None):
        self.dsn = dsn if dsn is not None else os.getenv("DATABASE_URL")
        self.db_path = db_path
        normalized = (self.dsn or "").strip().lower()
        self.allow_sqlite_fallback = str(
            os.getenv("INVOICEFLOW_DB_FALLBACK_SQLITE", "true")
        ).strip().lower() not in {"0", "false", "no", "off"}
        self.use_postgres = bool(
            HAS_POSTGRES
            and normalized
            and (normalized.startswith("postgres://") or normalized.startswith("postgresql://"))
        )
        self._initialized = False
        self._fallback_warned = False

    @classmethod
    def from_env(cls) -> "InvoiceflowDB":
        return cls(db_path=os.getenv("INVOICEFLOW_DB_PATH", "invoiceflow.db"))

    def _sqlite_connection(self):
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _open(self):
        if self.use_postgres:
            try:
                return psycopg.connect(self.dsn, row_factory=dict_row)
            except Exception as exc:
                if not self.allow_sqlite_fallback:
                    raise DependencyError("database", str(exc))
                if not self._fallback_warned:
                    logger.warning(
                        "Postgres unavailable (%s). Falling back to SQLite at %s. "
                        "Set INVOICEFLOW_DB_FALLBACK_SQLITE=false to disable fallback.",
                        exc,
                        self.db_path,
                    )
                    self._fallback_warned = True
                self.use_postgres = False
        try:
            return self._sqlite_connection()
        except sqlite3.Error as exc:
            raise DependencyError("database", str(exc))

    @contextmanager
    def connect(self):
        conn = self._open()
        try:
            yield conn
        except _INTEGRITY_ERRORS as exc:
            conn.rollback()
            raise DuplicateRecordError("Record already exists", detail=str(exc))
        except _STORE_ERRORS as exc:
            logger.error("Store operation failed: %s", exc)
            raise DependencyError("database", str(exc))
        finally:
            conn.close()

    def _prepare_sql(self, sql: str) -> str:
        if self.use_postgres:
            return sql.replace("?", "%s")
        return sql

    def initialize(self) -> None:
        if self._initialized:
            return
        with self.connect() as conn:
            cur = conn.cursor()

            cur.execute("""
                CREATE TABLE IF NOT EXISTS companies (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    tax_id TEXT,
                    auto_approve_limit TEXT NOT NULL DEFAULT '0',
                    default_debit_account TEXT,
                    default_credit_account TEXT,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    created_at TEXT,
                    updated_at TEXT
                )
            """)

            cur.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id TEXT PRIMARY KEY,
                    company_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    email TEXT NOT NULL UNIQUE,
                    role TEXT NOT NULL DEFAULT 'user',
                    department TEXT,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    password_hash TEXT,
                    created_at TEXT,
                    updated_at TEXT
                )
            """)

            cur.execute("""
                CREATE TABLE IF NOT EXISTS approval_rules (
                    id TEXT PRIMARY KEY,
                    company_id TEXT NOT NULL,
                    approval_level INTEGER NOT NULL,
                    min_amount TEXT NOT NULL,
                    max_amount TEXT,
                    auto_approve INTEGER NOT NULL DEFAULT 0,
                    approver_id TEXT,
                    escalation_approver_id TEXT,
                    department_codes TEXT,
                    approval_deadline_hours INTEGER NOT NULL DEFAULT 48,
                    priority INTEGER NOT NULL DEFAULT 10,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    created_at TEXT,
                    updated_at TEXT,
                    UNIQUE(company_id, approval_level)
                )
            """)

            cur.execute("""
                CREATE TABLE IF NOT EXISTS invoices (
                    id TEXT PRIMARY KEY,
                    company_id TEXT NOT NULL,
                    invoice_number TEXT,
                    supplier_name TEXT,
                    supplier_tax_id TEXT,
                    invoice_series TEXT,
                    invoice_date TEXT,
                    due_date TEXT,
                    total_amount TEXT,
                    tax_amount TEXT,
                    discount_amount TEXT,
                    description TEXT,
                    po_number TEXT,
                    status TEXT NOT NULL,
                    approval_status TEXT NOT NULL,
                    approver_id TEXT,
                    approved_at TEXT,
                    approval_notes TEXT,
                    assigned_approver_id TEXT,
                    approval_level INTEGER,
                    debit_account_code TEXT,
                    credit_account_code TEXT,
                    original_file_url TEXT,
                    file_type TEXT,
                    extraction_log_id TEXT,
                    variance_detected INTEGER NOT NULL DEFAULT 0,
                    variance_description TEXT,
                    deleted_at TEXT,
                    deleted_by TEXT,
                    deletion_reason TEXT,
                    created_by TEXT,
                    created_at TEXT,
                    updated_at TEXT,
                    UNIQUE(company_id, invoice_number)
                )
            """)

            cur.execute("""
                CREATE TABLE IF NOT EXISTS notifications (
                    id TEXT PRIMARY KEY,
                    company_id TEXT NOT NULL,
                    user_id TEXT NOT NULL,
                    invoice_id TEXT,
                    type TEXT NOT NULL,
                    title TEXT NOT NULL,
                    message TEXT NOT NULL,
                    is_read INTEGER NOT NULL DEFAULT 0,
                    read_at TEXT,
                    created_at TEXT
                )
            """)

            cur.execute("""
                CREATE TABLE IF NOT EXISTS audit_log (
                    id TEXT PRIMARY KEY,
                    company_id TEXT NOT NULL,
                    actor_id TEXT,
                    invoice_id TEXT,
                    resource_type TEXT,
                    resource_id TEXT,
                    action TEXT NOT NULL,
                    old_values TEXT,
                    new_values TEXT,
                    checksum TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
            """)

            cur.execute("""
                CREATE TABLE IF NOT EXISTS accounting_entries (
                    id TEXT PRIMARY KEY,
                    company_id TEXT NOT NULL,
                    invoice_id TEXT NOT NULL,
                    debit_account_code TEXT,
                    credit_account_code TEXT,
                    debit_amount TEXT NOT NULL,
                    credit_amount TEXT NOT NULL,
                    entry_date TEXT NOT NULL,
                    description TEXT,
                    erp_status TEXT NOT NULL DEFAULT 'pending',
                    created_by TEXT,
                    created_at TEXT
                )
            """)

            cur.execute("""
                CREATE TABLE IF NOT EXISTS extraction_logs (
                    id TEXT PRIMARY KEY,
                    company_id TEXT NOT NULL,
                    file_path TEXT,
                    file_type TEXT,
                    extraction_status TEXT NOT NULL,
                    parsed_data TEXT,
                    error_message TEXT,
                    processing_time_ms INTEGER,
                    created_by TEXT,
                    created_at TEXT,
                    updated_at TEXT
                )
            """)

            cur.execute("CREATE INDEX IF NOT EXISTS idx_users_company ON users(company_id)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_rules_company_active ON approval_rules(company_id, is_active)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_invoices_company_created ON invoices(company_id, created_at)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_invoices_approval ON invoices(company_id, approval_status)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_notifications_user ON notifications(user_id, is_read)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_audit_invoice ON audit_log(invoice_id, created_at)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_audit_company ON audit_log(company_id, created_at)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_entries_invoice ON accounting_entries(invoice_id)")

            conn.commit()
        self._initialized = True

    # ------------------------------------------------------------------
    # Generic helpers
    # ------------------------------------------------------------------

    def _insert(self, table: str, row: Dict[str, Any]) -> None:
        columns = ", ".join(row.keys())
        placeholders = ", ".join("?" for _ in row)
        sql = self._prepare_sql(f"INSERT INTO {table} ({columns}) VALUES ({placeholders})")
        with self.connect() as conn:
            cur = conn.cursor()
            cur.execute(sql, tuple(row.values()))
            conn.commit()

    def _fetch_one(self, sql: str, params: Iterable[Any]) -> Optional[Dict[str, Any]]:
        with self.connect() as conn:
            cur = conn.cursor()
            cur.execute(self._prepare_sql(sql), tuple(params))
            row = cur.fetchone()
        return dict(row) if row else None

    def _fetch_all(self, sql: str, params: Iterable[Any]) -> List[Dict[str, Any]]:
        with self.connect() as conn:
            cur = conn.cursor()
            cur.execute(self._prepare_sql(sql), tuple(params))
            rows = cur.fetchall()
        return [dict(row) for row in rows]

    def _update(
        self,
        table: str,
        record_id: str,
        fields: Dict[str, Any],
        conditions: Optional[Dict[str, Any]] = None,
        touch: bool = True,
    ) -> bool:
        if not fields:
            return False
        fields = dict(fields)
        if touch:
            fields["updated_at"] = _now()
        set_clause = ", ".join(f"{k} = ?" for k in fields.keys())
        where = ["id = ?"]
        params: List[Any] = [*fields.values(), record_id]
        for clause, value in (conditions or {}).items():
            where.append(clause)
            params.append(value)
        sql = self._prepare_sql(f"UPDATE {table} SET {set_clause} WHERE {' AND '.join(where)}")
        with self.connect() as conn:
            cur = conn.cursor()
            cur.execute(sql, tuple(params))
            conn.commit()
            return cur.rowcount > 0

    # ------------------------------------------------------------------
    # Companies
    # ------------------------------------------------------------------

    def create_company(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        self.initialize()
        now = _now()
        company_id = payload.get("id") or _new_id("CMP")
        self._insert("companies", {
            "id": company_id,
            "name": payload["name"],
            "tax_id": payload.get("tax_id"),
            "auto_approve_limit": str(payload.get("auto_approve_limit") or "0"),
            "default_debit_account": payload.get("default_debit_account"),
            "default_credit_account": payload.get("default_credit_account"),
            "is_active": 1 if payload.get("is_active", True) else 0,
            "created_at": now,
            "updated_at": now,
        })
        return self.get_company(company_id)

    def get_company(self, company_id: str) -> Optional[Dict[str, Any]]:
        self.initialize()
        return self._fetch_one("SELECT * FROM companies WHERE id = ?", (company_id,))

    def update_company(self, company_id: str, **fields) -> bool:
        self.initialize()
        return self._update("companies", company_id, fields)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        self.initialize()
        now = _now()
        user_id = payload.get("id") or _new_id("USR")
        self._insert("users", {
            "id": user_id,
            "company_id": payload["company_id"],
            "name": payload["name"],
            "email": payload["email"],
            "role": payload.get("role") or "user",
            "department": payload.get("department"),
            "is_active": 1 if payload.get("is_active", True) else 0,
            "password_hash": payload.get("password_hash"),
            "created_at": now,
            "updated_at": now,
        })
        return self.get_user(user_id)

    def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        self.initialize()
        return self._fetch_one("SELECT * FROM users WHERE id = ?", (user_id,))

    def get_user_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        self.initialize()
        return self._fetch_one("SELECT * FROM users WHERE email = ?", (email,))

    def list_users(self, company_id: str, include_inactive: bool = True) -> List[Dict[str, Any]]:
        self.initialize()
        sql = "SELECT * FROM users WHERE company_id = ?"
        if not include_inactive:
            sql += " AND is_active = 1"
        return self._fetch_all(sql + " ORDER BY name ASC", (company_id,))

    def update_user(self, user_id: str, **fields) -> bool:
        self.initialize()
        if "is_active" in fields:
            fields["is_active"] = 1 if fields["is_active"] else 0
        return self._update("users", user_id, fields)

    # ------------------------------------------------------------------
    # Approval rules
    # ------------------------------------------------------------------

    def create_approval_rule(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        self.initialize()
        now = _now()
        rule_id = payload.get("id") or _new_id("RULE")
        max_amount = payload.get("max_amount")
        self._insert("approval_rules", {
            "id": rule_id,
            "company_id": payload["company_id"],
            "approval_level": int(payload["approval_level"]),
            "min_amount": str(payload["min_amount"]),
            "max_amount": None if max_amount is None else str(max_amount),
            "auto_approve": 1 if payload.get("auto_approve") else 0,
            "approver_id": payload.get("approver_id"),
            "escalation_approver_id": payload.get("escalation_approver_id"),
            "department_codes": json.dumps(list(payload.get("department_codes") or [])),
            "approval_deadline_hours": int(payload.get("approval_deadline_hours") or 48),
            "priority": int(payload.get("priority") or 10),
            "is_active": 1 if payload.get("is_active", True) else 0,
            "created_at": now,
            "updated_at": now,
        })
        return self.get_approval_rule(rule_id)

    def get_approval_rule(self, rule_id: str) -> Optional[Dict[str, Any]]:
        self.initialize()
        return self._fetch_one("SELECT * FROM approval_rules WHERE id = ?", (rule_id,))

    def list_approval_rules(self, company_id: str, active_only: bool = False) -> List[Dict[str, Any]]:
        self.initialize()
        sql = "SELECT * FROM approval_rules WHERE company_id = ?"
        if active_only:
            sql += " AND is_active = 1"
        return self._fetch_all(sql + " ORDER BY approval_level ASC", (company_id,))

    def update_approval_rule(self, rule_id: str, **fields) -> bool:
        self.initialize()
        for key in ("auto_approve", "is_active"):
            if key in fields:
                fields[key] = 1 if fields[key] else 0
        for key in ("min_amount", "max_amount"):
            if key in fields and fields[key] is not None:
                fields[key] = str(fields[key])
        if "department_codes" in fields:
            fields["department_codes"] = json.dumps(list(fields["department_codes"] or []))
        return self._update("approval_rules", rule_id, fields)

    # ------------------------------------------------------------------
    # Invoices
    # ------------------------------------------------------------------

    _INVOICE_AMOUNT_FIELDS = ("total_amount", "tax_amount", "discount_amount")

    def _invoice_values(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        values = dict(fields)
        for key in self._INVOICE_AMOUNT_FIELDS:
            if key in values and values[key] is not None:
                values[key] = str(values[key])
        if "variance_detected" in values:
            values["variance_detected"] = 1 if values["variance_detected"] else 0
        return values

    def create_invoice(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        self.initialize()
        now = _now()
        invoice_id = payload.get("id") or _new_id("INV")
        row = self._invoice_values(payload)
        row.update({
            "id": invoice_id,
            "status": payload.get("status") or "pending",
            "approval_status": payload.get("approval_status") or "pending",
            "variance_detected": 1 if payload.get("variance_detected") else 0,
            "created_at": now,
            "updated_at": now,
        })
        self._insert("invoices", row)
        return self.get_invoice(invoice_id)

    def get_invoice(self, invoice_id: str) -> Optional[Dict[str, Any]]:
        self.initialize()
        return self._fetch_one("SELECT * FROM invoices WHERE id = ?", (invoice_id,))

    def get_invoice_by_number(self, company_id: str, invoice_number: str) -> Optional[Dict[str, Any]]:
        self.initialize()
        return self._fetch_one(
            "SELECT * FROM invoices WHERE company_id = ? AND invoice_number = ?",
            (company_id, invoice_number),
        )

    def update_invoice(
        self,
        invoice_id: str,
        expected_approval_status: Optional[str] = None,
        exclude_status: Optional[str] = None,
        **fields,
    ) -> bool:
        """Single-statement update guarded on the expected prior state.

        Returns False when no row matched, which callers treat as a lost race.
        """
        self.initialize()
        conditions: Dict[str, Any] = {}
        if expected_approval_status is not None:
            conditions["approval_status = ?"] = expected_approval_status
        if exclude_status is not None:
            conditions["status <> ?"] = exclude_status
        return self._update("invoices", invoice_id, self._invoice_values(fields), conditions)

    def _invoice_filters(self, company_id: str, filters: Dict[str, Any]):
        where = ["company_id = ?"]
        params: List[Any] = [company_id]
        status = filters.get("status")
        if status:
            where.append("status = ?")
            params.append(status)
        else:
            where.append("status <> 'deleted'")
        if filters.get("approval_status"):
            where.append("approval_status = ?")
            params.append(filters["approval_status"])
        if filters.get("created_from"):
            where.append("created_at >= ?")
            params.append(filters["created_from"])
        if filters.get("created_before"):
            where.append("created_at < ?")
            params.append(filters["created_before"])
        if filters.get("supplier_name"):
            where.append("LOWER(supplier_name) LIKE ?")
            params.append(f"%{str(filters['supplier_name']).lower()}%")
        if filters.get("assigned_approver_id"):
            where.append("assigned_approver_id = ?")
            params.append(filters["assigned_approver_id"])
        return " AND ".join(where), params

    def list_invoices(
        self,
        company_id: str,
        filters: Optional[Dict[str, Any]] = None,
        limit: int = 10,
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        self.initialize()
        where, params = self._invoice_filters(company_id, filters or {})
        sql = f"SELECT * FROM invoices WHERE {where} ORDER BY created_at DESC LIMIT ? OFFSET ?"
        return self._fetch_all(sql, (*params, limit, offset))

    def count_invoices(self, company_id: str, filters: Optional[Dict[str, Any]] = None) -> int:
        self.initialize()
        where, params = self._invoice_filters(company_id, filters or {})
        row = self._fetch_one(f"SELECT COUNT(*) AS total FROM invoices WHERE {where}", params)
        return int(row["total"]) if row else 0

    def list_invoice_summaries(self, company_id: str) -> List[Dict[str, Any]]:
        """Lightweight rows for dashboard aggregation (deleted excluded)."""
        self.initialize()
        return self._fetch_all(
            "SELECT id, status, approval_status, total_amount, assigned_approver_id, created_at "
            "FROM invoices WHERE company_id = ? AND status <> 'deleted'",
            (company_id,),
        )

    # ------------------------------------------------------------------
    # Accounting entries
    # ------------------------------------------------------------------

    def create_accounting_entry(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        self.initialize()
        entry_id = payload.get("id") or _new_id("JE")
        self._insert("accounting_entries", {
            "id": entry_id,
            "company_id": payload["company_id"],
            "invoice_id": payload["invoice_id"],
            "debit_account_code": payload.get("debit_account_code"),
            "credit_account_code": payload.get("credit_account_code"),
            "debit_amount": str(payload["debit_amount"]),
            "credit_amount": str(payload["credit_amount"]),
            "entry_date": payload["entry_date"],
            "description": payload.get("description"),
            "erp_status": payload.get("erp_status") or "pending",
            "created_by": payload.get("created_by"),
            "created_at": _now(),
        })
        return self._fetch_one("SELECT * FROM accounting_entries WHERE id = ?", (entry_id,))

    def list_accounting_entries(self, invoice_id: str) -> List[Dict[str, Any]]:
        self.initialize()
        return self._fetch_all(
            "SELECT * FROM accounting_entries WHERE invoice_id = ? ORDER BY created_at ASC",
            (invoice_id,),
        )

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def create_notification(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        self.initialize()
        notification_id = payload.get("id") or _new_id("NTF")
        self._insert("notifications", {
            "id": notification_id,
            "company_id": payload["company_id"],
            "user_id": payload["user_id"],
            "invoice_id": payload.get("invoice_id"),
            "type": payload["type"],
            "title": payload["title"],
            "message": payload["message"],
            "is_read": 0,
            "read_at": None,
            "created_at": _now(),
        })
        return self._fetch_one("SELECT * FROM notifications WHERE id = ?", (notification_id,))

    def list_notifications(self, user_id: str, limit: int = 20, unread_only: bool = False) -> List[Dict[str, Any]]:
        self.initialize()
        sql = "SELECT * FROM notifications WHERE user_id = ?"
        if unread_only:
            sql += " AND is_read = 0"
        return self._fetch_all(sql + " ORDER BY created_at DESC LIMIT ?", (user_id, limit))

    def count_unread_notifications(self, user_id: str) -> int:
        self.initialize()
        row = self._fetch_one(
            "SELECT COUNT(*) AS total FROM notifications WHERE user_id = ? AND is_read = 0",
            (user_id,),
        )
        return int(row["total"]) if row else 0

    def mark_notifications_read(self, user_id: str, notification_ids: Optional[List[str]] = None) -> int:
        """Mark the given (or all) unread notifications of a user as read."""
        self.initialize()
        sql = "UPDATE notifications SET is_read = 1, read_at = ? WHERE user_id = ? AND is_read = 0"
        params: List[Any] = [_now(), user_id]
        if notification_ids is not None:
            if not notification_ids:
                return 0
            sql += f" AND id IN ({', '.join('?' for _ in notification_ids)})"
            params.extend(notification_ids)
        with self.connect() as conn:
            cur = conn.cursor()
            cur.execute(self._prepare_sql(sql), tuple(params))
            conn.commit()
            return cur.rowcount

    # ------------------------------------------------------------------
    # Audit log (append-only)
    # ------------------------------------------------------------------

    def append_audit_entry(self, payload: Dict[str, Any]) -> None:
        self.initialize()
        self._insert("audit_log", {
            "id": payload["id"],
            "company_id": payload["company_id"],
            "actor_id": payload.get("actor_id"),
            "invoice_id": payload.get("invoice_id"),
            "resource_type": payload.get("resource_type"),
            "resource_id": payload.get("resource_id"),
            "action": payload["action"],
            "old_values": json.dumps(payload.get("old_values"), default=str)
            if payload.get("old_values") is not None else None,
            "new_values": json.dumps(payload.get("new_values"), default=str)
            if payload.get("new_values") is not None else None,
            "checksum": payload["checksum"],
            "created_at": payload["created_at"],
        })

    def list_audit_entries(
        self,
        company_id: str,
        invoice_id: Optional[str] = None,
        action: Optional[str] = None,
        limit: int = 100,
        newest_first: bool = True,
    ) -> List[Dict[str, Any]]:
        self.initialize()
        sql = "SELECT * FROM audit_log WHERE company_id = ?"
        params: List[Any] = [company_id]
        if invoice_id:
            sql += " AND invoice_id = ?"
            params.append(invoice_id)
        if action:
            sql += " AND action = ?"
            params.append(action)
        sql += f" ORDER BY created_at {'DESC' if newest_first else 'ASC'} LIMIT ?"
        params.append(limit)
        rows = self._fetch_all(sql, params)
        for row in rows:
            for key in ("old_values", "new_values"):
                if row.get(key):
                    row[key] = json.loads(row[key])
        return rows

    # ------------------------------------------------------------------
    # Extraction logs
    # ------------------------------------------------------------------

    def create_extraction_log(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        self.initialize()
        now = _now()
        log_id = payload.get("id") or _new_id("EXT")
        self._insert("extraction_logs", {
            "id": log_id,
            "company_id": payload["company_id"],
            "file_path": payload.get("file_path"),
            "file_type": payload.get("file_type"),
            "extraction_status": payload.get("extraction_status") or "processing",
            "parsed_data": None,
            "error_message": None,
            "processing_time_ms": None,
            "created_by": payload.get("created_by"),
            "created_at": now,
            "updated_at": now,
        })
        return self.get_extraction_log(log_id)

    def get_extraction_log(self, log_id: str) -> Optional[Dict[str, Any]]:
        self.initialize()
        row = self._fetch_one("SELECT * FROM extraction_logs WHERE id = ?", (log_id,))
        if row and row.get("parsed_data"):
            row["parsed_data"] = json.loads(row["parsed_data"])
        return row

    def update_extraction_log(self, log_id: str, **fields) -> bool:
        self.initialize()
        if "parsed_data" in fields and fields["parsed_data"] is not None:
            fields["parsed_data"] = json.dumps(fields["parsed_data"], default=str)
        return self._update("extraction_logs", log_id, fields)
