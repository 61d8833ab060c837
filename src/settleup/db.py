"""SQLite database operations for SettleUp.

The settlement core only talks to storage through SettlementRepository.
Database is the bundled SQLite implementation; every multi-row write runs in
a single transaction so a failure leaves the data untouched.
"""

import json
import logging
import sqlite3
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import date, datetime
from pathlib import Path
from typing import Protocol

from .exceptions import PersistenceError
from .models import (
    EntryDiff,
    EntrySplit,
    Member,
    NetTransfer,
    Payment,
    RecurringRule,
    RecurringRuleSplit,
    SessionStatus,
    SettlementEntry,
    SettlementSession,
    Split,
)

logger = logging.getLogger(__name__)


def new_id() -> str:
    """Generate a new opaque identifier."""
    return uuid.uuid4().hex


class SettlementRepository(Protocol):
    """Storage operations the settlement service depends on."""

    def is_group_member(self, group_id: str, user_id: str) -> bool: ...

    def list_members(self, group_id: str) -> list[Member]: ...

    def list_unsettled_payments(
        self, group_id: str, period_start: date | None, period_end: date | None
    ) -> list[Payment]: ...

    def list_recurring_rules(self, group_id: str) -> list[RecurringRule]: ...

    def read_session(self, session_id: str) -> SettlementSession | None: ...

    def read_entries(self, session_id: str) -> list[SettlementEntry]: ...

    def apply_entry_diff(self, session_id: str, diff: EntryDiff) -> int: ...

    def persist_confirmed_transfers(
        self,
        session: SettlementSession,
        settled_payment_ids: list[str],
        new_payments: list[Payment] | None = None,
    ) -> None: ...


class Database:
    """SQLite database manager."""

    def __init__(self, db_path: Path | str):
        """Initialize database connection."""
        self.db_path = db_path
        self.conn = sqlite3.connect(str(db_path))
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA foreign_keys = ON")
        self._init_schema()

    def _init_schema(self):
        """Initialize database schema."""
        cursor = self.conn.cursor()

        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS group_members (
                group_id TEXT NOT NULL,
                user_id TEXT NOT NULL,
                display_name TEXT NOT NULL,
                joined_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                PRIMARY KEY (group_id, user_id)
            )
        """
        )

        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS payments (
                id TEXT PRIMARY KEY,
                group_id TEXT NOT NULL,
                payer_id TEXT NOT NULL,
                amount INTEGER NOT NULL CHECK (amount >= 0),
                payment_date DATE NOT NULL,
                description TEXT NOT NULL DEFAULT '',
                split_type TEXT NOT NULL,
                settlement_id TEXT
            )
        """
        )

        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS payment_splits (
                payment_id TEXT NOT NULL REFERENCES payments(id) ON DELETE CASCADE,
                user_id TEXT NOT NULL,
                amount INTEGER NOT NULL CHECK (amount >= 0),
                PRIMARY KEY (payment_id, user_id)
            )
        """
        )

        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS recurring_rules (
                id TEXT PRIMARY KEY,
                group_id TEXT NOT NULL,
                description TEXT NOT NULL,
                day_of_month INTEGER NOT NULL,
                default_payer_id TEXT NOT NULL,
                is_variable INTEGER NOT NULL DEFAULT 0,
                default_amount INTEGER,
                interval_months INTEGER NOT NULL DEFAULT 1,
                split_type TEXT NOT NULL,
                start_date DATE NOT NULL,
                end_date DATE,
                is_active INTEGER NOT NULL DEFAULT 1,
                splits TEXT NOT NULL DEFAULT '[]'
            )
        """
        )

        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS settlement_sessions (
                id TEXT PRIMARY KEY,
                group_id TEXT NOT NULL,
                period_start DATE NOT NULL,
                period_end DATE NOT NULL,
                status TEXT NOT NULL,
                created_by TEXT,
                net_transfers TEXT NOT NULL DEFAULT '[]',
                confirmed_at TIMESTAMP,
                payment_reported_at TIMESTAMP,
                settled_at TIMESTAMP
            )
        """
        )

        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS settlement_entries (
                id TEXT PRIMARY KEY,
                session_id TEXT NOT NULL
                    REFERENCES settlement_sessions(id) ON DELETE CASCADE,
                source_type TEXT NOT NULL,
                source_id TEXT,
                payment_date DATE NOT NULL,
                description TEXT NOT NULL DEFAULT '',
                payer_id TEXT NOT NULL,
                expected_amount INTEGER,
                actual_amount INTEGER,
                status TEXT NOT NULL,
                split_type TEXT NOT NULL,
                splits TEXT NOT NULL DEFAULT '[]',
                filled_by TEXT
            )
        """
        )

        self.conn.commit()

    def close(self):
        """Close database connection."""
        self.conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Cursor]:
        """Run a block atomically, committing on success and rolling back on error."""
        try:
            with self.conn:
                yield self.conn.cursor()
        except sqlite3.Error as e:
            logger.error(f"Database transaction failed: {e}")
            raise PersistenceError(f"Database transaction failed: {e}") from e

    # ========================================================================
    # Membership operations
    # ========================================================================

    def add_member(self, group_id: str, member: Member):
        """Add a member to a group (or rename an existing one)."""
        with self.transaction() as cursor:
            cursor.execute(
                """
                INSERT INTO group_members (group_id, user_id, display_name)
                VALUES (?, ?, ?)
                ON CONFLICT(group_id, user_id) DO UPDATE SET
                    display_name = excluded.display_name
                """,
                (group_id, member.id, member.display_name),
            )

    def is_group_member(self, group_id: str, user_id: str) -> bool:
        """Check whether a user belongs to a group."""
        cursor = self.conn.cursor()
        cursor.execute(
            "SELECT 1 FROM group_members WHERE group_id = ? AND user_id = ?",
            (group_id, user_id),
        )
        return cursor.fetchone() is not None

    def list_members(self, group_id: str) -> list[Member]:
        """Get all members of a group in join order."""
        cursor = self.conn.cursor()
        cursor.execute(
            """
            SELECT user_id, display_name FROM group_members
            WHERE group_id = ?
            ORDER BY joined_at, rowid
            """,
            (group_id,),
        )
        return [
            Member(id=row["user_id"], display_name=row["display_name"])
            for row in cursor.fetchall()
        ]

    # ========================================================================
    # Payment operations
    # ========================================================================

    def save_payment(self, payment: Payment):
        """Insert or replace a payment together with its splits."""
        with self.transaction() as cursor:
            cursor.execute(
                """
                INSERT INTO payments (
                    id, group_id, payer_id, amount, payment_date,
                    description, split_type, settlement_id
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    payer_id = excluded.payer_id,
                    amount = excluded.amount,
                    payment_date = excluded.payment_date,
                    description = excluded.description,
                    split_type = excluded.split_type,
                    settlement_id = excluded.settlement_id
                """,
                (
                    payment.id,
                    payment.group_id,
                    payment.payer_id,
                    payment.amount,
                    payment.payment_date.isoformat(),
                    payment.description,
                    payment.split_type.value,
                    payment.settlement_id,
                ),
            )
            cursor.execute(
                "DELETE FROM payment_splits WHERE payment_id = ?", (payment.id,)
            )
            cursor.executemany(
                "INSERT INTO payment_splits (payment_id, user_id, amount) VALUES (?, ?, ?)",
                [(payment.id, s.user_id, s.amount) for s in payment.splits],
            )

    def delete_payment(self, payment_id: str):
        """Delete a payment and its splits."""
        with self.transaction() as cursor:
            cursor.execute("DELETE FROM payments WHERE id = ?", (payment_id,))

    def _payment_from_row(self, row: sqlite3.Row) -> Payment:
        cursor = self.conn.cursor()
        cursor.execute(
            "SELECT user_id, amount FROM payment_splits WHERE payment_id = ? ORDER BY rowid",
            (row["id"],),
        )
        return Payment(
            id=row["id"],
            group_id=row["group_id"],
            payer_id=row["payer_id"],
            amount=row["amount"],
            payment_date=date.fromisoformat(row["payment_date"]),
            description=row["description"],
            split_type=row["split_type"],
            settlement_id=row["settlement_id"],
            splits=[
                Split(payment_id=row["id"], user_id=s["user_id"], amount=s["amount"])
                for s in cursor.fetchall()
            ],
        )

    def list_unsettled_payments(
        self,
        group_id: str,
        period_start: date | None = None,
        period_end: date | None = None,
    ) -> list[Payment]:
        """Get payments not yet absorbed by a confirmed session, oldest first."""
        query = "SELECT * FROM payments WHERE group_id = ? AND settlement_id IS NULL"
        params: list[str] = [group_id]
        if period_start is not None:
            query += " AND payment_date >= ?"
            params.append(period_start.isoformat())
        if period_end is not None:
            query += " AND payment_date <= ?"
            params.append(period_end.isoformat())
        query += " ORDER BY payment_date, rowid"

        cursor = self.conn.cursor()
        cursor.execute(query, params)
        return [self._payment_from_row(row) for row in cursor.fetchall()]

    def get_unsettled_payment_stats(
        self, group_id: str
    ) -> tuple[date | None, date | None, int]:
        """Get (oldest date, newest date, count) of unsettled payments."""
        cursor = self.conn.cursor()
        cursor.execute(
            """
            SELECT MIN(payment_date) AS oldest, MAX(payment_date) AS newest,
                   COUNT(*) AS total
            FROM payments
            WHERE group_id = ? AND settlement_id IS NULL
            """,
            (group_id,),
        )
        row = cursor.fetchone()
        oldest = date.fromisoformat(row["oldest"]) if row["oldest"] else None
        newest = date.fromisoformat(row["newest"]) if row["newest"] else None
        return oldest, newest, row["total"]

    def has_unsettled_on(self, group_id: str, day: date) -> bool:
        """Check whether unsettled payments exist on a given date."""
        cursor = self.conn.cursor()
        cursor.execute(
            """
            SELECT 1 FROM payments
            WHERE group_id = ? AND settlement_id IS NULL AND payment_date = ?
            """,
            (group_id, day.isoformat()),
        )
        return cursor.fetchone() is not None

    # ========================================================================
    # Recurring rule operations
    # ========================================================================

    def save_recurring_rule(self, rule: RecurringRule):
        """Insert or replace a recurring rule."""
        with self.transaction() as cursor:
            cursor.execute(
                """
                INSERT OR REPLACE INTO recurring_rules (
                    id, group_id, description, day_of_month, default_payer_id,
                    is_variable, default_amount, interval_months, split_type,
                    start_date, end_date, is_active, splits
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    rule.id,
                    rule.group_id,
                    rule.description,
                    rule.day_of_month,
                    rule.default_payer_id,
                    int(rule.is_variable),
                    rule.default_amount,
                    rule.interval_months,
                    rule.split_type.value,
                    rule.start_date.isoformat(),
                    rule.end_date.isoformat() if rule.end_date else None,
                    int(rule.is_active),
                    json.dumps([s.model_dump() for s in rule.splits]),
                ),
            )

    def list_recurring_rules(self, group_id: str) -> list[RecurringRule]:
        """Get the active recurring rules of a group."""
        cursor = self.conn.cursor()
        cursor.execute(
            "SELECT * FROM recurring_rules WHERE group_id = ? AND is_active = 1 ORDER BY rowid",
            (group_id,),
        )
        return [
            RecurringRule(
                id=row["id"],
                group_id=row["group_id"],
                description=row["description"],
                day_of_month=row["day_of_month"],
                default_payer_id=row["default_payer_id"],
                is_variable=bool(row["is_variable"]),
                default_amount=row["default_amount"],
                interval_months=row["interval_months"],
                split_type=row["split_type"],
                start_date=date.fromisoformat(row["start_date"]),
                end_date=date.fromisoformat(row["end_date"]) if row["end_date"] else None,
                is_active=bool(row["is_active"]),
                splits=[RecurringRuleSplit(**s) for s in json.loads(row["splits"])],
            )
            for row in cursor.fetchall()
        ]

    # ========================================================================
    # Settlement session operations
    # ========================================================================

    def _session_from_row(self, row: sqlite3.Row) -> SettlementSession:
        def parse_ts(value: str | None) -> datetime | None:
            return datetime.fromisoformat(value) if value else None

        return SettlementSession(
            id=row["id"],
            group_id=row["group_id"],
            period_start=date.fromisoformat(row["period_start"]),
            period_end=date.fromisoformat(row["period_end"]),
            status=row["status"],
            created_by=row["created_by"],
            net_transfers=[NetTransfer(**t) for t in json.loads(row["net_transfers"])],
            confirmed_at=parse_ts(row["confirmed_at"]),
            payment_reported_at=parse_ts(row["payment_reported_at"]),
            settled_at=parse_ts(row["settled_at"]),
        )

    def _write_session(self, cursor: sqlite3.Cursor, session: SettlementSession):
        cursor.execute(
            """
            INSERT INTO settlement_sessions (
                id, group_id, period_start, period_end, status, created_by,
                net_transfers, confirmed_at, payment_reported_at, settled_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                period_start = excluded.period_start,
                period_end = excluded.period_end,
                status = excluded.status,
                net_transfers = excluded.net_transfers,
                confirmed_at = excluded.confirmed_at,
                payment_reported_at = excluded.payment_reported_at,
                settled_at = excluded.settled_at
            """,
            (
                session.id,
                session.group_id,
                session.period_start.isoformat(),
                session.period_end.isoformat(),
                session.status.value,
                session.created_by,
                json.dumps([t.model_dump() for t in session.net_transfers]),
                session.confirmed_at.isoformat() if session.confirmed_at else None,
                (
                    session.payment_reported_at.isoformat()
                    if session.payment_reported_at
                    else None
                ),
                session.settled_at.isoformat() if session.settled_at else None,
            ),
        )

    def save_session(self, session: SettlementSession):
        """Insert or update a settlement session."""
        with self.transaction() as cursor:
            self._write_session(cursor, session)

    def read_session(self, session_id: str) -> SettlementSession | None:
        """Get a settlement session by id."""
        cursor = self.conn.cursor()
        cursor.execute("SELECT * FROM settlement_sessions WHERE id = ?", (session_id,))
        row = cursor.fetchone()
        return self._session_from_row(row) if row else None

    def list_sessions(
        self, group_id: str, status: SessionStatus | None = None
    ) -> list[SettlementSession]:
        """Get the sessions of a group, most recent period first."""
        query = "SELECT * FROM settlement_sessions WHERE group_id = ?"
        params = [group_id]
        if status is not None:
            query += " AND status = ?"
            params.append(status.value)
        query += " ORDER BY period_end DESC, rowid DESC"

        cursor = self.conn.cursor()
        cursor.execute(query, params)
        return [self._session_from_row(row) for row in cursor.fetchall()]

    def get_last_confirmed_end(self, group_id: str) -> date | None:
        """Get the period end of the latest session past the draft stage."""
        cursor = self.conn.cursor()
        cursor.execute(
            """
            SELECT MAX(period_end) AS last_end FROM settlement_sessions
            WHERE group_id = ? AND status != ?
            """,
            (group_id, SessionStatus.DRAFT.value),
        )
        row = cursor.fetchone()
        return date.fromisoformat(row["last_end"]) if row["last_end"] else None

    def persist_confirmed_transfers(
        self,
        session: SettlementSession,
        settled_payment_ids: list[str],
        new_payments: list[Payment] | None = None,
    ):
        """
        Store a confirmed session in one transaction.

        Writes the session (status and transfers), marks absorbed payments as
        settled, and records payments created from rule and manual entries.
        """
        with self.transaction() as cursor:
            self._write_session(cursor, session)
            cursor.executemany(
                "UPDATE payments SET settlement_id = ? WHERE id = ?",
                [(session.id, payment_id) for payment_id in settled_payment_ids],
            )
            for payment in new_payments or []:
                cursor.execute(
                    """
                    INSERT INTO payments (
                        id, group_id, payer_id, amount, payment_date,
                        description, split_type, settlement_id
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        payment.id,
                        payment.group_id,
                        payment.payer_id,
                        payment.amount,
                        payment.payment_date.isoformat(),
                        payment.description,
                        payment.split_type.value,
                        payment.settlement_id,
                    ),
                )
                cursor.executemany(
                    "INSERT INTO payment_splits (payment_id, user_id, amount) VALUES (?, ?, ?)",
                    [(payment.id, s.user_id, s.amount) for s in payment.splits],
                )

    # ========================================================================
    # Settlement entry operations
    # ========================================================================

    def _entry_from_row(self, row: sqlite3.Row) -> SettlementEntry:
        return SettlementEntry(
            id=row["id"],
            session_id=row["session_id"],
            source_type=row["source_type"],
            source_id=row["source_id"],
            payment_date=date.fromisoformat(row["payment_date"]),
            description=row["description"],
            payer_id=row["payer_id"],
            expected_amount=row["expected_amount"],
            actual_amount=row["actual_amount"],
            status=row["status"],
            split_type=row["split_type"],
            splits=[EntrySplit(**s) for s in json.loads(row["splits"])],
            filled_by=row["filled_by"],
        )

    def _entry_params(self, entry: SettlementEntry) -> tuple:
        return (
            entry.session_id,
            entry.source_type.value,
            entry.source_id,
            entry.payment_date.isoformat(),
            entry.description,
            entry.payer_id,
            entry.expected_amount,
            entry.actual_amount,
            entry.status.value,
            entry.split_type.value,
            json.dumps([s.model_dump() for s in entry.splits]),
            entry.filled_by,
        )

    def _insert_entry(self, cursor: sqlite3.Cursor, entry: SettlementEntry) -> str:
        entry_id = entry.id or new_id()
        cursor.execute(
            """
            INSERT INTO settlement_entries (
                session_id, source_type, source_id, payment_date, description,
                payer_id, expected_amount, actual_amount, status, split_type,
                splits, filled_by, id
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            self._entry_params(entry) + (entry_id,),
        )
        return entry_id

    def _update_entry(self, cursor: sqlite3.Cursor, entry: SettlementEntry) -> int:
        cursor.execute(
            """
            UPDATE settlement_entries SET
                session_id = ?, source_type = ?, source_id = ?, payment_date = ?,
                description = ?, payer_id = ?, expected_amount = ?,
                actual_amount = ?, status = ?, split_type = ?, splits = ?,
                filled_by = ?
            WHERE id = ?
            """,
            self._entry_params(entry) + (entry.id,),
        )
        return cursor.rowcount

    def read_entries(self, session_id: str) -> list[SettlementEntry]:
        """Get the entries of a session ordered by date."""
        cursor = self.conn.cursor()
        cursor.execute(
            """
            SELECT * FROM settlement_entries WHERE session_id = ?
            ORDER BY payment_date, rowid
            """,
            (session_id,),
        )
        return [self._entry_from_row(row) for row in cursor.fetchall()]

    def read_entry(self, entry_id: str) -> SettlementEntry | None:
        """Get a single entry by id."""
        cursor = self.conn.cursor()
        cursor.execute("SELECT * FROM settlement_entries WHERE id = ?", (entry_id,))
        row = cursor.fetchone()
        return self._entry_from_row(row) if row else None

    def save_entry(self, entry: SettlementEntry) -> str:
        """Insert a new entry or update an existing one, returning its id."""
        with self.transaction() as cursor:
            if entry.id is not None and self._update_entry(cursor, entry):
                return entry.id
            return self._insert_entry(cursor, entry)

    def delete_entry(self, entry_id: str):
        """Delete an entry."""
        with self.transaction() as cursor:
            cursor.execute("DELETE FROM settlement_entries WHERE id = ?", (entry_id,))

    def apply_entry_diff(self, session_id: str, diff: EntryDiff) -> int:
        """
        Apply an entry diff atomically.

        Args:
            session_id: Session the diff belongs to
            diff: Entries to insert/update and entry ids to delete

        Returns:
            Number of inserted entries

        Raises:
            PersistenceError: If any statement fails (nothing is applied)
        """
        with self.transaction() as cursor:
            if diff.to_delete:
                cursor.executemany(
                    "DELETE FROM settlement_entries WHERE id = ? AND session_id = ?",
                    [(entry_id, session_id) for entry_id in diff.to_delete],
                )
            for entry in diff.to_update:
                self._update_entry(cursor, entry)
            for entry in diff.to_insert:
                self._insert_entry(cursor, entry)

        logger.info(
            f"Applied entry diff to session {session_id}: "
            f"{len(diff.to_insert)} inserted, {len(diff.to_update)} updated, "
            f"{len(diff.to_delete)} deleted"
        )
        return len(diff.to_insert)
