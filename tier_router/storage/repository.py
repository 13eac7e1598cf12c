"""
Repository pattern for data access.

Handles database operations for the usage ledger and session memory.
Every write runs in a single transaction; sqlite errors are surfaced
as PersistenceError so callers can tell storage failures apart from
routing failures.
"""

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, List, Optional, Tuple

from tier_router.core.errors import PersistenceError

from .db import DEFAULT_DB_PATH, get_connection, initialize_schema
from .models import MemoryEntry, PeriodTotals, UsageBucket, UsageRecord

TIER_DIMENSION = "tier"
MODEL_DIMENSION = "model"


class _Repository:
    """Shared connection and transaction handling."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def initialize(self) -> None:
        with self._guard("initialize"):
            initialize_schema(self.db_path)

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        try:
            yield
        except (sqlite3.Error, OSError) as e:
            raise PersistenceError(
                f"Failed to {operation} {self.db_path}: {e}",
                path=self.db_path,
                operation=operation,
            ) from e

    @contextmanager
    def _transaction(self, operation: str) -> Iterator[sqlite3.Connection]:
        """Run statements atomically: commit all or roll back all."""
        with self._guard(operation):
            conn = get_connection(self.db_path)
            try:
                conn.execute("BEGIN")
                yield conn
                conn.commit()
            except Exception:
                conn.rollback()
                raise
            finally:
                conn.close()

    @contextmanager
    def _read(self, operation: str) -> Iterator[sqlite3.Connection]:
        with self._guard(operation):
            conn = get_connection(self.db_path)
            try:
                yield conn
            finally:
                conn.close()


class UsageRepository(_Repository):
    """Append-only store of usage records plus per-period totals."""

    def insert_record(self, record: UsageRecord, period: str) -> None:
        """Append a record and add it to its period totals in one transaction.

        Args:
            record: The usage record to store
            period: Period key ("YYYY-MM") the record belongs to
        """
        with self._transaction("write usage record") as conn:
            conn.execute("""
                INSERT INTO usage_record
                (timestamp, period, provider, model, tier, input_tokens,
                 output_tokens, cost_usd, task_summary)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                record.timestamp.isoformat(),
                period,
                record.provider,
                record.model,
                record.tier,
                record.input_tokens,
                record.output_tokens,
                record.cost_usd,
                record.task_summary,
            ))
            for dimension, key in ((TIER_DIMENSION, record.tier), (MODEL_DIMENSION, record.model_key)):
                conn.execute("""
                    INSERT INTO period_total (period, dimension, key, cost_usd, tokens)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(period, dimension, key) DO UPDATE SET
                        cost_usd = cost_usd + excluded.cost_usd,
                        tokens = tokens + excluded.tokens
                """, (period, dimension, key, record.cost_usd, record.total_tokens))

    def fetch_period_totals(self, period: str) -> Optional[PeriodTotals]:
        """Get totals for a period, or None if nothing was recorded in it."""
        with self._read("read period totals") as conn:
            cursor = conn.execute("""
                SELECT dimension, key, cost_usd, tokens
                FROM period_total
                WHERE period = ?
                ORDER BY rowid
            """, (period,))
            rows = cursor.fetchall()

        if not rows:
            return None

        totals = PeriodTotals(period=period)
        for dimension, key, cost, tokens in rows:
            bucket = UsageBucket(cost=cost, tokens=tokens)
            if dimension == TIER_DIMENSION:
                totals.by_tier[key] = bucket
            else:
                totals.by_model[key] = bucket
        return totals

    def fetch_recent_records(self, limit: int = 10) -> List[UsageRecord]:
        """Get the most recent records, ordered oldest to newest."""
        with self._read("read usage records") as conn:
            cursor = conn.execute("""
                SELECT timestamp, provider, model, tier, input_tokens,
                       output_tokens, cost_usd, task_summary
                FROM usage_record
                ORDER BY id DESC
                LIMIT ?
            """, (limit,))
            rows = cursor.fetchall()

        records = [
            UsageRecord(
                timestamp=datetime.fromisoformat(row[0]),
                provider=row[1],
                model=row[2],
                tier=row[3],
                input_tokens=row[4],
                output_tokens=row[5],
                cost_usd=row[6],
                task_summary=row[7],
            )
            for row in rows
        ]
        records.reverse()
        return records

    def count_records(self, period: Optional[str] = None) -> int:
        with self._read("count usage records") as conn:
            if period is None:
                row = conn.execute("SELECT COUNT(*) FROM usage_record").fetchone()
            else:
                row = conn.execute(
                    "SELECT COUNT(*) FROM usage_record WHERE period = ?", (period,)
                ).fetchone()
        return row[0]

    def total_spend(self) -> float:
        """Total cost across every recorded period."""
        with self._read("read total spend") as conn:
            row = conn.execute(
                "SELECT SUM(cost_usd) FROM period_total WHERE dimension = ?",
                (TIER_DIMENSION,),
            ).fetchone()
        return float(row[0] or 0)

    def clear(self) -> None:
        with self._transaction("clear usage data") as conn:
            conn.execute("DELETE FROM usage_record")
            conn.execute("DELETE FROM period_total")


class MemoryRepository(_Repository):
    """Store of memory sessions and their bounded entry lists."""

    def create_session(self, session_id: str, created_at: datetime, max_sessions: int) -> None:
        """Insert a session and drop the oldest sessions beyond `max_sessions`."""
        with self._transaction("write memory session") as conn:
            conn.execute(
                "INSERT INTO memory_session (session_id, created_at, last_updated) VALUES (?, ?, ?)",
                (session_id, created_at.isoformat(), created_at.isoformat()),
            )
            conn.execute("""
                DELETE FROM memory_session
                WHERE rowid NOT IN (
                    SELECT rowid FROM memory_session ORDER BY rowid DESC LIMIT ?
                )
            """, (max_sessions,))

    def insert_entry(self, session_id: str, entry: MemoryEntry, max_entries: int) -> None:
        """Append an entry and drop the session's oldest entries beyond `max_entries`."""
        context = json.dumps(entry.context, default=str) if entry.context is not None else None
        with self._transaction("write memory entry") as conn:
            conn.execute("""
                INSERT INTO memory_entry
                (session_id, timestamp, task_pattern, tier_used, success, context)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (
                session_id,
                entry.timestamp.isoformat(),
                entry.task_pattern,
                entry.tier_used,
                int(entry.success),
                context,
            ))
            conn.execute(
                "UPDATE memory_session SET last_updated = ? WHERE session_id = ?",
                (entry.timestamp.isoformat(), session_id),
            )
            conn.execute("""
                DELETE FROM memory_entry
                WHERE session_id = ? AND id NOT IN (
                    SELECT id FROM memory_entry WHERE session_id = ?
                    ORDER BY id DESC LIMIT ?
                )
            """, (session_id, session_id, max_entries))

    def fetch_latest_session(self) -> Optional[Tuple[str, datetime, datetime]]:
        """Get (session_id, created_at, last_updated) of the newest session."""
        with self._read("read memory session") as conn:
            row = conn.execute("""
                SELECT session_id, created_at, last_updated
                FROM memory_session
                ORDER BY rowid DESC
                LIMIT 1
            """).fetchone()
        if row is None:
            return None
        return row[0], datetime.fromisoformat(row[1]), datetime.fromisoformat(row[2])

    def fetch_entries(self, session_id: str, limit: int) -> List[MemoryEntry]:
        """Get a session's most recent entries, ordered oldest to newest."""
        with self._read("read memory entries") as conn:
            cursor = conn.execute("""
                SELECT timestamp, task_pattern, tier_used, success, context
                FROM memory_entry
                WHERE session_id = ?
                ORDER BY id DESC
                LIMIT ?
            """, (session_id, limit))
            rows = cursor.fetchall()

        entries = [
            MemoryEntry(
                timestamp=datetime.fromisoformat(row[0]),
                task_pattern=row[1],
                tier_used=row[2],
                success=bool(row[3]),
                context=json.loads(row[4]) if row[4] is not None else None,
            )
            for row in rows
        ]
        entries.reverse()
        return entries

    def session_ids(self) -> List[str]:
        """All retained session ids, oldest first."""
        with self._read("read memory sessions") as conn:
            rows = conn.execute("SELECT session_id FROM memory_session ORDER BY rowid").fetchall()
        return [row[0] for row in rows]

    def count_entries(self, session_id: str) -> int:
        with self._read("count memory entries") as conn:
            row = conn.execute(
                "SELECT COUNT(*) FROM memory_entry WHERE session_id = ?", (session_id,)
            ).fetchone()
        return row[0]

    def clear(self) -> None:
        with self._transaction("clear memory data") as conn:
            conn.execute("DELETE FROM memory_entry")
            conn.execute("DELETE FROM memory_session")
