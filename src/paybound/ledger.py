"""
Append-only transaction ledger.

Every evaluated transaction is written here, allowed or denied. The
evaluator reads rolling-window spend back out of it, so all reads and
writes go through one SQLite connection under a lock: a window query
issued after record() returns always sees that record.
"""

from __future__ import annotations

import logging
import math
import os
import sqlite3
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Iterator, Optional

from .errors import LedgerError
from .money import amount_to_micros, micros_to_float
from .policy import PolicyEvaluation, Transaction, Verdict


logger = logging.getLogger(__name__)

MEMORY_DB = ":memory:"

# Largest amount SQLite can hold in an INTEGER column.
MAX_STORED_MICROS = 2**63 - 1


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class LedgerRecord:
    """A transaction together with the verdict it received."""

    agent_id: str
    resource_url: str
    amount_micros: int
    currency: str
    scheme: str
    result: Verdict
    reason: str
    matched_policy: str
    timestamp: Optional[int] = None  # epoch ms, assigned at write time if None
    id: Optional[int] = None

    @classmethod
    def from_evaluation(
        cls,
        tx: Transaction,
        evaluation: PolicyEvaluation,
        timestamp: Optional[int] = None,
    ) -> LedgerRecord:
        return cls(
            agent_id=tx.agent_id,
            resource_url=tx.resource_url,
            amount_micros=_storable_micros(tx.amount),
            currency=tx.currency,
            scheme=tx.scheme,
            result=evaluation.result,
            reason=evaluation.reason,
            matched_policy=evaluation.matched_policy,
            timestamp=timestamp,
        )

    @property
    def amount(self) -> float:
        return micros_to_float(self.amount_micros)

    @property
    def allowed(self) -> bool:
        return self.result is Verdict.ALLOW

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "agentId": self.agent_id,
            "resourceUrl": self.resource_url,
            "amount": self.amount,
            "currency": self.currency,
            "scheme": self.scheme,
            "timestamp": self.timestamp,
            "policyResult": self.result.value,
            "policyReason": self.reason,
            "matchedPolicy": self.matched_policy,
        }


@dataclass(frozen=True)
class LedgerStats:
    count: int
    total_volume_micros: int
    agents: int

    @property
    def total_volume(self) -> float:
        return micros_to_float(self.total_volume_micros)

    def to_dict(self) -> dict:
        return {
            "count": self.count,
            "totalVolume": self.total_volume,
            "agents": self.agents,
        }


class Ledger:
    """
    SQLite-backed decision log.

    Records are never updated or deleted. Writes run inside BEGIN IMMEDIATE
    transactions; any sqlite3 failure surfaces as LedgerError.
    """

    def __init__(self, db_path: Path | str = MEMORY_DB):
        self.db_path = str(db_path)
        self._lock = threading.RLock()
        if self.db_path != MEMORY_DB:
            _prepare_db_path(Path(self.db_path))
        try:
            self._conn = sqlite3.connect(
                self.db_path,
                timeout=30.0,
                isolation_level=None,
                check_same_thread=False,
            )
        except sqlite3.Error as e:
            raise LedgerError(f"Cannot open ledger at {self.db_path}: {e}") from e
        try:
            self._conn.row_factory = sqlite3.Row
            self._init_db()
        except sqlite3.Error as e:
            self._conn.close()
            raise LedgerError(f"Cannot initialize ledger at {self.db_path}: {e}") from e
        if self.db_path != MEMORY_DB:
            os.chmod(self.db_path, 0o600)

    @contextmanager
    def _guard(self, operation: str) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                yield self._conn
            except sqlite3.Error as e:
                if _in_transaction(self._conn):
                    self._conn.execute("ROLLBACK")
                logger.error("Ledger %s failed: %s", operation, e)
                raise LedgerError(f"Ledger {operation} failed: {e}") from e

    def _init_db(self) -> None:
        conn = self._conn
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=FULL")
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS transactions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                agent_id TEXT NOT NULL,
                resource_url TEXT NOT NULL,
                amount_micros INTEGER NOT NULL,
                currency TEXT NOT NULL,
                scheme TEXT NOT NULL,
                timestamp INTEGER NOT NULL,
                policy_result TEXT NOT NULL,
                policy_reason TEXT NOT NULL,
                matched_policy TEXT NOT NULL
            )
            """
        )
        conn.execute(
            """
            CREATE INDEX IF NOT EXISTS idx_transactions_agent_timestamp
            ON transactions (agent_id, timestamp)
            """
        )

    def _row_to_record(self, row: sqlite3.Row) -> LedgerRecord:
        return LedgerRecord(
            id=row["id"],
            agent_id=row["agent_id"],
            resource_url=row["resource_url"],
            amount_micros=row["amount_micros"],
            currency=row["currency"],
            scheme=row["scheme"],
            timestamp=row["timestamp"],
            result=Verdict(row["policy_result"]),
            reason=row["policy_reason"],
            matched_policy=row["matched_policy"],
        )

    def record(self, entry: LedgerRecord) -> LedgerRecord:
        """Append one record and return it with id and timestamp filled in."""
        timestamp = entry.timestamp if entry.timestamp is not None else now_ms()
        with self._guard("write") as conn:
            conn.execute("BEGIN IMMEDIATE")
            cursor = conn.execute(
                """
                INSERT INTO transactions (
                    agent_id, resource_url, amount_micros, currency, scheme,
                    timestamp, policy_result, policy_reason, matched_policy
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.agent_id,
                    entry.resource_url,
                    entry.amount_micros,
                    entry.currency,
                    entry.scheme,
                    timestamp,
                    entry.result.value,
                    entry.reason,
                    entry.matched_policy,
                ),
            )
            conn.execute("COMMIT")
        return replace(entry, id=cursor.lastrowid, timestamp=timestamp)

    def spend_in_window(self, agent_id: str, window_ms: int) -> float:
        """Approved spend for an agent over the trailing window_ms."""
        cutoff = now_ms() - window_ms
        with self._guard("read") as conn:
            row = conn.execute(
                """
                SELECT COALESCE(SUM(amount_micros), 0) AS total
                FROM transactions
                WHERE agent_id = ? AND timestamp >= ? AND policy_result = ?
                """,
                (agent_id, cutoff, Verdict.ALLOW.value),
            ).fetchone()
        return micros_to_float(row["total"])

    def query_transactions(
        self,
        agent_id: Optional[str] = None,
        since: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> list[LedgerRecord]:
        """Records newest first. `since` is an inclusive epoch-ms lower bound."""
        sql = "SELECT * FROM transactions WHERE 1=1"
        params: list = []
        if agent_id is not None:
            sql += " AND agent_id = ?"
            params.append(agent_id)
        if since is not None:
            sql += " AND timestamp >= ?"
            params.append(since)
        sql += " ORDER BY timestamp DESC, id DESC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)

        with self._guard("query") as conn:
            rows = conn.execute(sql, params).fetchall()
        return [self._row_to_record(r) for r in rows]

    def stats(self) -> LedgerStats:
        with self._guard("stats") as conn:
            row = conn.execute(
                """
                SELECT
                    COUNT(*) AS count,
                    TOTAL(amount_micros) AS total,
                    COUNT(DISTINCT agent_id) AS agents
                FROM transactions
                """
            ).fetchone()
        return LedgerStats(
            count=row["count"],
            total_volume_micros=int(row["total"]),
            agents=row["agents"],
        )

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()


def _prepare_db_path(path: Path) -> None:
    if not path.parent.exists():
        path.parent.mkdir(parents=True)
        os.chmod(path.parent, 0o700)


def _in_transaction(conn: sqlite3.Connection) -> bool:
    try:
        return conn.in_transaction
    except sqlite3.ProgrammingError:
        # Closed connection; nothing to roll back.
        return False


def _storable_micros(amount: float) -> int:
    # Non-finite amounts are always denied; they are logged as 0. Huge
    # denied amounts are capped so the row still fits.
    if not math.isfinite(amount):
        return 0
    return min(amount_to_micros(amount), MAX_STORED_MICROS)
