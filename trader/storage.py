"""
Storage module for persisting trade records and market intelligence.

This module provides a repository interface for SQLite database operations.
It handles table creation, insertion, and retrieval with parameterized queries.
"""

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import date, datetime
from pathlib import Path
from typing import Any, Optional

from trader.config import Config
from trader.models import (
    Decision,
    MarketSnapshot,
    SignalBundle,
    STATUS_EXECUTED,
    STATUS_FAILED,
    STATUS_PENDING,
    TradeRecord,
)

# Configure module logger
logger = logging.getLogger(__name__)

# Columns that update_trade_record_status may change besides status
_UPDATABLE_FIELDS = ("actual_amount", "transaction_ref", "execution_price", "error_message")


class Storage:
    """
    Repository for database operations.

    Provides methods for storing and retrieving trade records and market
    intelligence snapshots. Handles table creation automatically.
    """

    def __init__(self, db_path: Optional[Path] = None):
        """
        Initialize storage with database path.

        Args:
            db_path: Path to SQLite database file. If None, uses Config.DB_PATH
        """
        self.db_path = Path(db_path or Config.DB_PATH)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize_database()

    @contextmanager
    def _get_connection(self):
        """
        Context manager for database connections.

        Commits on success and rolls back on error.
        """
        conn = sqlite3.connect(str(self.db_path), timeout=30)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _initialize_database(self) -> None:
        """Create database tables if they don't exist."""
        with self._get_connection() as conn:
            cursor = conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS trade_records (
                    id TEXT PRIMARY KEY,
                    market_id TEXT NOT NULL,
                    action TEXT NOT NULL,
                    outcome TEXT,
                    planned_amount REAL NOT NULL,
                    actual_amount REAL,
                    confidence INTEGER NOT NULL,
                    rationale TEXT,
                    strategy TEXT,
                    status TEXT NOT NULL DEFAULT 'PENDING',
                    transaction_ref TEXT,
                    execution_price REAL,
                    error_message TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS market_intelligence (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    market_id TEXT NOT NULL,
                    question TEXT,
                    signals TEXT,
                    factors TEXT,
                    decision TEXT,
                    action TEXT,
                    confidence INTEGER,
                    sentiment_score REAL,
                    current_price REAL,
                    liquidity REAL,
                    volume_24h REAL,
                    created_at TEXT NOT NULL
                )
            """)

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_trades_market_id
                ON trade_records(market_id)
            """)

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_trades_status
                ON trade_records(status)
            """)

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_trades_created_at
                ON trade_records(created_at)
            """)

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_intelligence_market_id
                ON market_intelligence(market_id)
            """)

            logger.info(f"Database initialized at {self.db_path}")

    # Trade record operations

    def create_trade_record(self, record: TradeRecord) -> bool:
        """
        Insert a new trade record.

        Args:
            record: TradeRecord to insert (normally PENDING)

        Returns:
            True if successful, False otherwise
        """
        try:
            with self._get_connection() as conn:
                conn.execute("""
                    INSERT INTO trade_records
                    (id, market_id, action, outcome, planned_amount, actual_amount,
                     confidence, rationale, strategy, status, transaction_ref,
                     execution_price, error_message, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    record.id,
                    record.market_id,
                    record.action,
                    record.outcome,
                    record.planned_amount,
                    record.actual_amount,
                    record.confidence,
                    record.rationale,
                    record.strategy,
                    record.status,
                    record.transaction_ref,
                    record.execution_price,
                    record.error_message,
                    record.created_at.isoformat(),
                    record.updated_at.isoformat(),
                ))

            logger.debug(f"Created trade record {record.id} for market {record.market_id}")
            return True

        except Exception as e:
            logger.error(f"Error creating trade record {record.id}: {e}", exc_info=True)
            return False

    def update_trade_record_status(
        self,
        trade_id: str,
        status: str,
        expected_status: Optional[str] = None,
        **fields: Any
    ) -> bool:
        """
        Update a trade record's status and optional execution fields.

        Args:
            trade_id: Trade record ID
            status: New status
            expected_status: If given, only update when the current status
                matches (guards against double terminal writes)
            **fields: Any of actual_amount, transaction_ref, execution_price,
                error_message

        Returns:
            True if a row was updated, False otherwise
        """
        unknown = set(fields) - set(_UPDATABLE_FIELDS)
        if unknown:
            raise ValueError(f"Cannot update trade record fields: {', '.join(sorted(unknown))}")

        assignments = ["status = ?", "updated_at = ?"]
        values: list[Any] = [status, datetime.utcnow().isoformat()]
        for name in _UPDATABLE_FIELDS:
            if name in fields:
                assignments.append(f"{name} = ?")
                values.append(fields[name])

        query = f"UPDATE trade_records SET {', '.join(assignments)} WHERE id = ?"
        values.append(trade_id)
        if expected_status is not None:
            query += " AND status = ?"
            values.append(expected_status)

        try:
            with self._get_connection() as conn:
                cursor = conn.execute(query, values)
                updated = cursor.rowcount > 0

            if updated:
                logger.debug(f"Trade {trade_id} -> {status}")
            else:
                logger.warning(f"Trade {trade_id} not updated to {status} (missing or status changed)")
            return updated

        except Exception as e:
            logger.error(f"Error updating trade record {trade_id}: {e}", exc_info=True)
            return False

    def get_trade_record(self, trade_id: str) -> Optional[TradeRecord]:
        try:
            with self._get_connection() as conn:
                row = conn.execute(
                    "SELECT * FROM trade_records WHERE id = ?", (trade_id,)
                ).fetchone()
                return self._row_to_trade(row) if row else None

        except Exception as e:
            logger.error(f"Error retrieving trade record {trade_id}: {e}", exc_info=True)
            return None

    def get_pending_trades(self) -> list[TradeRecord]:
        """Trades still waiting for a terminal status, oldest first."""
        return self._query_trades(
            "SELECT * FROM trade_records WHERE status = ? ORDER BY created_at ASC",
            (STATUS_PENDING,),
        )

    def get_trades_for_market(self, market_id: str, limit: int = 50) -> list[TradeRecord]:
        return self._query_trades(
            "SELECT * FROM trade_records WHERE market_id = ? ORDER BY created_at DESC LIMIT ?",
            (market_id, int(limit)),
        )

    def get_daily_stats(self, day: Optional[date] = None) -> dict:
        """
        Aggregate trade counts and amounts for one UTC day.

        Args:
            day: Day to summarize (default: today, UTC)

        Returns:
            Dictionary with total, executed, failed and pending counts plus
            planned and executed amounts
        """
        day = day or datetime.utcnow().date()
        prefix = f"{day.isoformat()}%"
        stats = {
            "date": day.isoformat(),
            "total_trades": 0,
            "executed": 0,
            "failed": 0,
            "pending": 0,
            "planned_amount": 0.0,
            "executed_amount": 0.0,
        }

        try:
            with self._get_connection() as conn:
                rows = conn.execute("""
                    SELECT status, COUNT(*) AS count,
                           COALESCE(SUM(planned_amount), 0) AS planned,
                           COALESCE(SUM(actual_amount), 0) AS actual
                    FROM trade_records
                    WHERE created_at LIKE ?
                    GROUP BY status
                """, (prefix,)).fetchall()

            for row in rows:
                stats["total_trades"] += row["count"]
                stats["planned_amount"] += row["planned"]
                if row["status"] == STATUS_EXECUTED:
                    stats["executed"] = row["count"]
                    stats["executed_amount"] = row["actual"]
                elif row["status"] == STATUS_FAILED:
                    stats["failed"] = row["count"]
                elif row["status"] == STATUS_PENDING:
                    stats["pending"] = row["count"]

        except Exception as e:
            logger.error(f"Error computing daily stats for {day}: {e}", exc_info=True)

        return stats

    # Market intelligence operations

    def create_market_intelligence_record(
        self,
        snapshot: MarketSnapshot,
        bundle: SignalBundle,
        decision: Decision
    ) -> Optional[int]:
        """
        Persist the signals and decision produced for a market.

        Args:
            snapshot: Market snapshot the decision was made on
            bundle: Signal bundle used for scoring
            decision: Resulting decision

        Returns:
            Row ID of the new record, or None on failure
        """
        try:
            with self._get_connection() as conn:
                cursor = conn.execute("""
                    INSERT INTO market_intelligence
                    (market_id, question, signals, factors, decision, action,
                     confidence, sentiment_score, current_price, liquidity,
                     volume_24h, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    snapshot.id,
                    snapshot.question,
                    json.dumps(bundle.to_dict(), default=str),
                    json.dumps(decision.factors.as_dict()) if decision.factors else None,
                    json.dumps(decision.to_dict(), default=str),
                    decision.action,
                    decision.confidence,
                    bundle.aggregated_sentiment,
                    snapshot.price,
                    snapshot.liquidity,
                    snapshot.volume_24h,
                    datetime.utcnow().isoformat(),
                ))
                record_id = cursor.lastrowid

            logger.debug(f"Saved market intelligence {record_id} for {snapshot.id}")
            return record_id

        except Exception as e:
            logger.error(f"Error saving market intelligence for {snapshot.id}: {e}", exc_info=True)
            return None

    def get_recent_intelligence(self, market_id: str, limit: int = 10) -> list[dict]:
        try:
            with self._get_connection() as conn:
                rows = conn.execute("""
                    SELECT * FROM market_intelligence
                    WHERE market_id = ?
                    ORDER BY id DESC
                    LIMIT ?
                """, (market_id, int(limit))).fetchall()

            records = []
            for row in rows:
                record = dict(row)
                for key in ("signals", "factors", "decision"):
                    if record.get(key):
                        record[key] = json.loads(record[key])
                records.append(record)
            return records

        except Exception as e:
            logger.error(f"Error retrieving intelligence for {market_id}: {e}", exc_info=True)
            return []

    # Helpers

    def _query_trades(self, query: str, params: tuple) -> list[TradeRecord]:
        try:
            with self._get_connection() as conn:
                rows = conn.execute(query, params).fetchall()
            return [self._row_to_trade(row) for row in rows]

        except Exception as e:
            logger.error(f"Error querying trade records: {e}", exc_info=True)
            return []

    @staticmethod
    def _row_to_trade(row: sqlite3.Row) -> TradeRecord:
        return TradeRecord(
            id=row["id"],
            market_id=row["market_id"],
            action=row["action"],
            outcome=row["outcome"],
            planned_amount=row["planned_amount"],
            actual_amount=row["actual_amount"],
            confidence=row["confidence"],
            rationale=row["rationale"] or "",
            strategy=row["strategy"] or "",
            status=row["status"],
            transaction_ref=row["transaction_ref"],
            execution_price=row["execution_price"],
            error_message=row["error_message"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )
