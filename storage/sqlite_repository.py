"""SQLite-backed audit trail for control cycles and swap attempts."""
from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from constants import DEFAULT_DB_PATH
from storage.models import ControlCycleRecord, SwapAttemptRecord

ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.strptime(value, ISO_FORMAT)


class SQLiteRepository:
    """Provides async-friendly helpers for recording what the control loop decided and did."""

    def __init__(self, db_path: Path | str = Path(DEFAULT_DB_PATH)) -> None:
        self.db_path = Path(db_path)
        if self.db_path != Path(":memory:"):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._connection = sqlite3.connect(
            str(self.db_path),
            detect_types=sqlite3.PARSE_DECLTYPES,
            check_same_thread=False,
        )
        self._connection.row_factory = sqlite3.Row
        self._configure()
        self._create_schema()

    def _configure(self) -> None:
        with self._lock:
            cursor = self._connection.cursor()
            try:
                cursor.execute("PRAGMA journal_mode=WAL;")
            except sqlite3.DatabaseError:
                pass
            cursor.execute("PRAGMA foreign_keys=ON;")
            cursor.close()

    def _create_schema(self) -> None:
        statements = [
            """
            CREATE TABLE IF NOT EXISTS control_cycle (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                started_at TEXT NOT NULL,
                finished_at TEXT,
                peg_price REAL,
                target_price REAL,
                peg_action TEXT,
                rebalance_decision TEXT,
                error TEXT
            );
            """,
            """
            CREATE TABLE IF NOT EXISTS swap_attempt (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                control_cycle_id INTEGER,
                label TEXT NOT NULL,
                attempted_at TEXT NOT NULL,
                venue TEXT NOT NULL,
                side TEXT NOT NULL,
                sell_token TEXT NOT NULL,
                buy_token TEXT NOT NULL,
                quantity INTEGER NOT NULL,
                bound_quantity INTEGER NOT NULL,
                max_spread_bps INTEGER,
                status TEXT NOT NULL,
                tx_id TEXT,
                reason TEXT,
                raw_payload TEXT,
                FOREIGN KEY (control_cycle_id) REFERENCES control_cycle(id) ON DELETE SET NULL
            );
            """,
            """
            CREATE INDEX IF NOT EXISTS idx_swap_attempt_time
                ON swap_attempt(attempted_at);
            """,
            """
            CREATE INDEX IF NOT EXISTS idx_swap_attempt_status
                ON swap_attempt(status);
            """,
        ]

        with self._lock:
            cursor = self._connection.cursor()
            for statement in statements:
                cursor.execute(statement)
            self._connection.commit()
            cursor.close()

    async def record_cycle_start(self) -> int:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._record_cycle_start_sync)

    def _record_cycle_start_sync(self) -> int:
        started_at = datetime.now(timezone.utc).strftime(ISO_FORMAT)
        with self._lock:
            cursor = self._connection.cursor()
            cursor.execute(
                "INSERT INTO control_cycle (started_at) VALUES (?)",
                (started_at,),
            )
            self._connection.commit()
            cycle_id = cursor.lastrowid
            cursor.close()
        return cycle_id

    async def record_cycle_finish(
        self,
        cycle_id: int,
        *,
        peg_price: Optional[float],
        target_price: Optional[float],
        peg_action: Optional[str],
        rebalance_decision: Optional[str],
        error: Optional[str] = None,
    ) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(
            None,
            self._record_cycle_finish_sync,
            cycle_id,
            peg_price,
            target_price,
            peg_action,
            rebalance_decision,
            error,
        )

    def _record_cycle_finish_sync(
        self,
        cycle_id: int,
        peg_price: Optional[float],
        target_price: Optional[float],
        peg_action: Optional[str],
        rebalance_decision: Optional[str],
        error: Optional[str],
    ) -> None:
        finished_at = datetime.now(timezone.utc).strftime(ISO_FORMAT)
        with self._lock:
            cursor = self._connection.cursor()
            cursor.execute(
                """
                UPDATE control_cycle
                SET finished_at = ?, peg_price = ?, target_price = ?, peg_action = ?,
                    rebalance_decision = ?, error = ?
                WHERE id = ?
                """,
                (finished_at, peg_price, target_price, peg_action, rebalance_decision, error, cycle_id),
            )
            self._connection.commit()
            cursor.close()

    async def record_swap_attempt(
        self,
        *,
        control_cycle_id: Optional[int],
        label: str,
        venue: str,
        side: str,
        sell_token: str,
        buy_token: str,
        quantity: int,
        bound_quantity: int,
        max_spread_bps: Optional[int],
        status: str,
        tx_id: Optional[str] = None,
        reason: Optional[str] = None,
        raw_payload: Optional[dict] = None,
    ) -> int:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None,
            self._record_swap_attempt_sync,
            control_cycle_id,
            label,
            venue,
            side,
            sell_token,
            buy_token,
            quantity,
            bound_quantity,
            max_spread_bps,
            status,
            tx_id,
            reason,
            raw_payload,
        )

    def _record_swap_attempt_sync(
        self,
        control_cycle_id: Optional[int],
        label: str,
        venue: str,
        side: str,
        sell_token: str,
        buy_token: str,
        quantity: int,
        bound_quantity: int,
        max_spread_bps: Optional[int],
        status: str,
        tx_id: Optional[str],
        reason: Optional[str],
        raw_payload: Optional[dict],
    ) -> int:
        attempted_at = datetime.now(timezone.utc).strftime(ISO_FORMAT)
        with self._lock:
            cursor = self._connection.cursor()
            cursor.execute(
                """
                INSERT INTO swap_attempt (
                    control_cycle_id,
                    label,
                    attempted_at,
                    venue,
                    side,
                    sell_token,
                    buy_token,
                    quantity,
                    bound_quantity,
                    max_spread_bps,
                    status,
                    tx_id,
                    reason,
                    raw_payload
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    control_cycle_id,
                    label,
                    attempted_at,
                    venue,
                    side,
                    sell_token,
                    buy_token,
                    quantity,
                    bound_quantity,
                    max_spread_bps,
                    status,
                    tx_id,
                    reason,
                    json.dumps(raw_payload) if raw_payload is not None else None,
                ),
            )
            attempt_id = cursor.lastrowid
            self._connection.commit()
            cursor.close()
        return attempt_id

    async def fetch_recent_cycles(self, limit: int = 20) -> list[ControlCycleRecord]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._fetch_recent_cycles_sync, limit)

    def _fetch_recent_cycles_sync(self, limit: int) -> list[ControlCycleRecord]:
        with self._lock:
            cursor = self._connection.cursor()
            cursor.execute(
                """
                SELECT * FROM control_cycle
                ORDER BY id DESC
                LIMIT ?
                """,
                (limit,)
            )
            rows = cursor.fetchall()
            cursor.close()
        return [
            ControlCycleRecord(
                id=row["id"],
                started_at=_parse_time(row["started_at"]),
                finished_at=_parse_time(row["finished_at"]),
                peg_price=row["peg_price"],
                target_price=row["target_price"],
                peg_action=row["peg_action"],
                rebalance_decision=row["rebalance_decision"],
                error=row["error"],
            )
            for row in rows
        ]

    async def fetch_swap_attempts(
        self,
        *,
        limit: int,
        status: Optional[str] = None,
        token: Optional[str] = None,
    ) -> list[SwapAttemptRecord]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None,
            self._fetch_swap_attempts_sync,
            limit,
            status.upper() if status else None,
            token.upper() if token else None,
        )

    def _fetch_swap_attempts_sync(
        self,
        limit: int,
        status: Optional[str],
        token: Optional[str],
    ) -> list[SwapAttemptRecord]:
        query = """
            SELECT * FROM swap_attempt
            WHERE (? IS NULL OR status = ?)
              AND (? IS NULL OR sell_token = ? OR buy_token = ?)
            ORDER BY id DESC
            LIMIT ?
        """
        with self._lock:
            cursor = self._connection.cursor()
            cursor.execute(query, (status, status, token, token, token, limit))
            rows = cursor.fetchall()
            cursor.close()

        records: list[SwapAttemptRecord] = []
        for row in rows:
            raw_payload = row["raw_payload"]
            records.append(
                SwapAttemptRecord(
                    id=row["id"],
                    control_cycle_id=row["control_cycle_id"],
                    label=row["label"],
                    attempted_at=_parse_time(row["attempted_at"]),
                    venue=row["venue"],
                    side=row["side"],
                    sell_token=row["sell_token"],
                    buy_token=row["buy_token"],
                    quantity=row["quantity"],
                    bound_quantity=row["bound_quantity"],
                    max_spread_bps=row["max_spread_bps"],
                    status=row["status"],
                    tx_id=row["tx_id"],
                    reason=row["reason"],
                    raw_payload=json.loads(raw_payload) if raw_payload else None,
                )
            )
        return records

    async def close(self) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._close_sync)

    def _close_sync(self) -> None:
        with self._lock:
            self._connection.commit()
            self._connection.close()


__all__ = ["SQLiteRepository", "ControlCycleRecord", "SwapAttemptRecord"]
