"""Signal repository — SQLite CRUD for the signals table."""

from datetime import datetime, timezone
from typing import Optional

from supportbot.repos.db import get_connection
from supportbot.strategy.models import Signal


class SignalRepo:
    """Data access layer for buy signals.

    Args:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def insert_signal(self, account_id: str, signal: Signal) -> Signal:
        """Persist an unprocessed signal and return it with ``id`` set."""
        created_at = datetime.now(timezone.utc).isoformat()
        conn = get_connection(self._db_path)
        try:
            cur = conn.execute(
                """
                INSERT INTO signals
                    (account_id, symbol, action, target_price, confidence,
                     reasoning, support_price, current_price, processed,
                     created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, 0, ?)
                """,
                (
                    account_id, signal.symbol, signal.action, signal.target_price,
                    signal.confidence, signal.reasoning, signal.support_price,
                    signal.current_price, created_at,
                ),
            )
            conn.commit()
            signal_id = cur.lastrowid
        finally:
            conn.close()
        return self.get_signal(signal_id)

    def get_signal(self, signal_id: int) -> Optional[Signal]:
        conn = get_connection(self._db_path)
        try:
            row = conn.execute(
                "SELECT * FROM signals WHERE id = ?", (signal_id,)
            ).fetchone()
            return Signal.from_row(dict(row)) if row else None
        finally:
            conn.close()

    def get_unprocessed(self, account_id: str) -> list[Signal]:
        """Unprocessed signals for *account_id*, oldest first."""
        conn = get_connection(self._db_path)
        try:
            rows = conn.execute(
                """
                SELECT * FROM signals
                WHERE account_id = ? AND processed = 0
                ORDER BY id ASC
                """,
                (account_id,),
            ).fetchall()
            return [Signal.from_row(dict(r)) for r in rows]
        finally:
            conn.close()

    def mark_processed(
        self,
        signal_id: int,
        rejection_reason: Optional[str] = None,
    ) -> bool:
        """Flag a signal as consumed (claim it for execution).

        Returns ``False`` when the signal was already processed, which lets
        callers treat a second execution attempt as a no-op.
        """
        processed_at = datetime.now(timezone.utc).isoformat()
        conn = get_connection(self._db_path)
        try:
            cur = conn.execute(
                """
                UPDATE signals
                SET processed = 1, rejection_reason = ?, processed_at = ?
                WHERE id = ? AND processed = 0
                """,
                (rejection_reason, processed_at, signal_id),
            )
            conn.commit()
            return cur.rowcount == 1
        finally:
            conn.close()

    def get_signals(self, account_id: str, limit: int = 20) -> list[dict]:
        """Recent signals as plain dicts, newest first."""
        conn = get_connection(self._db_path)
        try:
            rows = conn.execute(
                "SELECT * FROM signals WHERE account_id = ? ORDER BY id DESC LIMIT ?",
                (account_id, limit),
            ).fetchall()
            return [dict(r) for r in rows]
        finally:
            conn.close()

    def set_rejection_reason(self, signal_id: int, reason: str) -> None:
        """Record why a claimed signal did not produce an order."""
        conn = get_connection(self._db_path)
        try:
            conn.execute(
                "UPDATE signals SET rejection_reason = ? WHERE id = ?",
                (reason, signal_id),
            )
            conn.commit()
        finally:
            conn.close()
