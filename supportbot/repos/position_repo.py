"""Position repository — SQLite CRUD for the positions table.

Status changes are guarded on the current status so a position can only
move along the pending → filled → closed / pending → cancelled paths.
Rows are never deleted.
"""

from datetime import datetime, timezone
from typing import Optional

from supportbot.errors import PositionStateError
from supportbot.models.position import (
    CANCELLED,
    CLOSED,
    FILLED,
    OPEN_STATUSES,
    PENDING,
    Position,
)
from supportbot.repos.db import get_connection


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class PositionRepo:
    """Data access layer for position records.

    Args:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    # ── Write ────────────────────────────────────────────────────────────

    def insert_position(
        self,
        account_id: str,
        symbol: str,
        side: str,
        order_type: str,
        price: float,
        quantity: float,
        exchange_order_id: str,
        signal_id: Optional[int] = None,
        status: str = PENDING,
    ) -> Position:
        """Insert a new position and return it."""
        now = _now()
        conn = get_connection(self._db_path)
        try:
            cur = conn.execute(
                """
                INSERT INTO positions
                    (account_id, symbol, side, order_type, price, quantity,
                     status, exchange_order_id, signal_id, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    account_id, symbol, side, order_type, price, quantity,
                    status, exchange_order_id, signal_id, now, now,
                ),
            )
            conn.commit()
            position_id = cur.lastrowid
        finally:
            conn.close()
        return self.get_position(position_id)

    def _guarded_update(
        self,
        position_id: int,
        expected_status: str,
        assignments: str,
        params: tuple,
    ) -> Position:
        conn = get_connection(self._db_path)
        try:
            cur = conn.execute(
                f"UPDATE positions SET {assignments}, updated_at = ? "
                "WHERE id = ? AND status = ?",
                (*params, _now(), position_id, expected_status),
            )
            conn.commit()
            updated = cur.rowcount
        finally:
            conn.close()
        position = self.get_position(position_id)
        if not updated:
            current = position.status if position else "missing"
            raise PositionStateError(
                f"Position {position_id} is {current}, expected {expected_status}"
            )
        return position

    def mark_filled(self, position_id: int, price: float, quantity: float) -> Position:
        """pending → filled, recording exchange-reported price and quantity."""
        return self._guarded_update(
            position_id, PENDING,
            "status = ?, price = ?, quantity = ?",
            (FILLED, price, quantity),
        )

    def mark_cancelled(self, position_id: int) -> Position:
        """pending → cancelled."""
        return self._guarded_update(
            position_id, PENDING, "status = ?", (CANCELLED,),
        )

    def mark_closed(
        self,
        position_id: int,
        exit_price: float,
        profit_loss: float,
        close_reason: str,
    ) -> Position:
        """filled → closed, adding *profit_loss* to any partial exits already booked."""
        return self._guarded_update(
            position_id, FILLED,
            "status = ?, exit_price = ?, profit_loss = COALESCE(profit_loss, 0) + ?, "
            "close_reason = ?, closed_at = ?",
            (CLOSED, exit_price, profit_loss, close_reason, _now()),
        )

    def record_partial_exit(
        self,
        position_id: int,
        remaining_quantity: float,
        profit_loss: float,
    ) -> Position:
        """Book a partial take-profit fill on a filled position.

        The held quantity shrinks to *remaining_quantity*, *profit_loss* is
        added to the running total and the take-profit link is cleared so a
        replacement can be placed for the remainder.
        """
        return self._guarded_update(
            position_id, FILLED,
            "quantity = ?, profit_loss = COALESCE(profit_loss, 0) + ?, "
            "linked_take_profit_order_id = NULL, take_profit_price = NULL",
            (remaining_quantity, profit_loss),
        )

    def set_take_profit(
        self,
        position_id: int,
        order_id: Optional[str],
        take_profit_price: Optional[float],
    ) -> Position:
        """Record (or clear, with ``None``) the linked take-profit order."""
        conn = get_connection(self._db_path)
        try:
            conn.execute(
                """
                UPDATE positions
                SET linked_take_profit_order_id = ?, take_profit_price = ?, updated_at = ?
                WHERE id = ?
                """,
                (order_id, take_profit_price, _now(), position_id),
            )
            conn.commit()
        finally:
            conn.close()
        return self.get_position(position_id)

    # ── Read ─────────────────────────────────────────────────────────────

    def get_position(self, position_id: int) -> Optional[Position]:
        conn = get_connection(self._db_path)
        try:
            row = conn.execute(
                "SELECT * FROM positions WHERE id = ?", (position_id,)
            ).fetchone()
            return Position.from_row(dict(row)) if row else None
        finally:
            conn.close()

    def get_by_status(
        self,
        account_id: str,
        status: str,
        side: Optional[str] = "buy",
    ) -> list[Position]:
        """Positions of *account_id* in *status*, oldest first."""
        conditions = ["account_id = ?", "status = ?"]
        params: list = [account_id, status]
        if side:
            conditions.append("side = ?")
            params.append(side)
        conn = get_connection(self._db_path)
        try:
            rows = conn.execute(
                f"SELECT * FROM positions WHERE {' AND '.join(conditions)} ORDER BY id ASC",
                params,
            ).fetchall()
            return [Position.from_row(dict(r)) for r in rows]
        finally:
            conn.close()

    def count_open_by_symbol(self, account_id: str) -> dict[str, int]:
        """Number of pending + filled buy positions per symbol."""
        placeholders = ", ".join("?" for _ in OPEN_STATUSES)
        conn = get_connection(self._db_path)
        try:
            rows = conn.execute(
                f"""
                SELECT symbol, COUNT(*) AS n FROM positions
                WHERE account_id = ? AND side = 'buy' AND status IN ({placeholders})
                GROUP BY symbol
                """,
                (account_id, *OPEN_STATUSES),
            ).fetchall()
            return {r["symbol"]: r["n"] for r in rows}
        finally:
            conn.close()

    def get_positions(
        self,
        account_id: str,
        limit: int = 20,
        status_filter: Optional[str] = None,
    ) -> dict:
        """Return recent positions as plain dicts.

        Returns:
            ``{"positions": [...], "total": int}``
        """
        conditions = ["account_id = ?"]
        params: list = [account_id]
        if status_filter:
            conditions.append("status = ?")
            params.append(status_filter)
        where_clause = "WHERE " + " AND ".join(conditions)

        conn = get_connection(self._db_path)
        try:
            rows = conn.execute(
                f"SELECT * FROM positions {where_clause} ORDER BY id DESC LIMIT ?",
                (*params, limit),
            ).fetchall()
            total = conn.execute(
                f"SELECT COUNT(*) FROM positions {where_clause}", params,
            ).fetchone()[0]
            return {"positions": [dict(r) for r in rows], "total": total}
        finally:
            conn.close()
