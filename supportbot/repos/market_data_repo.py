"""Market data repository — append-only price samples per account and symbol.

Each account keeps its own sample history, so two accounts trading the same
symbol never see each other's ingestion.
"""

from supportbot.repos.db import get_connection
from supportbot.strategy.models import MarketSample


class MarketDataRepo:
    """Data access layer for the ``market_data`` table.

    Args:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def insert_samples(self, account_id: str, samples: list[MarketSample]) -> int:
        """Append samples for *account_id* and return how many were written."""
        if not samples:
            return 0
        conn = get_connection(self._db_path)
        try:
            conn.executemany(
                """
                INSERT INTO market_data (account_id, symbol, price, volume, timestamp)
                VALUES (?, ?, ?, ?, ?)
                """,
                [(account_id, s.symbol, s.price, s.volume, s.timestamp) for s in samples],
            )
            conn.commit()
            return len(samples)
        finally:
            conn.close()

    def get_recent(self, account_id: str, symbol: str, limit: int) -> list[MarketSample]:
        """Return the newest *limit* samples for *symbol*, oldest first."""
        conn = get_connection(self._db_path)
        try:
            rows = conn.execute(
                """
                SELECT symbol, price, volume, timestamp FROM market_data
                WHERE account_id = ? AND symbol = ? ORDER BY id DESC LIMIT ?
                """,
                (account_id, symbol, limit),
            ).fetchall()
            return [
                MarketSample(r["symbol"], r["price"], r["volume"], r["timestamp"])
                for r in reversed(rows)
            ]
        finally:
            conn.close()

    def count(self, account_id: str, symbol: str) -> int:
        conn = get_connection(self._db_path)
        try:
            return conn.execute(
                "SELECT COUNT(*) FROM market_data WHERE account_id = ? AND symbol = ?",
                (account_id, symbol),
            ).fetchone()[0]
        finally:
            conn.close()

    def prune(self, account_id: str, symbol: str, keep: int) -> int:
        """Delete all but the newest *keep* samples.  Returns rows removed."""
        conn = get_connection(self._db_path)
        try:
            cur = conn.execute(
                """
                DELETE FROM market_data
                WHERE account_id = ? AND symbol = ? AND id NOT IN (
                    SELECT id FROM market_data WHERE account_id = ? AND symbol = ?
                    ORDER BY id DESC LIMIT ?
                )
                """,
                (account_id, symbol, account_id, symbol, keep),
            )
            conn.commit()
            return cur.rowcount
        finally:
            conn.close()
