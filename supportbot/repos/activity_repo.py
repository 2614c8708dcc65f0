"""Activity log repository — append-only audit trail of engine decisions."""

import json
from datetime import datetime, timezone
from typing import Optional

from supportbot.repos.db import get_connection


class ActivityRepo:
    """Data access layer for the ``activity_log`` table.

    Args:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def insert_event(
        self,
        account_id: str,
        event_type: str,
        message: str,
        data: dict,
        severity: str = "info",
    ) -> int:
        """Append one event and return its row id."""
        created_at = datetime.now(timezone.utc).isoformat()
        conn = get_connection(self._db_path)
        try:
            cur = conn.execute(
                """
                INSERT INTO activity_log
                    (account_id, event_type, message, data, severity, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    account_id, event_type, message,
                    json.dumps(data, default=str), severity, created_at,
                ),
            )
            conn.commit()
            return cur.lastrowid
        finally:
            conn.close()

    def get_events(
        self,
        account_id: str,
        limit: int = 50,
        event_type: Optional[str] = None,
        severity: Optional[str] = None,
    ) -> list[dict]:
        """Return recent events, newest first, with ``data`` decoded."""
        conditions = ["account_id = ?"]
        params: list = [account_id]
        if event_type:
            conditions.append("event_type = ?")
            params.append(event_type)
        if severity:
            conditions.append("severity = ?")
            params.append(severity)

        conn = get_connection(self._db_path)
        try:
            rows = conn.execute(
                f"SELECT * FROM activity_log WHERE {' AND '.join(conditions)} "
                "ORDER BY id DESC LIMIT ?",
                (*params, limit),
            ).fetchall()
        finally:
            conn.close()

        events = []
        for row in rows:
            event = dict(row)
            event["data"] = json.loads(event["data"] or "{}")
            events.append(event)
        return events
