"""Activity event side-channel.

Components report every terminal outcome (placed, rejected, filled, closed,
critical failure) through an injected ``EventSink`` rather than writing to
storage themselves.  ``ActivityLogSink`` persists events to the activity log
and mirrors them to the standard ``logging`` tree.
"""

import logging
from typing import Optional, Protocol, runtime_checkable


SIGNAL_PROCESSED = "signal_processed"
SIGNAL_REJECTED = "signal_rejected"
TRADE_EXECUTED = "trade_executed"
TRADE_FILLED = "trade_filled"
POSITION_CLOSED = "position_closed"
ORDER_PLACED = "order_placed"
ORDER_FAILED = "order_failed"
ORDER_REJECTED = "order_rejected"
SYSTEM_ERROR = "system_error"
ENGINE_STATUS = "engine_status"
CYCLE_SKIPPED = "cycle_skipped"

EVENT_TYPES = frozenset({
    SIGNAL_PROCESSED,
    SIGNAL_REJECTED,
    TRADE_EXECUTED,
    TRADE_FILLED,
    POSITION_CLOSED,
    ORDER_PLACED,
    ORDER_FAILED,
    ORDER_REJECTED,
    SYSTEM_ERROR,
    ENGINE_STATUS,
    CYCLE_SKIPPED,
})

SEVERITY_INFO = "info"
SEVERITY_WARNING = "warning"
SEVERITY_ERROR = "error"
SEVERITY_CRITICAL = "critical"

_LOG_LEVELS = {
    SEVERITY_INFO: logging.INFO,
    SEVERITY_WARNING: logging.WARNING,
    SEVERITY_ERROR: logging.ERROR,
    SEVERITY_CRITICAL: logging.CRITICAL,
}


@runtime_checkable
class EventSink(Protocol):
    """Receives structured activity events."""

    def emit(
        self,
        event_type: str,
        message: str,
        data: Optional[dict] = None,
        severity: str = SEVERITY_INFO,
    ) -> None:
        ...


class ActivityLogSink:
    """Persist events through an ``ActivityRepo`` and log them.

    A storage failure is logged and swallowed: losing one audit row must not
    abort a trading step that already happened on the exchange.

    Args:
        repo: ``ActivityRepo`` (or duck-type with ``insert_event``).
        account_id: Account every event is keyed by.
    """

    def __init__(self, repo, account_id: str) -> None:
        self._repo = repo
        self._account_id = account_id
        self._logger = logging.getLogger(f"supportbot.activity.{account_id}")

    def emit(
        self,
        event_type: str,
        message: str,
        data: Optional[dict] = None,
        severity: str = SEVERITY_INFO,
    ) -> None:
        if event_type not in EVENT_TYPES:
            raise ValueError(f"Unknown activity event type: {event_type!r}")
        self._logger.log(
            _LOG_LEVELS.get(severity, logging.INFO),
            "[%s] %s", event_type, message,
        )
        try:
            self._repo.insert_event(
                account_id=self._account_id,
                event_type=event_type,
                message=message,
                data=data or {},
                severity=severity,
            )
        except Exception as exc:
            self._logger.error("Failed to persist %s event: %s", event_type, exc)

