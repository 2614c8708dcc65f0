"""Internal API routers — status, positions, signals, activity and control.

No business logic, no DB access beyond the injected repos.  Admin actions
are delegated to the ``EngineRegistry``.
"""

import logging
from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Query

from supportbot.errors import ConfigError, ExchangeError, OrderValidationError, PositionStateError

logger = logging.getLogger("supportbot.api")
router = APIRouter()

# ── Shared state (set during app startup) ────────────────────────────────

_registry = None        # Set via configure_routers()
_position_repo = None   # Set via configure_routers()
_signal_repo = None     # Set via configure_routers()
_activity_repo = None   # Set via configure_routers()


def configure_routers(
    registry=None,
    position_repo=None,
    signal_repo=None,
    activity_repo=None,
) -> None:
    """Inject dependencies from the application startup.

    Args:
        registry: An ``EngineRegistry`` for status and control actions.
        position_repo: A ``PositionRepo`` (or duck-type for tests).
        signal_repo: A ``SignalRepo`` (or duck-type for tests).
        activity_repo: An ``ActivityRepo`` (or duck-type for tests).
    """
    global _registry, _position_repo, _signal_repo, _activity_repo  # noqa: PLW0603
    _registry = registry
    _position_repo = position_repo
    _signal_repo = signal_repo
    _activity_repo = activity_repo


# ── Read endpoints ───────────────────────────────────────────────────────


@router.get("/status")
async def get_status():
    """Return status for all registered accounts."""
    if _registry is None:
        return {"accounts": {}}
    return _registry.get_status()


@router.get("/status/{account_id}")
async def get_account_status(account_id: str):
    """Return status for a single account."""
    if _registry is None:
        return {"error": "No engine registry"}
    return _registry.get_status(account_id)


@router.get("/positions/{account_id}")
async def get_positions(
    account_id: str,
    limit: int = Query(default=20, ge=1, le=200),
    status: Optional[str] = Query(default=None),
):
    """Return recent positions of an account."""
    if _position_repo is None:
        return {"positions": [], "total": 0}
    return _position_repo.get_positions(account_id, limit=limit, status_filter=status)


@router.get("/signals/{account_id}")
async def get_signals(
    account_id: str,
    limit: int = Query(default=20, ge=1, le=200),
):
    """Return recent signals of an account, newest first."""
    if _signal_repo is None:
        return {"signals": []}
    return {"signals": _signal_repo.get_signals(account_id, limit=limit)}


@router.get("/activity/{account_id}")
async def get_activity(
    account_id: str,
    limit: int = Query(default=50, ge=1, le=500),
    event_type: Optional[str] = Query(default=None),
    severity: Optional[str] = Query(default=None),
):
    """Return the activity log of an account, newest first."""
    if _activity_repo is None:
        return {"events": []}
    return {
        "events": _activity_repo.get_events(
            account_id, limit=limit, event_type=event_type, severity=severity,
        )
    }


# ── Control actions ──────────────────────────────────────────────────────


@router.post("/control/{account_id}/start")
async def start_engine(account_id: str):
    """Start the trading engine of an account."""
    if _registry is None:
        return {"error": "No engine registry"}
    started = await _registry.start(account_id)
    logger.info("Start requested for account '%s' via API (started=%s).", account_id, started)
    return {"status": "started" if started else "not_started", "account_id": account_id}


@router.post("/control/{account_id}/stop")
async def stop_engine(account_id: str):
    """Stop the trading engine of an account after its current cycle."""
    if _registry is None:
        return {"error": "No engine registry"}
    if not _registry.stop(account_id):
        return {"error": f"Unknown account: {account_id}"}
    logger.info("Stop requested for account '%s' via API.", account_id)
    return {"status": "stopping", "account_id": account_id}


@router.post("/control/{account_id}/positions/{position_id}/close")
async def close_position(account_id: str, position_id: int):
    """Close a filled position at market regardless of profit."""
    if _registry is None:
        return {"error": "No engine registry"}
    try:
        position = await _registry.manual_close(account_id, position_id)
    except (PositionStateError, OrderValidationError, ExchangeError) as exc:
        logger.warning("Manual close of position %d failed: %s", position_id, exc)
        return {"error": str(exc)}
    return {"status": "closed", "position": asdict(position)}


@router.post("/control/{account_id}/end-of-day")
async def simulate_end_of_day(
    account_id: str,
    close_any_profit: bool = Query(default=False),
):
    """Run the end-of-day evaluation now (ignores time and enable gates)."""
    if _registry is None:
        return {"error": "No engine registry"}
    try:
        return await _registry.simulate_end_of_day(account_id, close_any_profit=close_any_profit)
    except ConfigError as exc:
        return {"error": str(exc)}


@router.post("/control/{account_id}/reconcile")
async def reconcile(account_id: str):
    """Reconcile fills and audit take-profits now."""
    if _registry is None:
        return {"error": "No engine registry"}
    try:
        return await _registry.reconcile(account_id)
    except ConfigError as exc:
        return {"error": str(exc)}
