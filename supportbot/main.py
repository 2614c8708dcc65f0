"""SupportBot — application entry point.

Boots the FastAPI internal server and provides the CLI entry point that
starts one trading engine per configured account.
"""

import logging

from fastapi import FastAPI

from supportbot.api.routers import router

app = FastAPI(title="SupportBot Internal API", version="0.1.0")
app.include_router(router)

logger = logging.getLogger("supportbot")


@app.get("/health")
async def health():
    """Liveness check."""
    return {"status": "ok"}


def warn_if_live(environment: str) -> bool:
    """Log a prominent warning when trading against the live exchange.

    Returns ``True`` if *environment* is ``"live"``.
    """
    if environment == "live":
        logger.warning("LIVE TRADING — real funds at risk on Bybit mainnet.")
        return True
    return False


# ── CLI ──────────────────────────────────────────────────────────────────


def _run_cli() -> None:
    """Parse CLI arguments and start the engines (and the API server)."""
    import argparse
    import asyncio

    from supportbot.config import load_config
    from supportbot.config_provider import JsonConfigProvider
    from supportbot.engine_manager import EngineRegistry
    from supportbot.exchange.bybit_client import BybitClient
    from supportbot.repos.db import init_db

    parser = argparse.ArgumentParser(description="SupportBot spot trading bot")
    parser.add_argument(
        "--account",
        action="append",
        dest="accounts",
        help="Account id to run (repeatable; default: every account in the accounts file)",
    )
    parser.add_argument(
        "--engine-only",
        action="store_true",
        help="Run trading engines without the API server",
    )
    parser.add_argument("--env-file", default=None, help="Path to a .env file")
    args = parser.parse_args()

    config = load_config(args.env_file)

    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    init_db(config.db_path)
    warn_if_live(config.bybit_environment)

    exchange = BybitClient(config)
    provider = JsonConfigProvider(config.accounts_path)
    registry = EngineRegistry(config=config, exchange=exchange, config_provider=provider)
    account_ids = args.accounts or provider.account_ids()

    from supportbot.api.routers import configure_routers
    from supportbot.repos.activity_repo import ActivityRepo
    from supportbot.repos.position_repo import PositionRepo
    from supportbot.repos.signal_repo import SignalRepo

    configure_routers(
        registry=registry,
        position_repo=PositionRepo(config.db_path),
        signal_repo=SignalRepo(config.db_path),
        activity_repo=ActivityRepo(config.db_path),
    )

    try:
        asyncio.run(_run(registry, account_ids, config.health_port, args.engine_only))
    except KeyboardInterrupt:
        logger.info("Interrupted — shutting down.")


async def _run(registry, account_ids: list[str], port: int, engine_only: bool) -> None:
    """Start the engines, then serve the API until shutdown."""
    import uvicorn

    started = await registry.start_all(account_ids)
    logger.info(
        "Started %d of %d account engine(s): %s",
        sum(started.values()), len(started), started,
    )

    try:
        if engine_only:
            for engine in registry.engines.values():
                await engine.join()
        else:
            uvi_config = uvicorn.Config(app, host="0.0.0.0", port=port, log_level="info")
            server = uvicorn.Server(uvi_config)
            logger.info("Internal API available at http://localhost:%d", port)
            await server.serve()
    finally:
        await registry.stop_all()
        logger.info("SupportBot stopped.")


if __name__ == "__main__":
    _run_cli()
