"""SupportBot — application configuration.

Loads .env variables into a typed config object.
Validates required variables on startup.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv


_REQUIRED_VARS = [
    "BYBIT_API_KEY",
    "BYBIT_API_SECRET",
]


@dataclass(frozen=True)
class Config:
    """Typed configuration loaded from environment variables."""

    bybit_api_key: str
    bybit_api_secret: str
    bybit_environment: str  # "testnet" or "live"
    recv_window_ms: int
    db_path: str
    accounts_path: str
    log_level: str
    health_port: int

    @property
    def bybit_base_url(self) -> str:
        """Return the Bybit v5 API base URL based on environment."""
        if self.bybit_environment == "live":
            return "https://api.bybit.com"
        return "https://api-testnet.bybit.com"


def load_config(env_path: str | None = None) -> Config:
    """Load configuration from environment variables.

    Raises ``ValueError`` with a message naming the missing variable when a
    required variable is absent.
    """
    load_dotenv(dotenv_path=env_path)

    missing = [v for v in _REQUIRED_VARS if not os.environ.get(v)]
    if missing:
        raise ValueError(
            f"Missing required environment variable(s): {', '.join(missing)}"
        )

    return Config(
        bybit_api_key=os.environ["BYBIT_API_KEY"],
        bybit_api_secret=os.environ["BYBIT_API_SECRET"],
        bybit_environment=os.environ.get("BYBIT_ENVIRONMENT", "testnet"),
        recv_window_ms=int(os.environ.get("BYBIT_RECV_WINDOW_MS", "5000")),
        db_path=os.environ.get("DB_PATH", "data/supportbot.db"),
        accounts_path=os.environ.get("ACCOUNTS_PATH", "accounts.json"),
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
        health_port=int(os.environ.get("HEALTH_PORT", "8080")),
    )
