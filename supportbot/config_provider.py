"""Per-account trading configuration from ``accounts.json``.

The file is re-read on every call so edits take effect on the next cycle
without restarting the engine.  Layout::

    {
      "accounts": {
        "main": {"symbols": ["BTCUSDT"], "is_active": true, ...}
      }
    }
"""

import json
import logging
import pathlib

from supportbot.errors import ConfigError
from supportbot.models.trading_config import TradingConfiguration

logger = logging.getLogger("supportbot.config")


class JsonConfigProvider:
    """Loads ``TradingConfiguration`` snapshots from a JSON file.

    Args:
        path: Location of the accounts file.
    """

    def __init__(self, path) -> None:
        self._path = pathlib.Path(path)

    @property
    def path(self) -> pathlib.Path:
        return self._path

    def _read(self) -> dict:
        if not self._path.exists():
            raise ConfigError(f"Accounts file not found: {self._path}")
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as exc:
            raise ConfigError(f"Cannot read {self._path}: {exc}") from exc
        accounts = data.get("accounts") if isinstance(data, dict) else None
        if not isinstance(accounts, dict):
            raise ConfigError(f"{self._path} has no 'accounts' object")
        return accounts

    def account_ids(self) -> list[str]:
        """All configured account ids, in file order."""
        return list(self._read().keys())

    def load_config(self, account_id: str) -> TradingConfiguration:
        """Return a fresh configuration snapshot for *account_id*.

        Raises:
            ConfigError: file missing or malformed, unknown account, or a
                field violating the configuration invariants.
        """
        accounts = self._read()
        raw = accounts.get(account_id)
        if raw is None:
            raise ConfigError(f"Unknown account: {account_id}")
        if not isinstance(raw, dict):
            raise ConfigError(f"Account {account_id} must be a JSON object")
        try:
            return TradingConfiguration.from_dict(raw)
        except TypeError as exc:
            raise ConfigError(f"Invalid configuration for {account_id}: {exc}") from exc
