"""SignalDesk — application configuration.

Loads .env variables into a typed config object.
Validates required variables on startup.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv


_REQUIRED_BRIDGE_VARS = [
    "BRIDGE_URL",
    "BRIDGE_API_TOKEN",
    "BRIDGE_CONNECTION_ID",
]


@dataclass(frozen=True)
class Config:
    """Typed configuration loaded from environment variables."""

    bridge_url: str
    bridge_api_token: str
    bridge_connection_id: str
    symbol: str
    strategy: str  # strategy registry key, e.g. "xauusd"
    check_interval_seconds: int
    min_trade_interval_seconds: int
    max_errors: int
    sync_poll_seconds: int
    max_positions: int  # 0 disables the open-position guard
    db_path: str
    catalog_path: str
    log_level: str
    api_port: int

    @property
    def has_bridge(self) -> bool:
        """Return ``True`` when all bridge credentials are present."""
        return bool(
            self.bridge_url and self.bridge_api_token and self.bridge_connection_id
        )


def load_config(env_path: str | None = None, require_bridge: bool = False) -> Config:
    """Load configuration from environment variables.

    Bridge credentials are only mandatory for live trading, so they are
    checked when *require_bridge* is set.

    Raises ``ValueError`` with a message naming the missing variable when a
    required variable is absent.
    """
    load_dotenv(dotenv_path=env_path)

    if require_bridge:
        missing = [v for v in _REQUIRED_BRIDGE_VARS if not os.environ.get(v)]
        if missing:
            raise ValueError(
                f"Missing required environment variable(s): {', '.join(missing)}"
            )

    return Config(
        bridge_url=os.environ.get("BRIDGE_URL", "http://localhost:3001"),
        bridge_api_token=os.environ.get("BRIDGE_API_TOKEN", ""),
        bridge_connection_id=os.environ.get("BRIDGE_CONNECTION_ID", ""),
        symbol=os.environ.get("TRADE_SYMBOL", "XAUUSD"),
        strategy=os.environ.get("ACTIVE_STRATEGY", "xauusd"),
        check_interval_seconds=int(os.environ.get("CHECK_INTERVAL_SECONDS", "5")),
        min_trade_interval_seconds=int(
            os.environ.get("MIN_TRADE_INTERVAL_SECONDS", "300")
        ),
        max_errors=int(os.environ.get("MAX_ERRORS", "15")),
        sync_poll_seconds=int(os.environ.get("SYNC_POLL_SECONDS", "3")),
        max_positions=int(os.environ.get("MAX_POSITIONS", "5")),
        db_path=os.environ.get("DB_PATH", "data/signaldesk.db"),
        catalog_path=os.environ.get("CATALOG_PATH", "catalog.json"),
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
        api_port=int(os.environ.get("API_PORT", "8080")),
    )
