"""Database initialization and connection management.

Creates the schema on first boot, provides connection factory.
"""

import pathlib
import sqlite3


_SCHEMA = """
CREATE TABLE IF NOT EXISTS strategy_parameters (
    strategy_id TEXT NOT NULL,
    name        TEXT NOT NULL,
    value       REAL NOT NULL,
    updated_at  TEXT NOT NULL,
    PRIMARY KEY (strategy_id, name)
);

CREATE TABLE IF NOT EXISTS strategy_performance (
    strategy_id  TEXT PRIMARY KEY,
    win_rate     REAL NOT NULL,
    sharpe_ratio REAL NOT NULL,
    max_drawdown REAL NOT NULL,
    updated_at   TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS trades (
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    mode         TEXT NOT NULL,
    strategy     TEXT NOT NULL,
    symbol       TEXT NOT NULL,
    direction    TEXT NOT NULL,
    volume       REAL NOT NULL,
    entry_price  REAL NOT NULL,
    stop_loss    REAL NOT NULL,
    take_profit  REAL NOT NULL,
    order_id     TEXT,
    reason       TEXT,
    opened_at    TEXT NOT NULL,
    exit_price   REAL,
    exit_reason  TEXT,
    pnl          REAL,
    status       TEXT NOT NULL DEFAULT 'open',
    closed_at    TEXT
);

CREATE TABLE IF NOT EXISTS backtest_runs (
    id               INTEGER PRIMARY KEY AUTOINCREMENT,
    strategy_id      TEXT NOT NULL,
    symbol           TEXT NOT NULL,
    timeframe        TEXT NOT NULL,
    start_date       TEXT,
    end_date         TEXT,
    initial_balance  REAL NOT NULL,
    trades_count     INTEGER NOT NULL,
    win_rate         REAL NOT NULL,
    profit_loss      REAL NOT NULL,
    sharpe_ratio     REAL NOT NULL,
    max_drawdown     REAL NOT NULL,
    max_drawdown_pct REAL NOT NULL,
    parameters       TEXT,
    created_at       TEXT NOT NULL
);
"""


def init_db(db_path: str) -> None:
    """Create all tables that do not exist yet.

    Args:
        db_path: Path to the SQLite database file (or ``":memory:"``).
            Parent directories are created as needed.
    """
    if db_path != ":memory:":
        pathlib.Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path)
    try:
        conn.executescript(_SCHEMA)
    finally:
        conn.close()


def get_connection(db_path: str) -> sqlite3.Connection:
    """Return a new SQLite connection with row-factory enabled.

    Callers are responsible for closing the connection.
    """
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    return conn
