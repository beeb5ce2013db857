"""Backtest run repository — persists backtest summaries to SQLite."""

import json
from datetime import datetime, timezone

from signaldesk.repos.db import get_connection


class BacktestRepo:
    """Data access layer for the ``backtest_runs`` table.

    Args:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def insert_run(
        self,
        strategy_id: str,
        symbol: str,
        timeframe: str,
        initial_balance: float,
        stats: dict,
        parameters: dict | None = None,
        start_date: str | None = None,
        end_date: str | None = None,
    ) -> int:
        """Persist a backtest run summary.  Returns the row id."""
        conn = get_connection(self._db_path)
        try:
            cur = conn.execute(
                """
                INSERT INTO backtest_runs
                    (strategy_id, symbol, timeframe, start_date, end_date,
                     initial_balance, trades_count, win_rate, profit_loss,
                     sharpe_ratio, max_drawdown, max_drawdown_pct,
                     parameters, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    strategy_id,
                    symbol,
                    timeframe,
                    start_date,
                    end_date,
                    initial_balance,
                    stats["trades_count"],
                    stats["win_rate"],
                    stats["profit_loss"],
                    stats["sharpe_ratio"],
                    stats["max_drawdown"],
                    stats["max_drawdown_pct"],
                    json.dumps(parameters or {}),
                    datetime.now(timezone.utc).isoformat(),
                ),
            )
            conn.commit()
            return cur.lastrowid
        finally:
            conn.close()

    def get_runs(self, limit: int = 10, strategy_id: str | None = None) -> list[dict]:
        """Return recent backtest run summaries, newest first."""
        conn = get_connection(self._db_path)
        try:
            if strategy_id:
                rows = conn.execute(
                    "SELECT * FROM backtest_runs WHERE strategy_id = ? "
                    "ORDER BY id DESC LIMIT ?",
                    (strategy_id, limit),
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM backtest_runs ORDER BY id DESC LIMIT ?",
                    (limit,),
                ).fetchall()
            runs = []
            for r in rows:
                run = dict(r)
                run["parameters"] = json.loads(run["parameters"] or "{}")
                runs.append(run)
            return runs
        finally:
            conn.close()
