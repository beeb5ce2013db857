"""Catalog repository — saved strategy parameters and performance."""

from datetime import datetime, timezone

from signaldesk.repos.db import get_connection


class CatalogRepo:
    """Data access layer for user-saved strategy settings.

    Args:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    # ── Parameters ───────────────────────────────────────────────────────

    def save_parameters(self, strategy_id: str, values: dict[str, float]) -> None:
        """Upsert parameter values for *strategy_id*."""
        now = datetime.now(timezone.utc).isoformat()
        conn = get_connection(self._db_path)
        try:
            conn.executemany(
                """
                INSERT INTO strategy_parameters (strategy_id, name, value, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT (strategy_id, name)
                DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
                """,
                [(strategy_id, name, value, now) for name, value in values.items()],
            )
            conn.commit()
        finally:
            conn.close()

    def load_parameters(self, strategy_id: str) -> dict[str, float]:
        conn = get_connection(self._db_path)
        try:
            rows = conn.execute(
                "SELECT name, value FROM strategy_parameters WHERE strategy_id = ?",
                (strategy_id,),
            ).fetchall()
            return {row["name"]: row["value"] for row in rows}
        finally:
            conn.close()

    # ── Performance ──────────────────────────────────────────────────────

    def save_performance(
        self,
        strategy_id: str,
        win_rate: float,
        sharpe_ratio: float,
        max_drawdown: float,
    ) -> None:
        now = datetime.now(timezone.utc).isoformat()
        conn = get_connection(self._db_path)
        try:
            conn.execute(
                """
                INSERT INTO strategy_performance
                    (strategy_id, win_rate, sharpe_ratio, max_drawdown, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT (strategy_id) DO UPDATE SET
                    win_rate = excluded.win_rate,
                    sharpe_ratio = excluded.sharpe_ratio,
                    max_drawdown = excluded.max_drawdown,
                    updated_at = excluded.updated_at
                """,
                (strategy_id, win_rate, sharpe_ratio, max_drawdown, now),
            )
            conn.commit()
        finally:
            conn.close()

    def load_performance(self) -> dict[str, dict]:
        """Return ``{strategy_id: {win_rate, sharpe_ratio, max_drawdown}}``."""
        conn = get_connection(self._db_path)
        try:
            rows = conn.execute(
                "SELECT strategy_id, win_rate, sharpe_ratio, max_drawdown "
                "FROM strategy_performance"
            ).fetchall()
            return {
                row["strategy_id"]: {
                    "win_rate": row["win_rate"],
                    "sharpe_ratio": row["sharpe_ratio"],
                    "max_drawdown": row["max_drawdown"],
                }
                for row in rows
            }
        finally:
            conn.close()
