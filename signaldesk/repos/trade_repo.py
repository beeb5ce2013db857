"""Trade log repository — orders placed by the supervisor, one row each."""

from datetime import datetime, timezone
from typing import Optional

from signaldesk.repos.db import get_connection

_INSERT_COLUMNS = (
    "mode", "strategy", "symbol", "direction", "volume", "entry_price",
    "stop_loss", "take_profit", "order_id", "reason", "opened_at",
)


def _filters(status: Optional[str], strategy: Optional[str]) -> tuple[str, list]:
    """Build the WHERE clause shared by the page query and its count."""
    clauses = []
    params: list = []
    for column, value in (("status", status), ("strategy", strategy)):
        if value:
            clauses.append(f"{column} = ?")
            params.append(value)
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    return where, params


class TradeRepo:
    """Data access layer for the ``trades`` table.

    Args:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def insert_trade(
        self,
        mode: str,
        strategy: str,
        symbol: str,
        direction: str,
        volume: float,
        entry_price: float,
        stop_loss: float,
        take_profit: float,
        opened_at: str,
        order_id: Optional[str] = None,
        reason: str = "",
    ) -> int:
        """Log an opened order.  Returns the new row id."""
        values = (
            mode, strategy, symbol, direction, volume, entry_price,
            stop_loss, take_profit, order_id, reason, opened_at,
        )
        placeholders = ", ".join("?" for _ in _INSERT_COLUMNS)
        conn = get_connection(self._db_path)
        try:
            cur = conn.execute(
                f"INSERT INTO trades ({', '.join(_INSERT_COLUMNS)}) "
                f"VALUES ({placeholders})",
                values,
            )
            conn.commit()
            return cur.lastrowid
        finally:
            conn.close()

    def close_trade(
        self,
        trade_id: int,
        exit_price: float,
        exit_reason: str,
        pnl: float,
        closed_at: Optional[str] = None,
    ) -> None:
        """Mark a logged trade closed at *exit_price* (``"TP hit"``, ``"SL hit"``...)."""
        closed_at = closed_at or datetime.now(timezone.utc).isoformat()
        conn = get_connection(self._db_path)
        try:
            conn.execute(
                "UPDATE trades SET status = 'closed', exit_price = ?, "
                "exit_reason = ?, pnl = ?, closed_at = ? WHERE id = ?",
                (exit_price, exit_reason, pnl, closed_at, trade_id),
            )
            conn.commit()
        finally:
            conn.close()

    def get_trades(
        self,
        limit: int = 20,
        status_filter: Optional[str] = None,
        strategy: Optional[str] = None,
    ) -> dict:
        """Page of logged trades, newest first, plus the filtered total.

        Returns:
            ``{"trades": [...], "total": int}``
        """
        where, params = _filters(status_filter, strategy)
        conn = get_connection(self._db_path)
        try:
            total = conn.execute(
                f"SELECT COUNT(*) FROM trades {where}", params,
            ).fetchone()[0]
            rows = conn.execute(
                f"SELECT * FROM trades {where} ORDER BY id DESC LIMIT ?",
                [*params, limit],
            ).fetchall()
        finally:
            conn.close()
        return {"trades": [dict(r) for r in rows], "total": total}
