import sqlite3
from datetime import datetime
from typing import Optional

from vaultbot.constants import Direction, TradeResult
from vaultbot.errors import PersistenceError, ValidationError
from vaultbot.trading.trade import Trade

SETTINGS_KEYS = ("vault_balance", "protected_floor", "daily_loss_limit", "min_probability")


class TradeJournal:
    """Append-only trade history plus the singleton vault settings row, on SQLite."""

    def __init__(self, db_path: str, page_size: int = 100):
        self.page_size = page_size
        try:
            # written from a worker thread by the bot
            self.conn = sqlite3.connect(db_path, check_same_thread=False)
            self._init_db()
        except sqlite3.Error as e:
            raise PersistenceError(f"cannot open journal {db_path}: {e}") from e

    def _init_db(self):
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS trades (
                id          TEXT PRIMARY KEY,
                timestamp   TEXT,
                symbol      TEXT,
                direction   TEXT,
                stake       REAL,
                payout      REAL,
                probability REAL,
                result      TEXT,
                profit      REAL,
                is_training INTEGER
            )
        """)
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS vault_settings (
                id               INTEGER PRIMARY KEY CHECK (id = 1),
                vault_balance    REAL,
                protected_floor  REAL,
                daily_loss_limit REAL,
                min_probability  REAL
            )
        """)
        self.conn.commit()

    # ------------------------------------------------------------------
    def save_trade(self, t: Trade):
        try:
            self.conn.execute(
                "INSERT OR REPLACE INTO trades VALUES (?,?,?,?,?,?,?,?,?,?)",
                (t.id, t.timestamp.isoformat(), t.symbol, t.direction.value,
                 t.stake, t.payout, t.probability, t.result.value, t.profit,
                 int(t.is_training)),
            )
            self.conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"failed to save trade {t.id}: {e}") from e

    def load_trades(self, symbol: Optional[str] = None, result: Optional[str] = None,
                    start: Optional[datetime] = None, end: Optional[datetime] = None,
                    limit: Optional[int] = None) -> list[Trade]:
        """Newest first.  "ALL" (or None) disables the symbol / result filter."""
        clauses, params = [], []
        if symbol and symbol != "ALL":
            clauses.append("symbol = ?")
            params.append(symbol)
        if result and result != "ALL":
            clauses.append("result = ?")
            params.append(result)
        if start is not None:
            clauses.append("timestamp >= ?")
            params.append(start.isoformat())
        if end is not None:
            clauses.append("timestamp <= ?")
            params.append(end.isoformat())
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        limit = min(limit or self.page_size, self.page_size)

        try:
            cur = self.conn.execute(
                "SELECT id, timestamp, symbol, direction, stake, payout, probability, "
                f"result, profit, is_training FROM trades {where} "
                "ORDER BY timestamp DESC LIMIT ?",
                (*params, limit),
            )
            rows = cur.fetchall()
        except sqlite3.Error as e:
            raise PersistenceError(f"failed to load trades: {e}") from e

        return [
            Trade(
                id=tid,
                timestamp=datetime.fromisoformat(ts),
                symbol=sym,
                direction=Direction(direction),
                stake=float(stake),
                payout=float(payout),
                probability=float(probability),
                result=TradeResult(res),
                profit=float(profit),
                is_training=bool(is_training),
            )
            for tid, ts, sym, direction, stake, payout, probability, res, profit, is_training in rows
        ]

    def count_paper_trades(self) -> int:
        try:
            cur = self.conn.execute(
                "SELECT COUNT(*) FROM trades WHERE is_training = 1 AND result IN ('WIN', 'LOSS')"
            )
            return cur.fetchone()[0]
        except sqlite3.Error as e:
            raise PersistenceError(f"failed to count paper trades: {e}") from e

    # ------------------------------------------------------------------
    def load_settings(self) -> Optional[dict]:
        try:
            cur = self.conn.execute(
                f"SELECT {', '.join(SETTINGS_KEYS)} FROM vault_settings WHERE id = 1"
            )
            row = cur.fetchone()
        except sqlite3.Error as e:
            raise PersistenceError(f"failed to load settings: {e}") from e
        if row is None:
            return None
        return {k: float(v) for k, v in zip(SETTINGS_KEYS, row) if v is not None}

    def save_settings(self, delta: dict):
        """Upsert only the keys given."""
        unknown = set(delta) - set(SETTINGS_KEYS)
        if unknown:
            raise ValidationError(f"unknown settings keys: {sorted(unknown)}")
        if not delta:
            return
        cols = list(delta)
        try:
            self.conn.execute(
                f"INSERT INTO vault_settings (id, {', '.join(cols)}) "
                f"VALUES (1, {', '.join('?' for _ in cols)}) "
                f"ON CONFLICT(id) DO UPDATE SET {', '.join(f'{c} = excluded.{c}' for c in cols)}",
                [float(delta[c]) for c in cols],
            )
            self.conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"failed to save settings: {e}") from e

    def close(self):
        self.conn.close()
