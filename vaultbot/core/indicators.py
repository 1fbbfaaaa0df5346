from collections import deque
from dataclasses import dataclass
from typing import Optional

import numpy as np

from vaultbot.config import BotConfig


@dataclass(frozen=True)
class IndicatorSnapshot:
    symbol: str
    rsi: float = 50.0
    ema: float = 0.0
    price_change_pct: float = 0.0
    signal_strength: float = 0.0
    last_price: float = 0.0
    is_active: bool = False


def rsi(prices, period: int = 14) -> float:
    """Simple-average RSI over the trailing `period` deltas (no Wilder smoothing)."""
    if len(prices) < period + 1:
        return 50.0
    deltas = np.diff(np.asarray(prices, dtype=np.float64)[-(period + 1):])
    avg_gain = deltas[deltas > 0].sum() / period
    avg_loss = -deltas[deltas < 0].sum() / period
    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return float(100.0 - 100.0 / (1.0 + rs))


def ema(prices, period: int = 9) -> float:
    """EMA seeded with the SMA of the first `period` samples, then run forward."""
    if len(prices) < period:
        return float(prices[-1]) if len(prices) else 0.0
    data = np.asarray(prices, dtype=np.float64)
    multiplier = 2.0 / (period + 1)
    val = float(np.mean(data[:period]))
    for p in data[period:]:
        val = (p - val) * multiplier + val
    return float(val)


def price_change_pct(prices) -> float:
    if len(prices) < 2 or prices[-2] == 0:
        return 0.0
    return float((prices[-1] - prices[-2]) / prices[-2] * 100.0)


def signal_strength(rsi_value: float) -> float:
    # 3 points per RSI point outside the [30, 70] band
    if rsi_value < 30:
        return min(100.0, (30 - rsi_value) * 3)
    if rsi_value > 70:
        return min(100.0, (rsi_value - 70) * 3)
    return 0.0


class IndicatorEngine:
    """Bounded price window per whitelisted instrument plus its latest indicators."""

    def __init__(self, cfg: BotConfig):
        self.cfg = cfg
        self._prices: dict[str, deque[float]] = {
            s: deque(maxlen=cfg.price_window) for s in cfg.symbols
        }
        self._snapshots: dict[str, IndicatorSnapshot] = {
            s: IndicatorSnapshot(symbol=s) for s in cfg.symbols
        }

    def on_tick(self, symbol: str, price: float) -> Optional[IndicatorSnapshot]:
        """Append a quote and recompute. Unknown symbols are ignored (returns None)."""
        series = self._prices.get(symbol)
        if series is None:
            return None
        series.append(float(price))

        prices = list(series)
        r = rsi(prices, self.cfg.rsi_period)
        snap = IndicatorSnapshot(
            symbol=symbol,
            rsi=r,
            ema=ema(prices, self.cfg.ema_period),
            price_change_pct=price_change_pct(prices),
            signal_strength=signal_strength(r),
            last_price=float(price),
            is_active=True,
        )
        self._snapshots[symbol] = snap
        return snap

    def prices(self, symbol: str) -> list[float]:
        return list(self._prices.get(symbol, ()))

    def snapshot(self, symbol: str) -> Optional[IndicatorSnapshot]:
        return self._snapshots.get(symbol)

    def snapshots(self) -> list[IndicatorSnapshot]:
        return [self._snapshots[s] for s in self.cfg.symbols]
