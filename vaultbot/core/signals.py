from dataclasses import dataclass
from typing import Optional

from vaultbot.config import BotConfig
from vaultbot.constants import Direction
from vaultbot.core.indicators import IndicatorEngine


@dataclass(frozen=True)
class Candidate:
    symbol: str
    direction: Direction
    probability: float


class SignalPolicy:
    """Turns one instrument's prices and indicators into a (direction, probability) guess."""

    def score(self, prices: list[float], rsi: float, ema: float) -> Optional[tuple[Direction, float]]:
        raise NotImplementedError


class MeanReversionPolicy(SignalPolicy):
    """
    Oversold bounce / overbought drop.
      • CALL when RSI < 30 and the last tick went up
      • PUT  when RSI > 70 and the last tick went down
    Probability = 70 + 0.8 per RSI point past the band, +5 if price is on the
    EMA side of the trade, capped at `max_probability`.
    """

    def __init__(self, max_probability: float = 95.0):
        self.max_probability = max_probability

    def score(self, prices, rsi, ema):
        if len(prices) < 2:
            return None
        current, prev = prices[-1], prices[-2]

        if rsi < 30 and current > prev:
            direction = Direction.CALL
            probability = min(self.max_probability, 70 + (30 - rsi) * 0.8)
            if current > ema:
                probability += 5
        elif rsi > 70 and current < prev:
            direction = Direction.PUT
            probability = min(self.max_probability, 70 + (rsi - 70) * 0.8)
            if current < ema:
                probability += 5
        else:
            return None

        return direction, min(self.max_probability, probability)


class SignalAnalyzer:
    def __init__(self, indicators: IndicatorEngine, cfg: BotConfig,
                 policy: Optional[SignalPolicy] = None):
        self.indicators = indicators
        self.cfg = cfg
        self.policy = policy or MeanReversionPolicy(cfg.max_probability)

    def evaluate(self, threshold: float) -> Optional[Candidate]:
        """Best accepted candidate across the whitelist; ties keep whitelist order."""
        best: Optional[Candidate] = None
        for symbol in self.cfg.symbols:
            prices = self.indicators.prices(symbol)
            if len(prices) < self.cfg.min_history:
                continue
            snap = self.indicators.snapshot(symbol)
            scored = self.policy.score(prices, snap.rsi, snap.ema)
            if scored is None:
                continue
            direction, probability = scored
            if probability < threshold:
                continue
            if best is None or probability > best.probability:
                best = Candidate(symbol, direction, probability)
        return best
