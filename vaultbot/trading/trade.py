import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone

from vaultbot.constants import Direction, TradeResult


@dataclass(frozen=True)
class Trade:
    symbol: str
    direction: Direction
    stake: float
    payout: float
    probability: float
    result: TradeResult = TradeResult.PENDING
    profit: float = 0.0
    is_training: bool = False
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def resolved(self, result: TradeResult, payout: float, profit: float) -> "Trade":
        """Copy of a PENDING trade with its final outcome."""
        if self.result is not TradeResult.PENDING:
            raise ValueError(f"trade {self.id} already resolved as {self.result.value}")
        return replace(self, result=result, payout=payout, profit=profit)
