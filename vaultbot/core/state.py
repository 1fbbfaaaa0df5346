from dataclasses import dataclass
from typing import Optional

from vaultbot.config import BotConfig
from vaultbot.constants import TradeResult


@dataclass(frozen=True)
class EngineState:
    """Everything the decision loop owns. Replaced, never mutated in place."""

    # --- mode ---
    is_running: bool = False
    is_training: bool = True
    is_authorized: bool = False
    auth_lost: bool = False                 # deauthorized since the last successful authorize
    current_symbol: Optional[str] = None    # pending live trade

    # --- bankroll ---
    balance: float = 0.0
    currency: str = "USD"
    total_profit: float = 0.0
    vault: float = 0.0
    protected_floor: float = 30.03

    # --- risk ---
    daily_loss: float = 0.0
    daily_loss_limit: float = 1.50
    is_recovery_mode: bool = False

    # --- performance ---
    trades_count: int = 0
    wins_count: int = 0
    losses_count: int = 0
    current_streak: int = 0
    longest_streak: int = 0
    paper_trades_count: int = 0

    # --- policy ---
    min_probability: float = 75.0
    current_stake: float = 1.00
    last_trade_result: Optional[TradeResult] = None

    @classmethod
    def initial(cls, cfg: BotConfig) -> "EngineState":
        return cls(
            currency=cfg.currency,
            protected_floor=cfg.protected_floor,
            daily_loss_limit=cfg.daily_loss_limit,
            min_probability=cfg.min_probability,
            current_stake=cfg.default_stake,
        )

    @property
    def win_rate(self) -> float:
        if self.trades_count == 0:
            return 0.0
        return self.wins_count / self.trades_count * 100

    @property
    def mode(self) -> str:
        return "TRAINING" if self.is_training else "LIVE"

    @property
    def daily_loss_breached(self) -> bool:
        return self.daily_loss >= self.daily_loss_limit
