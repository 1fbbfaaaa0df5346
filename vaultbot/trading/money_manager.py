from vaultbot.config import BotConfig
from vaultbot.constants import TradeResult
from vaultbot.core.state import EngineState


class MoneyManager:
    def __init__(self, cfg: BotConfig):
        self.cfg = cfg

    def next_stake(self, current: float, result: TradeResult) -> float:
        """Martingale-lite: reset after a win, grow by `loss_multiplier` after a loss (capped)."""
        if result is TradeResult.LOSS:
            stake = min(current * self.cfg.loss_multiplier, self.cfg.max_stake)
        else:
            stake = self.cfg.default_stake
        return max(self.cfg.min_stake, stake)

    def active_stake(self, state: EngineState) -> float:
        if state.is_recovery_mode:
            return self.cfg.recovery_stake
        return state.current_stake

    def active_threshold(self, state: EngineState) -> float:
        if state.is_recovery_mode:
            return self.cfg.recovery_probability
        return state.min_probability

    def recovery_triggered(self, daily_loss: float, daily_loss_limit: float) -> bool:
        return daily_loss >= daily_loss_limit * self.cfg.recovery_threshold

    def floor_allows(self, state: EngineState, stake: float) -> bool:
        return state.balance - stake >= state.protected_floor

    def vault_step(self, profit: float) -> float:
        # Only a single trade clearing the trigger moves the vault and floor
        if profit >= self.cfg.vault_trigger_profit:
            return self.cfg.floor_increment
        return 0.0
