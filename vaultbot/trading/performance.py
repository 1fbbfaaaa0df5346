from dataclasses import dataclass, replace

from vaultbot.config import BotConfig
from vaultbot.constants import LogType, TradeResult
from vaultbot.core.state import EngineState
from vaultbot.trading.calibration import TrainingCalibrator
from vaultbot.trading.money_manager import MoneyManager
from vaultbot.utils.log_buffer import LogEntry


@dataclass(frozen=True)
class Outcome:
    state: EngineState
    logs: list[LogEntry]
    settings_delta: dict


class OutcomeAggregator:
    """Folds one resolved trade into the engine state."""

    def __init__(self, cfg: BotConfig, money_mgr: MoneyManager, calibrator: TrainingCalibrator):
        self.cfg = cfg
        self.money_mgr = money_mgr
        self.calibrator = calibrator

    def apply(self, state: EngineState, result: TradeResult, profit: float,
              is_training: bool) -> Outcome:
        if result not in (TradeResult.WIN, TradeResult.LOSS):
            raise ValueError(f"cannot aggregate a {result.value} trade")
        won = result is TradeResult.WIN
        logs: list[LogEntry] = []
        delta: dict = {}

        streak = state.current_streak + 1 if won else 0
        daily_loss = state.daily_loss if won else state.daily_loss + abs(profit)

        step = self.money_mgr.vault_step(profit)
        vault, floor = state.vault + step, state.protected_floor + step
        if step:
            delta.update(vault_balance=vault, protected_floor=floor)
            logs.append(LogEntry(
                LogType.SUCCESS,
                f"🔒 Vault +${step:.2f} → ${vault:.2f}  floor → ${floor:.2f}",
            ))

        recovery = self.money_mgr.recovery_triggered(daily_loss, state.daily_loss_limit)
        if recovery and not state.is_recovery_mode:
            logs.append(LogEntry(
                LogType.WARNING,
                f"Recovery mode ON: daily loss ${daily_loss:.2f} of ${state.daily_loss_limit:.2f} "
                f"→ stake ${self.cfg.recovery_stake:.2f}, threshold {self.cfg.recovery_probability:.0f}%",
            ))

        new = replace(
            state,
            wins_count=state.wins_count + (1 if won else 0),
            losses_count=state.losses_count + (0 if won else 1),
            trades_count=state.trades_count + 1,
            current_streak=streak,
            longest_streak=max(state.longest_streak, streak),
            total_profit=state.total_profit + profit,
            daily_loss=daily_loss,
            vault=vault,
            protected_floor=floor,
            current_stake=self.money_mgr.next_stake(state.current_stake, result),
            is_recovery_mode=recovery,
            last_trade_result=result,
        )

        if is_training:
            new = replace(new, paper_trades_count=new.paper_trades_count + 1)
            calibrated = self.calibrator.calibrate(new)
            if calibrated.min_probability != new.min_probability:
                delta["min_probability"] = calibrated.min_probability
                logs.append(LogEntry(
                    LogType.INFO,
                    f"Calibration: win rate {new.win_rate:.1f}% < {self.cfg.win_rate_threshold:.0f}% "
                    f"→ min probability {calibrated.min_probability:.0f}%",
                ))
            new = calibrated

        return Outcome(new, logs, delta)


def summary(state: EngineState) -> str:
    return (
        f"W:{state.wins_count} L:{state.losses_count} "
        f"WR:{state.win_rate:.1f}% "
        f"P&L:${state.total_profit:+.2f} "
        f"Vault:${state.vault:.2f} Floor:${state.protected_floor:.2f} "
        f"Streak:{state.current_streak} (best {state.longest_streak})"
    )
