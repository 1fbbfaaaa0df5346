from dataclasses import dataclass, field, replace
from typing import Optional

import numpy as np

from vaultbot.config import BotConfig
from vaultbot.constants import LogType, TradeResult
from vaultbot.core.events import DispatchOrder, Effect, EmitLog, OrderRequest, SaveSettings, SaveTrade
from vaultbot.core.signals import Candidate
from vaultbot.core.state import EngineState
from vaultbot.trading.money_manager import MoneyManager
from vaultbot.trading.performance import OutcomeAggregator
from vaultbot.trading.trade import Trade
from vaultbot.utils.log_buffer import LogEntry


@dataclass
class Execution:
    state: EngineState
    trade: Optional[Trade] = None
    effects: list[Effect] = field(default_factory=list)


class TradeExecutor:
    """Paper trades resolve on the spot; live trades become a PENDING order request."""

    def __init__(self, cfg: BotConfig, money_mgr: MoneyManager, aggregator: OutcomeAggregator,
                 rng=None):
        self.cfg = cfg
        self.money_mgr = money_mgr
        self.aggregator = aggregator
        self.rng = rng if rng is not None else np.random.default_rng(cfg.seed)

    def execute(self, state: EngineState, candidate: Candidate) -> Execution:
        stake = self.money_mgr.active_stake(state)

        if not self.money_mgr.floor_allows(state, stake):
            return Execution(state, effects=[EmitLog(LogEntry(
                LogType.WARNING,
                "Trade blocked: Would breach protected floor",
                {"balance": state.balance, "stake": stake, "floor": state.protected_floor},
            ))])

        if state.is_training:
            return self._paper(state, candidate, stake)
        return self._live(state, candidate, stake)

    # ------------------------------------------------------------------
    def _paper(self, state: EngineState, c: Candidate, stake: float) -> Execution:
        won = self.rng.random() < c.probability / 100
        payout = stake * self.cfg.payout_ratio
        result = TradeResult.WIN if won else TradeResult.LOSS
        trade = Trade(
            symbol=c.symbol,
            direction=c.direction,
            stake=stake,
            payout=payout,
            probability=c.probability,
            result=result,
            profit=payout if won else -stake,
            is_training=True,
        )

        outcome = self.aggregator.apply(state, result, trade.profit, is_training=True)
        effects: list[Effect] = [
            SaveTrade(trade),
            EmitLog(LogEntry(
                LogType.TRADE,
                f"[PAPER] {c.direction.value} {c.symbol} @ {c.probability:.1f}% → {result.value}",
                {"trade_id": trade.id, "stake": stake, "profit": trade.profit},
            )),
        ]
        effects += [EmitLog(e) for e in outcome.logs]
        if outcome.settings_delta:
            effects.append(SaveSettings(outcome.settings_delta))
        return Execution(outcome.state, trade, effects)

    def _live(self, state: EngineState, c: Candidate, stake: float) -> Execution:
        trade = Trade(
            symbol=c.symbol,
            direction=c.direction,
            stake=stake,
            payout=0.0,
            probability=c.probability,
            is_training=False,
        )
        request = OrderRequest(
            symbol=c.symbol,
            contract_type=c.direction,
            amount=stake,
            currency=state.currency,
        )
        # saved once the confirmation resolves it
        effects: list[Effect] = [
            DispatchOrder(request),
            EmitLog(LogEntry(
                LogType.INFO,
                f"Proposal sent: {c.direction.value} {c.symbol} @ ${stake:.2f}",
                {"trade_id": trade.id, "probability": c.probability},
            )),
        ]
        return Execution(replace(state, current_symbol=c.symbol), trade, effects)
