from dataclasses import replace
from typing import Optional

from vaultbot.config import BotConfig
from vaultbot.constants import LogType, TradeResult
from vaultbot.core.events import (
    AuthorizationChanged,
    BalanceChanged,
    CancelTimer,
    Command,
    CommandKind,
    Effect,
    EmitLog,
    Event,
    OrderConfirmed,
    OrderFailed,
    SaveSettings,
    SaveTrade,
    StartTimer,
    TimerFire,
)
from vaultbot.core.indicators import IndicatorEngine
from vaultbot.core.signals import SignalAnalyzer, SignalPolicy
from vaultbot.core.state import EngineState
from vaultbot.errors import RiskGuardRejection
from vaultbot.trading.calibration import TrainingCalibrator
from vaultbot.trading.executor import TradeExecutor
from vaultbot.trading.money_manager import MoneyManager
from vaultbot.trading.performance import OutcomeAggregator, summary
from vaultbot.trading.trade import Trade
from vaultbot.utils.log_buffer import LogEntry
from vaultbot.utils.tick import Tick


def _log(kind: LogType, message: str, data: Optional[dict] = None) -> EmitLog:
    return EmitLog(LogEntry(kind, message, data))


def _rejected(err: RiskGuardRejection, kind: LogType = LogType.WARNING) -> EmitLog:
    return _log(kind, str(err), {"reason": err.reason})


class DecisionEngine:
    """
    Single-owner state machine: Idle ⇄ Running(Training | Live), with an
    orthogonal recovery flag.  `handle()` is the only way state changes; it
    never does I/O, it returns the effects for the owner to carry out.
    """

    def __init__(self, cfg: BotConfig, state: Optional[EngineState] = None,
                 rng=None, policy: Optional[SignalPolicy] = None):
        self.cfg = cfg
        self.state = state or EngineState.initial(cfg)
        self.indicators = IndicatorEngine(cfg)
        self.analyzer = SignalAnalyzer(self.indicators, cfg, policy)
        self.money_mgr = MoneyManager(cfg)
        self.aggregator = OutcomeAggregator(cfg, self.money_mgr, TrainingCalibrator(cfg))
        self.executor = TradeExecutor(cfg, self.money_mgr, self.aggregator, rng)
        self.pending_trade: Optional[Trade] = None
        self.trades: list[Trade] = []       # newest first

    # ------------------------------------------------------------------
    def handle(self, event: Event) -> list[Effect]:
        if isinstance(event, Tick):
            self.indicators.on_tick(event.symbol, event.price)
            return []
        if isinstance(event, TimerFire):
            return self._on_timer()
        if isinstance(event, OrderConfirmed):
            return self._on_confirmed(event)
        if isinstance(event, OrderFailed):
            return self._on_failed(event)
        if isinstance(event, BalanceChanged):
            self.state = replace(self.state, balance=event.balance,
                                 currency=event.currency or self.state.currency)
            return []
        if isinstance(event, AuthorizationChanged):
            return self._on_authorization(event)
        if isinstance(event, Command):
            return self._on_command(event)
        raise TypeError(f"unknown event {event!r}")

    # ------------------------------------------------------------------
    def _on_command(self, cmd: Command) -> list[Effect]:
        if cmd.kind is CommandKind.START:
            return self.start()
        if cmd.kind is CommandKind.STOP:
            return self.stop()
        if cmd.kind is CommandKind.TOGGLE_MODE:
            return self.toggle_mode()
        if cmd.kind is CommandKind.SET_DAILY_LOSS_LIMIT:
            return self.set_daily_loss_limit(float(cmd.value))
        raise TypeError(f"unknown command {cmd.kind!r}")

    def start(self) -> list[Effect]:
        s = self.state
        try:
            self._check_can_start()
        except RiskGuardRejection as e:
            kind = LogType.ERROR if e.reason == "daily_loss" else LogType.WARNING
            return [_rejected(e, kind)]
        if s.is_running:
            return []
        self.state = replace(s, is_running=True)
        return [
            StartTimer(self.cfg.poll_interval),
            _log(LogType.SUCCESS, f"Engine started in {s.mode} mode"),
        ]

    def _check_can_start(self):
        s = self.state
        if s.is_training and s.paper_trades_count < self.cfg.min_paper_trades:
            raise RiskGuardRejection(
                "training_gate",
                f"Complete {self.cfg.min_paper_trades} paper trades first "
                f"({s.paper_trades_count}/{self.cfg.min_paper_trades})",
            )
        if s.daily_loss_breached:
            raise RiskGuardRejection("daily_loss", "Daily loss limit reached. Engine locked.")

    def stop(self) -> list[Effect]:
        self.state = replace(self.state, is_running=False, current_symbol=None)
        return [CancelTimer(), _log(LogType.WARNING, "Engine stopped")]

    @property
    def can_start_live(self) -> bool:
        s = self.state
        return not s.is_training or s.paper_trades_count >= self.cfg.min_paper_trades

    def toggle_mode(self) -> list[Effect]:
        if not self.can_start_live:
            err = RiskGuardRejection(
                "training_gate",
                f"Live mode locked: {self.state.paper_trades_count}/"
                f"{self.cfg.min_paper_trades} paper trades",
            )
            return [_rejected(err)]
        effects = self.stop()
        self.state = replace(self.state, is_training=not self.state.is_training)
        effects.append(_log(LogType.INFO, f"Switched to {self.state.mode} mode"))
        return effects

    def set_daily_loss_limit(self, limit: float) -> list[Effect]:
        self.state = replace(self.state, daily_loss_limit=limit)
        return [
            SaveSettings({"daily_loss_limit": limit}),
            _log(LogType.INFO, f"Daily loss limit set to ${limit:.2f}"),
        ]

    # ------------------------------------------------------------------
    def _on_timer(self) -> list[Effect]:
        if not self.state.is_running:
            return []

        if self.state.daily_loss_breached:
            effects = self.stop()
            effects.append(_log(LogType.ERROR, "Daily loss limit reached. Stopping engine."))
            return effects

        # one live order in flight at a time
        if not self.state.is_training and self.pending_trade is not None:
            return []

        threshold = self.money_mgr.active_threshold(self.state)
        candidate = self.analyzer.evaluate(threshold)
        if candidate is None:
            return []

        # an authorization failure blocks paper trading too, until re-authorized
        s = self.state
        if not s.is_authorized and (s.auth_lost or not s.is_training):
            label = "Paper" if s.is_training else "Live"
            err = RiskGuardRejection(
                "unauthorized",
                f"{label} {candidate.direction.value} {candidate.symbol} skipped: not authorized",
            )
            return [_rejected(err)]

        execution = self.executor.execute(self.state, candidate)
        self.state = execution.state
        if execution.trade is not None:
            if execution.trade.result is TradeResult.PENDING:
                self.pending_trade = execution.trade
            self.trades.insert(0, execution.trade)
            del self.trades[self.cfg.trade_page_size:]
        return execution.effects

    def _on_confirmed(self, event: OrderConfirmed) -> list[Effect]:
        pending = self.pending_trade
        if pending is None or pending.symbol != event.symbol:
            return [_log(
                LogType.WARNING,
                f"Dropped order confirmation for {event.symbol}: no matching pending trade",
                {"contract_id": event.contract_id},
            )]

        trade = pending.resolved(event.result, event.payout, event.profit)
        self.pending_trade = None
        self.trades = [trade if t.id == trade.id else t for t in self.trades]

        outcome = self.aggregator.apply(self.state, event.result, event.profit, is_training=False)
        current = None if self.state.current_symbol == event.symbol else self.state.current_symbol
        self.state = replace(outcome.state, current_symbol=current)

        icon = "✅" if event.result is TradeResult.WIN else "❌"
        effects: list[Effect] = [
            SaveTrade(trade),
            _log(LogType.TRADE,
                 f"{icon} {trade.direction.value} {trade.symbol} → {event.result.value} "
                 f"${event.profit:+.2f}  |  {summary(self.state)}",
                 {"trade_id": trade.id, "contract_id": event.contract_id}),
        ]
        effects += [EmitLog(e) for e in outcome.logs]
        if outcome.settings_delta:
            effects.append(SaveSettings(outcome.settings_delta))
        return effects

    def _on_failed(self, event: OrderFailed) -> list[Effect]:
        pending = self.pending_trade
        if pending is None or pending.symbol != event.symbol:
            return [_log(LogType.WARNING, f"Order failure for {event.symbol} ignored: {event.reason}")]
        self.pending_trade = None
        self.trades = [t for t in self.trades if t.id != pending.id]
        if self.state.current_symbol == event.symbol:
            self.state = replace(self.state, current_symbol=None)
        return [_log(LogType.ERROR, f"Order rejected for {event.symbol}: {event.reason}",
                     {"trade_id": pending.id})]

    def _on_authorization(self, event: AuthorizationChanged) -> list[Effect]:
        self.state = replace(self.state, is_authorized=event.authorized,
                             auth_lost=not event.authorized)
        if event.authorized:
            return [_log(LogType.SUCCESS, "Authorized")]
        msg = "Authorization lost — live trading blocked"
        if event.reason:
            msg += f": {event.reason}"
        return [_log(LogType.ERROR, msg)]
