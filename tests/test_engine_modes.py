from __future__ import annotations

from dataclasses import replace

import pytest

from vaultbot.config import BotConfig
from vaultbot.constants import Direction, LogType, TradeResult
from vaultbot.core.engine import DecisionEngine
from vaultbot.core.events import (
    AuthorizationChanged,
    BalanceChanged,
    CancelTimer,
    Command,
    CommandKind,
    DispatchOrder,
    EmitLog,
    OrderConfirmed,
    OrderFailed,
    SaveSettings,
    SaveTrade,
    StartTimer,
    TimerFire,
)
from vaultbot.core.state import EngineState
from vaultbot.utils.tick import Tick

FALLING_THEN_UPTICK = [100.0 - i for i in range(19)] + [82.5]


class FixedRng:
    def __init__(self, value: float):
        self.value = value

    def random(self) -> float:
        return self.value


def _engine(**state) -> DecisionEngine:
    cfg = BotConfig()
    engine = DecisionEngine(cfg, rng=FixedRng(0.0))
    engine.state = replace(EngineState.initial(cfg), **state)
    return engine


def _logs(effects, kind: LogType | None = None) -> list[str]:
    return [
        e.entry.message for e in effects
        if isinstance(e, EmitLog) and (kind is None or e.entry.type is kind)
    ]


def _feed_signal(engine: DecisionEngine, symbol: str = "R_10") -> None:
    for p in FALLING_THEN_UPTICK:
        engine.handle(Tick(symbol, p))


def test_training_start_needs_ten_paper_trades() -> None:
    engine = _engine(is_training=True, paper_trades_count=9)
    effects = engine.handle(Command(CommandKind.START))

    assert engine.state.is_running is False
    assert not any(isinstance(e, StartTimer) for e in effects)
    assert "9/10" in _logs(effects, LogType.WARNING)[0]

    engine.state = replace(engine.state, paper_trades_count=10)
    effects = engine.handle(Command(CommandKind.START))

    assert engine.state.is_running is True
    assert StartTimer(2.0) in effects
    assert _logs(effects, LogType.SUCCESS) == ["Engine started in TRAINING mode"]


def test_start_refused_after_daily_loss_limit() -> None:
    engine = _engine(is_training=False, daily_loss=1.50, daily_loss_limit=1.50)
    effects = engine.handle(Command(CommandKind.START))

    assert engine.state.is_running is False
    assert _logs(effects, LogType.ERROR) == ["Daily loss limit reached. Engine locked."]


def test_stop_cancels_timer_and_clears_symbol() -> None:
    engine = _engine(is_running=True, is_training=False, current_symbol="R_10")
    effects = engine.handle(Command(CommandKind.STOP))

    assert engine.state.is_running is False
    assert engine.state.current_symbol is None
    assert CancelTimer() in effects


def test_toggle_mode_forces_stop() -> None:
    engine = _engine(is_running=True, is_training=True, paper_trades_count=10)
    effects = engine.handle(Command(CommandKind.TOGGLE_MODE))

    assert engine.state.is_training is False
    assert engine.state.is_running is False
    assert CancelTimer() in effects
    assert "Switched to LIVE mode" in _logs(effects)

    engine.handle(Command(CommandKind.TOGGLE_MODE))
    assert engine.state.is_training is True


def test_live_mode_locked_until_paper_trades_done() -> None:
    engine = _engine(is_training=True, paper_trades_count=3)
    assert engine.can_start_live is False

    effects = engine.handle(Command(CommandKind.TOGGLE_MODE))

    assert engine.state.is_training is True
    assert "3/10" in _logs(effects, LogType.WARNING)[0]


def test_set_daily_loss_limit_persists() -> None:
    engine = _engine()
    effects = engine.handle(Command(CommandKind.SET_DAILY_LOSS_LIMIT, 5.0))

    assert engine.state.daily_loss_limit == 5.0
    assert SaveSettings({"daily_loss_limit": 5.0}) in effects


def test_timer_is_ignored_when_idle() -> None:
    engine = _engine(balance=100.0)
    _feed_signal(engine)
    assert engine.handle(TimerFire()) == []


def test_timer_stops_engine_on_daily_loss_breach() -> None:
    engine = _engine(is_running=True, is_training=False, daily_loss=2.0)
    effects = engine.handle(TimerFire())

    assert engine.state.is_running is False
    assert CancelTimer() in effects
    assert "Daily loss limit reached. Stopping engine." in _logs(effects, LogType.ERROR)


def test_paper_trade_cycle() -> None:
    engine = _engine(is_running=True, is_training=True, paper_trades_count=10, balance=100.0)
    _feed_signal(engine)

    effects = engine.handle(TimerFire())

    saved = [e.trade for e in effects if isinstance(e, SaveTrade)]
    assert len(saved) == 1
    assert saved[0].result is TradeResult.WIN
    assert saved[0].is_training is True
    assert engine.state.paper_trades_count == 11
    assert engine.state.trades_count == 1
    assert engine.trades[0] == saved[0]
    assert any(m.startswith("[PAPER] CALL R_10") for m in _logs(effects, LogType.TRADE))


def test_floor_breach_blocks_trade() -> None:
    engine = _engine(is_running=True, is_training=True, paper_trades_count=10, balance=30.50)
    _feed_signal(engine)
    before = engine.state

    effects = engine.handle(TimerFire())

    assert engine.state == before
    assert _logs(effects, LogType.WARNING) == ["Trade blocked: Would breach protected floor"]


def test_balance_updates_flow_into_state() -> None:
    engine = _engine()
    engine.handle(BalanceChanged(123.45, "EUR"))
    assert engine.state.balance == 123.45
    assert engine.state.currency == "EUR"


# ---------------------------------------------------------------------------
# live orders
# ---------------------------------------------------------------------------
def _live_engine() -> DecisionEngine:
    engine = _engine(is_running=True, is_training=False, is_authorized=True, balance=100.0)
    _feed_signal(engine)
    return engine


def test_live_cycle_dispatches_one_order_at_a_time() -> None:
    engine = _live_engine()
    effects = engine.handle(TimerFire())

    orders = [e.request for e in effects if isinstance(e, DispatchOrder)]
    assert len(orders) == 1
    assert orders[0].to_proposal() == {
        "proposal": 1,
        "amount": "1.00",
        "basis": "stake",
        "contract_type": "CALL",
        "currency": "USD",
        "duration": 1,
        "duration_unit": "t",
        "symbol": "R_10",
    }
    assert engine.state.current_symbol == "R_10"
    assert engine.pending_trade.result is TradeResult.PENDING
    assert not any(isinstance(e, SaveTrade) for e in effects)

    # still pending → no second order
    assert engine.handle(TimerFire()) == []


def test_confirmation_after_stop_is_aggregated_exactly_once() -> None:
    engine = _live_engine()
    engine.handle(TimerFire())
    engine.handle(Command(CommandKind.STOP))
    assert engine.state.current_symbol is None

    effects = engine.handle(OrderConfirmed("R_10", TradeResult.WIN, payout=1.95, profit=0.95,
                                           contract_id="42"))

    saved = [e.trade for e in effects if isinstance(e, SaveTrade)]
    assert saved[0].result is TradeResult.WIN
    assert saved[0].profit == pytest.approx(0.95)
    assert saved[0].direction is Direction.CALL
    assert engine.state.trades_count == 1
    assert engine.state.wins_count == 1
    assert engine.pending_trade is None

    again = engine.handle(OrderConfirmed("R_10", TradeResult.WIN, payout=1.95, profit=0.95))
    assert engine.state.trades_count == 1
    assert "no matching pending trade" in _logs(again, LogType.WARNING)[0]


def test_confirmation_for_other_symbol_is_dropped() -> None:
    engine = _live_engine()
    engine.handle(TimerFire())

    engine.handle(OrderConfirmed("R_50", TradeResult.LOSS, payout=0.0, profit=-1.0))

    assert engine.state.trades_count == 0
    assert engine.pending_trade is not None


def test_live_loss_feeds_daily_loss_and_clears_symbol() -> None:
    engine = _live_engine()
    engine.handle(TimerFire())

    engine.handle(OrderConfirmed("R_10", TradeResult.LOSS, payout=0.0, profit=-1.0))

    assert engine.state.current_symbol is None
    assert engine.state.daily_loss == pytest.approx(1.0)
    assert engine.state.is_recovery_mode is True
    assert engine.state.paper_trades_count == 0


def test_order_failure_discards_pending_trade() -> None:
    engine = _live_engine()
    engine.handle(TimerFire())

    effects = engine.handle(OrderFailed("R_10", "ContractBuyValidationError"))

    assert engine.pending_trade is None
    assert engine.state.current_symbol is None
    assert engine.state.trades_count == 0
    assert engine.trades == []
    assert "ContractBuyValidationError" in _logs(effects, LogType.ERROR)[0]


def test_live_trading_needs_authorization() -> None:
    engine = _live_engine()
    engine.handle(AuthorizationChanged(False, "InvalidToken"))

    effects = engine.handle(TimerFire())

    assert not any(isinstance(e, DispatchOrder) for e in effects)
    assert "not authorized" in _logs(effects, LogType.WARNING)[0]

    engine.handle(AuthorizationChanged(True))
    assert any(isinstance(e, DispatchOrder) for e in engine.handle(TimerFire()))


def test_authorization_failure_blocks_paper_trading_too() -> None:
    engine = _engine(is_running=True, is_training=True, paper_trades_count=10, balance=100.0)
    _feed_signal(engine)
    engine.handle(AuthorizationChanged(False, "InvalidToken"))

    effects = engine.handle(TimerFire())

    assert not any(isinstance(e, SaveTrade) for e in effects)
    assert engine.state.trades_count == 0
    assert engine.state.paper_trades_count == 10
    assert "Paper CALL R_10 skipped: not authorized" in _logs(effects, LogType.WARNING)

    engine.handle(AuthorizationChanged(True))
    effects = engine.handle(TimerFire())
    assert engine.state.paper_trades_count == 11
    assert any(isinstance(e, SaveTrade) for e in effects)


def test_paper_trading_runs_before_any_authorization() -> None:
    engine = _engine(is_running=True, is_training=True, paper_trades_count=10, balance=100.0)
    _feed_signal(engine)

    engine.handle(TimerFire())

    assert engine.state.is_authorized is False
    assert engine.state.paper_trades_count == 11


def test_floor_guard_uses_the_latest_venue_balance() -> None:
    engine = _engine(is_running=True, is_training=False, is_authorized=True, balance=32.0)
    _feed_signal(engine)
    engine.handle(TimerFire())
    engine.handle(OrderConfirmed("R_10", TradeResult.LOSS, payout=0.0, profit=-1.0))

    engine.handle(BalanceChanged(31.0))
    effects = engine.handle(TimerFire())

    assert not any(isinstance(e, DispatchOrder) for e in effects)
    assert _logs(effects, LogType.WARNING) == ["Trade blocked: Would breach protected floor"]
