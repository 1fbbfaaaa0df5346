from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from vaultbot.constants import Direction, TradeResult
from vaultbot.errors import PersistenceError, ValidationError
from vaultbot.trading.journal import TradeJournal
from vaultbot.trading.trade import Trade

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _trade(i: int, symbol: str = "R_10", result: TradeResult = TradeResult.WIN,
           is_training: bool = True) -> Trade:
    return Trade(
        symbol=symbol,
        direction=Direction.CALL if i % 2 else Direction.PUT,
        stake=1.0,
        payout=0.85,
        probability=80.0,
        result=result,
        profit=0.85 if result is TradeResult.WIN else -1.0,
        is_training=is_training,
        timestamp=T0 + timedelta(seconds=i),
    )


def test_trades_round_trip_newest_first(tmp_path) -> None:
    journal = TradeJournal(str(tmp_path / "j.db"))
    trades = [_trade(i) for i in range(3)]
    for t in trades:
        journal.save_trade(t)

    loaded = journal.load_trades()

    assert [t.id for t in loaded] == [t.id for t in reversed(trades)]
    assert loaded[0] == trades[-1]


def test_trade_filters(tmp_path) -> None:
    journal = TradeJournal(str(tmp_path / "j.db"))
    journal.save_trade(_trade(0, "R_10", TradeResult.WIN))
    journal.save_trade(_trade(1, "R_50", TradeResult.LOSS))
    journal.save_trade(_trade(2, "R_50", TradeResult.WIN))
    journal.save_trade(_trade(3, "R_100", TradeResult.LOSS, is_training=False))

    assert len(journal.load_trades(symbol="ALL", result="ALL")) == 4
    assert [t.symbol for t in journal.load_trades(symbol="R_50")] == ["R_50", "R_50"]
    assert {t.symbol for t in journal.load_trades(result="LOSS")} == {"R_50", "R_100"}
    assert len(journal.load_trades(symbol="R_50", result="WIN")) == 1

    window = journal.load_trades(start=T0 + timedelta(seconds=1), end=T0 + timedelta(seconds=2))
    assert [t.symbol for t in window] == ["R_50", "R_50"]


def test_page_size_is_capped(tmp_path) -> None:
    journal = TradeJournal(str(tmp_path / "j.db"), page_size=100)
    for i in range(105):
        journal.save_trade(_trade(i))

    assert len(journal.load_trades()) == 100
    assert len(journal.load_trades(limit=500)) == 100
    assert len(journal.load_trades(limit=10)) == 10


def test_resolving_a_trade_replaces_the_row(tmp_path) -> None:
    journal = TradeJournal(str(tmp_path / "j.db"))
    pending = _trade(0, result=TradeResult.PENDING, is_training=False)
    journal.save_trade(pending)
    journal.save_trade(pending.resolved(TradeResult.LOSS, payout=0.0, profit=-1.0))

    loaded = journal.load_trades()
    assert len(loaded) == 1
    assert loaded[0].result is TradeResult.LOSS


def test_count_paper_trades(tmp_path) -> None:
    journal = TradeJournal(str(tmp_path / "j.db"))
    journal.save_trade(_trade(0))
    journal.save_trade(_trade(1, result=TradeResult.LOSS))
    journal.save_trade(_trade(2, is_training=False))

    assert journal.count_paper_trades() == 2


def test_settings_partial_upsert(tmp_path) -> None:
    journal = TradeJournal(str(tmp_path / "j.db"))
    assert journal.load_settings() is None

    journal.save_settings({"daily_loss_limit": 1.5, "min_probability": 75})
    journal.save_settings({"vault_balance": 2.0, "protected_floor": 32.03})
    journal.save_settings({"min_probability": 76})

    assert journal.load_settings() == {
        "vault_balance": 2.0,
        "protected_floor": 32.03,
        "daily_loss_limit": 1.5,
        "min_probability": 76.0,
    }


def test_settings_reject_unknown_keys(tmp_path) -> None:
    journal = TradeJournal(str(tmp_path / "j.db"))
    with pytest.raises(ValidationError):
        journal.save_settings({"balance": 10})


def test_closed_journal_raises_persistence_error(tmp_path) -> None:
    journal = TradeJournal(str(tmp_path / "j.db"))
    journal.close()
    with pytest.raises(PersistenceError):
        journal.save_trade(_trade(0))


def test_resolved_trade_cannot_be_resolved_again() -> None:
    with pytest.raises(ValueError):
        _trade(0).resolved(TradeResult.LOSS, payout=0.0, profit=-1.0)
