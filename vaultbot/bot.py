import asyncio
from dataclasses import replace
from typing import Optional

from vaultbot.config import BotConfig
from vaultbot.constants import ASSET_LABELS
from vaultbot.core.engine import DecisionEngine
from vaultbot.core.events import (
    CancelTimer,
    Command,
    CommandKind,
    DispatchOrder,
    EmitLog,
    SaveSettings,
    SaveTrade,
    StartTimer,
    TimerFire,
)
from vaultbot.core.state import EngineState
from vaultbot.errors import PersistenceError
from vaultbot.trading.journal import TradeJournal
from vaultbot.trading.performance import summary
from vaultbot.utils.log_buffer import LogBuffer
from vaultbot.utils.logger import log


class VaultBot:
    """
    Owns the decision engine and is the only thing that feeds it.  Ticks,
    timer fires, order confirmations and operator commands are all queued and
    applied one at a time by `_consume`; effects are carried out afterwards.
    """

    def __init__(self, cfg: BotConfig, transport=None, journal: Optional[TradeJournal] = None,
                 engine: Optional[DecisionEngine] = None):
        self.cfg = cfg
        self.engine = engine or DecisionEngine(cfg)
        self.journal = journal
        self.transport = transport
        if transport is not None:
            transport.sink = self.submit
        self.logs = LogBuffer(cfg.log_capacity)
        self.events: asyncio.Queue = asyncio.Queue()
        self._writes: asyncio.Queue = asyncio.Queue()
        self._timer: Optional[asyncio.Task] = None
        self._timer_seq = 0
        self._fire_queued = False
        self._tasks: list[asyncio.Task] = []

    # ------------------------------------------------------------------
    def submit(self, event):
        self.events.put_nowait(event)

    def restore(self):
        """Seed engine state from the journal so vault progress survives restarts."""
        if self.journal is None:
            return
        s = self.engine.state
        try:
            saved = self.journal.load_settings() or {}
            paper = self.journal.count_paper_trades()
        except PersistenceError as e:
            log.error("Failed to restore from journal: %s", e)
            return

        self.engine.state = replace(
            s,
            vault=max(s.vault, saved.get("vault_balance", s.vault)),
            protected_floor=max(s.protected_floor, saved.get("protected_floor", s.protected_floor)),
            daily_loss_limit=saved.get("daily_loss_limit", s.daily_loss_limit),
            min_probability=min(self.cfg.max_probability,
                                max(0.0, saved.get("min_probability", s.min_probability))),
            paper_trades_count=paper,
        )
        log.info("🔄 Restored: vault $%.2f  floor $%.2f  limit $%.2f  min prob %.0f%%  paper trades %d",
                 self.engine.state.vault, self.engine.state.protected_floor,
                 self.engine.state.daily_loss_limit, self.engine.state.min_probability, paper)

    # ------------------------------------------------------------------
    async def start(self):
        """Main entry point."""
        log.info("═" * 60)
        log.info("  VaultBot — Deriv synthetic indices")
        log.info("  Assets: %s", ", ".join(f"{ASSET_LABELS.get(s, s)} ({s})" for s in self.cfg.symbols))
        log.info("  Stake: $%.2f (max $%.2f)  |  Daily loss limit: $%.2f",
                 self.cfg.default_stake, self.cfg.max_stake, self.engine.state.daily_loss_limit)
        log.info("═" * 60)

        self.restore()
        self.submit(Command(CommandKind.START))

        self._tasks = [asyncio.create_task(self._consume()), asyncio.create_task(self._writer())]
        if self.transport is not None:
            self._tasks.append(asyncio.create_task(self.transport.run()))
        try:
            await asyncio.gather(*self._tasks)
        except asyncio.CancelledError:
            pass

    async def stop(self):
        self.submit(Command(CommandKind.STOP))
        # drain only while the workers are still alive
        if self._tasks and not self._tasks[0].done():
            await self.events.join()
        if len(self._tasks) > 1 and not self._tasks[1].done():
            await self._writes.join()
        if self.transport is not None:
            await self.transport.close()
        for task in self._tasks:
            task.cancel()
        self._cancel_timer()
        if self.journal is not None:
            self.journal.close()
        log.info("Bot stopped.  Final stats: %s", summary(self.engine.state))
        for line in self.market_report():
            log.info("  %s", line)

    @property
    def state(self) -> EngineState:
        return self.engine.state

    def market_report(self) -> list[str]:
        """One line per instrument with its latest indicators."""
        lines = []
        for snap in self.engine.indicators.snapshots():
            label = ASSET_LABELS.get(snap.symbol, snap.symbol)
            if not snap.is_active:
                lines.append(f"{label:<20} no data")
                continue
            lines.append(
                f"{label:<20} {snap.last_price:.2f}  RSI {snap.rsi:5.1f}  EMA {snap.ema:.2f}  "
                f"Δ {snap.price_change_pct:+.2f}%  strength {snap.signal_strength:.0f}"
            )
        return lines

    # ------------------------------------------------------------------
    async def _consume(self):
        while True:
            event = await self.events.get()
            try:
                if isinstance(event, TimerFire) and not self._accept_fire(event):
                    continue
                effects = self.engine.handle(event)
                for effect in effects:
                    await self._apply(effect)
            except Exception as e:
                log.error("Event loop error on %r: %s", event, e, exc_info=True)
            finally:
                self.events.task_done()

    async def _apply(self, effect):
        if isinstance(effect, EmitLog):
            self.logs.add(effect.entry)
        elif isinstance(effect, StartTimer):
            self._start_timer(effect.interval)
        elif isinstance(effect, CancelTimer):
            self._cancel_timer()
        elif isinstance(effect, DispatchOrder):
            if self.transport is None:
                log.warning("No transport — order for %s not sent", effect.request.symbol)
            else:
                await self.transport.dispatch(effect.request)
        elif isinstance(effect, SaveTrade):
            if self.journal is not None:
                self._writes.put_nowait((self.journal.save_trade, effect.trade))
        elif isinstance(effect, SaveSettings):
            if self.journal is not None:
                self._writes.put_nowait((self.journal.save_settings, effect.delta))

    # ------------------------------------------------------------------
    def _start_timer(self, interval: float):
        self._cancel_timer()
        self._timer_seq += 1
        self._timer = asyncio.create_task(self._tick_timer(interval, self._timer_seq))

    def _cancel_timer(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def _tick_timer(self, interval: float, seq: int):
        while True:
            await asyncio.sleep(interval)
            # at most one fire waits in the queue
            if not self._fire_queued:
                self._fire_queued = True
                self.submit(TimerFire(seq))

    def _accept_fire(self, event: TimerFire) -> bool:
        """Drop fires from a cancelled or replaced timer."""
        self._fire_queued = False
        return self._timer is not None and event.seq == self._timer_seq

    async def _writer(self):
        """Persist in the background, one write at a time; failures are logged, not retried."""
        while True:
            fn, arg = await self._writes.get()
            try:
                await asyncio.to_thread(fn, arg)
            except Exception as e:
                log.error("Persistence failed (%s): %s", getattr(fn, "__name__", fn), e)
            finally:
                self._writes.task_done()
