import asyncio
import json
import time
from typing import Callable, Optional

import websockets
from websockets.exceptions import WebSocketException

from vaultbot.config import BotConfig
from vaultbot.constants import TradeResult
from vaultbot.core.events import (
    AuthorizationChanged,
    BalanceChanged,
    OrderConfirmed,
    OrderFailed,
    OrderRequest,
)
from vaultbot.errors import AuthorizationError, TransportError, ValidationError
from vaultbot.utils.logger import log
from vaultbot.utils.tick import parse_tick

AUTH_ERROR_CODES = {"InvalidToken", "AuthorizationRequired", "InvalidAppID"}

# venue and local clocks may disagree by this much when matching a lost buy
PURCHASE_TIME_SLACK = 30.0


def reconnect_delay(attempt: int, base: float = 1.0, cap: float = 10.0) -> float:
    """Exponential backoff: base × 2^attempt, capped."""
    return min(base * (2 ** attempt), cap)


class DerivTransport:
    """
    Deriv WebSocket API v3 adapter.  Decodes frames into engine events and
    pushes them through `sink`; never touches engine state.

    Order flow:  proposal → buy → proposal_open_contract (subscribe) → is_sold

    A buy whose reply was lost to a disconnect is looked up in `portfolio`
    and then `profit_table` after re-authorizing; only if neither knows it is
    the order failed.
    """

    def __init__(self, cfg: BotConfig, sink: Optional[Callable] = None):
        self.cfg = cfg
        self.sink = sink
        self.ws = None
        self.authorized = False
        self._closing = False
        self._req_id = 0
        # req_id → symbol while quoting, req_id → (symbol, sent_at) while buying
        self._proposals: dict[int, str] = {}
        self._buys: dict[int, tuple[str, float]] = {}
        # buys in doubt after a disconnect
        self._unconfirmed: list[tuple[str, float]] = []
        self._contracts: dict[str, str] = {}

    # ------------------------------------------------------------------
    async def run(self):
        """Connect, authorize, subscribe and pump frames until closed or out of retries."""
        attempt = 0
        while not self._closing:
            try:
                async with websockets.connect(self.cfg.ws_url, ping_interval=30) as ws:
                    self.ws = ws
                    attempt = 0
                    log.info("WebSocket connected (%s)", self.cfg.ws_url)
                    await self.authorize()
                    async for frame in ws:
                        await self._on_frame(frame)
                if self._closing:
                    break
                raise TransportError("connection closed by server")
            except (OSError, WebSocketException, TransportError) as e:
                self._drop_session()
                if self._closing:
                    break
                attempt += 1
                if attempt > self.cfg.max_reconnect_attempts:
                    log.error("Giving up after %d reconnect attempts: %s",
                              self.cfg.max_reconnect_attempts, e)
                    break
                delay = reconnect_delay(attempt, self.cfg.reconnect_base_delay,
                                        self.cfg.reconnect_max_delay)
                log.warning("WebSocket disconnected (%s) — reconnecting in %.0fs (%d/%d)",
                            e, delay, attempt, self.cfg.max_reconnect_attempts)
                await asyncio.sleep(delay)
        self.ws = None

    async def close(self):
        self._closing = True
        if self.ws is not None:
            await self.ws.close()

    def _drop_session(self):
        self.ws = None
        if self.authorized:
            self.authorized = False
            self._emit(AuthorizationChanged(False, "disconnected"))
        # nothing was bought yet for a pending quote
        for symbol in set(self._proposals.values()):
            self._emit(OrderFailed(symbol, "connection lost before the order was placed"))
        self._proposals.clear()
        # a buy may have been filled; reconciled after re-authorizing
        self._unconfirmed.extend(self._buys.values())
        self._buys.clear()

    # ------------------------------------------------------------------
    async def authorize(self):
        await self.send({"authorize": self.cfg.api_token})

    async def subscribe(self, symbols):
        await self.send({"forget_all": "ticks"})
        valid = [s for s in symbols if s in self.cfg.symbols]
        if valid:
            await self.send({"ticks": valid})
            log.info("Subscribed to: %s", ", ".join(valid))

    async def _after_authorize(self):
        await self.subscribe(self.cfg.symbols)
        await self.send({"balance": 1, "subscribe": 1})
        if self._unconfirmed:
            await self.send({"portfolio": 1})
        for contract_id in list(self._contracts):
            await self.send({"proposal_open_contract": 1,
                             "contract_id": int(contract_id), "subscribe": 1})

    async def dispatch(self, request: OrderRequest):
        if not self.authorized:
            self._emit(OrderFailed(request.symbol, "not authorized"))
            return
        req_id = await self.send(request.to_proposal())
        if req_id is None:
            self._emit(OrderFailed(request.symbol, "not connected"))
            return
        self._proposals[req_id] = request.symbol

    async def send(self, msg: dict) -> Optional[int]:
        if self.ws is None:
            log.warning("Cannot send: WebSocket not connected")
            return None
        self._req_id += 1
        await self.ws.send(json.dumps({**msg, "req_id": self._req_id}))
        return self._req_id

    def _emit(self, event):
        if self.sink is not None:
            self.sink(event)

    # ------------------------------------------------------------------
    async def _on_frame(self, frame):
        try:
            msg = decode(frame)
            follow_up = self.handle_message(msg)
        except (ValidationError, TypeError, ValueError) as e:
            log.warning("Dropped message: %s", e)
            return
        except AuthorizationError as e:
            self.authorized = False
            log.error("Authorization failed: %s", e)
            self._emit(AuthorizationChanged(False, str(e)))
            return
        if follow_up is not None:
            await follow_up

    def handle_message(self, msg: dict):
        """Translate one decoded frame.  Returns a coroutine when a reply must be sent."""
        msg_type = msg.get("msg_type")
        req_id = msg.get("req_id")

        if "error" in msg:
            err = msg["error"] or {}
            code, text = err.get("code", ""), err.get("message", "unknown error")
            symbol = self._proposals.pop(req_id, None) or self._buys.pop(req_id, (None, 0.0))[0]
            if symbol is not None:
                self._emit(OrderFailed(symbol, text))
                return None
            if msg_type in ("portfolio", "profit_table"):
                for symbol, _ in self._unconfirmed:
                    self._emit(OrderFailed(symbol, f"cannot reconcile order: {text}"))
                self._unconfirmed.clear()
                return None
            if msg_type == "authorize" or code in AUTH_ERROR_CODES:
                raise AuthorizationError(f"{code}: {text}")
            log.error("API Error: %s", text)
            return None

        if msg_type == "authorize":
            auth = msg.get("authorize") or {}
            self.authorized = True
            self._emit(AuthorizationChanged(True))
            self._emit(BalanceChanged(float(auth.get("balance", 0)), auth.get("currency")))
            log.info("Authorized: %s %.2f", auth.get("currency"), float(auth.get("balance", 0)))
            return self._after_authorize()

        if msg_type == "tick":
            self._emit(parse_tick(msg.get("tick")))
            return None

        if msg_type == "balance":
            bal = msg.get("balance") or {}
            self._emit(BalanceChanged(float(bal.get("balance", 0)), bal.get("currency")))
            return None

        if msg_type == "proposal":
            symbol = self._proposals.pop(req_id, None)
            if symbol is None:
                raise ValidationError(f"proposal for unknown request {req_id}")
            prop = msg.get("proposal") or {}
            return self._buy(symbol, prop)

        if msg_type == "buy":
            symbol, _ = self._buys.pop(req_id, (None, 0.0))
            if symbol is None:
                raise ValidationError(f"buy for unknown request {req_id}")
            buy = msg.get("buy") or {}
            contract_id = str(buy.get("contract_id"))
            if buy.get("balance_after") is not None:
                self._emit(BalanceChanged(float(buy["balance_after"])))
            self._contracts[contract_id] = symbol
            return self.send({"proposal_open_contract": 1,
                              "contract_id": int(contract_id), "subscribe": 1})

        if msg_type == "portfolio":
            contracts = (msg.get("portfolio") or {}).get("contracts") or []
            return self._reconcile(contracts, lambda c: c.get("symbol"), final=False)

        if msg_type == "profit_table":
            rows = (msg.get("profit_table") or {}).get("transactions") or []
            return self._reconcile(rows, self._traded_symbol, final=True)

        if msg_type == "proposal_open_contract":
            poc = msg.get("proposal_open_contract") or {}
            if not poc.get("is_sold"):
                return None
            contract_id = str(poc.get("contract_id"))
            symbol = self._contracts.pop(contract_id, None)
            if symbol is None:
                raise ValidationError(f"settlement for unknown contract {contract_id}")
            profit = float(poc.get("profit", 0))
            self._emit(OrderConfirmed(
                symbol=symbol,
                result=TradeResult.WIN if profit > 0 else TradeResult.LOSS,
                payout=float(poc.get("payout", 0)),
                profit=profit,
                contract_id=contract_id,
            ))
            return None

        return None

    async def _buy(self, symbol: str, proposal: dict):
        sent_at = time.time()
        try:
            req_id = await self.send({"buy": proposal["id"], "price": float(proposal["ask_price"])})
        except (KeyError, TypeError, ValueError):
            self._emit(OrderFailed(symbol, f"malformed proposal {proposal!r}"))
            return
        if req_id is None:
            self._emit(OrderFailed(symbol, "not connected"))
            return
        self._buys[req_id] = (symbol, sent_at)

    async def _reconcile(self, rows: list, symbol_of, final: bool):
        """Adopt contracts that match buys lost to a disconnect, then settle them via subscription."""
        pending, self._unconfirmed = self._unconfirmed, []
        for symbol, sent_at in pending:
            match = next((
                r for r in rows
                if symbol_of(r) == symbol
                and float(r.get("purchase_time") or 0) >= sent_at - PURCHASE_TIME_SLACK
                and str(r.get("contract_id")) not in self._contracts
            ), None)
            if match is None:
                self._unconfirmed.append((symbol, sent_at))
                continue
            contract_id = str(match["contract_id"])
            self._contracts[contract_id] = symbol
            log.info("Recovered %s contract %s after reconnect", symbol, contract_id)
            await self.send({"proposal_open_contract": 1,
                             "contract_id": int(contract_id), "subscribe": 1})

        if not self._unconfirmed:
            return
        if not final:
            # not open any more; maybe already settled
            await self.send({"profit_table": 1, "description": 1, "limit": 25, "sort": "DESC"})
            return
        for symbol, _ in self._unconfirmed:
            self._emit(OrderFailed(symbol, "order not found after reconnect"))
        self._unconfirmed.clear()

    def _traded_symbol(self, row: dict) -> Optional[str]:
        """Underlying of a profit_table row; older payloads only carry it inside the shortcode."""
        if row.get("underlying_symbol"):
            return row["underlying_symbol"]
        shortcode = f"_{row.get('shortcode', '')}_"
        found = [s for s in self.cfg.symbols if f"_{s}_" in shortcode]
        return max(found, key=len) if found else None


def decode(frame) -> dict:
    try:
        msg = json.loads(frame)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"not JSON: {frame!r:.80}") from e
    if not isinstance(msg, dict):
        raise ValidationError(f"unexpected frame: {frame!r:.80}")
    return msg
