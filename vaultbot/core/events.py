from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union

from vaultbot.constants import Direction, TradeResult
from vaultbot.trading.trade import Trade
from vaultbot.utils.log_buffer import LogEntry
from vaultbot.utils.tick import Tick


# ═══════════════════════════════════════════════════════════════════════════
#  INBOUND EVENTS  (producers only enqueue these)
# ═══════════════════════════════════════════════════════════════════════════
@dataclass(frozen=True)
class TimerFire:
    seq: int = 0        # timer generation that produced the fire


@dataclass(frozen=True)
class OrderConfirmed:
    symbol: str
    result: TradeResult
    payout: float
    profit: float
    contract_id: Optional[str] = None


@dataclass(frozen=True)
class OrderFailed:
    symbol: str
    reason: str


@dataclass(frozen=True)
class BalanceChanged:
    balance: float
    currency: Optional[str] = None


@dataclass(frozen=True)
class AuthorizationChanged:
    authorized: bool
    reason: str = ""


class CommandKind(Enum):
    START = "start"
    STOP = "stop"
    TOGGLE_MODE = "toggle_mode"
    SET_DAILY_LOSS_LIMIT = "set_daily_loss_limit"


@dataclass(frozen=True)
class Command:
    kind: CommandKind
    value: Any = None


Event = Union[Tick, TimerFire, OrderConfirmed, OrderFailed, BalanceChanged,
              AuthorizationChanged, Command]


# ═══════════════════════════════════════════════════════════════════════════
#  OUTBOUND EFFECTS  (only the actor performs them)
# ═══════════════════════════════════════════════════════════════════════════
@dataclass(frozen=True)
class OrderRequest:
    symbol: str
    contract_type: Direction
    amount: float
    currency: str
    basis: str = "stake"
    duration: int = 1
    duration_unit: str = "t"                # ticks

    def to_proposal(self) -> dict:
        return {
            "proposal": 1,
            "amount": f"{self.amount:.2f}",
            "basis": self.basis,
            "contract_type": self.contract_type.value,
            "currency": self.currency,
            "duration": self.duration,
            "duration_unit": self.duration_unit,
            "symbol": self.symbol,
        }


@dataclass(frozen=True)
class EmitLog:
    entry: LogEntry


@dataclass(frozen=True)
class SaveTrade:
    trade: Trade


@dataclass(frozen=True)
class SaveSettings:
    delta: dict = field(default_factory=dict)


@dataclass(frozen=True)
class DispatchOrder:
    request: OrderRequest


@dataclass(frozen=True)
class StartTimer:
    interval: float


@dataclass(frozen=True)
class CancelTimer:
    pass


Effect = Union[EmitLog, SaveTrade, SaveSettings, DispatchOrder, StartTimer, CancelTimer]
