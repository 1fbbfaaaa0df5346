from enum import Enum

# Only these synthetic indices are traded
ASSET_WHITELIST = ("R_10", "R_50", "R_100", "1HZ10V")

ASSET_LABELS = {
    "R_10": "Volatility 10",
    "R_50": "Volatility 50",
    "R_100": "Volatility 100",
    "1HZ10V": "Volatility 10 (1s)",
}


class Direction(Enum):
    CALL = "CALL"
    PUT = "PUT"


class TradeResult(Enum):
    WIN = "WIN"
    LOSS = "LOSS"
    PENDING = "PENDING"


class LogType(Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"
    TRADE = "trade"
