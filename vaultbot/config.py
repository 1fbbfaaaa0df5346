from dataclasses import dataclass
from typing import Optional

from vaultbot.constants import ASSET_WHITELIST


@dataclass
class BotConfig:
    """All tuneable knobs in one place."""

    # --- connection ---
    api_token: str = ""                     # Deriv API token
    app_id: str = "1089"
    endpoint: str = "wss://ws.derivws.com/websockets/v3"
    currency: str = "USD"
    symbols: tuple = ASSET_WHITELIST

    # --- money management ---
    default_stake: float = 1.00
    min_stake: float = 0.35
    max_stake: float = 3.00
    loss_multiplier: float = 1.1            # martingale-lite step after a loss
    payout_ratio: float = 0.85              # paper trade payout per unit staked

    # --- signals ---
    rsi_period: int = 14
    ema_period: int = 9
    min_probability: float = 75.0           # starting acceptance threshold
    max_probability: float = 95.0           # hard cap for probability and threshold

    # --- risk ---
    daily_loss_limit: float = 1.50
    protected_floor: float = 30.03
    floor_increment: float = 1.00           # vault/floor step
    vault_trigger_profit: float = 1.00      # single-trade profit that ratchets the floor
    recovery_threshold: float = 0.6         # fraction of daily limit that trips recovery
    recovery_stake: float = 1.00
    recovery_probability: float = 90.0

    # --- training ---
    min_paper_trades: int = 10
    probability_increment: float = 1.0
    win_rate_threshold: float = 85.0
    trades_per_calibration: int = 5

    # --- engine ---
    price_window: int = 100                 # ticks kept per instrument
    min_history: int = 20                   # ticks before an instrument is analyzed
    poll_interval: float = 2.0              # evaluate every 2s
    log_capacity: int = 200

    # --- reconnect ---
    max_reconnect_attempts: int = 5
    reconnect_base_delay: float = 1.0
    reconnect_max_delay: float = 10.0

    # --- persistence ---
    db_path: str = "vault_journal.db"
    trade_page_size: int = 100

    # --- misc ---
    seed: Optional[int] = None              # paper trade RNG seed

    @property
    def ws_url(self) -> str:
        return f"{self.endpoint}?app_id={self.app_id}"
