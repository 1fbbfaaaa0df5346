import asyncio
import logging
import os
import sys

from vaultbot.bot import VaultBot
from vaultbot.config import BotConfig
from vaultbot.core.engine import DecisionEngine
from vaultbot.errors import PersistenceError
from vaultbot.trading.journal import TradeJournal
from vaultbot.transport.deriv import DerivTransport
from vaultbot.utils.logger import log


def main():
    # --- Load config from env or defaults ---
    seed_str = os.environ.get("VB_SEED", "").strip()
    try:
        seed = int(seed_str) if seed_str else None
    except ValueError:
        print(f"Warning: Invalid VB_SEED '{seed_str}', using an unseeded RNG")
        seed = None

    cfg = BotConfig(
        api_token=os.environ.get("VB_TOKEN", ""),
        app_id=os.environ.get("VB_APP_ID", "1089"),
        currency=os.environ.get("VB_CURRENCY", "USD"),
        db_path=os.environ.get("VB_DB", "vault_journal.db"),
        seed=seed,
    )
    log.setLevel(getattr(logging, os.environ.get("VB_LOG_LEVEL", "INFO").upper(), logging.INFO))

    if not cfg.api_token:
        print("=" * 60)
        print("  ERROR: No API token provided!")
        print()
        print("  Set your Deriv API token:")
        print("    export VB_TOKEN='your-token-here'  # Linux/Mac")
        print("    set VB_TOKEN=your-token-here       # Windows")
        print("=" * 60)
        sys.exit(1)

    try:
        journal = TradeJournal(cfg.db_path, cfg.trade_page_size)
    except PersistenceError as e:
        print(f"Critical error: {e}")
        sys.exit(1)

    bot = VaultBot(cfg, transport=DerivTransport(cfg), journal=journal,
                   engine=DecisionEngine(cfg))

    async def run():
        try:
            await bot.start()
        finally:
            await bot.stop()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
