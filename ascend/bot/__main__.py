"""
ascend.bot.__main__ — Entry point for ``python -m ascend.bot``
==============================================================

Wiring:
1. Load .env (secrets).
2. Load config.yaml (soft settings + guild defaults).
3. Create the SQLAlchemy engine and ensure tables exist.
4. Create the AscendBot, which builds the cache, bus and services.
5. Start the bot (blocking — runs the asyncio event loop).
"""

from __future__ import annotations

import logging
import os
import sys

from dotenv import load_dotenv

from ascend.bot.core import AscendBot
from ascend.config import load_config
from ascend.database.engine import create_db_engine, init_db

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("ascend")


def main() -> None:
    """Bootstrap and run the Ascend bot."""

    # 1. Environment variables (secrets).
    load_dotenv()

    token = os.getenv("DISCORD_TOKEN")
    if not token or token == "your-discord-bot-token-here":
        logger.critical(
            "DISCORD_TOKEN is not set.  "
            "Copy .env.example → .env and paste your bot token."
        )
        sys.exit(1)

    # 2. Soft configuration.
    cfg = load_config(os.getenv("ASCEND_CONFIG", "config.yaml"))
    logger.info(
        "Config loaded — %d XP/message, %ds cooldown by default",
        cfg.guild_defaults.xp_per_message, cfg.guild_defaults.message_cooldown_seconds,
    )

    # 3. Database.
    engine = create_db_engine()
    init_db(engine)

    # 4. Bot.
    bot = AscendBot(cfg=cfg, engine=engine)

    # 5. Run (blocks until Ctrl+C or SIGTERM).
    logger.info("Starting Ascend bot…")
    try:
        bot.run(token, log_handler=None)
    except KeyboardInterrupt:
        logger.info("Shutting down gracefully…")


if __name__ == "__main__":
    main()
