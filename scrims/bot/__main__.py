"""
scrims.bot.__main__ — Entry point for ``python -m scrims.bot``
==============================================================

Wiring:
1. Load .env (secrets).
2. Load config.yaml (soft settings).
3. Create the SQLAlchemy engine and ensure tables exist.
4. Build the database context (caches are filled when the bot starts).
5. Create the ScrimsBot and hand it config + database.
6. Start the bot (blocking — runs the asyncio event loop).

Run with::

    python -m scrims.bot
"""

from __future__ import annotations

import logging
import os
import sys

from dotenv import load_dotenv

from scrims.bot.core import ScrimsBot
from scrims.config import load_config
from scrims.database.client import ScrimsDatabase
from scrims.database.engine import create_db_engine, init_db

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("scrims")


def main() -> None:
    """Bootstrap and run the Scrims bot."""

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
    cfg = load_config()
    logger.info("Config loaded — host guild: %s", cfg.host_guild_id)

    # 3. Database.
    engine = create_db_engine()
    init_db(engine)

    # 4. Database context.
    database = ScrimsDatabase(
        engine,
        user_cache_lifetime=cfg.user_cache_lifetime,
        query_timeout=cfg.query_timeout,
    )

    # 5. Bot.
    bot = ScrimsBot(cfg=cfg, database=database)

    # 6. Run (blocks until Ctrl+C or SIGTERM).
    logger.info("Starting Scrims bot…")
    try:
        bot.run(token, log_handler=None)
    except KeyboardInterrupt:
        logger.info("Shutting down gracefully…")


if __name__ == "__main__":
    main()
