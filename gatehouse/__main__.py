"""
gatehouse.__main__ — Entry point for ``python -m gatehouse``
=============================================================

Wiring:
1. Load .env (secrets).
2. Load config.yaml (policy settings).
3. Create the SQLAlchemy engine and ensure tables exist.
4. Serve the API with uvicorn (the app's lifespan starts the sweeper).
"""

from __future__ import annotations

import logging
import os
import sys

import uvicorn
from dotenv import load_dotenv

from gatehouse.config import load_config
from gatehouse.database.engine import create_db_engine, init_db

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("gatehouse")


def main() -> None:
    """Bootstrap and serve the Gatehouse API."""

    # 1. Environment variables (secrets).
    load_dotenv()

    if not os.getenv("JWT_SECRET"):
        logger.critical(
            "JWT_SECRET is not set.  "
            "Copy .env.example → .env and set a strong secret."
        )
        sys.exit(1)

    # 2. Policy configuration.
    try:
        cfg = load_config(os.getenv("GATEHOUSE_CONFIG", "config.yaml"))
    except FileNotFoundError as exc:
        logger.critical("%s", exc)
        sys.exit(1)
    logger.info("Config loaded for %s", cfg.community_name)

    # 3. Database.
    engine = create_db_engine()
    init_db(engine)
    engine.dispose()

    # 4. API.
    uvicorn.run("gatehouse.api.main:app", host="0.0.0.0", port=cfg.api_port, log_config=None)


if __name__ == "__main__":
    main()
