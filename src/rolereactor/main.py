"""
Role Reactor storage runner
===========================

Standalone entrypoint for the storage layer. Loads configuration, connects to
MongoDB (or falls back to the JSON store when it cannot), logs a status report
and shuts down cleanly. Run it to check a deployment's database settings
before starting the bot.
"""

import os
import sys
from pathlib import Path


def resolve_base_dir() -> Path:
    """Determine the base directory of the project.

    Resolution order:
    1. ROLEREACTOR_HOME environment variable, if set.
    2. If running in a frozen/compiled context, use the executable's directory.
    3. Otherwise, assume running from source and use the grandparent of this file's directory.
    """
    if env_home := os.getenv("ROLEREACTOR_HOME"):
        return Path(env_home).resolve()

    if getattr(sys, "frozen", False) or getattr(sys, "compiled", False):
        return Path(sys.argv[0]).resolve().parent

    return Path(__file__).resolve().parents[2]


BASE_DIR = resolve_base_dir()

import asyncio
from dotenv import load_dotenv

from rolereactor.database.database import StorageFacade
from rolereactor.util.logger import get_logger, handle_exception


logger = get_logger("main")


async def report_storage(facade: StorageFacade) -> int:
    """Connect through the facade and log what backend is in use.

    Returns
    -------
    int
        0 when MongoDB is healthy or the file fallback took over, 1 otherwise.
    """
    manager = await facade.get_database_manager()
    if manager is None:
        logger.warning("MongoDB unavailable; storage runs on JSON files in %s", facade.fallback.store.root)
    else:
        healthy = await facade.health_check()
        logger.info("MongoDB health check %s", "passed" if healthy else "failed")
        if not healthy:
            return 1

    for key, value in facade.storage_status().items():
        logger.info("  %s: %s", key, value)
    return 0


async def async_main() -> int:
    """Load the environment and configuration, then run the storage report."""
    load_dotenv(dotenv_path=BASE_DIR / ".env")

    # Imported late: the config path resolves against the working directory.
    from rolereactor.configuration.app_configuration import app_config

    facade = StorageFacade(app_config.storage_settings)
    try:
        return await report_storage(facade)
    finally:
        await facade.close()


def main() -> int:
    """Entrypoint that runs the async report and returns the process code."""
    os.chdir(BASE_DIR)
    logger.info("Checking Role Reactor storage…")
    try:
        return asyncio.run(async_main())
    except KeyboardInterrupt:
        logger.info("Interrupted by user.")
        return 0
    except Exception as exc:
        logger.critical("Unexpected error while checking storage: %s", exc)
        return 1


if __name__ == "__main__":
    sys.excepthook = handle_exception
    sys.exit(main())
