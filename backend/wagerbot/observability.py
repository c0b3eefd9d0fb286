"""Logfire tracing for the reconciler service."""

import logging

import logfire

from wagerbot import __version__
from wagerbot.config import Settings

logger = logging.getLogger(__name__)


def initialize_logfire(settings: Settings, environment: str = "production") -> bool:
    """
    Send logs and MongoDB spans to Logfire when a token is configured.

    Call once before the runtime is opened so that index creation and the
    startup ping are traced too. Returns whether Logfire is active; any
    failure here is logged and the service runs without it.
    """
    if not settings.logfire_token:
        logger.info("LOGFIRE_TOKEN not set, tracing disabled")
        return False

    try:
        logfire.configure(
            token=settings.logfire_token,
            service_name="wagerbot",
            service_version=__version__,
            environment=environment,
        )
        # Motor issues its commands through PyMongo
        logfire.instrument_pymongo()
        logging.getLogger().addHandler(logfire.LogfireLoggingHandler())
    except Exception as e:
        logger.warning(f"Logfire setup failed, continuing without tracing: {e}")
        return False

    try:
        logfire.instrument_system_metrics()
    except Exception as e:
        logger.debug(f"System metrics unavailable: {e}")

    logger.info("✓ Logfire tracing enabled")
    return True
