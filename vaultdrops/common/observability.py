import logging

from vaultdrops.common.config import Settings

logger = logging.getLogger(__name__)

_LOGFIRE_INITIALIZED = False


def init_logfire(settings: Settings) -> bool:
    """Initialize Logfire observability if enabled in settings.

    Instruments httpx so remote submission traffic shows up as spans.

    Args:
        settings: Application settings containing Logfire configuration

    Returns:
        True if Logfire was initialized successfully, False otherwise

    Negative case:
        Invalid token -> logs error, returns False, does not crash application
    """
    global _LOGFIRE_INITIALIZED

    if _LOGFIRE_INITIALIZED:
        return True

    if not settings.logfire.is_enabled:
        return False

    try:
        import logfire

        logfire.configure(
            token=settings.logfire.token,
            service_name=settings.logfire.service_name,
            environment=settings.logfire.environment,
        )

        logfire.instrument_httpx()

        _LOGFIRE_INITIALIZED = True
        logger.info(
            f"Logfire initialized: service={settings.logfire.service_name}, "
            f"environment={settings.logfire.environment}"
        )
        return True
    except Exception as e:
        logger.error(f"Failed to initialize Logfire: {e}")
        return False


def is_logfire_enabled() -> bool:
    return _LOGFIRE_INITIALIZED
