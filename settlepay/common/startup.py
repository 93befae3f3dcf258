"""Log the effective settlement configuration once the process boots."""

from settlepay.common.config import CommonSettings
from settlepay.common.logging import logger

_SECRET_MARKERS = ("key", "secret", "password", "token", "database_url")


def redacted_settings(config: CommonSettings) -> dict:
    """Settings as a dict with secret-looking values masked."""

    values = {}
    for name, value in config.model_dump().items():
        if any(marker in name for marker in _SECRET_MARKERS):
            values[name] = "<redacted>" if value else "<unset>"
        else:
            values[name] = value
    return values


def log_startup_config(config: CommonSettings) -> None:
    logger.info("startup_config=%s", redacted_settings(config))
    if config.paystack_webhook_allow_unsigned:
        logger.warning("unsigned webhooks are accepted; sandbox use only")
