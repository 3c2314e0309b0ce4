"""Process-wide logging setup."""

import logging

from services.shared.config import Settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(settings: Settings) -> None:
    """Configure root logging once from settings."""
    logging.basicConfig(level=settings.log_level, format=LOG_FORMAT)
