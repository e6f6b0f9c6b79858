import logging
import sys

from pythonjsonlogger import jsonlogger

from ipwatch.core.config import settings


def setup_logging() -> logging.Logger:
    """
    Installs a single stdout handler on the root logger.
    JSON lines in production, plain text otherwise.
    """
    logger = logging.getLogger()

    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    if settings.APP_ENV == "production":
        formatter = jsonlogger.JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s",
            json_ensure_ascii=False
        )
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler.setFormatter(formatter)
    logger.addHandler(handler)
    logger.setLevel(settings.LOG_LEVEL)

    logging.getLogger("httpx").setLevel(logging.WARNING)
    return logger
