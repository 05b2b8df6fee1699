import logging
import sys

from formsapi.config import config


def configure_logging() -> None:
    """Console logging for the service; levels follow LOG_LEVEL."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    logging.getLogger("formsapi").setLevel(config.LOG_LEVEL)
    logging.getLogger("uvicorn").setLevel(logging.INFO)
    logging.getLogger("passlib").setLevel(logging.ERROR)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
