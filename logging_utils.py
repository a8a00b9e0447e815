import logging
from copy import deepcopy
from typing import Any, Dict

from uvicorn.config import LOGGING_CONFIG

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Set up root logging for the client library and admin CLI."""
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    # httpx logs every request line at INFO, including refresh query strings
    logging.getLogger("httpx").setLevel(logging.WARNING)


def build_uvicorn_log_config(level: str = "INFO") -> Dict[str, Any]:
    """Return a uvicorn logging config that also routes application loggers."""
    config = deepcopy(LOGGING_CONFIG)
    config["formatters"]["app"] = {"format": LOG_FORMAT}
    config["handlers"]["app"] = {
        "class": "logging.StreamHandler",
        "formatter": "app",
        "stream": "ext://sys.stderr",
    }
    for name in ("main", "security", "database"):
        config["loggers"][name] = {"handlers": ["app"], "level": level.upper(), "propagate": False}
    return config
