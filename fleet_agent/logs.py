"""
Logging setup.

One dictConfig applied at startup; modules ask for loggers under the
`fleet_agent` namespace through get_logger.
"""

import logging
import logging.config
from typing import Any, Dict

ROOT_LOGGER = "fleet_agent"

# Third-party loggers that are noisy at INFO.
QUIET_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access", "httpx", "httpcore", "openai")


def get_logger(name: str) -> logging.Logger:
    """Return the `fleet_agent.<name>` logger."""
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


def create_logging_config(level: str = "INFO") -> Dict[str, Any]:
    level = level.upper()
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "format": "%(name)s %(message)s",
                "datefmt": "[%X]",
            },
        },
        "handlers": {
            "default": {
                "class": "rich.logging.RichHandler",
                "formatter": "default",
                "level": level,
                "rich_tracebacks": True,
                "show_path": False,
            },
        },
        "loggers": {
            ROOT_LOGGER: {
                "handlers": ["default"],
                "level": level,
                "propagate": False,
            },
            **{
                name: {"handlers": ["default"], "level": "WARNING", "propagate": False}
                for name in QUIET_LOGGERS
            },
        },
    }


def configure_logging(level: str = "INFO") -> None:
    logging.config.dictConfig(create_logging_config(level))
