"""
Logging configuration for Token Aggregator Service.
Supports both JSON and text logging formats.
"""

import logging
import logging.config
import sys
from typing import Dict, Any
from pythonjsonlogger import jsonlogger

from .config import settings

ROOT_LOGGER_NAME = "token_aggregator"


def setup_logging() -> None:
    """Setup structured logging for the application."""

    if settings.log_format == "json":
        logging_config = get_json_logging_config()
    else:
        logging_config = get_text_logging_config()

    logging.config.dictConfig(logging_config)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.log_level))

    # Reduce noise from external libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("redis").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def _handlers_and_loggers(formatter: str) -> Dict[str, Any]:
    return {
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": settings.log_level,
                "formatter": formatter,
                "stream": sys.stdout
            }
        },
        "loggers": {
            "": {
                "handlers": ["console"],
                "level": settings.log_level,
                "propagate": False
            },
            ROOT_LOGGER_NAME: {
                "handlers": ["console"],
                "level": settings.log_level,
                "propagate": False
            }
        }
    }


def get_json_logging_config() -> Dict[str, Any]:
    """Get JSON logging configuration."""
    config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {
                "()": jsonlogger.JsonFormatter,
                "format": "%(asctime)s %(name)s %(levelname)s %(message)s %(module)s %(funcName)s %(lineno)d",
                "datefmt": "%Y-%m-%d %H:%M:%S"
            }
        },
    }
    config.update(_handlers_and_loggers("json"))
    return config


def get_text_logging_config() -> Dict[str, Any]:
    """Get text logging configuration."""
    config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s (%(filename)s:%(lineno)d)",
                "datefmt": "%Y-%m-%d %H:%M:%S"
            },
            "detailed": {
                "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s [in %(pathname)s:%(lineno)d]",
                "datefmt": "%Y-%m-%d %H:%M:%S"
            }
        },
    }
    config.update(_handlers_and_loggers("standard" if settings.log_level == "INFO" else "detailed"))
    return config


def create_logger(module_name: str) -> logging.Logger:
    """Create a logger for a specific module, rooted under the service logger."""
    if module_name == ROOT_LOGGER_NAME or module_name.startswith(f"{ROOT_LOGGER_NAME}."):
        return logging.getLogger(module_name)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{module_name}")
