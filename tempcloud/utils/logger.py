"""Structured logging setup using structlog"""

import logging
import os
import sys
from typing import Any

import structlog

from tempcloud.config import settings


def configure_third_party_loggers(log_level: int):
    """Configure third-party library loggers to reduce verbosity - ERROR only"""

    error_level = logging.ERROR

    # Uvicorn
    logging.getLogger("uvicorn.access").setLevel(error_level)
    logging.getLogger("uvicorn.error").setLevel(error_level)

    # Aiohttp (http blob backend)
    logging.getLogger("aiohttp").setLevel(error_level)
    logging.getLogger("aiohttp.client").setLevel(error_level)

    # Redis (metadata store)
    logging.getLogger("redis").setLevel(error_level)
    logging.getLogger("redis.client").setLevel(error_level)

    # Other common libraries
    logging.getLogger("asyncio").setLevel(error_level)
    logging.getLogger("multipart").setLevel(error_level)


def configure_logging():
    """Configure structured logging with environment-aware settings"""

    # Force ERROR in production unless explicitly set
    if settings.environment == "production" and not os.getenv("LOG_LEVEL"):
        log_level = logging.ERROR
    else:
        log_level = getattr(logging, settings.log_level.upper(), logging.ERROR)

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
    )

    configure_third_party_loggers(log_level)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> Any:
    """Get a logger instance"""
    return structlog.get_logger(name)


def log_storage_config(logger: Any, config: Any) -> None:
    """
    Log storage configuration safely without exposing credentials.

    Args:
        logger: Logger instance
        config: Settings object with storage configuration
    """
    logger.info(
        "storage_config_loaded",
        metadata_backend="memory" if config.disable_redis else "redis",
        redis_host=config.redis_host,
        redis_port=config.redis_port,
        redis_password="[REDACTED]" if config.redis_password else "[NOT_SET]",
        blob_backend=config.blob_storage_backend,
        blob_path=config.blob_storage_path,
        blob_api_url=config.blob_api_url if config.blob_api_url else "[NOT_SET]",
        blob_api_token="[REDACTED]" if config.blob_api_token else "[NOT_SET]",
        max_file_size=config.max_file_size,
        default_file_ttl=config.default_file_ttl,
        pending_upload_ttl=config.pending_upload_ttl,
        strict_download_limit=config.strict_download_limit,
    )


# Configure logging on import
configure_logging()
