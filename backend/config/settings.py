"""
Configuration Management for the image label resolver
Centralizes all environment-based configuration and settings
"""

import os
import logging
from logging.handlers import RotatingFileHandler
from typing import List


class HealthCheckFilter(logging.Filter):
    """Filter out liveness probe requests to reduce log noise"""
    def filter(self, record: logging.LogRecord) -> bool:
        # For uvicorn access logs, the message format is:
        # 'IP:PORT - "METHOD /path HTTP/1.1" STATUS'
        message = record.getMessage()
        if '/ping' in message and ('200' in message or '200' in str(getattr(record, 'args', ''))):
            return False
        return True


def _get_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def _get_list(name: str) -> List[str]:
    """Comma-separated environment variable as a list (empty entries dropped)"""
    return [item.strip() for item in os.getenv(name, '').split(',') if item.strip()]


def setup_logging():
    """Configure application logging"""
    root_logger = logging.getLogger()

    # Close and clear any existing handlers so our configuration is the only one
    for handler in root_logger.handlers[:]:  # Copy list to avoid modification during iteration
        handler.close()
        root_logger.removeHandler(handler)

    level = getattr(logging, AppConfig.LOG_LEVEL.upper(), logging.INFO)
    root_logger.setLevel(level)

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    # Console handler for stdout (collected by the cluster's log pipeline)
    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # Optional file handler with rotation
    # Max 10MB per file, keep 5 backups
    if AppConfig.LOG_FILE:
        file_handler = RotatingFileHandler(
            AppConfig.LOG_FILE,
            maxBytes=10*1024*1024,  # 10MB
            backupCount=5,
            encoding='utf-8'
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    # aiohttp logs every connection problem at DEBUG/INFO; we log our own errors
    logging.getLogger('aiohttp').setLevel(logging.WARNING)

    # Suppress noisy Uvicorn access logs for liveness probes
    uvicorn_access = logging.getLogger("uvicorn.access")
    uvicorn_access.addFilter(HealthCheckFilter())


class AppConfig:
    """Main application configuration"""

    # Server settings
    HOST = os.getenv('LABELER_HOST', '0.0.0.0')
    PORT = int(os.getenv('LABELER_PORT', 8000))

    # Total time allowed for one POST / request (seconds)
    REQUEST_TIMEOUT = float(os.getenv('LABELER_REQUEST_TIMEOUT', 15))

    # Import centralized paths
    from .paths import CREDENTIALS_FILE as DEFAULT_CREDENTIALS_FILE

    # Registry credentials document (dockerconfigjson format)
    CREDENTIALS_FILE = os.getenv('LABELER_CREDENTIALS_FILE', DEFAULT_CREDENTIALS_FILE)

    # Registry access
    REGISTRY_TIMEOUT = float(os.getenv('LABELER_REGISTRY_TIMEOUT', 10))
    ANONYMOUS_REGISTRIES = _get_list('LABELER_ANONYMOUS_REGISTRIES')
    INSECURE_REGISTRIES = _get_list('LABELER_INSECURE_REGISTRIES')
    MAX_CONFIG_BLOB_BYTES = int(os.getenv('LABELER_MAX_CONFIG_BLOB_BYTES', 4 * 1024 * 1024))

    # Namespace prepended to single-component Docker Hub repositories ("" disables)
    DEFAULT_NAMESPACE = os.getenv('LABELER_DEFAULT_NAMESPACE', 'library')

    # Hardening: retry unavailable registries, optionally degrade to no labels
    REGISTRY_RETRIES = int(os.getenv('LABELER_REGISTRY_RETRIES', 0))
    REGISTRY_RETRY_BACKOFF = float(os.getenv('LABELER_REGISTRY_RETRY_BACKOFF', 0.5))
    FALLBACK_ON_REGISTRY_ERROR = _get_bool('LABELER_FALLBACK_ON_REGISTRY_ERROR')

    # Label cache
    CACHE_TTL = float(os.getenv('LABELER_CACHE_TTL', 300))
    CACHE_MAX_ENTRIES = int(os.getenv('LABELER_CACHE_MAX_ENTRIES', 1000))
    CACHE_SWEEP_INTERVAL = float(os.getenv('LABELER_CACHE_SWEEP_INTERVAL', 0))

    # Include the pod's own metadata.labels in the response (image labels win)
    MERGE_POD_LABELS = _get_bool('LABELER_MERGE_POD_LABELS')

    # Logging
    LOG_LEVEL = os.getenv('LABELER_LOG_LEVEL', 'INFO')
    LOG_FILE = os.getenv('LABELER_LOG_FILE', '')

    @classmethod
    def validate(cls):
        """Validate configuration"""
        if cls.PORT < 1 or cls.PORT > 65535:
            raise ValueError(f"Invalid port: {cls.PORT}")

        if cls.REQUEST_TIMEOUT <= 0 or cls.REGISTRY_TIMEOUT <= 0:
            raise ValueError("Request and registry timeouts must be positive")

        if cls.REGISTRY_TIMEOUT >= cls.REQUEST_TIMEOUT:
            raise ValueError(
                f"Registry timeout ({cls.REGISTRY_TIMEOUT}s) must be shorter than "
                f"request timeout ({cls.REQUEST_TIMEOUT}s)"
            )

        if cls.CACHE_TTL <= 0:
            raise ValueError(f"Cache TTL must be positive: {cls.CACHE_TTL}")

        if cls.CACHE_MAX_ENTRIES < 1:
            raise ValueError(f"Cache size must be at least 1: {cls.CACHE_MAX_ENTRIES}")

        if cls.MAX_CONFIG_BLOB_BYTES < 1:
            raise ValueError(f"Config blob limit must be positive: {cls.MAX_CONFIG_BLOB_BYTES}")

        if cls.REGISTRY_RETRIES < 0:
            raise ValueError(f"Registry retries cannot be negative: {cls.REGISTRY_RETRIES}")

        return True
