"""
Services Module - Cross-cutting infrastructure services.

- logging_config: structured logging setup and request/user context
- cache_broadcast: Redis publisher and listener for cache invalidations
"""

from .logging_config import configure_logging, request_id_var, user_id_var

__all__ = [
    "configure_logging",
    "request_id_var",
    "user_id_var",
]
