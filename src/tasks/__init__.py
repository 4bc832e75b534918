"""
Background Tasks Module - Celery-based async task processing.

Provides:
- Celery app configuration with Redis broker
- Periodic role assignment expiry sweep
"""

from .celery_app import celery_app, get_celery_app
from .role_expiry import expire_role_assignments, run_expiry_sweep

__all__ = [
    "celery_app",
    "get_celery_app",
    "expire_role_assignments",
    "run_expiry_sweep",
]
