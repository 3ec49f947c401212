from .celery_app import celery_app
from .billing_tasks import expire_credits, send_credit_expiration_warnings

__all__ = [
    "celery_app",
    "expire_credits",
    "send_credit_expiration_warnings",
]
