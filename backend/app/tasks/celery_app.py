from celery import Celery
from ..platform.config import settings

EXPIRY_SWEEP_INTERVAL_SECONDS = 3600.0
EXPIRATION_WARNING_INTERVAL_SECONDS = 86400.0

celery_app = Celery(
    "autoblog",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=["app.tasks.billing_tasks", "app.components.notifications.tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    # Redeliver sweeps when a worker dies mid-run.
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    task_routes={
        "app.components.notifications.tasks.*": {"queue": "notifications"},
        "app.tasks.billing_tasks.*": {"queue": "ledger"},
    },
    beat_schedule={
        "credit-expiry-sweep-hourly": {
            "task": "app.tasks.billing_tasks.expire_credits",
            "schedule": EXPIRY_SWEEP_INTERVAL_SECONDS,
        },
        "credit-expiration-warnings-daily": {
            "task": "app.tasks.billing_tasks.send_credit_expiration_warnings",
            "schedule": EXPIRATION_WARNING_INTERVAL_SECONDS,
        },
    },
)
