"""Celery email tasks for billing notifications (canonical location)."""

import logging
from ...tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


def _raise_unless_sent(result: dict) -> None:
    # Skipped sends (no Resend key, unknown user) are final; retrying cannot help.
    if not result.get("success") and not result.get("skipped"):
        raise Exception(result.get("error", "Email send failed"))


@celery_app.task(bind=True, max_retries=3, default_retry_delay=60)
def send_low_credit_warning_email(self, user_id: int, available_credits: int):
    """Warn a user that only a couple of credits remain."""
    from .service import send_low_credit_warning_sync

    try:
        result = send_low_credit_warning_sync(user_id=user_id, available_credits=available_credits)
        _raise_unless_sent(result)
        return result
    except Exception as exc:
        logger.error(f"Failed to send low credit warning to user {user_id}: {exc}", extra={"task_id": self.request.id})
        raise self.retry(exc=exc)


@celery_app.task(bind=True, max_retries=3, default_retry_delay=60)
def send_credit_expiration_warning_email(self, user_id: int, expiring_credits: int, expires_at: str):
    """Remind a user that plan credits expire soon."""
    from .service import send_credit_expiration_warning_sync

    try:
        result = send_credit_expiration_warning_sync(
            user_id=user_id,
            expiring_credits=expiring_credits,
            expires_at=expires_at,
        )
        _raise_unless_sent(result)
        return result
    except Exception as exc:
        logger.error(f"Failed to send credit expiration warning to user {user_id}: {exc}", extra={"task_id": self.request.id})
        raise self.retry(exc=exc)


@celery_app.task(bind=True, max_retries=3, default_retry_delay=120)
def send_payment_failed_email(self, user_id: int, invoice_id: str | None = None):
    """Tell a user their subscription payment failed."""
    from .service import send_payment_failed_sync

    try:
        result = send_payment_failed_sync(user_id=user_id, invoice_id=invoice_id)
        _raise_unless_sent(result)
        return result
    except Exception as exc:
        logger.error(f"Failed to send payment failed notice to user {user_id}: {exc}", extra={"task_id": self.request.id})
        raise self.retry(exc=exc)


@celery_app.task(bind=True, max_retries=3, default_retry_delay=60)
def send_referral_reward_email(self, user_id: int, reward_value_usd: float):
    """Announce a referral reward credit."""
    from .service import send_referral_reward_sync

    try:
        result = send_referral_reward_sync(user_id=user_id, reward_value_usd=reward_value_usd)
        _raise_unless_sent(result)
        return result
    except Exception as exc:
        logger.error(f"Failed to send referral reward notice to user {user_id}: {exc}", extra={"task_id": self.request.id})
        raise self.retry(exc=exc)
