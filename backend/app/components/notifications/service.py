"""Billing notifications: synchronous senders and the post-commit dispatcher.

Everything here is best-effort. Callers have already committed their ledger
change by the time a notification is dispatched, so failures are logged and
reported as ``False``; they never propagate.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.orm import Session

from ...models.user import User
from ...platform.config import settings
from ...platform.database import SessionLocal
from .email_client import EmailService

logger = logging.getLogger(__name__)


def _email_service() -> Optional[EmailService]:
    if not (settings.RESEND_API_KEY or "").strip():
        return None
    return EmailService(api_key=settings.RESEND_API_KEY, from_email=settings.EMAIL_FROM)


def _recipient(session_factory: Callable[[], Session], user_id: int) -> Optional[tuple[str, str]]:
    db = session_factory()
    try:
        user = db.get(User, user_id)
        if user is None:
            return None
        return user.email, (user.first_name or "there")
    finally:
        db.close()


def _frontend(path: str) -> str:
    return f"{settings.FRONTEND_URL.rstrip('/')}{path}"


def _deliver(kind: str, user_id: int, session_factory, send) -> dict:
    email_svc = _email_service()
    if email_svc is None:
        logger.info("Skipping %s for user_id=%s: Resend is not configured", kind, user_id)
        return {"success": False, "skipped": "resend_not_configured"}
    recipient = _recipient(session_factory, user_id)
    if recipient is None:
        logger.warning("Skipping %s: user_id=%s not found", kind, user_id)
        return {"success": False, "skipped": "user_not_found"}
    email, first_name = recipient
    return send(email_svc, email, first_name)


def send_low_credit_warning_sync(user_id: int, available_credits: int, session_factory=SessionLocal) -> dict:
    return _deliver(
        "low credit warning",
        user_id,
        session_factory,
        lambda svc, email, name: svc.send_low_credit_warning(
            to_email=email,
            first_name=name,
            available_credits=available_credits,
            upgrade_url=_frontend("/pricing"),
        ),
    )


def send_credit_expiration_warning_sync(
    user_id: int,
    expiring_credits: int,
    expires_at: str,
    session_factory=SessionLocal,
) -> dict:
    expires_on = expires_at[:10]
    return _deliver(
        "credit expiration warning",
        user_id,
        session_factory,
        lambda svc, email, name: svc.send_credit_expiration_warning(
            to_email=email,
            first_name=name,
            expiring_credits=expiring_credits,
            expires_on=expires_on,
            dashboard_url=_frontend("/dashboard"),
        ),
    )


def send_payment_failed_sync(user_id: int, invoice_id: str | None = None, session_factory=SessionLocal) -> dict:
    logger.info("Payment failed notice for user_id=%s invoice=%s", user_id, invoice_id)
    return _deliver(
        "payment failed notice",
        user_id,
        session_factory,
        lambda svc, email, name: svc.send_payment_failed(
            to_email=email,
            first_name=name,
            billing_url=_frontend("/settings/billing"),
        ),
    )


def send_referral_reward_sync(user_id: int, reward_value_usd: float, session_factory=SessionLocal) -> dict:
    return _deliver(
        "referral reward notice",
        user_id,
        session_factory,
        lambda svc, email, name: svc.send_referral_reward_granted(
            to_email=email,
            first_name=name,
            reward_value_usd=reward_value_usd,
            dashboard_url=_frontend("/dashboard"),
        ),
    )


class NotificationDispatcher:
    """Hands notifications to Celery, or sends inline when Celery is disabled."""

    def __init__(self, session_factory=SessionLocal, use_celery: bool | None = None):
        self._session_factory = session_factory
        self._use_celery = use_celery

    def _celery_enabled(self) -> bool:
        if self._use_celery is not None:
            return self._use_celery
        return not settings.MVP_DISABLE_CELERY

    def _dispatch(self, kind: str, task_name: str, sync_fn, **kwargs) -> bool:
        try:
            if self._celery_enabled():
                from . import tasks as notification_tasks

                getattr(notification_tasks, task_name).delay(**kwargs)
                logger.info("Queued %s", kind, extra={"user_id": kwargs.get("user_id")})
                return True
            result = sync_fn(session_factory=self._session_factory, **kwargs)
            return bool(result and result.get("success"))
        except Exception:
            logger.exception("Failed to dispatch %s", kind, extra={"user_id": kwargs.get("user_id")})
            return False

    def send_low_credit_warning(self, user_id: int, available_credits: int) -> bool:
        return self._dispatch(
            "low credit warning",
            "send_low_credit_warning_email",
            send_low_credit_warning_sync,
            user_id=user_id,
            available_credits=available_credits,
        )

    def send_credit_expiration_warning(self, user_id: int, expiring_credits: int, expires_at: datetime) -> bool:
        return self._dispatch(
            "credit expiration warning",
            "send_credit_expiration_warning_email",
            send_credit_expiration_warning_sync,
            user_id=user_id,
            expiring_credits=expiring_credits,
            expires_at=expires_at.isoformat(),
        )

    def send_payment_failed_notice(self, user_id: int, invoice_id: str | None = None) -> bool:
        return self._dispatch(
            "payment failed notice",
            "send_payment_failed_email",
            send_payment_failed_sync,
            user_id=user_id,
            invoice_id=invoice_id,
        )

    def send_referral_reward_granted(self, user_id: int, reward_value_usd: float) -> bool:
        return self._dispatch(
            "referral reward notice",
            "send_referral_reward_email",
            send_referral_reward_sync,
            user_id=user_id,
            reward_value_usd=reward_value_usd,
        )
