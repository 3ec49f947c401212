"""
Resend email service for billing notifications.

Handles transactional delivery of low-credit warnings, credit expiration
reminders, payment failure notices and referral reward announcements via the
Resend API.
"""

import logging

import resend

from ...platform.brand import BRAND_NAME, brand_email_from
from .templates import (
    credit_expiration_warning_html,
    low_credit_warning_html,
    payment_failed_html,
    referral_reward_granted_html,
)

logger = logging.getLogger(__name__)


class EmailService:
    """Service for sending transactional emails through Resend."""

    def __init__(self, api_key: str, from_email: str = brand_email_from()):
        resend.api_key = api_key
        self.from_email = from_email
        logger.info("EmailService initialised (from=%s)", self.from_email)

    def _send(self, to_email: str, subject: str, html_body: str, kind: str) -> dict:
        try:
            email = resend.Emails.send({
                "from": self.from_email,
                "to": [to_email],
                "subject": subject,
                "html": html_body,
            })
            email_id = email.get("id", "") if isinstance(email, dict) else str(email)
            logger.info("%s email sent (email_id=%s, to=%s)", kind, email_id, to_email)
            return {"success": True, "email_id": email_id}
        except Exception as e:
            logger.error("Failed to send %s email to %s: %s", kind, to_email, str(e))
            return {"success": False, "email_id": "", "error": str(e)}

    def send_low_credit_warning(self, to_email: str, first_name: str, available_credits: int, upgrade_url: str) -> dict:
        logger.info("Sending low credit warning to %s (available=%d)", to_email, available_credits)
        return self._send(
            to_email,
            f"{BRAND_NAME} — You're running low on credits",
            low_credit_warning_html(first_name=first_name, available_credits=available_credits, upgrade_url=upgrade_url),
            "Low credit warning",
        )

    def send_credit_expiration_warning(
        self,
        to_email: str,
        first_name: str,
        expiring_credits: int,
        expires_on: str,
        dashboard_url: str,
    ) -> dict:
        logger.info("Sending credit expiration warning to %s (credits=%d)", to_email, expiring_credits)
        return self._send(
            to_email,
            f"{BRAND_NAME} — {expiring_credits} credit(s) expire on {expires_on}",
            credit_expiration_warning_html(
                first_name=first_name,
                expiring_credits=expiring_credits,
                expires_on=expires_on,
                dashboard_url=dashboard_url,
            ),
            "Credit expiration warning",
        )

    def send_payment_failed(self, to_email: str, first_name: str, billing_url: str) -> dict:
        logger.info("Sending payment failed notice to %s", to_email)
        return self._send(
            to_email,
            f"{BRAND_NAME} — Action needed: payment failed",
            payment_failed_html(first_name=first_name, billing_url=billing_url),
            "Payment failed",
        )

    def send_referral_reward_granted(self, to_email: str, first_name: str, reward_value_usd: float, dashboard_url: str) -> dict:
        logger.info("Sending referral reward notice to %s", to_email)
        return self._send(
            to_email,
            f"{BRAND_NAME} — You earned a free post",
            referral_reward_granted_html(
                first_name=first_name,
                reward_value_usd=reward_value_usd,
                dashboard_url=dashboard_url,
            ),
            "Referral reward",
        )
