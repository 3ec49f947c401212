import logging
from .celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task
def expire_credits():
    """Periodic task: move credits past their expiry date to expired."""
    from ..components.billing.expiration import ExpirationSweeper

    logger.info("Running credit expiry sweep")
    try:
        count = ExpirationSweeper().expire_old_credits()
        logger.info(f"Expired {count} credits")
        return {"expired": count}
    except Exception as e:
        logger.error(f"Credit expiry sweep failed: {e}")
        raise


@celery_app.task
def send_credit_expiration_warnings():
    """Periodic task: remind users whose plan credits expire in about a week."""
    from ..components.billing.expiration import ExpirationSweeper

    logger.info("Sending credit expiration warnings")
    try:
        summary = ExpirationSweeper().send_expiration_warnings()
        logger.info(f"Credit expiration warnings: sent={summary['sent']} failed={summary['failed']}")
        return summary
    except Exception as e:
        logger.error(f"Credit expiration warning sweep failed: {e}")
        raise
