import logging as _logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy import text

from .components.billing.errors import LedgerError
from .platform.brand import BRAND_APP_DESCRIPTION, BRAND_NAME
from .platform.config import settings
from .platform.database import SessionLocal
from .platform.logging import setup_logging
from .platform.middleware import RequestLoggingMiddleware

logger = setup_logging()
_request_logger = _logging.getLogger("autoblog.requests")

_is_production = (settings.DEPLOYMENT_ENV or "").strip().lower() == "production"


@asynccontextmanager
async def _lifespan(_app: FastAPI):
    flags = settings.mvp_flags
    logger.info(
        "%s ledger API started | env=%s stripe=%s celery=%s",
        BRAND_NAME,
        settings.DEPLOYMENT_ENV,
        "off" if flags.disable_stripe else "on",
        "off" if flags.disable_celery else "on",
    )
    if not flags.disable_stripe and not settings.STRIPE_WEBHOOK_SECRET:
        logger.warning("Stripe is enabled but STRIPE_WEBHOOK_SECRET is empty; webhooks will return 503")
    yield


app = FastAPI(
    title=f"{BRAND_NAME} Credit Ledger API",
    description=BRAND_APP_DESCRIPTION,
    version="1.0.0",
    # No interactive docs in production
    docs_url=None if _is_production else "/api/docs",
    openapi_url=None if _is_production else "/api/openapi.json",
    lifespan=_lifespan,
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    _request_logger.warning("Rejected %s %s: %s", request.method, request.url.path, exc.errors())
    return JSONResponse(status_code=422, content={"detail": [{k: str(v) for k, v in err.items()} for err in exc.errors()]})


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.exception_handler(LedgerError)
async def ledger_exception_handler(request: Request, exc: LedgerError):
    # Routes translate ledger errors themselves; this catches the ones they let through.
    if exc.status_code >= 500:
        logger.error("Ledger failure on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=exc.status_code, content={"detail": str(exc), "code": exc.code})


app.add_middleware(RequestLoggingMiddleware)

if settings.SENTRY_DSN and settings.SENTRY_DSN.startswith("https://"):
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.DEPLOYMENT_ENV,
        traces_sample_rate=0.1,
        integrations=[FastApiIntegration(), SqlalchemyIntegration()],
    )

from .domains.billing_webhooks.webhook_routes import router as webhooks_router

app.include_router(webhooks_router, prefix="/api/v1")


def _secret_is_set(value: str | None) -> bool:
    return (value or "").strip().lower() not in {"", "skip", "changeme"}


def _database_reachable() -> bool:
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        return True
    except Exception:
        logger.exception("Health check: database unreachable")
        return False
    finally:
        db.close()


def _broker_reachable() -> bool | None:
    """``None`` when Celery is disabled and no broker is expected."""
    if settings.MVP_DISABLE_CELERY:
        return None
    try:
        import redis

        client = redis.from_url(settings.REDIS_URL, socket_connect_timeout=2, socket_timeout=2)
        return bool(client.ping())
    except Exception:
        logger.warning("Health check: Redis broker unreachable")
        return False


@app.get("/health")
def health_check():
    db_ok = _database_reachable()
    redis_ok = _broker_reachable()
    return {
        "status": "healthy" if db_ok and redis_ok is not False else "degraded",
        "service": "autoblog-api",
        "database": db_ok,
        "redis": redis_ok,
        "integrations": {
            "stripe_configured": _secret_is_set(settings.STRIPE_API_KEY),
            "stripe_webhook_configured": _secret_is_set(settings.STRIPE_WEBHOOK_SECRET),
            "resend_configured": _secret_is_set(settings.RESEND_API_KEY),
        },
    }
