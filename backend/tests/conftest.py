import os
# Override DATABASE_URL before any app imports to avoid PostgreSQL driver requirement
os.environ["DATABASE_URL"] = "sqlite:///./test.db"
# Keep external integrations disabled by default for unit/API tests. Individual
# tests can opt-in by monkeypatching settings.
os.environ["MVP_DISABLE_STRIPE"] = "true"
os.environ["MVP_DISABLE_CELERY"] = "true"
os.environ["RESEND_API_KEY"] = ""

import uuid
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event, select
from sqlalchemy.orm import sessionmaker
from app.platform.database import Base, configure_sqlite_locking
from app.main import app
from app.components.billing.lifecycle import SubscriptionLifecycleProcessor
from app.components.billing.service import LedgerService
from app.components.referrals.ledger import ReferralLedger
from app.domains.billing_webhooks.webhook_routes import get_lifecycle_processor
from app.models.credit import CreditSourceType, CreditStatus, UserCredit
from app.models.subscription import Subscription, SubscriptionStatus
from app.models.usage_tracking import UsageTracking
from app.models.user import User

SQLALCHEMY_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args={"check_same_thread": False, "timeout": 30})
configure_sqlite_locking(engine)
# Detached rows stay readable after the helper session closes.
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)

# Enable foreign key support for SQLite
@event.listens_for(engine, "connect")
def set_sqlite_pragma(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class RecordingNotifier:
    """Stands in for NotificationDispatcher; records every call."""

    def __init__(self, result=True):
        self.result = result
        self.calls = []

    def _record(self, name, *args):
        self.calls.append((name, *args))
        return self.result

    def send_low_credit_warning(self, user_id, available_credits):
        return self._record("low_credit", user_id, available_credits)

    def send_credit_expiration_warning(self, user_id, expiring_credits, expires_at):
        return self._record("expiration", user_id, expiring_credits, expires_at)

    def send_payment_failed_notice(self, user_id, invoice_id=None):
        return self._record("payment_failed", user_id, invoice_id)

    def send_referral_reward_granted(self, user_id, reward_value_usd):
        return self._record("referral_reward", user_id, reward_value_usd)

    def named(self, name):
        return [call for call in self.calls if call[0] == name]


@pytest.fixture(scope="function")
def session_factory():
    Base.metadata.create_all(bind=engine)
    yield TestingSessionLocal
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def ledger(session_factory, notifier):
    return LedgerService(
        session_factory,
        notifier=notifier,
        referrals=ReferralLedger(session_factory),
    )


@pytest.fixture
def processor(session_factory, notifier, ledger):
    return SubscriptionLifecycleProcessor(
        session_factory,
        plans=ledger.plans,
        allocator=ledger.allocator,
        notifier=notifier,
    )


@pytest.fixture(scope="function")
def client(processor):
    app.dependency_overrides[get_lifecycle_processor] = lambda: processor
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Factory helpers: each opens and closes its own short transaction so no
# test session holds the SQLite write lock while the ledger runs.
# ---------------------------------------------------------------------------

_counter = 0

def _unique_id() -> str:
    global _counter
    _counter += 1
    return f"{_counter}-{uuid.uuid4().hex[:8]}"


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def create_user(session_factory, email=None, first_name="Test", referral_code=None) -> int:
    with session_factory() as db, db.begin():
        user = User(
            email=email or f"user-{_unique_id()}@test.com",
            first_name=first_name,
            referral_code=referral_code,
        )
        db.add(user)
        db.flush()
        return user.id


def add_credit(
    session_factory,
    user_id,
    source_type=CreditSourceType.PURCHASE,
    created_at=None,
    expires_at=None,
    status=CreditStatus.ACTIVE,
    value_usd=15.0,
) -> int:
    with session_factory() as db, db.begin():
        credit = UserCredit.for_source(
            source_type,
            user_id=user_id,
            value_usd=value_usd,
            created_at=created_at or datetime.now(timezone.utc),
            expires_at=expires_at,
        )
        credit.status = status
        db.add(credit)
        db.flush()
        return credit.id


def add_subscription(
    session_factory,
    user_id,
    plan_name="Starter",
    external_id=None,
    period_start=None,
    period_end=None,
    status=SubscriptionStatus.ACTIVE,
    period_confirmed=True,
) -> int:
    period_start = period_start or datetime.now(timezone.utc)
    with session_factory() as db, db.begin():
        subscription = Subscription(
            user_id=user_id,
            plan_name=plan_name,
            status=status,
            stripe_subscription_id=external_id or f"sub_{_unique_id()}",
            stripe_customer_id=f"cus_{_unique_id()}",
            current_period_start=period_start,
            current_period_end=period_end or period_start + timedelta(days=30),
            period_confirmed_at=datetime.now(timezone.utc) if period_confirmed else None,
        )
        db.add(subscription)
        db.flush()
        return subscription.id


def credits_for(session_factory, user_id, status=None, source_type=None) -> list[UserCredit]:
    with session_factory() as db:
        stmt = select(UserCredit).where(UserCredit.user_id == user_id).order_by(UserCredit.id)
        if status is not None:
            stmt = stmt.where(UserCredit.status == status)
        if source_type is not None:
            stmt = stmt.where(UserCredit.source_type == source_type)
        return list(db.execute(stmt).scalars().all())


def usage_rows(session_factory, user_id) -> list[UsageTracking]:
    with session_factory() as db:
        return list(db.execute(select(UsageTracking).where(UsageTracking.user_id == user_id)).scalars().all())


def load(session_factory, model, pk):
    with session_factory() as db:
        return db.get(model, pk)
