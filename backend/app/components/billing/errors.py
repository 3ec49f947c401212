"""Ledger error taxonomy.

``status_code`` is the HTTP-equivalent class of each failure so transport
layers can translate without knowing every subclass.
"""

from __future__ import annotations


class LedgerError(Exception):
    status_code = 500
    code = "ledger_error"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.code)


class InsufficientCredits(LedgerError):
    """Expected outcome: the user has nothing left to spend."""

    status_code = 402
    code = "insufficient_credits"

    def __init__(self, user_id: int):
        self.user_id = user_id
        super().__init__(f"User {user_id} has no available credits")


class UserNotFound(LedgerError):
    status_code = 404
    code = "user_not_found"

    def __init__(self, user_id):
        self.user_id = user_id
        super().__init__(f"User {user_id} not found")


class SubscriptionNotFound(LedgerError):
    status_code = 404
    code = "subscription_not_found"

    def __init__(self, external_subscription_id):
        self.external_subscription_id = external_subscription_id
        super().__init__(f"Subscription {external_subscription_id} not found")


class UnknownPlan(LedgerError):
    status_code = 422
    code = "unknown_plan"

    def __init__(self, plan_identifier):
        self.plan_identifier = plan_identifier
        super().__init__(f"Unknown plan identifier: {plan_identifier!r}")


class LedgerInfrastructureFailure(LedgerError):
    """The store is unreachable or the transaction aborted. Retry the whole call."""

    status_code = 503
    code = "ledger_unavailable"


class InvalidReferral(LedgerError):
    """Self-referrals, unknown codes and repeat rewards for the same signup."""

    status_code = 422
    code = "invalid_referral"
