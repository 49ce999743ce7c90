"""Error taxonomy for the entitlement core.

Limit denials and idempotent replays are results, not errors; only
caller-correctable and infrastructure failures live here.
"""

from typing import Optional


class AppError(Exception):
    code = "app_error"
    status_code = 500

    def __init__(self, message: str, *, code: Optional[str] = None, status_code: Optional[int] = None, request_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.request_id = request_id

    def to_dict(self) -> dict:
        return {"error": {"code": self.code, "message": self.message, "request_id": self.request_id}}


class ValidationError(AppError, ValueError):
    code = "validation_error"
    status_code = 400


class NotFoundError(AppError, ValueError):
    code = "not_found"
    status_code = 404


class SubscriptionNotFoundError(NotFoundError):
    code = "subscription_not_found"

    def __init__(self, subscription_id: str, **kwargs):
        super().__init__("Subscription not found", **kwargs)
        self.subscription_id = subscription_id


class PlanNotFoundError(NotFoundError):
    code = "plan_not_found"

    def __init__(self, plan_id: str, **kwargs):
        super().__init__(f"Plan {plan_id} not found", **kwargs)
        self.plan_id = plan_id


class StoreUnavailableError(AppError):
    """Backing key-value store could not be reached or returned garbage."""
    code = "store_unavailable"
    status_code = 503


class BillingApiError(AppError):
    code = "billing_api_error"
    status_code = 502
