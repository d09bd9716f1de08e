"""Typed failures raised by the billing services.

Each error carries a stable ``code`` and the HTTP status the API layer
answers with, so callers can react to "already approved" differently from
"not found".
"""


class BillingError(Exception):
    code = "billing_error"
    status_code = 400

    def __init__(self, message: str = None, **context):
        self.message = message or self.__class__.__doc__ or self.code
        self.context = context
        super().__init__(self.message)

    def to_dict(self) -> dict:
        body = {"success": False, "error": self.code, "message": self.message}
        body.update(self.context)
        return body


class InvalidRequest(BillingError):
    """Request is missing or carries invalid fields."""

    code = "invalid_request"
    status_code = 400


class MissingReason(InvalidRequest):
    """Rejection reason is required."""

    code = "missing_reason"


class DuplicatePendingPayment(BillingError):
    """You already have a pending payment request."""

    code = "duplicate_pending_payment"
    status_code = 409

    def __init__(self, payment_id: int = None):
        super().__init__("You already have a pending payment request", payment_id=payment_id)


class InvalidStateTransition(BillingError):
    code = "invalid_state_transition"
    status_code = 409

    def __init__(self, action: str, current_status):
        status = getattr(current_status, "value", current_status)
        super().__init__(
            f"Cannot {action} a payment in status '{status}'",
            action=action,
            current_status=status,
        )


class PaymentNotFound(BillingError):
    code = "payment_not_found"
    status_code = 404

    def __init__(self, payment_id):
        super().__init__(f"Payment {payment_id} not found", payment_id=payment_id)


class UserNotFound(BillingError):
    code = "user_not_found"
    status_code = 404

    def __init__(self, user_id):
        super().__init__(f"User {user_id} not found", user_id=user_id)


class NotPaymentOwner(BillingError):
    """Payment belongs to another user."""

    code = "forbidden"
    status_code = 403


class AdminRequired(BillingError):
    """Admin access required."""

    code = "admin_required"
    status_code = 403


class QuotaExceeded(BillingError):
    code = "quota_exceeded"
    status_code = 429

    def __init__(self, tier: str, action: str, limit: int, upgrade_url: str):
        action_label = action.replace("_", " ")
        super().__init__(
            f"Daily {action_label} limit reached ({limit}) on the {tier} plan. Upgrade at {upgrade_url}",
            package_type=tier,
            action=action,
            limit=limit,
            upgrade_url=upgrade_url,
        )
        self.tier = tier
        self.action = action
        self.limit = limit
        self.upgrade_url = upgrade_url
