import enum


class PaymentStatus(str, enum.Enum):
    PENDING_PAYMENT = "pending_payment"
    PENDING_VERIFICATION = "pending_verification"
    APPROVED = "approved"
    REJECTED = "rejected"


# Statuses counted by the one-open-payment-per-user rule
OPEN_STATUSES = (PaymentStatus.PENDING_PAYMENT, PaymentStatus.PENDING_VERIFICATION)


class PackageType(str, enum.Enum):
    FREE = "free"
    PRO = "pro"


class PaymentMethod(str, enum.Enum):
    BANK_TRANSFER = "bank_transfer"
    GATEWAY = "gateway"


class ApprovalStep(str, enum.Enum):
    """Steps of the approval saga, in execution order."""

    MARKED_APPROVED = "marked_approved"
    ENTITLEMENT_GRANTED = "entitlement_granted"
    QUOTA_PRIMED = "quota_primed"

    @property
    def position(self) -> int:
        return list(ApprovalStep).index(self)


class QuotaAction(str, enum.Enum):
    FRAME_UPLOAD = "frame_upload"
    AI_GENERATION = "ai_generation"


class UserRole(str, enum.Enum):
    USER = "user"
    ADMIN = "admin"


def enum_values(enum_cls):
    return [member.value for member in enum_cls]
