# billing_server/models/payment.py
from sqlalchemy import (
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.orm import relationship

from billing_server.db.base_class import Base
from billing_server.models.enums import ApprovalStep, PaymentMethod, PaymentStatus, enum_values
from billing_server.utils import utcnow

# Same predicate for SQLite and PostgreSQL partial indexes
OPEN_STATUS_PREDICATE = text("status IN ('pending_payment', 'pending_verification')")


def _enum_column(enum_cls, **kwargs):
    return Column(
        Enum(
            enum_cls,
            native_enum=False,
            values_callable=enum_values,
            length=32,
            validate_strings=True,
        ),
        **kwargs,
    )


class Payment(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    package_name = Column(String(64), nullable=False)
    # Kept as plain text: rows created under retired package types still exist
    package_type = Column(String(32), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(8), nullable=True)
    # NULL for gateway purchases whose lifetime follows the gateway subscription
    duration_months = Column(Integer, nullable=True)
    payment_method = _enum_column(PaymentMethod, nullable=False, default=PaymentMethod.BANK_TRANSFER)

    status = _enum_column(PaymentStatus, nullable=False, default=PaymentStatus.PENDING_PAYMENT, index=True)

    # Bank transfer instructions shown to the user
    bank_name = Column(String(64), nullable=True)
    bank_account_number = Column(String(64), nullable=True)
    bank_account_name = Column(String(128), nullable=True)

    payment_proof_url = Column(String(512), nullable=True)
    payment_proof_uploaded_at = Column(DateTime, nullable=True)

    # Gateway references
    gateway_session_id = Column(String(255), unique=True, nullable=True)
    gateway_payment_intent_id = Column(String(255), nullable=True)
    gateway_invoice_id = Column(String(255), unique=True, nullable=True)
    gateway_customer_id = Column(String(255), nullable=True)
    gateway_subscription_id = Column(String(255), nullable=True)

    rejection_reason = Column(Text, nullable=True)
    admin_notes = Column(Text, nullable=True)

    approved_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    approved_at = Column(DateTime, nullable=True)
    rejected_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    rejected_at = Column(DateTime, nullable=True)

    # Last committed step of the approval saga
    approval_step = _enum_column(ApprovalStep, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    user = relationship("User", back_populates="payments", foreign_keys=[user_id])

    __table_args__ = (
        Index("ix_payments_user_status", "user_id", "status"),
        Index("ix_payments_status_created", "status", "created_at"),
        Index(
            "uq_payments_user_open",
            "user_id",
            unique=True,
            sqlite_where=OPEN_STATUS_PREDICATE,
            postgresql_where=OPEN_STATUS_PREDICATE,
        ),
    )

    @property
    def is_open(self) -> bool:
        return self.status in (PaymentStatus.PENDING_PAYMENT, PaymentStatus.PENDING_VERIFICATION)

    def __repr__(self):
        return f"<Payment id={self.id} user_id={self.user_id} status={self.status}>"
