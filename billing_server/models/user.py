from sqlalchemy import Column, Integer, BigInteger, String, Boolean, DateTime
from sqlalchemy.orm import relationship

from billing_server.db.base_class import Base
from billing_server.utils import utcnow


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=True)
    name = Column(String, nullable=True)
    role = Column(String(16), default="user", nullable=False)
    # Chat used for Telegram push notifications, if the user linked one
    telegram_id = Column(BigInteger, nullable=True)

    # Entitlement; only billing_server.services.entitlement_service writes these
    is_premium = Column(Boolean, default=False, nullable=False)
    premium_expires_at = Column(DateTime, nullable=True)
    gateway_customer_ref = Column(String(255), index=True, nullable=True)
    gateway_subscription_ref = Column(String(255), index=True, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)

    payments = relationship(
        "Payment",
        back_populates="user",
        cascade="all, delete-orphan",
        foreign_keys="Payment.user_id",
    )
