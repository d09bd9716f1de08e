from sqlalchemy import Column, DateTime, Integer, String

from billing_server.db.base_class import Base
from billing_server.utils import utcnow


class GatewayEvent(Base):
    """Gateway event ids that have already been handled."""

    __tablename__ = "gateway_events"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(String(255), nullable=False, unique=True, index=True)
    event_type = Column(String(64), nullable=False)
    outcome = Column(String(32), nullable=False)
    received_at = Column(DateTime, default=utcnow, nullable=False)
