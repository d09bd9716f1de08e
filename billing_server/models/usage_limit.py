from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint

from billing_server.db.base_class import Base
from billing_server.models.enums import QuotaAction
from billing_server.utils import utcnow


class UsageLimit(Base):
    __tablename__ = "usage_limits"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    # YYYY-MM-DD in UTC
    date = Column(String(10), nullable=False, index=True)
    # Tier the limits below were derived from
    package_type = Column(String(16), nullable=False, default="free")

    frame_upload_count = Column(Integer, nullable=False, default=0)
    frame_upload_limit = Column(Integer, nullable=False, default=0)
    ai_generation_count = Column(Integer, nullable=False, default=0)
    ai_generation_limit = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "date", name="uq_usage_limits_user_date"),
    )

    @staticmethod
    def columns_for(action: QuotaAction):
        """Return the ``(count, limit)`` columns tracking ``action``."""
        if action == QuotaAction.FRAME_UPLOAD:
            return UsageLimit.frame_upload_count, UsageLimit.frame_upload_limit
        return UsageLimit.ai_generation_count, UsageLimit.ai_generation_limit

    def count_for(self, action: QuotaAction) -> int:
        return getattr(self, f"{QuotaAction(action).value}_count")

    def limit_for(self, action: QuotaAction) -> int:
        return getattr(self, f"{QuotaAction(action).value}_limit")
