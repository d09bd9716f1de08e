from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class UsageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    date: str
    package_type: str
    frame_upload_count: int
    frame_upload_limit: int
    ai_generation_count: int
    ai_generation_limit: int


class EntitlementOut(BaseModel):
    user_id: int
    is_active: bool
    tier: str
    premium_expires_at: Optional[datetime] = None
