from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime
from enum import Enum

class TrialRecordStatus(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    CONVERTED = "converted"

class BusinessTrial(BaseModel):
    phone_number: str
    business_name: str
    industry: Optional[str] = None
    trial_start: datetime = Field(default_factory=datetime.now)
    trial_end: datetime
    trial_status: TrialRecordStatus = TrialRecordStatus.ACTIVE
    converted: bool = False
    conversion_date: Optional[datetime] = None
    messages_exchanged: int = 0
    last_activity: datetime = Field(default_factory=datetime.now)
    last_reminder: Optional[datetime] = None

    def days_left(self, now: Optional[datetime] = None) -> int:
        remaining = self.trial_end - (now or datetime.now())
        return max(0, remaining.days + (1 if remaining.seconds > 0 else 0))
