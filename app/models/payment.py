from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime
from enum import Enum

class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"

class Payment(BaseModel):
    payment_id: str
    phone_number: str
    business_name: str
    amount: float
    currency: str = "NGN"
    payment_method: Optional[str] = None
    status: PaymentStatus = PaymentStatus.PENDING
    transaction_id: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.now)
    paid_at: Optional[datetime] = None
    expires_at: datetime
