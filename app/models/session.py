from pydantic import BaseModel, Field
from typing import Dict, List, Optional, Literal
from datetime import datetime
from enum import Enum

class TrialStatus(str, Enum):
    PROSPECT = "prospect"
    TRIAL = "trial"
    PAID = "paid"
    EXPIRED = "expired"

class Message(BaseModel):
    role: Literal["user", "assistant"]
    content: str
    timestamp: datetime = Field(default_factory=datetime.now)
    message_id: Optional[str] = None

class BusinessContext(BaseModel):
    name: Optional[str] = None
    industry: Optional[str] = None
    trial_status: TrialStatus = TrialStatus.PROSPECT
    signup_date: Optional[datetime] = None
    last_payment: Optional[datetime] = None

class BusinessContextUpdate(BaseModel):
    """Patch parcial do contexto: só os campos definidos explicitamente são aplicados"""
    name: Optional[str] = None
    industry: Optional[str] = None
    trial_status: Optional[TrialStatus] = None
    signup_date: Optional[datetime] = None
    last_payment: Optional[datetime] = None

    def apply_to(self, context: BusinessContext) -> BusinessContext:
        changes = self.model_dump(exclude_unset=True)
        # trial_status não aceita None no contexto
        if changes.get("trial_status") is None:
            changes.pop("trial_status", None)
        return BusinessContext.model_validate({**context.model_dump(), **changes})

    def is_empty(self) -> bool:
        return not self.model_fields_set

class SessionUpdate(BaseModel):
    business_context: Optional[BusinessContextUpdate] = None
    is_active: Optional[bool] = None

class ConversationSession(BaseModel):
    session_id: str
    phone_number: str
    agent: Literal["lexi"] = "lexi"
    conversation_history: List[Message] = Field(default_factory=list)
    business_context: BusinessContext = Field(default_factory=BusinessContext)
    last_activity: datetime
    start_time: datetime
    is_active: bool = True

    @property
    def user_turns(self) -> int:
        return sum(1 for msg in self.conversation_history if msg.role == "user")

    def last_assistant_message(self) -> Optional[Message]:
        for msg in reversed(self.conversation_history):
            if msg.role == "assistant":
                return msg
        return None

class SessionStats(BaseModel):
    total_sessions: int
    active_sessions: int
    average_history_length: float
    counts_by_trial_status: Dict[str, int]
