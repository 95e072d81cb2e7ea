from pydantic import BaseModel, Field
from typing import Optional, Dict, Any
from datetime import datetime
from enum import Enum

class MessageType(str, Enum):
    TEXT = "text"
    MEDIA = "media"

class WhatsAppMessage(BaseModel):
    """Mensagem recebida pelo webhook, com o número já normalizado"""
    message_id: str
    from_number: str
    to_number: Optional[str] = None
    body: str = ""
    message_type: MessageType = MessageType.TEXT
    media_url: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.now)

class AgentResponse(BaseModel):
    agent_id: str
    response_text: str
    session_id: Optional[str] = None
    flow_step: Optional[str] = None
    used_fallback: bool = False
    metadata: Dict[str, Any] = {}

class ConversationLog(BaseModel):
    session_id: str
    phone_number: str
    message_sid: str
    user_message: str
    ai_response: str = ""
    agent: str = "lexi"
    response_time_ms: Optional[int] = None
    success: bool = True
    error_message: Optional[str] = None
    business_name: Optional[str] = None
    industry: Optional[str] = None
    trial_status: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.now)
