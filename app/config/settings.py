from pydantic_settings import BaseSettings
from pydantic import ConfigDict, field_validator
from typing import Optional

class Settings(BaseSettings):
    # Twilio
    twilio_account_sid: Optional[str] = None
    twilio_auth_token: Optional[str] = None
    twilio_phone_number: Optional[str] = None
    validate_twilio_signature: bool = False
    webhook_public_url: Optional[str] = None

    # Redis
    redis_url: str = "redis://localhost:6379/0"
    conversation_log_limit: int = 10000

    # Trials
    trial_duration_days: int = 7
    trial_check_interval: int = 3600  # segundos
    trial_reminder_days: int = 2

    # Assinatura
    subscription_amount: float = 15000.0
    subscription_currency: str = "NGN"
    payment_expiry_days: int = 30

    # Application
    app_name: str = "ODIA WhatsApp Automation"
    environment: str = "production"
    debug: bool = False
    log_level: str = "INFO"
    log_dir: str = "logs"
    port: int = 8000

    model_config = ConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="allow"
    )

    @field_validator('twilio_account_sid', 'twilio_auth_token', 'twilio_phone_number', mode='before')
    def blank_as_none(cls, v):
        # Placeholders do .env.example contam como "não configurado"
        if isinstance(v, str) and (not v.strip() or v.startswith("your_")):
            return None
        return v

    @property
    def twilio_configured(self) -> bool:
        return all([self.twilio_account_sid, self.twilio_auth_token, self.twilio_phone_number])

settings = Settings()
