from twilio.rest import Client
from twilio.request_validator import RequestValidator
from twilio.twiml.messaging_response import MessagingResponse
import asyncio
import logging
from typing import Optional, Dict, Any

from app.config.settings import Settings, settings as default_settings
from app.utils.helpers import normalize_phone_number

logger = logging.getLogger(__name__)

FALLBACK_TWIML = '''<?xml version="1.0" encoding="UTF-8"?>
<Response>
    <Message>Sorry, I encountered an error. Please try again later.</Message>
</Response>'''

class TwilioService:
    def __init__(self, settings: Settings = default_settings):
        self.account_sid = settings.twilio_account_sid
        self.auth_token = settings.twilio_auth_token
        self.phone_number = settings.twilio_phone_number
        self.client: Optional[Client] = None
        self.validator: Optional[RequestValidator] = None

        if not settings.twilio_configured:
            # Sem credenciais: o webhook ainda responde via TwiML, só não envia mensagens ativas
            logger.warning("Twilio credentials missing, outbound messages disabled")
            self.is_configured = False
            return

        try:
            self.client = Client(self.account_sid, self.auth_token)
            self.validator = RequestValidator(self.auth_token)
            self.is_configured = True
            logger.info("✅ TwilioService initialized")
        except Exception as e:
            logger.error(f"❌ Failed to initialize Twilio client: {e}")
            self.client = None
            self.is_configured = False

    def extract_phone_number(self, from_field: str) -> str:
        """'whatsapp:+2348011111111' -> '+2348011111111'"""
        return normalize_phone_number(from_field)

    def validate_request(self, url: str, params: Dict[str, Any], signature: str) -> bool:
        if not self.validator:
            logger.warning("Cannot validate Twilio signature without an auth token")
            return False
        return self.validator.validate(url, params, signature or "")

    async def send_message(self, to_number: str, message: str) -> bool:
        if not self.is_configured or not self.client:
            logger.warning("TwilioService not configured, cannot send message")
            return False

        whatsapp_to = to_number if to_number.startswith('whatsapp:') else f"whatsapp:{to_number}"
        whatsapp_from = (
            self.phone_number if self.phone_number.startswith('whatsapp:')
            else f"whatsapp:{self.phone_number}"
        )

        try:
            # SDK do Twilio é síncrono
            message_obj = await asyncio.to_thread(
                self.client.messages.create,
                body=message,
                from_=whatsapp_from,
                to=whatsapp_to
            )
            logger.info(f"✅ Message sent to {to_number}, SID: {message_obj.sid}")
            return True

        except Exception as e:
            logger.error(f"❌ Error sending WhatsApp message to {to_number}: {e}")
            return False

    def create_webhook_response(self, response_text: str) -> str:
        try:
            resp = MessagingResponse()
            resp.message(response_text)
            return str(resp)
        except Exception as e:
            logger.error(f"Error creating TwiML response: {e}")
            return FALLBACK_TWIML

    def get_service_status(self) -> Dict[str, Any]:
        return {
            "configured": self.is_configured,
            "client_initialized": self.client is not None,
            "phone_number": self.phone_number or "NOT SET"
        }
