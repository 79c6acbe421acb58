import logging
from abc import ABC, abstractmethod
from typing import Optional

from twilio.base.exceptions import TwilioException
from twilio.http.http_client import TwilioHttpClient
from twilio.rest import Client

from heatcare.core.config.settings import Settings, get_settings
from heatcare.core.exceptions import SMSDeliveryError
from heatcare.utils.helpers import get_utc_now

logger = logging.getLogger(__name__)
sms_logger = logging.getLogger("heatcare.sms")


class SMSTransport(ABC):
    """Sends a text message to an already validated phone number."""

    @abstractmethod
    def send(self, phone: str, message: str) -> bool:
        """Return True once the provider accepted the message.

        Raises SMSDeliveryError when the provider refuses or cannot be reached.
        """


class LogSMSTransport(SMSTransport):
    """Development transport: writes messages to the ``heatcare.sms`` log."""

    def send(self, phone: str, message: str) -> bool:
        sms_logger.info("SMS Message", extra={
            "to": phone,
            "sms_message": message,
            "timestamp": get_utc_now().isoformat(),
        })
        return True


class TwilioSMSTransport(SMSTransport):
    def __init__(self, account_sid: str, auth_token: str, from_number: str, timeout: int = 10):
        self.from_number = from_number
        self.client = Client(account_sid, auth_token, http_client=TwilioHttpClient(timeout=timeout))

    def send(self, phone: str, message: str) -> bool:
        try:
            result = self.client.messages.create(to=phone, from_=self.from_number, body=message)
        except TwilioException as e:
            raise SMSDeliveryError(f"Twilio rejected message: {e}") from e
        except OSError as e:
            # requests' connection and timeout errors derive from OSError
            raise SMSDeliveryError(f"Twilio unreachable: {e}") from e
        logger.info("Twilio SMS queued", extra={"sid": result.sid, "to": phone})
        return True


def get_sms_transport(settings: Optional[Settings] = None) -> SMSTransport:
    settings = settings or get_settings()
    if not settings.SMS_ENABLED:
        logger.info("SMS service is disabled, messages will only be logged")
        return LogSMSTransport()

    if settings.SMS_PROVIDER == "twilio":
        if not (settings.TWILIO_ACCOUNT_SID and settings.TWILIO_AUTH_TOKEN and settings.TWILIO_FROM_NUMBER):
            raise RuntimeError("TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN and TWILIO_FROM_NUMBER must be set")
        return TwilioSMSTransport(
            settings.TWILIO_ACCOUNT_SID,
            settings.TWILIO_AUTH_TOKEN,
            settings.TWILIO_FROM_NUMBER,
            timeout=settings.SMS_TIMEOUT_SECONDS,
        )
    return LogSMSTransport()
