"""WhatsApp delivery of verification codes.

Abstract base class and factory for message senders. The provider is
chosen once from ``settings.messaging_provider``:

- ``twilio``: Twilio Messages API with a WhatsApp sender number
- ``waba``: Meta WhatsApp Business (Cloud) API template message
- ``mock``: logs the message instead of sending it (local development)
"""

import abc
import re

import httpx

from recovery_api.config import Settings
from recovery_api.core.masking import mask_phone, redact_phone
from recovery_api.logging_config import get_logger

logger = get_logger(__name__)

TWILIO_API_BASE = "https://api.twilio.com/2010-04-01"
WABA_API_BASE = "https://graph.facebook.com/v18.0"
WABA_TEMPLATE_NAME = "verification_code"
WABA_TEMPLATE_LANGUAGE = "es"

# Local mobile numbers: optional country code, then 8 digits starting 6 or 7
_PHONE_PATTERN = re.compile(r"^(591)?[67]\d{7}$")
_LOCAL_NUMBER_LENGTH = 8


def format_phone_number(phone: str, country_code: str = "591") -> str:
    """Normalize a phone number to international ``+<digits>`` form.

    Non-digits are dropped and bare 8-digit local numbers get the default
    country code.
    """
    digits = re.sub(r"\D", "", phone)
    if not digits.startswith(country_code) and len(digits) == _LOCAL_NUMBER_LENGTH:
        digits = country_code + digits
    return f"+{digits}"


def is_valid_phone_number(phone: str) -> bool:
    return bool(_PHONE_PATTERN.match(re.sub(r"\D", "", phone)))


def build_verification_message(
    code: str,
    display_name: str = "",
    app_name: str = "Sistema de Rayos X",
    expiry_minutes: int = 10,
) -> str:
    """Build the WhatsApp text carrying the verification code."""
    greeting = f"Hola {display_name}," if display_name else "Hola,"
    return (
        f"{greeting}\n\n"
        f"🔐 *{app_name}*\n\n"
        f"Tu código de verificación es: *{code}*\n\n"
        f"Este código expira en {expiry_minutes} minutos.\n"
        "Si no solicitaste este código, ignora este mensaje."
    )


class BaseMessageSender(abc.ABC):
    """Abstract base class for verification code senders.

    ``send`` never raises: provider errors are logged and reported as False
    so the caller can roll back the issued code.
    """

    provider_name: str = ""

    def __init__(
        self,
        country_code: str = "591",
        app_name: str = "Sistema de Rayos X",
        expiry_minutes: int = 10,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.country_code = country_code
        self.app_name = app_name
        self.expiry_minutes = expiry_minutes
        self._timeout = timeout
        self._transport = transport

    def _http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    async def send(self, phone: str, code: str, display_name: str = "") -> bool:
        """Deliver a verification code.

        Args:
            phone: Destination phone number in any format.
            code: The 6-digit code.
            display_name: User's name for the greeting (optional).

        Returns:
            True if the provider accepted the message.
        """
        message = build_verification_message(
            code, display_name, self.app_name, self.expiry_minutes
        )
        formatted = format_phone_number(phone, self.country_code)
        try:
            return await self._deliver(formatted, code, message)
        except Exception as e:
            logger.error(
                "WhatsApp delivery failed",
                provider=self.provider_name,
                phone=mask_phone(formatted),
                error=redact_phone(str(e), formatted),
            )
            return False

    @abc.abstractmethod
    async def _deliver(self, phone: str, code: str, message: str) -> bool:
        """Send ``message`` to the already formatted ``phone``."""


class TwilioSender(BaseMessageSender):
    provider_name = "twilio"

    def __init__(
        self, account_sid: str, auth_token: str, from_number: str, **kwargs
    ) -> None:
        super().__init__(**kwargs)
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self.api_url = f"{TWILIO_API_BASE}/Accounts/{account_sid}/Messages.json"

    async def _deliver(self, phone: str, code: str, message: str) -> bool:
        async with self._http_client() as client:
            response = await client.post(
                self.api_url,
                data={
                    "To": f"whatsapp:{phone}",
                    "From": self.from_number,
                    "Body": message,
                },
                auth=(self.account_sid, self.auth_token),
            )

        if response.status_code != 201:
            logger.error(
                "Twilio rejected message",
                status_code=response.status_code,
                body=redact_phone(response.text[:500], phone),
            )
            return False
        return True


class BusinessApiSender(BaseMessageSender):
    """Sender for the WhatsApp Business Cloud API.

    Requires an approved ``verification_code`` template with one body
    parameter.
    """

    provider_name = "waba"

    def __init__(self, token: str, phone_id: str, **kwargs) -> None:
        super().__init__(**kwargs)
        self.token = token
        self.phone_id = phone_id
        self.api_url = f"{WABA_API_BASE}/{phone_id}/messages"

    async def _deliver(self, phone: str, code: str, message: str) -> bool:
        async with self._http_client() as client:
            response = await client.post(
                self.api_url,
                json={
                    "messaging_product": "whatsapp",
                    "to": phone,
                    "type": "template",
                    "template": {
                        "name": WABA_TEMPLATE_NAME,
                        "language": {"code": WABA_TEMPLATE_LANGUAGE},
                        "components": [
                            {
                                "type": "body",
                                "parameters": [{"type": "text", "text": message}],
                            }
                        ],
                    },
                },
                headers={"Authorization": f"Bearer {self.token}"},
            )

        if response.status_code != 200:
            logger.error(
                "WhatsApp Business API rejected message",
                status_code=response.status_code,
                body=redact_phone(response.text[:500], phone),
            )
            return False
        return True


class MockSender(BaseMessageSender):
    """Logs messages instead of sending them."""

    provider_name = "mock"

    def __init__(self, reveal_code: bool = False, **kwargs) -> None:
        super().__init__(**kwargs)
        self.reveal_code = reveal_code

    async def _deliver(self, phone: str, code: str, message: str) -> bool:
        if self.reveal_code:
            logger.info(
                "[MOCK] WhatsApp message", phone=mask_phone(phone), code=code
            )
        else:
            logger.info("[MOCK] WhatsApp message", phone=mask_phone(phone))
        return True


def get_message_sender(settings: Settings) -> BaseMessageSender:
    """Factory that returns the sender configured by ``messaging_provider``.

    Unknown providers fall back to the mock sender with a warning.
    """
    common = {
        "country_code": settings.default_country_code,
        "app_name": settings.app_display_name,
        "expiry_minutes": settings.code_expiry_minutes,
        "timeout": settings.messaging_timeout_seconds,
    }
    provider = settings.messaging_provider.lower()

    if provider == "twilio":
        return TwilioSender(
            account_sid=settings.twilio_account_sid,
            auth_token=settings.twilio_auth_token,
            from_number=settings.twilio_whatsapp_number,
            **common,
        )

    if provider == "waba":
        return BusinessApiSender(
            token=settings.waba_token,
            phone_id=settings.waba_phone_id,
            **common,
        )

    if provider != "mock":
        logger.warning(
            "Unknown messaging provider, using mock sender",
            provider=settings.messaging_provider,
        )
    return MockSender(reveal_code=settings.is_development, **common)
