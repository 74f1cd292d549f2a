import hashlib
import hmac
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional, Type, TypeVar, Union
from urllib.parse import quote

import httpx
from pydantic import BaseModel, ValidationError

from hostelhub.core.config import settings
from hostelhub.schemas.paystack_schema import PaystackInitializeData, PaystackTransaction

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

PAYMENT_CHANNELS = {
    "mtn": "mobile_money",
    "vodafone": "mobile_money",
    "airteltigo": "mobile_money",
}


class PaymentConfigurationError(Exception):
    """Raised when the gateway cannot be used because a required setting is missing."""

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(detail)


class PaystackError(Exception):
    """Raised when Paystack rejects a request or cannot be reached."""

    def __init__(self, detail: str, status_code: Optional[int] = None):
        self.detail = detail
        self.status_code = status_code
        super().__init__(detail)


def ghs_to_pesewas(ghs: Union[int, float, str, Decimal]) -> int:
    """Convert cedis to pesewas, rounding half up to a whole pesewa."""
    return int((Decimal(str(ghs)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def pesewas_to_ghs(pesewas: int) -> Decimal:
    return Decimal(pesewas) / Decimal(100)


def get_payment_channel(method: str) -> str:
    return PAYMENT_CHANNELS.get(method, "mobile_money")


class PaystackService:
    def __init__(
        self,
        secret_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.secret_key = secret_key if secret_key is not None else settings.PAYSTACK_SECRET_KEY
        self.base_url = (base_url or settings.PAYSTACK_BASE_URL).rstrip("/")
        self.timeout = httpx.Timeout(timeout if timeout is not None else settings.PAYSTACK_TIMEOUT_SECONDS)
        self._transport = transport

    def require_secret_key(self) -> str:
        if not self.secret_key:
            raise PaymentConfigurationError("Paystack secret key is not configured")
        return self.secret_key

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.require_secret_key()}",
            "Content-Type": "application/json",
        }

    def default_callback_url(self) -> str:
        return f"{settings.APP_BASE_URL.rstrip('/')}/api/payments/callback"

    async def _request(self, method: str, path: str, json: Optional[dict] = None) -> Dict[str, Any]:
        headers = self._headers()
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.request(method, path, headers=headers, json=json)
                payload = response.json()
        except httpx.TimeoutException as e:
            raise PaystackError(f"Paystack request timed out: {e}")
        except httpx.HTTPError as e:
            raise PaystackError(f"HTTP error with Paystack API: {e}")
        except ValueError:
            raise PaystackError("Paystack returned a non-JSON response", status_code=response.status_code)

        if not isinstance(payload, dict) or not payload.get("status"):
            message = payload.get("message") if isinstance(payload, dict) else None
            logger.warning("Paystack %s %s rejected: %s", method, path, message)
            raise PaystackError(message or "Paystack request failed", status_code=response.status_code)
        return payload

    @staticmethod
    def _parse_data(payload: Dict[str, Any], model: Type[ModelT]) -> ModelT:
        try:
            return model.model_validate(payload.get("data") or {})
        except ValidationError as e:
            raise PaystackError(f"Unexpected Paystack response: {e}")

    async def initialize_payment(
        self,
        email: str,
        amount: int,
        phone: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        callback_url: Optional[str] = None,
    ) -> PaystackInitializeData:
        """Start a transaction. ``amount`` is in pesewas."""
        body = {
            "email": email,
            "amount": amount,
            "phone": phone,
            "metadata": metadata or {},
            "callback_url": callback_url or self.default_callback_url(),
        }
        payload = await self._request("POST", "/transaction/initialize", json=body)
        return self._parse_data(payload, PaystackInitializeData)

    async def verify_payment(self, reference: str) -> PaystackTransaction:
        """Ask Paystack for the authoritative state of a transaction."""
        payload = await self._request("GET", f"/transaction/verify/{quote(reference, safe='')}")
        return self._parse_data(payload, PaystackTransaction)

    def compute_signature(self, raw_body: bytes) -> str:
        """Hex HMAC-SHA512 of the raw webhook body, keyed by the secret key."""
        return hmac.new(self.require_secret_key().encode(), raw_body, hashlib.sha512).hexdigest()

    def verify_webhook_signature(self, raw_body: bytes, signature: Optional[str]) -> bool:
        if not signature:
            return False
        expected = self.compute_signature(raw_body)
        return hmac.compare_digest(expected.encode(), signature.strip().lower().encode())


paystack_service = PaystackService()
