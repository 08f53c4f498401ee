"""
Lemon Squeezy integration utilities.

Creates hosted checkout sessions and verifies inbound webhook signatures.

Example usage:
    # Create a checkout for the Pro plan
    client = LemonSqueezyClient.from_env()
    url = await client.create_checkout('pro', user_id=str(user.id), email=user.email)

    # Verify a webhook before trusting it
    if not verify_webhook_signature(raw_body, request.headers.get('X-Signature')):
        raise WebhookSignatureError()
"""

import hashlib
import hmac
import os
from typing import Any, Dict, Optional

import httpx

from core.billing import is_valid_tier, variant_for_tier
from core.errors import PaymentConfigurationError, PaymentProviderError, InvalidRequestError
from core.logging import get_logger

logger = get_logger(__name__)

LEMONSQUEEZY_API_URL = os.environ.get("LEMONSQUEEZY_API_URL", "https://api.lemonsqueezy.com/v1")
CHECKOUT_TIMEOUT_SECS = 15.0
JSON_API_CONTENT_TYPE = "application/vnd.api+json"


def compute_signature(raw_body: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 digest of ``raw_body`` under ``secret``."""
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def verify_webhook_signature(raw_body: bytes, signature: Optional[str],
                             secret: Optional[str] = None) -> bool:
    """
    Check the ``X-Signature`` header of a Lemon Squeezy webhook.

    The secret is read from LEMONSQUEEZY_WEBHOOK_SECRET at call time when not
    given. Without a secret nothing verifies.

    Args:
        raw_body: Request body exactly as received
        signature: Value of the X-Signature header
        secret: Shared signing secret

    Returns:
        True only when the signature matches

    Example:
        >>> sig = compute_signature(b'{}', 'shh')
        >>> verify_webhook_signature(b'{}', sig, 'shh')
        True
    """
    if secret is None:
        secret = os.environ.get("LEMONSQUEEZY_WEBHOOK_SECRET")
    if not secret:
        logger.error("LEMONSQUEEZY_WEBHOOK_SECRET not configured - rejecting webhook")
        return False
    if not signature:
        return False

    expected = compute_signature(raw_body, secret)
    return hmac.compare_digest(expected.encode("ascii"), signature.strip().encode("ascii", "replace"))


class LemonSqueezyClient:
    """
    Minimal Lemon Squeezy REST client.

    ``transport`` lets tests plug in an ``httpx.MockTransport``.
    """

    def __init__(self, api_key: Optional[str], store_id: Optional[str], app_url: str,
                 base_url: str = LEMONSQUEEZY_API_URL,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_key = api_key
        self.store_id = store_id
        self.app_url = app_url.rstrip("/")
        self.base_url = base_url.rstrip("/")
        self._transport = transport

    @classmethod
    def from_env(cls) -> "LemonSqueezyClient":
        return cls(
            api_key=os.environ.get("LEMONSQUEEZY_API_KEY"),
            store_id=os.environ.get("LEMONSQUEEZY_STORE_ID"),
            app_url=os.environ.get("APP_URL", "http://localhost:3000"),
        )

    def checkout_payload(self, tier: str, variant_id: str, user_id: str, email: Optional[str]) -> Dict[str, Any]:
        return {
            "data": {
                "type": "checkouts",
                "attributes": {
                    "checkout_data": {
                        "email": email,
                        "custom": {"user_id": user_id, "tier": tier},
                    },
                    "product_options": {"redirect_url": f"{self.app_url}/dashboard"},
                },
                "relationships": {
                    "store": {"data": {"type": "stores", "id": str(self.store_id)}},
                    "variant": {"data": {"type": "variants", "id": str(variant_id)}},
                },
            }
        }

    async def create_checkout(self, tier: str, user_id: str, email: Optional[str]) -> str:
        """
        Create a hosted checkout for ``tier`` and return its URL.

        Raises:
            InvalidRequestError: ``tier`` is not purchasable
            PaymentConfigurationError: API key, store or variant not configured
            PaymentProviderError: Lemon Squeezy refused or could not be reached
        """
        if not is_valid_tier(tier):
            raise InvalidRequestError("Invalid tier")

        variant_id = variant_for_tier(tier)
        if not (variant_id and self.store_id and self.api_key):
            logger.error("Checkout requested but Lemon Squeezy is not configured", extra={"tier": tier})
            raise PaymentConfigurationError()

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": JSON_API_CONTENT_TYPE,
            "Accept": JSON_API_CONTENT_TYPE,
        }

        try:
            async with httpx.AsyncClient(timeout=CHECKOUT_TIMEOUT_SECS, transport=self._transport) as client:
                response = await client.post(
                    f"{self.base_url}/checkouts",
                    json=self.checkout_payload(tier, variant_id, user_id, email),
                    headers=headers,
                )
        except httpx.HTTPError as exc:
            logger.error(f"Lemon Squeezy request failed: {exc}", extra={"tier": tier, "user_id": user_id})
            raise PaymentProviderError() from exc

        if response.status_code >= 400:
            logger.error(
                "Lemon Squeezy rejected checkout",
                extra={"tier": tier, "user_id": user_id, "status": response.status_code,
                       "body": response.text[:500]},
            )
            raise PaymentProviderError()

        try:
            url = response.json()["data"]["attributes"]["url"]
        except (ValueError, KeyError, TypeError) as exc:
            logger.error("Unexpected checkout response shape", extra={"tier": tier})
            raise PaymentProviderError() from exc

        logger.info(f"Created checkout for user {user_id} -> {tier}")
        return url


def get_payment_client() -> LemonSqueezyClient:
    """FastAPI dependency; overridden in tests."""
    return LemonSqueezyClient.from_env()
