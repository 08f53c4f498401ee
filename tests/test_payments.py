"""
Tests for Lemon Squeezy checkout creation and signature verification

The Lemon Squeezy API is replaced by ``httpx.MockTransport``.
"""

import json

import httpx
import pytest

from core.billing import (
    get_plan,
    is_valid_tier,
    plan_from_variant,
    plan_limit,
    supports_batch_upload,
    supports_pdf_export,
    variant_for_tier,
)
from core.errors import InvalidRequestError, PaymentConfigurationError, PaymentProviderError
from core.models import Plan
from core.payments import (
    JSON_API_CONTENT_TYPE,
    LemonSqueezyClient,
    compute_signature,
    verify_webhook_signature,
)
from tests.helpers import auth_headers, create_profile

CHECKOUT_URL = "https://viotraix.lemonsqueezy.com/checkout/buy/abc"


@pytest.fixture
def variants(monkeypatch):
    monkeypatch.setenv("LEMONSQUEEZY_VARIANT_ID_SINGLE", "111")
    monkeypatch.setenv("LEMONSQUEEZY_VARIANT_ID_BASIC", "222")
    monkeypatch.setenv("LEMONSQUEEZY_VARIANT_ID_PRO", "333")


def make_client(handler, store_id="store_1", api_key="ls_key") -> LemonSqueezyClient:
    return LemonSqueezyClient(
        api_key=api_key,
        store_id=store_id,
        app_url="https://app.viotraix.com/",
        base_url="https://api.lemonsqueezy.test/v1",
        transport=httpx.MockTransport(handler),
    )


class TestSignatureVerification:

    def test_valid_signature(self):
        body = b'{"meta": {}}'

        assert verify_webhook_signature(body, compute_signature(body, "shh"), "shh") is True

    def test_wrong_secret(self):
        body = b'{"meta": {}}'

        assert verify_webhook_signature(body, compute_signature(body, "other"), "shh") is False

    @pytest.mark.parametrize("signature", [None, "", "zz", "not-hex-é"])
    def test_missing_or_garbage_signature(self, signature):
        assert verify_webhook_signature(b"{}", signature, "shh") is False

    def test_missing_secret_never_verifies(self, monkeypatch):
        monkeypatch.delenv("LEMONSQUEEZY_WEBHOOK_SECRET", raising=False)
        body = b"{}"

        assert verify_webhook_signature(body, compute_signature(body, "")) is False

    def test_secret_read_from_environment(self, monkeypatch):
        monkeypatch.setenv("LEMONSQUEEZY_WEBHOOK_SECRET", "from-env")
        body = b"{}"

        assert verify_webhook_signature(body, compute_signature(body, "from-env")) is True


class TestBillingConfig:

    def test_plan_limits(self):
        assert plan_limit(Plan.PRO) == 200
        assert plan_limit(Plan.BASIC) == 50
        assert plan_limit(Plan.SINGLE) == 50

    def test_tiers(self):
        assert is_valid_tier("single") and is_valid_tier("basic") and is_valid_tier("pro")
        assert not is_valid_tier("enterprise")
        assert not is_valid_tier(None)
        assert get_plan("pro")["pdf_export"] is True

    def test_features(self):
        assert supports_pdf_export(Plan.PRO)
        assert supports_batch_upload(Plan.PRO)
        assert not supports_pdf_export(Plan.BASIC)
        assert not supports_batch_upload(Plan.SINGLE)
        assert not supports_batch_upload(Plan.NONE)

    def test_variant_mapping(self, variants):
        assert variant_for_tier("single") == "111"
        assert plan_from_variant(333) == Plan.PRO
        assert plan_from_variant("222") == Plan.BASIC
        assert plan_from_variant("111") is None
        assert plan_from_variant(None) is None

    def test_unset_variant(self, monkeypatch):
        monkeypatch.delenv("LEMONSQUEEZY_VARIANT_ID_PRO", raising=False)

        assert variant_for_tier("pro") is None


class TestCreateCheckout:

    @pytest.mark.asyncio
    async def test_success_returns_hosted_url(self, variants):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["request"] = request
            return httpx.Response(201, json={"data": {"attributes": {"url": CHECKOUT_URL}}})

        url = await make_client(handler).create_checkout("pro", "user-1", "owner@example.com")

        assert url == CHECKOUT_URL
        request = captured["request"]
        assert str(request.url) == "https://api.lemonsqueezy.test/v1/checkouts"
        assert request.headers["Authorization"] == "Bearer ls_key"
        assert request.headers["Content-Type"] == JSON_API_CONTENT_TYPE
        body = json.loads(request.content)
        attributes = body["data"]["attributes"]
        assert attributes["checkout_data"]["custom"] == {"user_id": "user-1", "tier": "pro"}
        assert attributes["checkout_data"]["email"] == "owner@example.com"
        assert attributes["product_options"]["redirect_url"] == "https://app.viotraix.com/dashboard"
        assert body["data"]["relationships"]["variant"]["data"]["id"] == "333"
        assert body["data"]["relationships"]["store"]["data"]["id"] == "store_1"

    @pytest.mark.asyncio
    async def test_invalid_tier(self, variants):
        client = make_client(lambda request: httpx.Response(500))

        with pytest.raises(InvalidRequestError) as exc:
            await client.create_checkout("platinum", "user-1", None)
        assert exc.value.message == "Invalid tier"

    @pytest.mark.asyncio
    async def test_missing_variant_is_configuration_error(self, monkeypatch):
        monkeypatch.delenv("LEMONSQUEEZY_VARIANT_ID_BASIC", raising=False)
        client = make_client(lambda request: httpx.Response(500))

        with pytest.raises(PaymentConfigurationError):
            await client.create_checkout("basic", "user-1", None)

    @pytest.mark.asyncio
    async def test_missing_store_is_configuration_error(self, variants):
        client = make_client(lambda request: httpx.Response(500), store_id=None)

        with pytest.raises(PaymentConfigurationError):
            await client.create_checkout("basic", "user-1", None)

    @pytest.mark.asyncio
    async def test_provider_rejection(self, variants):
        client = make_client(lambda request: httpx.Response(422, json={"errors": [{"detail": "bad"}]}))

        with pytest.raises(PaymentProviderError):
            await client.create_checkout("single", "user-1", None)

    @pytest.mark.asyncio
    async def test_provider_unreachable(self, variants):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(PaymentProviderError):
            await make_client(handler).create_checkout("single", "user-1", None)

    @pytest.mark.asyncio
    async def test_unexpected_response_shape(self, variants):
        client = make_client(lambda request: httpx.Response(201, json={"data": {}}))

        with pytest.raises(PaymentProviderError):
            await client.create_checkout("single", "user-1", None)


class TestCheckoutEndpoint:
    """POST /api/create-checkout with the payment client faked."""

    @pytest.mark.asyncio
    async def test_returns_checkout_url(self, client, session, payment_client):
        profile = await create_profile(session, email="buyer@example.com")

        response = await client.post(
            "/api/create-checkout", json={"tier": "basic"},
            headers=auth_headers(profile.id, email="buyer@example.com"),
        )

        assert response.status_code == 200
        assert response.json() == {"checkoutUrl": payment_client.url}
        assert payment_client.calls == [("basic", str(profile.id), "buyer@example.com")]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error,status,message", [
        (InvalidRequestError("Invalid tier"), 400, "Invalid tier"),
        (PaymentConfigurationError(), 500, "Payment configuration missing"),
        (PaymentProviderError(), 500, "Failed to create checkout"),
    ])
    async def test_errors(self, client, session, payment_client, error, status, message):
        payment_client.error = error
        profile = await create_profile(session)

        response = await client.post(
            "/api/create-checkout", json={"tier": "basic"}, headers=auth_headers(profile.id),
        )

        assert response.status_code == status
        assert response.json() == {"error": message}

    @pytest.mark.asyncio
    async def test_requires_authentication(self, client):
        response = await client.post("/api/create-checkout", json={"tier": "basic"})

        assert response.status_code == 401
