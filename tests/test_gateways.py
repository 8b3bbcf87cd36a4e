import base64
import hashlib
import hmac
import json
from urllib.parse import parse_qs

import httpx

from storefront.domain.models import PaymentMethod, PaymentStatus
from storefront.config import Settings
from storefront.infrastructure.gateways import (
    CashOnDeliveryGateway, RazorpayGateway, StripeGateway, build_gateways
)
from storefront.infrastructure.http_clients import HTTPEmailClient
from storefront.domain.exceptions import NotificationError

import pytest


def razorpay(handler):
    return RazorpayGateway("https://rzp.test/v1", "key_id", "key_secret", transport=httpx.MockTransport(handler))


def stripe(handler):
    return StripeGateway("https://stripe.test/v1", "sk_test", transport=httpx.MockTransport(handler))


async def test_razorpay_intent_uses_minor_units_and_basic_auth():
    seen = {}

    def handler(request: httpx.Request):
        seen["path"] = request.url.path
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "order_RZP1", "amount": 20000, "currency": "INR", "receipt": "o1"})

    result = await razorpay(handler).create_intent(20000, "o1")

    assert result.success
    assert result.intent_id == "order_RZP1"
    assert result.instructions["orderId"] == "order_RZP1"
    assert result.instructions["keyId"] == "key_id"
    assert seen["path"] == "/v1/orders"
    assert seen["auth"] == "Basic " + base64.b64encode(b"key_id:key_secret").decode()
    assert seen["body"]["amount"] == 20000
    assert seen["body"]["receipt"] == "o1"


async def test_razorpay_error_becomes_structured_failure():
    def handler(request):
        return httpx.Response(400, json={"error": {"description": "amount too small"}})

    result = await razorpay(handler).create_intent(1, "o1")

    assert not result.success
    assert "amount too small" in result.error


async def test_connection_error_becomes_structured_failure():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    result = await stripe(handler).create_intent(100, "o1")
    confirm = await stripe(handler).confirm("pi_1", "pi_1")

    assert not result.success
    assert not confirm.success
    assert confirm.status == PaymentStatus.PENDING


async def test_success_without_id_becomes_structured_failure():
    def handler(request):
        return httpx.Response(200, json={"amount": 100, "currency": "INR"})

    rzp = await razorpay(handler).create_intent(100, "o1")
    stp = await stripe(handler).create_intent(100, "o1")

    assert not rzp.success and rzp.intent_id is None
    assert not stp.success and stp.intent_id is None


async def test_confirm_requires_known_intent():
    def handler(request):
        return httpx.Response(200, json={"id": "pay_1", "order_id": "order_RZP1", "status": "captured"})

    def stripe_handler(request):
        return httpx.Response(200, json={"id": "pi_other", "status": "succeeded"})

    assert not (await razorpay(handler).confirm(None, "pay_1")).success
    assert not (await stripe(stripe_handler).confirm(None, "pi_other")).success
    assert not (await stripe(stripe_handler).confirm("pi_1", "pi_other")).success


async def test_razorpay_confirm_checks_signature_and_order():
    def handler(request):
        return httpx.Response(200, json={"id": "pay_1", "order_id": "order_RZP1", "status": "captured"})

    gateway = razorpay(handler)
    signature = hmac.new(b"key_secret", b"order_RZP1|pay_1", hashlib.sha256).hexdigest()

    ok = await gateway.confirm("order_RZP1", "pay_1", signature)
    forged = await gateway.confirm("order_RZP1", "pay_1", "deadbeef")
    other_order = await gateway.confirm("order_OTHER", "pay_1")

    assert ok.success and ok.status == PaymentStatus.COMPLETED and ok.transaction_id == "pay_1"
    assert not forged.success and forged.status == PaymentStatus.FAILED
    assert not other_order.success


async def test_stripe_intent_form_and_idempotency_header():
    seen = {}

    def handler(request: httpx.Request):
        seen["auth"] = request.headers["Authorization"]
        seen["key"] = request.headers["Idempotency-Key"]
        seen["form"] = parse_qs(request.content.decode())
        return httpx.Response(200, json={"id": "pi_1", "client_secret": "pi_1_secret", "amount": 16000, "currency": "inr"})

    result = await stripe(handler).create_intent(16000, "o1", "buyer@example.com")

    assert result.instructions == {"gateway": "stripe", "clientSecret": "pi_1_secret", "amount": 16000, "currency": "inr"}
    assert seen["auth"] == "Bearer sk_test"
    assert seen["key"] == "intent_o1_16000"
    assert seen["form"]["amount"] == ["16000"]
    assert seen["form"]["metadata[orderId]"] == ["o1"]
    assert seen["form"]["receipt_email"] == ["buyer@example.com"]


@pytest.mark.parametrize("remote,expected", [
    ("succeeded", PaymentStatus.COMPLETED),
    ("processing", PaymentStatus.PENDING),
    ("requires_payment_method", PaymentStatus.FAILED),
])
async def test_stripe_confirm_maps_status(remote, expected):
    def handler(request):
        return httpx.Response(200, json={"id": "pi_1", "status": remote, "amount": 100})

    result = await stripe(handler).confirm("pi_1", "pi_1")

    assert result.status == expected
    assert result.success is (expected == PaymentStatus.COMPLETED)


async def test_status_reports_paid_amount():
    def rzp_handler(request):
        assert request.url.path == "/v1/orders/order_RZP1"
        return httpx.Response(200, json={"id": "order_RZP1", "status": "paid", "amount": 20000, "amount_paid": 20000})

    def stripe_handler(request):
        return httpx.Response(200, json={"id": "pi_1", "status": "processing", "amount": 16000})

    paid = await razorpay(rzp_handler).status("order_RZP1")
    pending = await stripe(stripe_handler).status("pi_1")

    assert (paid.status, paid.amount) == (PaymentStatus.COMPLETED, 20000)
    assert (pending.status, pending.amount) == (PaymentStatus.PENDING, 16000)


async def test_stripe_refund_partial_amount():
    seen = {}

    def handler(request):
        seen["form"] = parse_qs(request.content.decode())
        return httpx.Response(200, json={"id": "re_1", "amount": 5000})

    result = await stripe(handler).refund("pi_1", 5000)

    assert result.success and result.refund_id == "re_1"
    assert seen["form"] == {"payment_intent": ["pi_1"], "amount": ["5000"]}


async def test_cod_needs_no_round_trip():
    gateway = CashOnDeliveryGateway()

    assert not gateway.collects_upfront
    assert (await gateway.create_intent(100, "o1")).success
    assert (await gateway.refund("o1", 100)).refund_id.startswith("cod_refund_")


def test_registry_is_keyed_by_payment_method():
    gateways = build_gateways(Settings())

    assert set(gateways) == set(PaymentMethod)
    assert gateways[PaymentMethod.RAZORPAY].name == "razorpay"
    assert gateways[PaymentMethod.STRIPE].name == "stripe"


async def test_email_client_treats_duplicate_as_sent():
    statuses = iter([202, 409, 500])

    def handler(request):
        assert request.headers["X-API-Key"] == "token"
        return httpx.Response(next(statuses))

    client = HTTPEmailClient("https://mail.test", "token", transport=httpx.MockTransport(handler))

    assert await client.send("a@b.c", "shipment", {}, "k1")
    assert await client.send("a@b.c", "shipment", {}, "k1")
    with pytest.raises(NotificationError):
        await client.send("a@b.c", "shipment", {}, "k2")
