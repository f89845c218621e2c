"""Unit tests for the Stripe adapter, with the SDK calls patched out."""

import time
from types import SimpleNamespace

import pytest
import stripe

from booking_engine.core.exceptions import PaymentError, UnavailableError
from booking_engine.gateways import PaymentIntentState, StripeGateway


def _stripe_intent(**overrides):
    values = dict(
        id="pi_123",
        client_secret="pi_123_secret",
        status="succeeded",
        amount=1500,
        currency="usd",
        metadata={"athlete_id": "a1", "event_id": "e1"},
        amount_received=1500,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


@pytest.fixture
def gateway():
    return StripeGateway(secret_key="sk_test_123", api_version="2024-06-20", timeout_seconds=0.5)


@pytest.mark.asyncio
async def test_create_payment_intent(gateway, monkeypatch):
    calls = []

    def create(**kwargs):
        calls.append(kwargs)
        return _stripe_intent(status="requires_payment_method", amount_received=0)

    monkeypatch.setattr(stripe.PaymentIntent, "create", create)

    intent = await gateway.create_payment_intent(1500, "USD", {"athlete_id": "a1"}, idempotency_key="drop-in:1")

    assert intent.intent_id == "pi_123"
    assert intent.status == PaymentIntentState.REQUIRES_PAYMENT_METHOD
    assert not intent.succeeded
    assert calls[0]["amount"] == 1500
    assert calls[0]["currency"] == "usd"
    assert calls[0]["idempotency_key"] == "drop-in:1"
    assert calls[0]["api_key"] == "sk_test_123"
    assert calls[0]["stripe_version"] == "2024-06-20"


@pytest.mark.asyncio
async def test_retrieve_payment_intent(gateway, monkeypatch):
    monkeypatch.setattr(stripe.PaymentIntent, "retrieve", lambda **kwargs: _stripe_intent(id=kwargs["id"]))

    intent = await gateway.retrieve_payment_intent("pi_999")

    assert intent.intent_id == "pi_999"
    assert intent.succeeded
    assert intent.amount_received_cents == 1500
    assert intent.metadata == {"athlete_id": "a1", "event_id": "e1"}


@pytest.mark.asyncio
async def test_unknown_status_is_not_succeeded(gateway, monkeypatch):
    monkeypatch.setattr(stripe.PaymentIntent, "retrieve", lambda **kwargs: _stripe_intent(status="brand_new"))

    intent = await gateway.retrieve_payment_intent("pi_123")

    assert intent.status == PaymentIntentState.REQUIRES_PAYMENT_METHOD


@pytest.mark.asyncio
async def test_refund(gateway, monkeypatch):
    calls = []

    def create(**kwargs):
        calls.append(kwargs)
        return SimpleNamespace(id="re_1", status="succeeded", amount=kwargs.get("amount", 1500), currency="usd")

    monkeypatch.setattr(stripe.Refund, "create", create)

    outcome = await gateway.refund("pi_123", 1000, idempotency_key="cancel-refund:b1", reason="requested_by_customer")

    assert outcome.refund_id == "re_1"
    assert outcome.amount_cents == 1000
    assert calls[0]["payment_intent"] == "pi_123"
    assert calls[0]["idempotency_key"] == "cancel-refund:b1"


@pytest.mark.asyncio
async def test_full_refund_omits_amount(gateway, monkeypatch):
    calls = []

    def create(**kwargs):
        calls.append(kwargs)
        return SimpleNamespace(id="re_2", status="succeeded", amount=1500, currency="usd")

    monkeypatch.setattr(stripe.Refund, "create", create)

    await gateway.refund("pi_123", None, idempotency_key="auto-refund:pi_123")

    assert "amount" not in calls[0]


@pytest.mark.asyncio
async def test_card_error_is_payment_error(gateway, monkeypatch):
    def create(**kwargs):
        raise stripe.CardError("Your card was declined.", None, "card_declined")

    monkeypatch.setattr(stripe.PaymentIntent, "create", create)

    with pytest.raises(PaymentError) as exc_info:
        await gateway.create_payment_intent(1500, "usd", {}, idempotency_key="k")

    assert exc_info.value.problem_details["provider_code"] == "card_declined"


@pytest.mark.asyncio
async def test_connection_error_is_unavailable(gateway, monkeypatch):
    def retrieve(**kwargs):
        raise stripe.APIConnectionError("Network down")

    monkeypatch.setattr(stripe.PaymentIntent, "retrieve", retrieve)

    with pytest.raises(UnavailableError) as exc_info:
        await gateway.retrieve_payment_intent("pi_123")

    assert exc_info.value.problem_details["code"] == "UNAVAILABLE"


@pytest.mark.asyncio
async def test_invalid_request_is_payment_error(gateway, monkeypatch):
    def retrieve(**kwargs):
        raise stripe.InvalidRequestError("No such payment_intent", "id", code="resource_missing")

    monkeypatch.setattr(stripe.PaymentIntent, "retrieve", retrieve)

    with pytest.raises(PaymentError) as exc_info:
        await gateway.retrieve_payment_intent("pi_missing")

    assert exc_info.value.problem_details["provider_code"] == "resource_missing"


@pytest.mark.asyncio
async def test_slow_gateway_times_out(monkeypatch):
    gateway = StripeGateway(secret_key="sk_test_123", timeout_seconds=0.05)

    def retrieve(**kwargs):
        time.sleep(0.3)
        return _stripe_intent()

    monkeypatch.setattr(stripe.PaymentIntent, "retrieve", retrieve)

    with pytest.raises(UnavailableError) as exc_info:
        await gateway.retrieve_payment_intent("pi_123")

    assert exc_info.value.problem_details["code"] == "TIMEOUT"
