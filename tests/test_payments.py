import pytest
import stripe

import config
import payments
from database import db


class FakeStripe:
    """Records PaymentIntent calls and replays canned intents."""

    def __init__(self):
        self.created = []
        self.intent = {
            "id": "pi_boutique_1",
            "client_secret": "pi_boutique_1_secret_abc",
            "status": "requires_action",
            "last_payment_error": None,
            "latest_charge": None,
        }
        self.error = None
        self.event = None
        self.listed = []

    def create(self, **kwargs):
        self.created.append(kwargs)
        if self.error:
            raise self.error
        return self.intent

    def retrieve(self, intent_id, **kwargs):
        return dict(self.intent, id=intent_id)

    def list(self, **kwargs):
        return {"data": self.listed}

    def construct_event(self, payload, signature, secret):
        if signature != "valid":
            raise stripe.SignatureVerificationError("No signatures found", signature)
        return self.event


@pytest.fixture
def fake_stripe(monkeypatch):
    fake = FakeStripe()
    monkeypatch.setattr(stripe.PaymentIntent, "create", fake.create)
    monkeypatch.setattr(stripe.PaymentIntent, "retrieve", fake.retrieve)
    monkeypatch.setattr(stripe.PaymentIntent, "list", fake.list)
    monkeypatch.setattr(stripe.Webhook, "construct_event", fake.construct_event)
    return fake


def _submit_body(product_id, pickup_date_time, **overrides):
    body = {
        "items": [{"product_id": product_id, "quantity": 2}],
        "customer": {"name": "Anna Berger", "email": "anna@example.com"},
        "shipping": {"delivery_type": "pickup", "pickup_date_time": pickup_date_time},
        "payment_method_id": "pm_card_visa",
        "cart_signature": "cart-signature-value",
        "locale": "en",
    }
    body.update(overrides)
    return body


def _webhook(client, signature="valid"):
    return client.post("/api/stripe/webhook", content=b"{}", headers={"stripe-signature": signature})


def test_metadata_fingerprints_long_values():
    short = payments.sanitize_metadata_value("3x Classic Red Balloon")
    assert short == "3x Classic Red Balloon"
    long_value = payments.sanitize_metadata_value("x" * 481)
    assert long_value.startswith("sha256:")
    assert len(long_value) == len("sha256:") + 64


def test_derive_status():
    assert payments.derive_status("requires_payment_method", "Your card was declined.") == "failed"
    assert payments.derive_status("requires_payment_method") == "requires_payment_method"
    assert payments.derive_status("processing") == "processing"
    assert payments.derive_status("something_new") == "requires_payment_method"


def test_submit_recomputes_amount(client, fake_stripe, make_product, pickup_date_time):
    product_id = make_product(price=4.5)
    res = client.post("/api/payments/submit", json=_submit_body(product_id, pickup_date_time))
    assert res.status_code == 200
    assert res.json() == {
        "payment_intent_id": "pi_boutique_1",
        "status": "requires_action",
        "client_secret": "pi_boutique_1_secret_abc",
        "last_error": None,
    }

    call = fake_stripe.created[0]
    assert call["amount"] == 900
    assert call["currency"] == "eur"
    assert call["confirm"] is True
    assert call["metadata"]["cart_signature_hash"].startswith("sha256:")
    assert call["metadata"]["items"] == "2x Classic Red Balloon"

    record = db["payment"].find_one({"payment_intent_id": "pi_boutique_1"})
    assert record["amount_base"] == 9.0
    assert record["display_amount"] == {"value": 9.0, "currency": "EUR", "conversion_rate": None,
                                        "conversion_fee_pct": None}
    assert record["order_id"] is None
    assert db["order"].count_documents({}) == 0


def test_submit_charges_in_shop_currency(client, fake_stripe, make_product, pickup_date_time):
    product_id = make_product(price=4.5)
    body = _submit_body(product_id, pickup_date_time, currency="jpy",
                        display_amount={"value": 1480, "currency": "JPY", "conversion_rate": 164.4})
    assert client.post("/api/payments/submit", json=body).status_code == 200

    call = fake_stripe.created[0]
    assert call["amount"] == 900
    assert call["currency"] == "eur"
    record = db["payment"].find_one({})
    assert record["currency"] == "eur"
    assert record["display_amount"]["currency"] == "JPY"


def test_submit_delivery_adds_fee(client, fake_stripe, make_product):
    product_id = make_product(price=10)
    body = _submit_body(product_id, None, shipping={
        "delivery_type": "delivery",
        "courier_city_id": "leoben",
        "address": {"street_address": "Franz-Josef-Straße 1", "city": "Leoben", "postal_code": "8700"},
    })
    assert client.post("/api/payments/submit", json=body).status_code == 200
    assert fake_stripe.created[0]["amount"] == (20 + 36) * 100


def test_submit_card_declined(client, fake_stripe, make_product, pickup_date_time):
    product_id = make_product()
    fake_stripe.error = stripe.CardError("Your card was declined.", None, "card_declined")
    res = client.post("/api/payments/submit", json=_submit_body(product_id, pickup_date_time))
    assert res.status_code == 402
    assert res.json()["detail"] == "Your card was declined. Please use a different card."
    assert db["payment"].count_documents({}) == 0


def test_submit_connection_error(client, fake_stripe, make_product, pickup_date_time):
    product_id = make_product()
    fake_stripe.error = stripe.APIConnectionError("Network is unreachable")
    res = client.post("/api/payments/submit", json=_submit_body(product_id, pickup_date_time))
    assert res.status_code == 502


def test_submit_without_stripe_key(client, fake_stripe, make_product, pickup_date_time, monkeypatch):
    monkeypatch.setattr(config, "STRIPE_SECRET_KEY", None)
    product_id = make_product()
    res = client.post("/api/payments/submit", json=_submit_body(product_id, pickup_date_time))
    assert res.status_code == 500


def test_immediate_success_creates_order(client, user, auth, fake_stripe, make_product, pickup_date_time):
    product_id = make_product(stock=5)
    client.post("/api/cart", json={"product_id": product_id, "quantity": 2}, headers=auth(user[1]))
    fake_stripe.intent.update(status="succeeded", latest_charge="ch_1")

    res = client.post("/api/payments/submit", json=_submit_body(product_id, pickup_date_time),
                      headers=auth(user[1]))
    assert res.json()["status"] == "succeeded"

    lookup = client.get("/api/payments/lookup/pi_boutique_1").json()
    assert lookup["status"] == "succeeded"
    order = db["order"].find_one({})
    assert lookup["order_id"] == str(order["_id"])
    assert order["payment_method"] == "full_online"
    assert order["status"] == "confirmed"
    assert order["user_id"] == user[0]
    assert db["product"].find_one({})["stock"] == 3
    assert db["cartitem"].count_documents({}) == 0
    assert db["payment"].find_one({})["stripe_charge_id"] == "ch_1"


def test_webhook_finalizes_once(client, fake_stripe, make_product, pickup_date_time):
    product_id = make_product(stock=5)
    client.post("/api/payments/submit", json=_submit_body(product_id, pickup_date_time))
    fake_stripe.event = {
        "type": "payment_intent.succeeded",
        "data": {"object": {"id": "pi_boutique_1", "status": "succeeded", "latest_charge": "ch_9"}},
    }

    for _ in range(2):
        res = _webhook(client)
        assert res.status_code == 200
        assert res.json() == {"received": True}

    assert db["order"].count_documents({}) == 1
    assert db["product"].find_one({})["stock"] == 3
    assert client.get("/api/payments/lookup/pi_boutique_1").json()["order_id"] is not None


def test_finalize_can_retry_after_order_insert_fails(client, fake_stripe, make_product, pickup_date_time,
                                                     monkeypatch):
    product_id = make_product(stock=5)
    client.post("/api/payments/submit", json=_submit_body(product_id, pickup_date_time))

    def broken_insert(collection, data):
        raise RuntimeError("write failed")

    monkeypatch.setattr(payments, "create_document", broken_insert)
    with pytest.raises(RuntimeError):
        payments.finalize_payment("pi_boutique_1", "ch_1")
    assert "finalizing" not in db["payment"].find_one({})
    assert db["product"].find_one({})["stock"] == 5

    monkeypatch.undo()
    order_id = payments.finalize_payment("pi_boutique_1", "ch_1")
    assert order_id == str(db["order"].find_one({})["_id"])
    assert db["product"].find_one({})["stock"] == 3
    assert db["payment"].find_one({})["order_id"] == order_id


def test_webhook_failure_updates_status(client, fake_stripe, make_product, pickup_date_time):
    product_id = make_product()
    client.post("/api/payments/submit", json=_submit_body(product_id, pickup_date_time))
    fake_stripe.event = {
        "type": "payment_intent.payment_failed",
        "data": {"object": {
            "id": "pi_boutique_1",
            "status": "requires_payment_method",
            "last_payment_error": {"message": "Your card has insufficient funds."},
        }},
    }
    _webhook(client)

    lookup = client.get("/api/payments/lookup/pi_boutique_1").json()
    assert lookup["status"] == "failed"
    assert lookup["last_error"] == "Your card has insufficient funds."
    assert lookup["order_id"] is None


def test_webhook_rejects_bad_signature(client, fake_stripe):
    res = _webhook(client, signature="forged")
    assert res.status_code == 400


def test_webhook_without_secret(client, fake_stripe, monkeypatch):
    monkeypatch.setattr(config, "STRIPE_WEBHOOK_SECRET", None)
    res = _webhook(client)
    assert res.status_code == 500


def test_webhook_ignores_unknown_events(client, fake_stripe):
    fake_stripe.event = {"type": "charge.refunded", "data": {"object": {"id": "ch_1"}}}
    assert _webhook(client).status_code == 200


def test_sync_finalizes(client, fake_stripe, make_product, pickup_date_time):
    product_id = make_product()
    client.post("/api/payments/submit", json=_submit_body(product_id, pickup_date_time))
    fake_stripe.intent.update(status="succeeded", latest_charge={"id": "ch_5"})

    res = client.post("/api/payments/pi_boutique_1/sync").json()
    assert res["status"] == "succeeded"
    assert res["order_id"]
    assert db["payment"].find_one({})["stripe_charge_id"] == "ch_5"


def test_lookup_unknown_is_null(client):
    assert client.get("/api/payments/lookup/pi_missing").json() is None
    assert client.post("/api/payments/pi_missing/sync").json() is None


def test_admin_payments(client, admin, auth, fake_stripe, make_product, pickup_date_time):
    product_id = make_product()
    client.post("/api/payments/submit", json=_submit_body(product_id, pickup_date_time))

    rows = client.get("/api/admin/payments", headers=auth(admin[1])).json()
    assert len(rows) == 1
    assert rows[0]["payment"]["customer"]["name"] == "Anna Berger"
    assert rows[0]["payment"]["shipping"]["address"] == "Sandgasse 3/3, 8720 Knittelfeld, Austria"
    assert rows[0]["order"] is None


def test_admin_stripe_payments(client, admin, auth, fake_stripe):
    fake_stripe.listed = [{
        "id": "pi_remote",
        "created": 1767225600,
        "amount": 900,
        "currency": "eur",
        "status": "succeeded",
        "receipt_email": "anna@example.com",
        "shipping": {"name": "Anna Berger"},
        "latest_charge": {
            "outcome": {"risk_level": "elevated"},
            "payment_method_details": {
                "type": "card",
                "card": {"brand": "visa", "wallet": {"type": "apple_pay", "dynamic_last4": "4242"}},
            },
        },
    }]
    rows = client.get("/api/admin/payments/stripe", headers=auth(admin[1])).json()
    assert rows[0]["risk_level"] == "elevated"
    assert rows[0]["device"] == "VISA • apple_pay"
    assert rows[0]["wallet_last4"] == "4242"
    assert rows[0]["customer"] == {"name": "Anna Berger", "email": "anna@example.com"}
    assert rows[0]["created"].startswith("2026-01-01")


def test_map_stripe_intent_defaults():
    mapped = payments.map_stripe_intent({"id": "pi_1", "status": "weird", "latest_charge": "ch_1"})
    assert mapped["status"] == "requires_payment_method"
    assert mapped["risk_level"] == "unknown"
    assert mapped["device"] is None
