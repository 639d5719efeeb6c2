"""
HTTP route tests.

Verifies:
- Webhook always answers 200 "OK", whatever happens internally
- Payment link as redirect and as JSON, with 4xx for bad input
- Return pages show a generic message
- Service-token protection on the API routes (401)
- Order settlement conflicts (409) and referral redemption conflicts (409)
"""

import pytest

from fitsuite.models import Order, ProcessedPayment
from fitsuite.services import license_service

from conftest import auth_headers, license_ref, order_ref


# =============================================================================
# WEBHOOK
# =============================================================================


class TestWebhook:
    def test_applies_payment(self, client, db_session, fake_provider, gym_a, plans):
        fake_provider.add_payment("P1", reference=license_ref(gym_a.id, "basic"), amount_cents=100000)

        resp = client.post("/webhook", json={"type": "payment", "data": {"id": "P1"}})

        assert resp.status_code == 200
        assert resp.get_data(as_text=True) == "OK"
        db_session.expire_all()
        assert license_service.get_license(gym_a.id).revision == 1

    def test_redelivery_is_idempotent(self, client, db_session, fake_provider, gym_a, plans):
        fake_provider.add_payment("P1", reference=license_ref(gym_a.id, "basic"), amount_cents=100000)

        for _ in range(3):
            assert client.post("/webhook", json={"data": {"id": "P1"}}).status_code == 200

        db_session.expire_all()
        assert license_service.get_license(gym_a.id).revision == 1

    @pytest.mark.parametrize("body", [
        None,
        {},
        {"type": "payment", "data": {}},
        {"topic": "merchant_order", "resource": "/merchant_orders/404"},
    ])
    def test_unresolvable_bodies_answer_ok(self, client, db_session, body):
        resp = client.post("/webhook", json=body) if body is not None else client.post("/webhook", data="not json")
        assert resp.status_code == 200
        assert resp.get_data(as_text=True) == "OK"

    def test_bad_reference_answers_ok(self, client, db_session, fake_provider):
        fake_provider.add_payment("P1", reference="plan:basic", amount_cents=100000)
        assert client.post("/webhook", json={"data": {"id": "P1"}}).status_code == 200
        assert db_session.get(ProcessedPayment, "P1") is None

    def test_unexpected_error_answers_ok(self, client, db_session, fake_provider):
        fake_provider.fail_with = RuntimeError("boom")
        resp = client.post("/webhook", json={"data": {"id": "P1"}})
        assert resp.status_code == 200

    def test_order_payment(self, client, db_session, fake_provider, products):
        resp = client.post(
            "/api/gyms/gym-a/orders",
            json={"lines": [{"product_id": products["flat"].id, "quantity": 1}]},
            headers=auth_headers(),
        )
        order_id = resp.get_json()["order"]["id"]
        fake_provider.add_payment("P1", reference=order_ref("gym-a", order_id), amount_cents=500)

        assert client.post("/webhook", json={"data": {"id": "P1"}}).status_code == 200

        db_session.expire_all()
        assert db_session.get(Order, order_id).status == "paid"


# =============================================================================
# PAYMENT LINKS
# =============================================================================


class TestPaymentLink:
    def test_json_format(self, client, db_session, fake_provider, gym_a, plans):
        resp = client.get("/payment-link?gym_id=gym-a&plan=basic&format=json")
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["preference_id"] == "pref-1"
        assert data["init_point"] == "https://checkout.example.test/pref-1"
        assert data["discount_pct"] == 0

    def test_redirects_by_default(self, client, db_session, fake_provider, gym_a, plans):
        resp = client.get("/payment-link?gimnasioId=gym-a&plan=basic")
        assert resp.status_code == 302
        assert resp.headers["Location"] == "https://checkout.example.test/pref-1"

    def test_missing_params(self, client, db_session):
        assert client.get("/payment-link?plan=basic").status_code == 400
        assert client.get("/payment-link?gym_id=gym-a").status_code == 400

    def test_malformed_gym(self, client, db_session, plans):
        assert client.get("/payment-link?gym_id=bad%20id&plan=basic&format=json").status_code == 400

    def test_malformed_referral_code(self, client, db_session, fake_provider, gym_a, plans):
        resp = client.get("/payment-link?gym_id=gym-a&plan=basic&ref=x%7Corder:1&format=json")
        assert resp.status_code == 400
        assert fake_provider.preferences == []

    def test_unknown_plan(self, client, db_session, gym_a, plans):
        assert client.get("/payment-link?gym_id=gym-a&plan=enterprise&format=json").status_code == 404

    def test_provider_failure(self, client, db_session, fake_provider, gym_a, plans):
        from fitsuite.services.payment_provider import ProviderError

        fake_provider.fail_with = ProviderError("rejected", status_code=400, retryable=False)
        assert client.get("/payment-link?gym_id=gym-a&plan=basic&format=json").status_code == 502


# =============================================================================
# RETURN PAGES / HEALTH
# =============================================================================


class TestReturnPages:
    def test_success_processes_payment(self, client, db_session, fake_provider, gym_a, plans):
        fake_provider.add_payment("P7", reference=license_ref(gym_a.id, "basic"), amount_cents=100000)

        resp = client.get("/success?collection_id=P7&status=approved")

        assert resp.status_code == 200
        assert "Payment approved" in resp.get_data(as_text=True)
        db_session.expire_all()
        assert db_session.get(ProcessedPayment, "P7") is not None

    def test_success_hides_internal_outcome(self, client, db_session, fake_provider):
        fake_provider.add_payment("P8", reference="garbage", amount_cents=100)
        resp = client.get("/success?payment_id=P8")
        assert resp.status_code == 200
        assert "Payment approved" in resp.get_data(as_text=True)

    @pytest.mark.parametrize("path,message", [
        ("/failure", "could not be completed"),
        ("/pending", "Payment pending"),
    ])
    def test_static_pages(self, client, path, message):
        resp = client.get(path)
        assert resp.status_code == 200
        assert message in resp.get_data(as_text=True)

    def test_health(self, client, db_session):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.get_json()["checks"]["database"]["status"] == "healthy"


# =============================================================================
# SERVICE TOKEN (401)
# =============================================================================


class TestServiceToken:
    @pytest.mark.parametrize("method,path", [
        ("GET", "/api/gyms/gym-a/license"),
        ("GET", "/api/gyms/gym-a/inbox"),
        ("GET", "/api/gyms/gym-a/referrals"),
        ("POST", "/api/gyms/gym-a/referrals/redeem"),
        ("POST", "/api/gyms/gym-a/orders"),
        ("POST", "/api/gyms/gym-a/orders/1/settle"),
        ("POST", "/api/gyms/gym-a/devices/claim"),
    ])
    def test_requires_token(self, client, db_session, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"

    def test_wrong_token(self, client, db_session):
        resp = client.get("/api/gyms/gym-a/license", headers=auth_headers("nope"))
        assert resp.status_code == 401
        assert resp.get_json()["error"] == "Invalid token"


# =============================================================================
# API ROUTES
# =============================================================================


class TestOrderRoutes:
    def test_settle_insufficient_stock(self, client, db_session, products):
        shirt = products["shirt"]
        created = client.post(
            "/api/gyms/gym-a/orders",
            json={"lines": [{"product_id": shirt.id, "quantity": 2, "color": "Red", "size": "M"}]},
            headers=auth_headers(),
        )
        assert created.status_code == 201
        order_id = created.get_json()["order"]["id"]

        resp = client.post(
            f"/api/gyms/gym-a/orders/{order_id}/settle",
            json={"payment_id": "CASH-1", "method": "cash"},
            headers=auth_headers(),
        )

        assert resp.status_code == 409
        assert resp.get_json()["details"]["items"][0]["available"] == 1

    def test_settle_then_repeat(self, client, db_session, products):
        created = client.post(
            "/api/gyms/gym-a/orders",
            json={"lines": [{"product_id": products["flat"].id, "quantity": 1}]},
            headers=auth_headers(),
        )
        order_id = created.get_json()["order"]["id"]
        url = f"/api/gyms/gym-a/orders/{order_id}/settle"

        first = client.post(url, json={"payment_id": "CASH-1"}, headers=auth_headers())
        second = client.post(url, json={"payment_id": "CASH-1"}, headers=auth_headers())

        assert first.status_code == 200
        assert first.get_json()["already_paid"] is False
        assert second.get_json()["already_paid"] is True

    def test_unknown_order(self, client, db_session, gym_a):
        resp = client.post("/api/gyms/gym-a/orders/999/settle", json={"payment_id": "X"}, headers=auth_headers())
        assert resp.status_code == 404

    def test_invalid_amount(self, client, db_session, gym_a):
        resp = client.post(
            "/api/gyms/gym-a/orders/1/settle",
            json={"payment_id": "X", "amount_cents": -1},
            headers=auth_headers(),
        )
        assert resp.status_code == 400


class TestReferralRoutes:
    def test_claim_and_redeem_conflict(self, client, db_session, fake_provider, gym_a, gym_b, plans):
        assert client.put("/api/gyms/gym-a/referrals/code", json={"code": "gyma"},
                          headers=auth_headers()).status_code == 200
        assert client.post("/api/gyms/gym-b/referrals/claim", json={"code": "GYMA"},
                           headers=auth_headers()).status_code == 201

        fake_provider.add_payment("P1", reference=license_ref(gym_b.id, "basic", "GYMA"), amount_cents=100000)
        client.post("/webhook", json={"data": {"id": "P1"}})

        resp = client.post("/api/gyms/gym-a/referrals/redeem", json={"points": 500}, headers=auth_headers())
        assert resp.status_code == 409
        assert resp.get_json()["available"] == 100

        ok = client.post("/api/gyms/gym-a/referrals/redeem", json={"points": 100}, headers=auth_headers())
        assert ok.status_code == 201
        assert ok.get_json()["redemption"]["balance_after"] == 0

    def test_unknown_code(self, client, db_session, gym_b):
        resp = client.post("/api/gyms/gym-b/referrals/claim", json={"code": "NOPE"}, headers=auth_headers())
        assert resp.status_code == 400


class TestReadRoutes:
    def test_license_and_inbox(self, client, db_session, fake_provider, gym_a, plans):
        from fitsuite.services.notification_service import InboxNotificationSink

        client.application.extensions["notification_sink"] = InboxNotificationSink()
        fake_provider.add_payment("P1", reference=license_ref(gym_a.id, "pro"), amount_cents=200000)
        client.post("/webhook", json={"data": {"id": "P1"}})

        license_resp = client.get("/api/gyms/gym-a/license", headers=auth_headers())
        assert license_resp.status_code == 200
        body = license_resp.get_json()
        assert body["license"]["plan_id"] == "pro"
        assert body["config"]["plan"] == "pro"
        assert body["client"]["licenciaPlanId"] == "pro"
        assert body["payments"][0]["payment_id"] == "P1"

        inbox = client.get("/api/gyms/gym-a/inbox?unread=true", headers=auth_headers()).get_json()
        assert [m["message_key"] for m in inbox["messages"]] == ["lic-P1"]

    def test_missing_license(self, client, db_session, gym_a):
        assert client.get("/api/gyms/gym-a/license", headers=auth_headers()).status_code == 404

    def test_rollup_bad_period(self, client, db_session, gym_a):
        resp = client.get("/api/gyms/gym-a/rollups/week/2025-10", headers=auth_headers())
        assert resp.status_code == 400


class TestDeviceRoutes:
    def test_claim_limit(self, client, db_session, gym_a):
        first = client.post("/api/gyms/gym-a/devices/claim", json={"hwid": "HW-1"}, headers=auth_headers())
        second = client.post("/api/gyms/gym-a/devices/claim", json={"hwid": "HW-2"}, headers=auth_headers())
        assert first.status_code == 200
        assert second.status_code == 403

    def test_heartbeat_unknown(self, client, db_session, gym_a):
        resp = client.post("/api/gyms/gym-a/devices/heartbeat", json={"hwid": "HW-9"}, headers=auth_headers())
        assert resp.status_code == 404

    def test_missing_hwid(self, client, db_session, gym_a):
        resp = client.post("/api/gyms/gym-a/devices/claim", json={}, headers=auth_headers())
        assert resp.status_code == 400
