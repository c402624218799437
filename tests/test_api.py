"""
HTTP tests against the application factory with a temporary SQLite
database and an in-memory gateway.
"""

import uuid
from decimal import Decimal

import pytest
from sqlalchemy import select

from vendor_billing.models import Notification, PlanCoupon
from vendor_billing.services.audit_service import AuditService
from vendor_billing.services.wallet_ledger import WalletLedger

from tests.conftest import sign


def _money(value) -> Decimal:
    return Decimal(str(value))


@pytest.fixture
def vendor_headers(token_headers, vendor):
    return token_headers("VENDOR", vendor.id)


@pytest.fixture
def finance_headers(token_headers):
    return token_headers("FINANCE")


async def _audit_actions(database, entity_type, entity_id):
    async with database.session_factory() as s:
        rows = await AuditService(s).list_for_entity(entity_type, entity_id)
        return [row.action for row in rows]


async def _fund(database, vendor_id, amount="700"):
    async with database.session() as s:
        await WalletLedger(s).credit(vendor_id, Decimal(amount), f"ref_reward:{uuid.uuid4()}")


class TestHealth:
    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["checks"]["database"] == "connected"
        assert data["checks"]["payment_gateway"] == "configured"

    async def test_plans_are_public(self, client, plan):
        response = await client.get("/api/v1/payment/plans")
        assert response.status_code == 200
        plans = response.json()
        assert [p["name"] for p in plans] == ["Gold"]
        assert _money(plans[0]["extra_lead_price"]) == Decimal("0")


class TestAuth:
    async def test_missing_token(self, client, vendor, plan):
        response = await client.post(
            "/api/v1/payment/initiate",
            json={"vendor_id": str(vendor.id), "plan_id": str(plan.id)},
        )
        assert response.status_code in (401, 403)

    async def test_invalid_token(self, client, vendor):
        response = await client.get(
            f"/api/v1/payment/history/{vendor.id}",
            headers={"Authorization": "Bearer not-a-token"},
        )
        assert response.status_code == 401
        body = response.json()
        assert body["code"] == "HTTP_401"
        assert body["path"] == f"/api/v1/payment/history/{vendor.id}"
        assert body["method"] == "GET"

    async def test_vendor_cannot_act_for_another_vendor(
        self, client, vendor_headers, other_vendor, plan
    ):
        response = await client.post(
            "/api/v1/payment/initiate",
            json={"vendor_id": str(other_vendor.id), "plan_id": str(plan.id)},
            headers=vendor_headers,
        )
        assert response.status_code == 403

    async def test_vendor_cannot_use_finance_routes(self, client, vendor_headers):
        response = await client.get("/api/v1/finance/referrals/cashouts", headers=vendor_headers)
        assert response.status_code == 403


class TestCheckoutFlow:
    async def test_initiate_and_verify(
        self, client, database, vendor_headers, vendor, plan, make_coupon
    ):
        await make_coupon("SAVE10", "FLAT", "100")

        response = await client.post(
            "/api/v1/payment/initiate",
            json={"vendor_id": str(vendor.id), "plan_id": str(plan.id), "coupon_code": "save10"},
            headers=vendor_headers,
        )
        assert response.status_code == 200
        order = response.json()
        assert order["amount"] == 90000
        assert order["key_id"] == "rzp_test_key"
        assert "key_secret" not in order
        assert _money(order["net_amount"]) == Decimal("900")

        verify_body = {
            "order_id": order["order_id"],
            "payment_id": "pay_api_1",
            "signature": sign(order["order_id"], "pay_api_1"),
            "vendor_id": str(vendor.id),
            "plan_id": str(plan.id),
            "coupon_code": "SAVE10",
        }
        response = await client.post("/api/v1/payment/verify", json=verify_body, headers=vendor_headers)
        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["already_settled"] is False
        assert _money(data["payment"]["net_amount"]) == Decimal("900")
        assert data["subscription"]["status"] == "ACTIVE"

        payment_id = data["payment"]["id"]
        assert await _audit_actions(database, "vendor_payments", payment_id) == ["PAYMENT_COMPLETED"]

        async with database.session_factory() as s:
            notes = (await s.execute(select(Notification))).scalars().all()
            assert [n.notification_type for n in notes] == ["PLAN_ACTIVATED"]
            assert notes[0].user_id == vendor.user_id

        response = await client.post("/api/v1/payment/verify", json=verify_body, headers=vendor_headers)
        assert response.status_code == 200
        again = response.json()
        assert again["already_settled"] is True
        assert again["payment"]["id"] == payment_id
        assert await _audit_actions(database, "vendor_payments", payment_id) == ["PAYMENT_COMPLETED"]

        response = await client.get(f"/api/v1/payment/history/{vendor.id}", headers=vendor_headers)
        history = response.json()
        assert history["total"] == 1
        assert history["active_subscription"]["id"] == data["subscription"]["id"]

    async def test_bad_signature(self, client, vendor_headers, vendor, plan):
        response = await client.post(
            "/api/v1/payment/verify",
            json={
                "order_id": "order_x",
                "payment_id": "pay_x",
                "signature": "deadbeef",
                "vendor_id": str(vendor.id),
                "plan_id": str(plan.id),
            },
            headers=vendor_headers,
        )
        assert response.status_code == 400
        body = response.json()
        assert body["code"] == "AUTHENTICITY"
        assert body["error"] == "Invalid payment signature"

    async def test_invalid_coupon_at_checkout(self, client, vendor_headers, vendor, plan):
        response = await client.post(
            "/api/v1/payment/initiate",
            json={"vendor_id": str(vendor.id), "plan_id": str(plan.id), "coupon_code": "NOPE"},
            headers=vendor_headers,
        )
        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION"

    async def test_unknown_plan(self, client, vendor_headers, vendor):
        response = await client.post(
            "/api/v1/payment/initiate",
            json={"vendor_id": str(vendor.id), "plan_id": str(uuid.uuid4())},
            headers=vendor_headers,
        )
        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"

    async def test_referral_offers_preview(
        self, client, vendor_headers, vendor, other_vendor, plan, referral_program
    ):
        await referral_program(referrer=other_vendor, referred=vendor)
        response = await client.get(
            f"/api/v1/payment/referral-offers/{vendor.id}", headers=vendor_headers
        )
        assert response.status_code == 200
        data = response.json()
        assert data["program_enabled"] is True
        offer = data["offers"][0]
        assert offer["offer_type"] == "REFERRAL"
        assert _money(offer["discount_amount"]) == Decimal("100")
        assert _money(offer["display_discount_percent"]) == Decimal("10")


class TestReferralsAndCashouts:
    async def test_dashboard_issues_code(self, client, vendor_headers):
        response = await client.get("/api/v1/referrals/me", headers=vendor_headers)
        assert response.status_code == 200
        data = response.json()
        assert data["referral_code"] == "VND001"
        assert _money(data["min_cashout_amount"]) == Decimal("500")
        assert _money(data["available_balance"]) == Decimal("0")

    async def test_link_referral(self, client, token_headers, vendor, other_vendor):
        referrer_headers = token_headers("VENDOR", other_vendor.id)
        code = (await client.get("/api/v1/referrals/me", headers=referrer_headers)).json()["referral_code"]

        headers = token_headers("VENDOR", vendor.id)
        response = await client.post("/api/v1/referrals/link", json={"referral_code": code}, headers=headers)
        assert response.status_code == 200
        assert response.json()["referrer_vendor_id"] == str(other_vendor.id)

        response = await client.post(
            "/api/v1/referrals/link", json={"referral_code": "VND001"}, headers=headers
        )
        assert response.status_code == 400

    async def test_cashout_reject_round_trip(
        self, client, database, vendor_headers, finance_headers, vendor
    ):
        await _fund(database, vendor.id, "700")

        response = await client.post(
            "/api/v1/referrals/cashout", json={"amount": "500"}, headers=vendor_headers
        )
        assert response.status_code == 200
        created = response.json()
        request_id = created["request"]["id"]
        assert _money(created["wallet"]["available_balance"]) == Decimal("200")

        url = f"/api/v1/finance/referrals/cashouts/{request_id}/reject"
        response = await client.post(url, json={"reason": "Bank details mismatch"}, headers=finance_headers)
        assert response.status_code == 200
        assert _money(response.json()["wallet"]["available_balance"]) == Decimal("700")

        response = await client.post(url, json={"reason": "Again"}, headers=finance_headers)
        assert response.status_code == 409
        assert response.json()["code"] == "INVALID_STATE"

        actions = await _audit_actions(database, "vendor_referral_cashout_requests", request_id)
        assert actions == ["CASHOUT_REQUESTED", "CASHOUT_REJECTED"]

    async def test_cashout_approve_and_pay(
        self, client, database, vendor_headers, finance_headers, vendor
    ):
        await _fund(database, vendor.id, "700")
        created = (
            await client.post("/api/v1/referrals/cashout", json={"amount": "500"}, headers=vendor_headers)
        ).json()
        base = f"/api/v1/finance/referrals/cashouts/{created['request']['id']}"

        response = await client.post(f"{base}/mark-paid", json={"utr_number": "UTR1"}, headers=finance_headers)
        assert response.status_code == 409

        response = await client.post(f"{base}/approve", headers=finance_headers)
        assert response.status_code == 200
        assert response.json()["changed"] is True

        response = await client.post(f"{base}/approve", json={}, headers=finance_headers)
        assert response.json()["changed"] is False

        response = await client.post(f"{base}/mark-paid", json={"utr_number": " "}, headers=finance_headers)
        assert response.status_code == 400

        response = await client.post(f"{base}/mark-paid", json={"utr_number": "UTR1"}, headers=finance_headers)
        assert response.status_code == 200
        paid = response.json()
        assert paid["request"]["status"] == "PAID"
        assert _money(paid["wallet"]["lifetime_paid_out"]) == Decimal("500")

        listing = (
            await client.get("/api/v1/finance/referrals/cashouts?status=PAID", headers=finance_headers)
        ).json()
        assert listing["total"] == 1

    async def test_cashout_over_balance(self, client, vendor_headers):
        response = await client.post(
            "/api/v1/referrals/cashout", json={"amount": "500"}, headers=vendor_headers
        )
        assert response.status_code == 400
        assert response.json()["code"] == "INSUFFICIENT_BALANCE"


class TestCoupons:
    async def test_create_normalizes_and_deactivates(self, client, database, finance_headers):
        response = await client.post(
            "/api/v1/finance/coupons",
            json={
                "code": " new year 24 ",
                "discount_type": "PERCENT",
                "value": "15",
                "plan_id": "ANY",
                "vendor_id": "",
                "max_uses": 100,
            },
            headers=finance_headers,
        )
        assert response.status_code == 201
        coupon = response.json()
        assert coupon["code"] == "NEWYEAR24"
        assert coupon["plan_id"] is None
        assert coupon["vendor_id"] is None

        response = await client.post("/api/v1/finance/coupons", json={
            "code": "NEWYEAR24", "discount_type": "FLAT", "value": "10",
        }, headers=finance_headers)
        assert response.status_code == 400

        response = await client.post(
            "/api/v1/finance/coupons/newyear24/deactivate", headers=finance_headers
        )
        assert response.status_code == 200
        assert response.json()["is_active"] is False

        async with database.session_factory() as s:
            stored = (await s.execute(select(PlanCoupon))).scalar_one()
            assert stored.is_active is False
        actions = await _audit_actions(database, "vendor_plan_coupons", coupon["id"])
        assert actions == ["COUPON_CREATED", "COUPON_DEACTIVATED"]

    async def test_percent_over_hundred_rejected(self, client, finance_headers):
        response = await client.post(
            "/api/v1/finance/coupons",
            json={"code": "TOOMUCH", "discount_type": "PERCENT", "value": "150"},
            headers=finance_headers,
        )
        assert response.status_code == 400

    async def test_vendor_cannot_create_coupons(self, client, vendor_headers):
        response = await client.post(
            "/api/v1/finance/coupons",
            json={"code": "SNEAKY", "discount_type": "FLAT", "value": "10"},
            headers=vendor_headers,
        )
        assert response.status_code == 403
