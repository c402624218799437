import uuid
from decimal import Decimal
from typing import Optional

import httpx
import pytest

from vendor_billing.config import Settings
from vendor_billing.core.exceptions import GatewayUnavailableError
from vendor_billing.core.security import create_access_token
from vendor_billing.database import Database
from vendor_billing.main import create_app
from vendor_billing.models import (
    Vendor,
    VendorPlan,
    PlanCoupon,
    ReferralProgramSettings,
    ReferralPlanRule,
    VendorReferralProfile,
    VendorReferral,
    ReferralStatus,
)
from vendor_billing.services.payment_gateway import RazorpayGateway, GatewayOrder, compute_signature


GATEWAY_SECRET = "rzp_test_secret"


class FakeGateway(RazorpayGateway):
    """Razorpay gateway that creates orders in memory."""

    def __init__(self, settings: Settings):
        super().__init__(settings)
        self.orders = []

    async def create_order(self, amount_minor, currency, receipt, notes=None):
        if not self.is_configured:
            raise GatewayUnavailableError("Payment gateway is not configured")
        order = GatewayOrder(
            id=f"order_{len(self.orders) + 1:04d}",
            amount=int(amount_minor),
            currency=currency,
            receipt=receipt,
        )
        self.orders.append({"order": order, "notes": notes or {}})
        return order


def sign(order_id: str, payment_id: str, secret: str = GATEWAY_SECRET) -> str:
    return compute_signature(secret, order_id, payment_id)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'billing.db'}",
        AUTO_CREATE_TABLES=False,
        SECRET_KEY="test-signing-key",
        RAZORPAY_KEY_ID="rzp_test_key",
        RAZORPAY_KEY_SECRET=GATEWAY_SECRET,
        LOG_LEVEL="WARNING",
    )


@pytest.fixture
def gateway(settings):
    return FakeGateway(settings)


@pytest.fixture
async def database(settings):
    db = Database(settings)
    await db.create_all()
    yield db
    await db.dispose()


@pytest.fixture
async def session(database):
    async with database.session_factory() as s:
        yield s
        await s.rollback()


@pytest.fixture
async def vendor(session):
    v = Vendor(
        id=uuid.uuid4(),
        vendor_code="VND-001",
        user_id=uuid.uuid4(),
        company_name="Acme Traders",
        owner_name="Asha Rao",
        email="billing@acme.example",
    )
    session.add(v)
    await session.commit()
    return v


@pytest.fixture
async def other_vendor(session):
    v = Vendor(
        id=uuid.uuid4(),
        vendor_code="VND-002",
        user_id=uuid.uuid4(),
        company_name="Blue Harbor Supplies",
        owner_name="Imran Shah",
        email="accounts@blueharbor.example",
    )
    session.add(v)
    await session.commit()
    return v


@pytest.fixture
async def plan(session):
    p = VendorPlan(
        id=uuid.uuid4(),
        name="Gold",
        price=Decimal("1000.00"),
        duration_days=30,
        is_active=True,
    )
    session.add(p)
    await session.commit()
    return p


@pytest.fixture
def make_coupon(session):
    async def _make(
        code: str = "SAVE10",
        discount_type: str = "FLAT",
        value: str = "100",
        max_uses: int = 0,
        used_count: int = 0,
        vendor_scope: Optional[str] = None,
        plan_scope: Optional[str] = None,
        expires_at=None,
        is_active: bool = True,
    ) -> PlanCoupon:
        coupon = PlanCoupon(
            id=uuid.uuid4(),
            code=code,
            discount_type=discount_type,
            value=Decimal(value),
            max_uses=max_uses,
            used_count=used_count,
            vendor_id=vendor_scope,
            plan_id=plan_scope,
            expires_at=expires_at,
            is_active=is_active,
        )
        session.add(coupon)
        await session.commit()
        return coupon

    return _make


@pytest.fixture
def referral_program(session, plan):
    """
    Enable the program with a plan rule, and link `referred` to `referrer`.

    Returns the referrer's referral code.
    """
    async def _setup(
        referrer: Vendor,
        referred: Vendor,
        discount_type: str = "PERCENT",
        discount_value: str = "10",
        reward_type: str = "FLAT",
        reward_value: str = "50",
        code: str = "ACMEREF",
    ) -> str:
        session.add(ReferralProgramSettings(id=uuid.uuid4(), config_key="GLOBAL", is_enabled=True))
        session.add(
            ReferralPlanRule(
                id=uuid.uuid4(),
                plan_id=plan.id,
                is_enabled=True,
                discount_type=discount_type,
                discount_value=Decimal(discount_value),
                reward_type=reward_type,
                reward_value=Decimal(reward_value),
            )
        )
        session.add(VendorReferralProfile(id=uuid.uuid4(), vendor_id=referrer.id, referral_code=code))
        session.add(
            VendorReferral(
                id=uuid.uuid4(),
                referrer_vendor_id=referrer.id,
                referred_vendor_id=referred.id,
                referral_code=code,
                status=ReferralStatus.PENDING.value,
            )
        )
        await session.commit()
        return code

    return _setup


@pytest.fixture
def token_headers(settings):
    def _headers(role: str = "VENDOR", vendor_id: Optional[uuid.UUID] = None) -> dict:
        token = create_access_token(
            settings,
            subject=uuid.uuid4(),
            role=role,
            vendor_id=vendor_id,
            email=f"{role.lower()}@example.com",
        )
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
async def app(settings, gateway, database):
    application = create_app(settings, payment_gateway=gateway)
    yield application
    await application.state.database.dispose()


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
