import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import String, Boolean, DateTime, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from vendor_billing.database import Base
from vendor_billing.db_types import UUIDType, JSONType, MoneyType
from vendor_billing.core.money import to_decimal, ZERO


class VendorPlan(Base):
    """
    Subscription tier a vendor can buy.
    """
    __tablename__ = "vendor_plans"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    price: Mapped[Decimal] = mapped_column(
        MoneyType,
        nullable=False,
        comment="List price in base currency"
    )
    duration_days: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
        comment="Subscription length; null falls back to the configured default"
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    features: Mapped[Optional[dict]] = mapped_column(
        JSONType,
        nullable=True,
        comment="Feature flags and nested pricing overrides"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    @property
    def pricing_overrides(self) -> dict:
        features = self.features if isinstance(self.features, dict) else {}
        pricing = features.get("pricing")
        return pricing if isinstance(pricing, dict) else {}

    @property
    def extra_lead_price(self) -> Decimal:
        """Per-extra-lead price override, 0 when not configured."""
        return max(ZERO, to_decimal(self.pricing_overrides.get("extra_lead_price")))

    def effective_duration_days(self, default: int) -> int:
        return self.duration_days or default

    def __repr__(self) -> str:
        return f"<VendorPlan(name='{self.name}', price={self.price})>"
