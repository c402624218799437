import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import String, Boolean, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from vendor_billing.database import Base
from vendor_billing.db_types import UUIDType


class Vendor(Base):
    """
    Read model of a marketplace vendor.

    Vendor profiles are maintained by the portal; billing only reads the
    identifiers used for coupon scoping and the contact used for invoices.
    """
    __tablename__ = "vendors"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    vendor_code: Mapped[Optional[str]] = mapped_column(
        String(50),
        unique=True,
        nullable=True,
        comment="Public vendor code shown to buyers"
    )
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True, index=True)
    company_name: Mapped[str] = mapped_column(String(200), nullable=False)
    owner_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

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
    def scope_identifiers(self) -> list:
        """Identifiers a vendor-scoped coupon may name."""
        return [str(self.id), self.vendor_code, self.email]

    def __repr__(self) -> str:
        return f"<Vendor(code='{self.vendor_code}', company='{self.company_name}')>"
