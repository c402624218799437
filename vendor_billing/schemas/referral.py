"""Referral profile and wallet summary schemas."""
from decimal import Decimal
from typing import Optional, List, Dict
import uuid

from pydantic import Field

from vendor_billing.schemas.base import BaseResponseSchema, BaseCreateSchema
from vendor_billing.schemas.cashout import CashoutResponse, LedgerEntryResponse


class ReferralLinkRequest(BaseCreateSchema):
    referral_code: str = Field(..., min_length=1, max_length=40)


class ReferralLinkResponse(BaseResponseSchema):
    id: uuid.UUID
    referrer_vendor_id: uuid.UUID
    referred_vendor_id: uuid.UUID
    referral_code: str
    status: str


class ReferralDashboardResponse(BaseResponseSchema):
    vendor_id: uuid.UUID
    referral_code: str
    program_enabled: bool
    available_balance: Decimal
    pending_balance: Decimal
    lifetime_earned: Decimal
    lifetime_paid_out: Decimal
    min_cashout_amount: Decimal
    referrals: Dict[str, int]
    ledger: List[LedgerEntryResponse]
    cashouts: List[CashoutResponse]
    referred_by: Optional[uuid.UUID] = None
