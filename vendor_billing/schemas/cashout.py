"""Cashout request and wallet schemas."""
from datetime import datetime
from decimal import Decimal
from typing import Optional, List
import uuid

from pydantic import Field

from vendor_billing.schemas.base import BaseResponseSchema, BaseCreateSchema


class CashoutCreateRequest(BaseCreateSchema):
    amount: Decimal = Field(..., gt=0, description="Amount to withdraw")
    note: Optional[str] = Field(None, max_length=500)
    payout_details: Optional[dict] = Field(None, description="Masked bank/UPI details")


class CashoutApproveRequest(BaseCreateSchema):
    note: Optional[str] = Field(None, max_length=500)


class CashoutRejectRequest(BaseCreateSchema):
    reason: str = Field(..., description="Why the request was rejected")


class CashoutMarkPaidRequest(BaseCreateSchema):
    utr_number: str = Field(..., description="Bank UTR / payout reference")
    receipt_url: Optional[str] = Field(None, max_length=500)


class CashoutResponse(BaseResponseSchema):
    id: uuid.UUID
    vendor_id: uuid.UUID
    requested_amount: Decimal
    status: str
    notes: Optional[str] = None
    rejection_reason: Optional[str] = None
    utr_number: Optional[str] = None
    receipt_url: Optional[str] = None
    processed_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    created_at: datetime


class CashoutListResponse(BaseResponseSchema):
    items: List[CashoutResponse]
    total: int
    skip: int = 0
    limit: int = 50


class WalletBalanceResponse(BaseResponseSchema):
    available_balance: Decimal
    pending_balance: Decimal
    lifetime_earned: Decimal
    lifetime_paid_out: Decimal


class CashoutActionResponse(BaseResponseSchema):
    success: bool = True
    changed: bool = True
    request: CashoutResponse
    wallet: Optional[WalletBalanceResponse] = None


class LedgerEntryResponse(BaseResponseSchema):
    id: uuid.UUID
    entry_type: str
    amount: Decimal
    status: str
    reference_key: str
    cashout_request_id: Optional[uuid.UUID] = None
    payment_id: Optional[uuid.UUID] = None
    created_at: datetime
