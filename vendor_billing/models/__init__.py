from vendor_billing.models.vendor import Vendor
from vendor_billing.models.plan import VendorPlan
from vendor_billing.models.coupon import PlanCoupon, CouponUsage, DiscountType
from vendor_billing.models.subscription import VendorPlanSubscription, SubscriptionStatus
from vendor_billing.models.payment import VendorPayment, PaymentStatus, OfferType
from vendor_billing.models.referral import (
    ReferralProgramSettings,
    ReferralPlanRule,
    VendorReferralProfile,
    VendorReferral,
    ReferralStatus,
)
from vendor_billing.models.wallet import (
    ReferralWallet,
    WalletLedgerEntry,
    CashoutRequest,
    LedgerEntryType,
    CashoutStatus,
)
from vendor_billing.models.audit_log import AuditLog
from vendor_billing.models.notification import Notification

__all__ = [
    "Vendor",
    "VendorPlan",
    "PlanCoupon",
    "CouponUsage",
    "DiscountType",
    "VendorPlanSubscription",
    "SubscriptionStatus",
    "VendorPayment",
    "PaymentStatus",
    "OfferType",
    "ReferralProgramSettings",
    "ReferralPlanRule",
    "VendorReferralProfile",
    "VendorReferral",
    "ReferralStatus",
    "ReferralWallet",
    "WalletLedgerEntry",
    "CashoutRequest",
    "LedgerEntryType",
    "CashoutStatus",
    "AuditLog",
    "Notification",
]
