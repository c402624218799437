from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Any
import uuid

from jose import JWTError, jwt

from vendor_billing.config import Settings


VENDOR_ROLE = "VENDOR"
FINANCE_ROLE = "FINANCE"
ADMIN_ROLE = "ADMIN"
STAFF_ROLES = frozenset({FINANCE_ROLE, ADMIN_ROLE})


@dataclass(frozen=True)
class Actor:
    """Authenticated caller resolved from a bearer token."""
    id: str
    role: str
    vendor_id: Optional[uuid.UUID] = None
    email: Optional[str] = None

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

    def can_act_for_vendor(self, vendor_id: uuid.UUID) -> bool:
        return self.is_staff or (self.vendor_id is not None and self.vendor_id == vendor_id)

    def to_audit(self) -> dict:
        return {
            "actor_id": self.id,
            "actor_role": self.role,
            "actor_email": self.email,
        }


def create_access_token(
    settings: Settings,
    subject: str | uuid.UUID,
    role: str,
    vendor_id: Optional[uuid.UUID] = None,
    email: Optional[str] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Create a JWT access token.

    Args:
        settings: Application settings holding the signing key
        subject: The subject of the token (usually user ID)
        role: VENDOR, FINANCE or ADMIN
        vendor_id: Vendor the token acts for (vendor tokens only)
        email: Optional email claim
        expires_delta: Optional custom expiration time

    Returns:
        Encoded JWT token string
    """
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode: dict[str, Any] = {
        "sub": str(subject),
        "exp": expire,
        "iat": datetime.now(timezone.utc),
        "jti": str(uuid.uuid4()),
        "type": "access",
        "role": role,
    }
    if vendor_id:
        to_encode["vendor_id"] = str(vendor_id)
    if email:
        to_encode["email"] = email

    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(settings: Settings, token: str) -> Optional[Actor]:
    """
    Verify a JWT access token and return the actor it names.

    Returns None if the token is invalid, expired or not an access token.
    """
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None

    if payload.get("type") != "access":
        return None

    subject = payload.get("sub")
    role = str(payload.get("role") or "").upper()
    if not subject or not role:
        return None

    vendor_id = None
    if payload.get("vendor_id"):
        try:
            vendor_id = uuid.UUID(str(payload["vendor_id"]))
        except ValueError:
            return None

    return Actor(id=str(subject), role=role, vendor_id=vendor_id, email=payload.get("email"))
