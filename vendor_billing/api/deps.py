from typing import Annotated
import uuid
import logging

from fastapi import Depends, HTTPException, status, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from vendor_billing.config import Settings
from vendor_billing.database import get_db
from vendor_billing.core.security import Actor, decode_access_token, VENDOR_ROLE
from vendor_billing.services.payment_gateway import RazorpayGateway
from vendor_billing.services.side_effects import SideEffectDispatcher


logger = logging.getLogger(__name__)

# HTTP Bearer security scheme
security = HTTPBearer()


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_payment_gateway(request: Request) -> RazorpayGateway:
    return request.app.state.payment_gateway


def get_dispatcher(request: Request) -> SideEffectDispatcher:
    return request.app.state.dispatcher


async def get_current_actor(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
) -> Actor:
    """
    Dependency to get the current authenticated actor.
    Validates the JWT token and returns who is calling and in which role.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    actor = decode_access_token(request.app.state.settings, credentials.credentials)
    if actor is None:
        logger.warning("Token verification failed - invalid or expired token")
        raise credentials_exception

    if actor.role == VENDOR_ROLE and actor.vendor_id is None:
        logger.warning(f"Vendor token for {actor.id} carries no vendor_id")
        raise credentials_exception

    return actor


async def require_staff(
    actor: Annotated[Actor, Depends(get_current_actor)],
) -> Actor:
    """Dependency requiring a FINANCE or ADMIN actor."""
    if not actor.is_staff:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Finance or admin role required"
        )
    return actor


async def require_vendor(
    actor: Annotated[Actor, Depends(get_current_actor)],
) -> Actor:
    """Dependency requiring a vendor actor (acts on its own wallet)."""
    if actor.role != VENDOR_ROLE:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Vendor account required"
        )
    return actor


def ensure_can_act_for_vendor(actor: Actor, vendor_id: uuid.UUID) -> None:
    """Vendors may only act on themselves; staff may act on anyone."""
    if not actor.can_act_for_vendor(vendor_id):
        logger.warning(f"Actor {actor.id} attempted to act for vendor {vendor_id}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not allowed to act for this vendor"
        )


# Type aliases for cleaner endpoint signatures
DB = Annotated[AsyncSession, Depends(get_db)]
CurrentActor = Annotated[Actor, Depends(get_current_actor)]
StaffActor = Annotated[Actor, Depends(require_staff)]
VendorActor = Annotated[Actor, Depends(require_vendor)]
AppSettings = Annotated[Settings, Depends(get_settings)]
Gateway = Annotated[RazorpayGateway, Depends(get_payment_gateway)]
Dispatcher = Annotated[SideEffectDispatcher, Depends(get_dispatcher)]
