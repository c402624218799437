"""
Shared pydantic bases.

Response models read straight from ORM rows. Money fields are Decimal and
serialize as strings so paise are never lost to float rounding.
"""

from pydantic import BaseModel, ConfigDict


class BaseResponseSchema(BaseModel):
    """Response body built from an ORM row or a service dataclass."""
    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
    )


class BaseCreateSchema(BaseModel):
    """Request body. Unknown keys from older clients are dropped."""
    model_config = ConfigDict(
        extra="ignore",
        str_strip_whitespace=True,
    )
