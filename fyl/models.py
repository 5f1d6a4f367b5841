"""
Validated models for rows that cross the back-office boundaries.

Rows read from Supabase are handled as plain dicts (the shape PostgREST
returns). These models are used where input comes from outside: CSV and
Sheets imports, admin edits, the tagging endpoint and the feed.
"""

import re
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator

ItemStatus = Literal["reserved", "picked", "waiting", "missing", "cancelled"]
OrderStatus = Literal["active", "picked", "closed", "sent", "devolución"]
SaleType = Literal["local", "envios"]
TagCategory = Literal["Calzado", "Ropa", "Otros"]


def _clean_text(v: Optional[str]) -> str:
    if v is None:
        return ""
    return re.sub(r"\s+", " ", str(v)).strip()


class CustomerImportRow(BaseModel):
    """One customer read from columns A-E of an import sheet."""

    full_name: str = ""
    phone: str = ""
    city: str = ""
    province: str = ""
    address: str = ""
    row_number: int = 0  # 1-based, header is row 1

    @field_validator("full_name", "phone", "city", "province", "address", mode="before")
    @classmethod
    def clean_field(cls, v: Optional[str]) -> str:
        """Collapse whitespace and turn missing values into empty strings."""
        return _clean_text(v)

    def validation_errors(self) -> list[str]:
        """Return the list of missing required fields (empty when valid)."""
        errors = []
        if not self.full_name:
            errors.append("Nombre requerido")
        if not self.phone:
            errors.append("Teléfono requerido")
        if not self.address:
            errors.append("Dirección requerida")
        if not self.city:
            errors.append("Ciudad requerida")
        if not self.province:
            errors.append("Provincia requerida")
        return errors


class DailySaleUpdate(BaseModel):
    """Editable fields of a consolidated daily sale."""

    sale_type: SaleType
    sale_time: Optional[str] = None
    customer_name: str
    product_quantity: int = Field(ge=0)
    sale_amount: float = Field(ge=0)

    @field_validator("customer_name")
    @classmethod
    def require_customer_name(cls, v: str) -> str:
        """Customer name must not be blank."""
        v = _clean_text(v)
        if not v:
            raise ValueError("customer_name is required")
        return v


class PaymentMethod(BaseModel):
    """A payment method created ad hoc by an admin."""

    id: Optional[str] = None
    name: str

    @field_validator("name")
    @classmethod
    def require_name(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("payment method name is required")
        return v


class AutoTagRequest(BaseModel):
    """Input of the auto-tagging endpoint."""

    image_url: str
    product_name: str
    category_hint: TagCategory
    description: Optional[str] = None

    @field_validator("image_url", "product_name")
    @classmethod
    def require_text(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("field is required")
        return v


class AutoTagResult(BaseModel):
    """Hierarchical tags inferred for a product image."""

    category: str
    tag1: str
    tag2: str
    details: list[str] = Field(default_factory=list)
    highlights: list[str] = Field(default_factory=list)
    confidence: float = 0.8


class FeedItem(BaseModel):
    """One row of the Meta commerce catalog feed."""

    id: str
    item_group_id: str = ""
    title: str = ""
    description: str = ""
    price: str = ""
    availability: str = ""
    condition: str = "new"
    brand: str = ""
    link: str = ""
    image_link: str = ""
    color: str = ""
    size: str = ""

    @field_validator(
        "id",
        "item_group_id",
        "title",
        "description",
        "price",
        "availability",
        "condition",
        "brand",
        "link",
        "image_link",
        "color",
        "size",
        mode="before",
    )
    @classmethod
    def coerce_text(cls, v) -> str:
        """Null and falsy values are written as empty cells."""
        if v is None or v is False or v == 0:
            return ""
        return str(v)
