"""
Database Schemas for the catalog admin

Each Pydantic model describes a document in MongoDB. Field names keep the
camelCase spelling shared with the storefront checkout.
"""
import math
from typing import Dict, List, Literal, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, Field, ValidationError, field_validator

Size = Literal["XS", "S", "M", "L", "XL", "XXL"]
OrderStatus = Literal["pending", "shipped", "delivered", "cancelled"]

AVAILABLE_SIZES: List[str] = ["XS", "S", "M", "L", "XL", "XXL"]
ORDER_STATUSES: List[str] = ["pending", "shipped", "delivered", "cancelled"]

PRESET_COLORS: List[Dict[str, str]] = [
    {"name": "Black", "hex": "#111827"}, {"name": "White", "hex": "#FFFFFF"},
    {"name": "Stone", "hex": "#A8A29E"}, {"name": "Gray", "hex": "#6B7280"},
    {"name": "Red", "hex": "#EF4444"}, {"name": "Pink", "hex": "#EC4899"},
    {"name": "Blue", "hex": "#3B82F6"}, {"name": "Sky", "hex": "#0EA5E9"},
    {"name": "Green", "hex": "#22C55E"}, {"name": "Lime", "hex": "#84CC16"},
    {"name": "Yellow", "hex": "#EAB308"}, {"name": "Orange", "hex": "#F97316"},
    {"name": "Brown", "hex": "#78350F"}, {"name": "Beige", "hex": "#F5F5DC"},
    {"name": "Purple", "hex": "#8B5CF6"}, {"name": "Indigo", "hex": "#6366F1"},
    {"name": "Sage", "hex": "#8F9779"}, {"name": "Olive", "hex": "#556B2F"},
    {"name": "Terracotta", "hex": "#E2725B"}, {"name": "Ochre", "hex": "#CC7722"},
    {"name": "Sand", "hex": "#C2B280"}, {"name": "Taupe", "hex": "#483C32"},
    {"name": "Charcoal", "hex": "#36454F"}, {"name": "Slate", "hex": "#708090"},
    {"name": "Navy", "hex": "#000080"}, {"name": "Maroon", "hex": "#800000"},
    {"name": "Forest", "hex": "#228B22"}, {"name": "Zinc", "hex": "#B4B4B4"},
    {"name": "Teal", "hex": "#008080"}, {"name": "Emerald", "hex": "#50C878"},
    {"name": "Crimson", "hex": "#DC143C"}, {"name": "Amber", "hex": "#FFBF00"},
    {"name": "Violet", "hex": "#8F00FF"}, {"name": "Fuchsia", "hex": "#FF00FF"},
    {"name": "Mint", "hex": "#98FF98"}, {"name": "Mauve", "hex": "#E0B0FF"},
]

_PALETTE_HEXES = {color["hex"].upper() for color in PRESET_COLORS}


def is_well_formed_url(value: str) -> bool:
    parsed = urlparse(value)
    return bool(parsed.scheme and parsed.netloc)


class ColorOption(BaseModel):
    name: str
    hex: str

    @field_validator("hex")
    @classmethod
    def hex_from_palette(cls, value: str) -> str:
        if value.upper() not in _PALETTE_HEXES:
            raise ValueError("Color must be chosen from the palette")
        return value


class ProductImage(BaseModel):
    url: str
    alt: str
    hint: str = "product image"


class ProductFormData(BaseModel):
    """Values held by the product form, in the shape the form edits them."""

    name: str = ""
    slug: str = ""
    description: str = ""
    category: str = ""
    style: Optional[str] = ""
    price: float = 0
    originalPrice: Optional[float] = None
    imageUrl1: str = ""
    imageUrl2: str = ""
    imageUrl3: str = ""
    imageUrl4: str = ""
    sizes: List[Size] = Field(default_factory=list)
    availableColors: List[ColorOption] = Field(default_factory=list)
    isFeatured: bool = False

    @field_validator("name", "slug", "description", "category")
    @classmethod
    def required_text(cls, value: str, info) -> str:
        trimmed = value.strip()
        if not trimmed:
            raise ValueError(f"{info.field_name.capitalize()} is required")
        return trimmed

    @field_validator("price", mode="before")
    @classmethod
    def coerce_price(cls, value):
        if value is None or (isinstance(value, str) and not value.strip()):
            return 0
        return value

    @field_validator("price")
    @classmethod
    def price_not_negative(cls, value: float) -> float:
        if not math.isfinite(value) or value < 0:
            raise ValueError("Price must be positive")
        return value

    @field_validator("originalPrice", mode="before")
    @classmethod
    def blank_original_price(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("imageUrl1", "imageUrl2", "imageUrl3", "imageUrl4", mode="before")
    @classmethod
    def optional_url(cls, value):
        if value is None:
            return ""
        candidate = str(value).strip()
        if candidate and not is_well_formed_url(candidate):
            raise ValueError("Must be a valid URL")
        return candidate

    @field_validator("sizes")
    @classmethod
    def unique_sizes(cls, value: List[str]) -> List[str]:
        return list(dict.fromkeys(value))

    @field_validator("style", mode="before")
    @classmethod
    def blank_style(cls, value):
        return "" if value is None else value


class TaxonomyEntry(BaseModel):
    """Categories and styles collection schema"""

    name: str = Field(..., min_length=1)

    @field_validator("name", mode="before")
    @classmethod
    def trim_name(cls, value):
        return str(value or "").strip()


class OrderLine(BaseModel):
    id: str
    name: str = ""
    quantity: int = Field(..., ge=0)


class ShippingAddress(BaseModel):
    description: str = ""
    region: str = ""
    county: str = ""


class Order(BaseModel):
    """Orders collection schema, written by the storefront checkout"""

    customerName: str = ""
    customerEmail: str = ""
    products: List[OrderLine] = Field(default_factory=list)
    totalAmount: float = Field(0, ge=0)
    shippingAddress: ShippingAddress = Field(default_factory=ShippingAddress)
    status: OrderStatus = "pending"


class OrderStatusUpdate(BaseModel):
    status: OrderStatus


def field_errors(exc: ValidationError) -> Dict[str, str]:
    errors: Dict[str, str] = {}
    for error in exc.errors():
        location = error.get("loc") or ("__root__",)
        field = str(location[0])
        if field in errors:
            continue
        context_error = (error.get("ctx") or {}).get("error")
        if error.get("type") == "value_error" and context_error is not None:
            errors[field] = str(context_error)
        else:
            errors[field] = error.get("msg", "Invalid value")
    return errors
