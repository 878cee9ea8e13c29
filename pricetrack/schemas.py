"""Request bodies for the REST API."""

from typing import Optional

from pydantic import BaseModel, Field

from pricetrack.models import OrderStatus


class ItemCreate(BaseModel):
    name: str = Field(..., min_length=1)
    url: str = Field(..., min_length=1)
    category: Optional[str] = None


class ItemUpdate(BaseModel):
    name: Optional[str] = None
    url: Optional[str] = None
    category: Optional[str] = None


class VariantCreate(BaseModel):
    product_id: int
    type: str = Field(..., min_length=1, description="Free-form tag, e.g. size or color")
    value: str = Field(..., min_length=1)
    price: Optional[float] = Field(None, ge=0, description="Overrides the product price")
    stock: int = Field(0, ge=0)


class VariantUpdate(BaseModel):
    type: Optional[str] = None
    value: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    stock: Optional[int] = Field(None, ge=0)


class OrderCreate(BaseModel):
    product_id: int
    quantity: int = Field(..., gt=0)
    variant_id: Optional[int] = None
    total_price: Optional[float] = Field(None, ge=0, description="Defaults to unit price x quantity")
    customer_email: Optional[str] = None


class OrderStatusUpdate(BaseModel):
    status: OrderStatus
