# backend/schemas/product.py
from pydantic import BaseModel, Field, ConfigDict, field_validator
from typing import Optional, List
from datetime import datetime

from database import INT_MAX


# Base configuration for ORM compatibility
class ORMBase(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# Shared base attributes for product entities
class ProductBase(ORMBase):
    name: str
    description: Optional[str] = None
    price: float = Field(ge=0)
    cost: Optional[float] = Field(default=None, ge=0)
    min_stock: int = Field(default=0, ge=0, le=INT_MAX)
    category_id: Optional[int] = Field(default=None, ge=1, le=INT_MAX)
    supplier_id: Optional[int] = Field(default=None, ge=1, le=INT_MAX)


# Schema for creating a new product; the initial stock becomes its opening balance
class ProductCreate(ProductBase):
    stock: int = Field(default=0, ge=0, le=INT_MAX)


# Schema for partial product updates
class ProductEditRequest(ORMBase):
    """PATCH payload. Stock is changed through movements only."""
    model_config = ConfigDict(from_attributes=True, extra="forbid")

    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    cost: Optional[float] = Field(None, ge=0)
    min_stock: Optional[int] = Field(None, ge=0, le=INT_MAX)
    category_id: Optional[int] = Field(None, ge=1, le=INT_MAX)
    supplier_id: Optional[int] = Field(None, ge=1, le=INT_MAX)

    # May be omitted, but never cleared
    @field_validator("name", "price", "min_stock")
    @classmethod
    def _not_null(cls, value, info):
        if value is None:
            raise ValueError(f"{info.field_name} cannot be null")
        return value


# Full product representation
class ProductOut(ProductBase):
    id: int
    stock: int
    user_id: int
    last_stock_update: Optional[datetime] = None


# Paginated response for product listings
class ProductListPage(ORMBase):
    items: List[ProductOut]
    total: int
    page: int
    page_size: int
