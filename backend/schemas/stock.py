# backend/schemas/stock.py
from pydantic import BaseModel, Field, ConfigDict, AliasChoices, field_validator
from datetime import datetime
from typing import List, Optional

from database import INT_MAX
from models.stock import MovementDirection, DIRECTION_ALIASES


# Schema for recording a new stock movement
class MovementCreate(BaseModel):
    product_id: int = Field(validation_alias=AliasChoices("product_id", "productId"))
    quantity: int = Field(gt=0, le=INT_MAX)
    # Older clients send `type` with entrada/salida or in/out
    direction: MovementDirection = Field(validation_alias=AliasChoices("direction", "type"))
    date: Optional[datetime] = None
    actor_id: Optional[int] = Field(default=None, validation_alias=AliasChoices("actor_id", "actorId", "userId"))
    notes: Optional[str] = None
    reference_document: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("reference_document", "referenceDocument")
    )

    @field_validator("direction", mode="before")
    @classmethod
    def _normalize_direction(cls, value):
        if isinstance(value, str):
            return DIRECTION_ALIASES.get(value.strip().lower(), value)
        return value


# Only descriptive fields may change after a movement is recorded
class MovementUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    notes: Optional[str] = None
    reference_document: Optional[str] = None


class MovementReverse(BaseModel):
    notes: Optional[str] = None


# Schema for returning stock movement details
class MovementResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    product_id: int
    product_name: str
    user_id: int
    direction: MovementDirection
    quantity: int
    date: datetime
    sequence: int
    resulting_balance: int
    notes: Optional[str] = None
    reference_document: Optional[str] = None
    verified: bool = False
    verified_by: Optional[int] = None
    verified_at: Optional[datetime] = None
    reverses_id: Optional[int] = None
    created_at: Optional[datetime] = None


# Paginated response for stock movement history
class MovementPage(BaseModel):
    items: List[MovementResponse]
    total: int
    page: int
    page_size: int


# Stock of a product next to its cached snapshot
class StockStatusResponse(BaseModel):
    product_id: int
    product_name: str
    stock: int
    min_stock: int
    stock_version: int
    snapshot_stock: Optional[int] = None
    snapshot_version: Optional[int] = None
    last_stock_update: Optional[datetime] = None
    in_sync: bool


class ReconcileResponse(BaseModel):
    product_id: int
    previous_stock: int
    stock: int
    corrected: bool
