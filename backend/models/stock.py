# backend/models/stock.py
import enum
from sqlalchemy import (
    Column, Integer, String, Boolean, ForeignKey, DateTime, Enum, CheckConstraint, Index, func
)
from sqlalchemy.orm import relationship
from database import Base


# Direction of a stock movement
class MovementDirection(str, enum.Enum):
    ENTRY = "entry"
    EXIT = "exit"
    # Relocation record, leaves the balance untouched
    TRANSFER = "transfer"

    @property
    def sign(self) -> int:
        return {"entry": 1, "exit": -1, "transfer": 0}[self.value]


# Legacy spellings still sent by older clients
DIRECTION_ALIASES = {
    "entry": MovementDirection.ENTRY,
    "entrada": MovementDirection.ENTRY,
    "in": MovementDirection.ENTRY,
    "exit": MovementDirection.EXIT,
    "salida": MovementDirection.EXIT,
    "out": MovementDirection.EXIT,
    "transfer": MovementDirection.TRANSFER,
}


# Cached current stock of a product, one row per product.
# Rebuilt by the reconciler whenever it drifts from the movement ledger.
class StockSnapshot(Base):
    __tablename__ = "stock_snapshots"

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), unique=True, nullable=False)
    current_stock = Column(Integer, CheckConstraint("current_stock >= 0"), nullable=False, default=0)
    # Equals Product.stock_version when the cache is in sync
    version = Column(Integer, nullable=False, default=0)
    last_update = Column(DateTime(timezone=True), nullable=True)

    product = relationship("Product")


# Ledger entry for a single stock-affecting event
class StockMovement(Base):
    __tablename__ = "stock_movements"

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    direction = Column(Enum(MovementDirection, values_callable=lambda e: [m.value for m in e]), nullable=False)
    quantity = Column(Integer, CheckConstraint("quantity > 0"), nullable=False)
    date = Column(DateTime(timezone=True), nullable=False, index=True)

    # Product.stock_version right after this movement, and the balance it left
    sequence = Column(Integer, nullable=False)
    resulting_balance = Column(Integer, CheckConstraint("resulting_balance >= 0"), nullable=False)

    notes = Column(String, nullable=True)
    reference_document = Column(String, nullable=True)

    # Verification metadata
    verified = Column(Boolean, nullable=False, default=False)
    verified_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    verified_at = Column(DateTime(timezone=True), nullable=True)

    # Set on compensating movements created instead of deleting a row
    reverses_id = Column(Integer, ForeignKey("stock_movements.id"), nullable=True, unique=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    product = relationship("Product")
    user = relationship("User", foreign_keys=[user_id])
    verifier = relationship("User", foreign_keys=[verified_by])
    reverses = relationship("StockMovement", remote_side=[id], uselist=False)

    __table_args__ = (
        Index("ix_stock_movements_product_date", "product_id", "date"),
    )
