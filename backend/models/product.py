# backend/models/product.py
from sqlalchemy import Column, Integer, String, Float, ForeignKey, DateTime, CheckConstraint, func
from sqlalchemy.orm import relationship
from database import Base


def _opening_stock_default(context):
    # Baseline for stock reconciliation: the stock the product was created with
    return context.get_current_parameters().get("stock") or 0


# Model Product
# A catalogue item owned by a single user (tenant).
# `stock`, `stock_version` and `last_stock_update` are owned by the stock
# services (movement recorder and reconciler); product edits never touch them.
class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False, index=True)
    description = Column(String, nullable=True)

    # Prices; cost may be unknown, analytics then derive it from the price.
    price = Column(Float, CheckConstraint("price >= 0"), nullable=False, default=0)
    cost = Column(Float, CheckConstraint("cost >= 0"), nullable=True)

    # Stock data.
    stock = Column(Integer, CheckConstraint("stock >= 0"), nullable=False, default=0)
    min_stock = Column(Integer, CheckConstraint("min_stock >= 0"), nullable=False, default=0)
    opening_stock = Column(Integer, nullable=False, default=_opening_stock_default)
    # Incremented by every stock-changing write, mirrored on the snapshot.
    stock_version = Column(Integer, nullable=False, default=0)
    last_stock_update = Column(DateTime(timezone=True), nullable=True)

    category_id = Column(Integer, ForeignKey("categories.id"), nullable=True, index=True)
    supplier_id = Column(Integer, ForeignKey("suppliers.id"), nullable=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    category = relationship("Category")
    supplier = relationship("Supplier")
    owner = relationship("User")
