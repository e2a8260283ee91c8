# backend/services/products.py
from sqlalchemy.orm import Session

from database import INT_MAX
from models.product import Product
from models.stock import StockSnapshot
from models.users import User
from services.reconciler import detect_drift
from utils.errors import Forbidden, InvalidInput, NotFound


def is_admin(user: User) -> bool:
    return (user.role or "").upper() == "ADMIN"


def is_positive_int(value) -> bool:
    """Positive and small enough for an INTEGER column; bools are rejected."""
    return isinstance(value, int) and not isinstance(value, bool) and 0 < value <= INT_MAX


def get_product(db: Session, product_id) -> Product:
    if not is_positive_int(product_id):
        raise InvalidInput("Invalid product ID")
    product = db.query(Product).filter(Product.id == product_id).first()
    if product is None:
        raise NotFound(f"Product with ID {product_id} not found")
    return product


def get_owned_product(db: Session, product_id, user: User) -> Product:
    """Product lookup for a tenant: owners and admins only."""
    product = get_product(db, product_id)
    if product.user_id != user.id and not is_admin(user):
        raise Forbidden("You do not have permission to access this product")
    return product


def stock_status(db: Session, product: Product) -> dict:
    snapshot = db.query(StockSnapshot).filter(StockSnapshot.product_id == product.id).first()
    return {
        "product_id": product.id,
        "product_name": product.name,
        "stock": product.stock,
        "min_stock": product.min_stock,
        "stock_version": product.stock_version,
        "snapshot_stock": snapshot.current_stock if snapshot else None,
        "snapshot_version": snapshot.version if snapshot else None,
        "last_stock_update": product.last_stock_update,
        "in_sync": not detect_drift(product, snapshot),
    }
