# backend/routes/products.py
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from database import INT_MAX, get_db, unit_of_work
from models.product import Product
from models.stock import StockMovement, StockSnapshot
from models.users import User
from services.products import get_owned_product, is_admin, stock_status
from services.reconciler import reconcile_product
from utils.audit import write_log
from utils.errors import InvalidInput, InventoryError
from utils.timeutils import utcnow
from utils.tokenJWT import get_current_user, role_required
import schemas.product as product_schemas
import schemas.stock as stock_schemas

router = APIRouter(prefix="/products", tags=["Products"])


def _client_ip(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


# =========================
# PRODUCT LIST
# =========================
@router.get("", response_model=product_schemas.ProductListPage)
def list_products(
    name: Optional[str] = Query(None),
    low_stock: bool = Query(False, description="Only products at or below their minimum stock"),
    page: int = Query(1, ge=1, le=INT_MAX // 100),
    page_size: int = Query(20, ge=1, le=100),
    sort_by: str = Query("id"),
    order: str = Query("asc", pattern="^(asc|desc)$"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    query = db.query(Product)
    if not is_admin(current_user):
        query = query.filter(Product.user_id == current_user.id)
    if name:
        query = query.filter(Product.name.ilike(f"%{name}%"))
    if low_stock:
        query = query.filter(Product.stock <= Product.min_stock)

    allowed = {
        "id": Product.id, "name": Product.name, "price": Product.price,
        "stock": Product.stock, "created_at": Product.created_at,
    }
    sort_col = allowed.get(sort_by.lower(), Product.id)
    query = query.order_by(sort_col.asc() if order == "asc" else sort_col.desc())

    total = query.count()
    items: List[Product] = query.offset((page - 1) * page_size).limit(page_size).all()
    return {"items": items, "total": total, "page": page, "page_size": page_size}


# =========================
# SINGLE PRODUCT
# =========================
@router.get("/{product_id}", response_model=product_schemas.ProductOut)
def get_product(
    product_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return get_owned_product(db, product_id, current_user)


@router.post("", response_model=product_schemas.ProductOut, status_code=201)
def create_product(
    payload: product_schemas.ProductCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    with unit_of_work(db):
        product = Product(**payload.model_dump(), user_id=current_user.id, last_stock_update=utcnow())
        db.add(product)
        db.flush()
        # Snapshot starts in sync with the opening stock
        db.add(StockSnapshot(product_id=product.id, current_stock=product.stock, version=0,
                             last_update=product.last_stock_update))
    write_log(db, user_id=current_user.id, action="PRODUCT_CREATE", resource="products",
              resource_id=product.id, ip=_client_ip(request), meta={"name": product.name, "stock": product.stock})
    return product


@router.patch("/{product_id}", response_model=product_schemas.ProductOut)
def update_product(
    product_id: int,
    payload: product_schemas.ProductEditRequest,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    product = get_owned_product(db, product_id, current_user)
    changes = payload.model_dump(exclude_unset=True)
    if "name" in changes and not (changes["name"] or "").strip():
        raise InvalidInput("Product name cannot be empty")
    with unit_of_work(db):
        for field, value in changes.items():
            setattr(product, field, value)
    write_log(db, user_id=current_user.id, action="PRODUCT_UPDATE", resource="products",
              resource_id=product.id, ip=_client_ip(request), meta={"fields": sorted(changes)})
    return product


@router.delete("/{product_id}", status_code=204)
def delete_product(
    product_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    product = get_owned_product(db, product_id, current_user)
    has_movements = db.query(StockMovement.id).filter(StockMovement.product_id == product.id).first()
    if has_movements:
        raise InvalidInput("Product has recorded movements and cannot be deleted")
    with unit_of_work(db):
        db.query(StockSnapshot).filter(StockSnapshot.product_id == product.id).delete()
        db.delete(product)
    write_log(db, user_id=current_user.id, action="PRODUCT_DELETE", resource="products",
              resource_id=product_id, ip=_client_ip(request))


# =========================
# STOCK CONSISTENCY
# =========================
@router.get("/{product_id}/stock", response_model=stock_schemas.StockStatusResponse)
def get_stock_status(
    product_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    product = get_owned_product(db, product_id, current_user)
    return stock_status(db, product)


@router.post("/{product_id}/reconcile", response_model=stock_schemas.ReconcileResponse)
def reconcile_stock(
    product_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(role_required("ADMIN", "WAREHOUSE")),
):
    product = get_owned_product(db, product_id, current_user)
    previous = product.stock
    try:
        stock = reconcile_product(db, product_id)
    except InventoryError as e:
        write_log(db, user_id=current_user.id, action="STOCK_RECONCILE", resource="products",
                  resource_id=product_id, status="FAIL", ip=_client_ip(request), meta={"error": e.code})
        raise
    write_log(db, user_id=current_user.id, action="STOCK_RECONCILE", resource="products",
              resource_id=product_id, ip=_client_ip(request), meta={"previous": previous, "stock": stock})
    return {"product_id": product_id, "previous_stock": previous, "stock": stock, "corrected": previous != stock}
