# backend/routes/movements.py
from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session
from typing import Optional

from database import INT_MAX, get_db
from models.stock import StockMovement, MovementDirection
from models.users import User
from services import movement_recorder as recorder
from services.products import get_owned_product, is_admin
from utils.tokenJWT import get_current_user
from utils.audit import write_log
from utils.errors import Forbidden, InventoryError
import schemas.stock as stock_schemas

router = APIRouter(prefix="/movements", tags=["Movements"])


def _client_ip(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


# Map StockMovement model to the response schema
def _movement_to_out(m: StockMovement) -> stock_schemas.MovementResponse:
    return stock_schemas.MovementResponse(
        id=m.id,
        product_id=m.product_id,
        product_name=m.product.name if m.product else "Unknown",
        user_id=m.user_id,
        direction=m.direction,
        quantity=m.quantity,
        date=m.date,
        sequence=m.sequence,
        resulting_balance=m.resulting_balance,
        notes=m.notes,
        reference_document=m.reference_document,
        verified=bool(m.verified),
        verified_by=m.verified_by,
        verified_at=m.verified_at,
        reverses_id=m.reverses_id,
        created_at=m.created_at,
    )


# Movement lookup limited to the products the user may see
def _owned_movement(db: Session, movement_id: int, user: User) -> StockMovement:
    movement = recorder.get_movement(db, movement_id)
    get_owned_product(db, movement.product_id, user)
    return movement


@router.post("", response_model=stock_schemas.MovementResponse, status_code=201)
def create_movement(
    payload: stock_schemas.MovementCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    actor_id = payload.actor_id or current_user.id
    meta = {"product_id": payload.product_id, "quantity": payload.quantity, "direction": payload.direction.value}
    try:
        if actor_id != current_user.id and not is_admin(current_user):
            raise Forbidden("Movements can only be recorded on your own behalf")
        get_owned_product(db, payload.product_id, current_user)
        movement = recorder.record_with_retry(
            db,
            payload.product_id,
            payload.quantity,
            payload.direction,
            actor_id,
            date=payload.date,
            notes=payload.notes,
            reference_document=payload.reference_document,
        )
    except InventoryError as e:
        write_log(db, user_id=current_user.id, action="MOVEMENT_CREATE", resource="movements",
                  status="FAIL", ip=_client_ip(request), meta={**meta, "error": e.code})
        raise

    write_log(db, user_id=current_user.id, action="MOVEMENT_CREATE", resource="movements",
              resource_id=movement.id, status="SUCCESS", ip=_client_ip(request),
              meta={**meta, "resulting_balance": movement.resulting_balance})
    return _movement_to_out(movement)


@router.get("", response_model=stock_schemas.MovementPage)
def list_movements(
    product_id: Optional[int] = Query(None, ge=1, le=INT_MAX),
    direction: Optional[MovementDirection] = Query(None),
    page: int = Query(1, ge=1, le=INT_MAX // 100),
    page_size: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    owner_id = None if is_admin(current_user) else current_user.id
    items, total = recorder.list_movements(
        db, owner_id=owner_id, product_id=product_id, direction=direction, page=page, page_size=page_size
    )
    return {"items": [_movement_to_out(m) for m in items], "total": total, "page": page, "page_size": page_size}


@router.get("/product/{product_id}", response_model=stock_schemas.MovementPage)
def list_product_movements(
    product_id: int,
    page: int = Query(1, ge=1, le=INT_MAX // 100),
    page_size: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    get_owned_product(db, product_id, current_user)
    items, total = recorder.list_movements(db, product_id=product_id, page=page, page_size=page_size)
    return {"items": [_movement_to_out(m) for m in items], "total": total, "page": page, "page_size": page_size}


@router.get("/{movement_id}", response_model=stock_schemas.MovementResponse)
def get_movement(
    movement_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return _movement_to_out(_owned_movement(db, movement_id, current_user))


@router.put("/{movement_id}", response_model=stock_schemas.MovementResponse)
def update_movement(
    movement_id: int,
    payload: stock_schemas.MovementUpdate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    _owned_movement(db, movement_id, current_user)
    patch = payload.model_dump(exclude_unset=True)
    movement = recorder.update_movement(db, movement_id, patch)
    write_log(db, user_id=current_user.id, action="MOVEMENT_UPDATE", resource="movements",
              resource_id=movement.id, ip=_client_ip(request), meta={"fields": sorted(patch)})
    return _movement_to_out(movement)


@router.post("/{movement_id}/verify", response_model=stock_schemas.MovementResponse)
def verify_movement(
    movement_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    _owned_movement(db, movement_id, current_user)
    movement = recorder.verify_movement(db, movement_id, current_user.id)
    write_log(db, user_id=current_user.id, action="MOVEMENT_VERIFY", resource="movements",
              resource_id=movement.id, ip=_client_ip(request))
    return _movement_to_out(movement)


def _reverse(db: Session, movement_id: int, user: User, request: Request, notes: Optional[str]) -> StockMovement:
    _owned_movement(db, movement_id, user)
    try:
        reversal = recorder.reverse_movement(db, movement_id, user.id, notes=notes)
    except InventoryError as e:
        write_log(db, user_id=user.id, action="MOVEMENT_REVERSE", resource="movements",
                  resource_id=movement_id, status="FAIL", ip=_client_ip(request), meta={"error": e.code})
        raise
    write_log(db, user_id=user.id, action="MOVEMENT_REVERSE", resource="movements",
              resource_id=movement_id, ip=_client_ip(request),
              meta={"reversal_id": reversal.id, "resulting_balance": reversal.resulting_balance})
    return reversal


@router.post("/{movement_id}/reverse", response_model=stock_schemas.MovementResponse, status_code=201)
def reverse_movement(
    movement_id: int,
    request: Request,
    payload: Optional[stock_schemas.MovementReverse] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    notes = payload.notes if payload else None
    return _movement_to_out(_reverse(db, movement_id, current_user, request, notes))


# Movements are never removed; deleting one records its reversal
@router.delete("/{movement_id}", response_model=stock_schemas.MovementResponse)
def delete_movement(
    movement_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return _movement_to_out(_reverse(db, movement_id, current_user, request, None))
