# backend/services/movement_recorder.py
"""Movement Recorder - records stock entries/exits atomically.

Flow of ``record_movement``:
1. Validate product id, quantity and direction
2. Lock the product row
3. For exits, rebuild the stock from the ledger when the snapshot drifted
4. Apply a guarded increment to ``Product.stock`` (never below zero)
5. Append the movement with the balance it produced
6. Apply the same increment to the stock snapshot
7. Commit, or roll everything back on any failure

Concurrent exits on the same product serialise on the guarded UPDATE: the
second one sees the already decremented balance and fails with
``InsufficientStock`` instead of overdrawing. Lock conflicts reported by the
store surface as ``WriteConflict`` and are replayed by ``record_with_retry``.
"""
import logging
import time
from datetime import datetime
from typing import Optional, List, Tuple, Union

from sqlalchemy import update
from sqlalchemy.orm import Session

from config import settings
from database import unit_of_work
from models.product import Product
from models.stock import MovementDirection, StockMovement, StockSnapshot, DIRECTION_ALIASES
from services.products import is_positive_int
from services.reconciler import detect_drift, reconcile_stock
from utils.errors import InsufficientStock, InvalidInput, NotFound, WriteConflict
from utils.timeutils import as_naive_utc, utcnow

logger = logging.getLogger(__name__)

# Fields fixed once a movement is written; changing them would invalidate balances
IMMUTABLE_FIELDS = {"product_id", "user_id", "quantity", "direction", "date",
                    "sequence", "resulting_balance", "reverses_id"}
EDITABLE_FIELDS = {"notes", "reference_document"}


def parse_direction(value: Union[str, MovementDirection]) -> MovementDirection:
    if isinstance(value, MovementDirection):
        return value
    direction = DIRECTION_ALIASES.get(str(value or "").strip().lower())
    if direction is None:
        raise InvalidInput(f"Unknown movement direction: {value!r}")
    return direction


def _bump_snapshot(db: Session, product: Product, change: int, now: datetime) -> None:
    snapshot = db.query(StockSnapshot).filter(StockSnapshot.product_id == product.id).first()
    if snapshot is None:
        # Lazily created, already reflecting this movement
        db.add(StockSnapshot(
            product_id=product.id,
            current_stock=product.stock,
            version=product.stock_version,
            last_update=now,
        ))
        return
    db.execute(
        update(StockSnapshot)
        .where(StockSnapshot.id == snapshot.id)
        .values(
            current_stock=StockSnapshot.current_stock + change,
            version=StockSnapshot.version + 1,
            last_update=now,
        )
        .execution_options(synchronize_session=False)
    )


def _apply_movement(
    db: Session,
    product_id: int,
    quantity: int,
    direction: MovementDirection,
    actor_id: int,
    date: datetime,
    notes: Optional[str],
    reference_document: Optional[str],
    reverses_id: Optional[int],
    now: datetime,
) -> StockMovement:
    product = (
        db.query(Product)
        .filter(Product.id == product_id)
        .populate_existing()
        .with_for_update()
        .first()
    )
    if product is None:
        raise NotFound(f"Product with ID {product_id} not found")

    if direction is MovementDirection.EXIT:
        snapshot = db.query(StockSnapshot).filter(StockSnapshot.product_id == product_id).first()
        if detect_drift(product, snapshot):
            logger.warning(
                "Snapshot of product %s out of sync (snapshot=%s, product=%s), reconciling",
                product_id, snapshot.current_stock if snapshot else None, product.stock,
            )
            reconcile_stock(db, product_id, now=now)

    change = direction.sign * quantity
    result = db.execute(
        update(Product)
        .where(Product.id == product_id, Product.stock + change >= 0)
        .values(
            stock=Product.stock + change,
            stock_version=Product.stock_version + 1,
            last_stock_update=now,
        )
        .execution_options(synchronize_session=False)
    )
    db.refresh(product)
    if result.rowcount == 0:
        raise InsufficientStock(available=product.stock, requested=quantity)

    movement = StockMovement(
        product_id=product_id,
        user_id=actor_id,
        direction=direction,
        quantity=quantity,
        date=date,
        sequence=product.stock_version,
        resulting_balance=product.stock,
        notes=notes,
        reference_document=reference_document,
        reverses_id=reverses_id,
    )
    db.add(movement)
    _bump_snapshot(db, product, change, now)
    db.flush()
    return movement


def record_movement(
    db: Session,
    product_id,
    quantity,
    direction,
    actor_id: int,
    date: Optional[datetime] = None,
    notes: Optional[str] = None,
    reference_document: Optional[str] = None,
    reverses_id: Optional[int] = None,
) -> StockMovement:
    """Record one movement and update both stock representations atomically."""
    if not is_positive_int(product_id):
        raise InvalidInput("Invalid product ID")
    if not is_positive_int(quantity):
        raise InvalidInput("Quantity must be a positive integer")
    if not is_positive_int(actor_id):
        raise InvalidInput("Invalid actor ID")
    direction = parse_direction(direction)

    now = utcnow()
    date = as_naive_utc(date) or now
    with unit_of_work(db):
        movement = _apply_movement(
            db, product_id, quantity, direction, actor_id, date,
            notes, reference_document, reverses_id, now,
        )

    logger.info(
        "Movement %s recorded: %s of %s units for product %s, balance %s",
        movement.id, direction.value, quantity, product_id, movement.resulting_balance,
    )
    return movement


def record_with_retry(db: Session, *args, retries: Optional[int] = None, **kwargs) -> StockMovement:
    """``record_movement`` replayed on write conflicts, with a short backoff."""
    retries = settings.TX_MAX_RETRIES if retries is None else retries
    attempt = 0
    while True:
        try:
            return record_movement(db, *args, **kwargs)
        except WriteConflict:
            attempt += 1
            if attempt > retries:
                raise
            logger.info("Retrying movement after write conflict (attempt %s/%s)", attempt, retries)
            time.sleep(0.05 * attempt)


# -----------------------------
# Maintenance of recorded movements
# -----------------------------

def get_movement(db: Session, movement_id) -> StockMovement:
    if not is_positive_int(movement_id):
        raise InvalidInput("Invalid movement ID")
    movement = db.query(StockMovement).filter(StockMovement.id == movement_id).first()
    if movement is None:
        raise NotFound(f"Movement with ID {movement_id} not found")
    return movement


def list_movements(
    db: Session,
    owner_id: Optional[int] = None,
    product_id: Optional[int] = None,
    direction=None,
    page: int = 1,
    page_size: int = 20,
) -> Tuple[List[StockMovement], int]:
    """Newest first. ``owner_id`` restricts to movements of that user's products."""
    query = db.query(StockMovement).join(Product, Product.id == StockMovement.product_id)
    if owner_id is not None:
        query = query.filter(Product.user_id == owner_id)
    if product_id is not None:
        query = query.filter(StockMovement.product_id == product_id)
    if direction is not None:
        query = query.filter(StockMovement.direction == parse_direction(direction))

    total = query.count()
    items = (
        query.order_by(StockMovement.date.desc(), StockMovement.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return items, total


def update_movement(db: Session, movement_id, patch: dict) -> StockMovement:
    """Edit descriptive fields only; stock-affecting fields are immutable."""
    forbidden = sorted(set(patch) & IMMUTABLE_FIELDS)
    if forbidden:
        raise InvalidInput(
            f"Fields {', '.join(forbidden)} cannot be changed; record a reversal instead"
        )
    unknown = sorted(set(patch) - EDITABLE_FIELDS)
    if unknown:
        raise InvalidInput(f"Unknown fields: {', '.join(unknown)}")

    movement = get_movement(db, movement_id)
    with unit_of_work(db):
        for field, value in patch.items():
            setattr(movement, field, value)
    return movement


def verify_movement(db: Session, movement_id, verifier_id: int) -> StockMovement:
    movement = get_movement(db, movement_id)
    if movement.verified:
        return movement
    with unit_of_work(db):
        movement.verified = True
        movement.verified_by = verifier_id
        movement.verified_at = utcnow()
    logger.info("Movement %s verified by user %s", movement_id, verifier_id)
    return movement


def reverse_movement(db: Session, movement_id, actor_id: int, notes: Optional[str] = None) -> StockMovement:
    """Cancel a movement by recording its opposite.

    Movements are never deleted; the reversal keeps the ledger replayable.
    """
    original = get_movement(db, movement_id)
    if original.direction is MovementDirection.TRANSFER:
        raise InvalidInput("Transfers do not change stock and cannot be reversed")
    if original.reverses_id is not None:
        raise InvalidInput("A reversal cannot be reversed")
    existing = db.query(StockMovement).filter(StockMovement.reverses_id == original.id).first()
    if existing is not None:
        raise InvalidInput(f"Movement {original.id} was already reversed by movement {existing.id}")

    opposite = (
        MovementDirection.EXIT if original.direction is MovementDirection.ENTRY
        else MovementDirection.ENTRY
    )
    return record_with_retry(
        db,
        original.product_id,
        original.quantity,
        opposite,
        actor_id,
        notes=notes or f"Reversal of movement #{original.id}",
        reference_document=original.reference_document,
        reverses_id=original.id,
    )
