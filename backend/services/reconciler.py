# backend/services/reconciler.py
"""Stock reconciliation.

The movement ledger is the source of truth for a product's stock. The
``stock_snapshots`` row and ``Product.stock`` are both derived from it; when
they disagree the reconciler replays the ledger from the product's opening
stock and writes the result back to both.
"""
import logging
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from database import unit_of_work
from models.product import Product
from models.stock import StockMovement, StockSnapshot
from utils.errors import LedgerCorrupted, NotFound, WriteConflict
from utils.timeutils import utcnow

logger = logging.getLogger(__name__)


def detect_drift(product: Product, snapshot: Optional[StockSnapshot]) -> bool:
    """True when the cached snapshot can no longer be trusted for ``product``."""
    if snapshot is None:
        return True
    return snapshot.version != product.stock_version or snapshot.current_stock != product.stock


def replay_ledger(opening_stock: int, movements: Iterable[StockMovement]) -> int:
    balance = opening_stock
    for movement in movements:
        balance += movement.direction.sign * movement.quantity
    return balance


def reconcile_stock(db: Session, product_id: int, now: Optional[datetime] = None) -> int:
    """Rebuild the stock of ``product_id`` inside the caller's transaction.

    Idempotent: with no new movements a second call writes the same values.
    Changes are flushed but not committed.
    """
    now = now or utcnow()
    product = (
        db.query(Product)
        .filter(Product.id == product_id)
        .populate_existing()
        .with_for_update()
        .first()
    )
    if product is None:
        raise NotFound(f"Product with ID {product_id} not found")

    movements = (
        db.query(StockMovement)
        .filter(StockMovement.product_id == product_id)
        .order_by(StockMovement.date.asc(), StockMovement.id.asc())
        .all()
    )
    calculated = replay_ledger(product.opening_stock, movements)
    if calculated < 0:
        logger.error(
            "Ledger of product %s replays to negative stock %s (opening=%s, movements=%s)",
            product_id, calculated, product.opening_stock, len(movements),
        )
        raise LedgerCorrupted(f"Movement history of product {product_id} yields negative stock")

    previous = product.stock
    # Guarded by the version we read: a movement committed meanwhile makes
    # this replay stale, the caller retries with fresh data
    result = db.execute(
        update(Product)
        .where(Product.id == product_id, Product.stock_version == product.stock_version)
        .values(stock=calculated, stock_version=len(movements), last_stock_update=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise WriteConflict(f"Stock of product {product_id} changed during reconciliation")
    db.refresh(product)

    snapshot = db.query(StockSnapshot).filter(StockSnapshot.product_id == product_id).first()
    if snapshot is None:
        snapshot = StockSnapshot(product_id=product_id)
        db.add(snapshot)
    snapshot.current_stock = calculated
    snapshot.version = len(movements)
    snapshot.last_update = now
    db.flush()

    if previous != calculated:
        logger.warning("Stock of product %s corrected from %s to %s", product_id, previous, calculated)
    else:
        logger.info("Stock of product %s synchronised: %s (%s movements)", product_id, calculated, len(movements))
    return calculated


def reconcile_product(db: Session, product_id: int) -> int:
    """Standalone maintenance entry point running in its own transaction."""
    with unit_of_work(db):
        return reconcile_stock(db, product_id)
