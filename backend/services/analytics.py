# backend/services/analytics.py
"""Inventory analytics derived from the movement ledger and current stock.

Rows are loaded once per request into immutable tuples; every metric below is
a plain function over those tuples, so each one can be tested on its own and
the report is simply their composition. Values are kept unrounded here,
rounding happens in the response schemas.
"""
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Collection, Dict, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from config import settings
from models.category import Category
from models.product import Product
from models.stock import MovementDirection, StockMovement
from utils.timeutils import as_naive_utc, utcnow

logger = logging.getLogger(__name__)

UNCATEGORIZED = "Uncategorized"


# ---- input rows ----

@dataclass(frozen=True)
class ProductRow:
    id: int
    name: str
    price: float
    cost: Optional[float]
    stock: int
    min_stock: int
    category: Optional[str] = None


@dataclass(frozen=True)
class MovementRow:
    product_id: int
    direction: MovementDirection
    quantity: int
    date: datetime
    id: Optional[int] = None
    # Set on compensating movements
    reverses_id: Optional[int] = None


@dataclass(frozen=True)
class Window:
    """Half-open period ``(start, end]``."""
    start: datetime
    end: datetime

    def contains(self, moment: datetime) -> bool:
        return self.start < moment <= self.end

    @classmethod
    def trailing(cls, end: datetime, days: int, offset_days: int = 0) -> "Window":
        stop = end - timedelta(days=offset_days)
        return cls(start=stop - timedelta(days=days), end=stop)


# ---- report parts ----

@dataclass(frozen=True)
class GeneralSummary:
    total_products: int
    low_stock_products: int
    out_of_stock_products: int
    total_stock: int
    stock_value: float
    critical_stock_percentage: float


@dataclass(frozen=True)
class WindowTotals:
    entries_count: int = 0
    exits_count: int = 0
    transfers_count: int = 0
    entries_quantity: int = 0
    exits_quantity: int = 0
    transfers_quantity: int = 0

    @property
    def total(self) -> int:
        return self.entries_count + self.exits_count + self.transfers_count


@dataclass(frozen=True)
class MovementTrends:
    entries_count: float
    exits_count: float
    transfers_count: float
    entries_quantity: float
    exits_quantity: float
    total_movements: float


@dataclass(frozen=True)
class MovedProduct:
    product_id: int
    name: str
    total_quantity: int
    movement_count: int


@dataclass(frozen=True)
class CategoryValue:
    category: str
    product_count: int
    total_stock: int
    stock_value: float


@dataclass(frozen=True)
class ReorderPrediction:
    product_id: int
    name: str
    current_stock: int
    min_stock: int
    avg_daily_usage: float
    days_until_reorder: float


@dataclass(frozen=True)
class ProductRoi:
    product_id: int
    name: str
    total_exits: int
    total_exit_value: float
    unit_cost: float
    cost_basis: float
    roi: float


@dataclass(frozen=True)
class RoiSummary:
    avg_roi: float
    products_with_exits: int
    top_roi_products: List[ProductRoi] = field(default_factory=list)


@dataclass(frozen=True)
class StatisticsReport:
    as_of: datetime
    window_days: int
    general: GeneralSummary
    current_period: WindowTotals
    previous_period: WindowTotals
    trends: MovementTrends
    top_moved_products: List[MovedProduct]
    category_distribution: List[CategoryValue]
    reorder_predictions: List[ReorderPrediction]
    roi: RoiSummary


# ---- pure metrics ----

def drop_reversals(movements: Sequence[MovementRow], reversed_ids: Collection[int] = ()) -> List[MovementRow]:
    """Movements that still stand: reversals and the movements they cancel are left out.

    ``reversed_ids`` names cancelled movements whose reversal falls outside the loaded rows.
    """
    cancelled = set(reversed_ids) | {m.reverses_id for m in movements if m.reverses_id is not None}
    return [m for m in movements if m.reverses_id is None and m.id not in cancelled]


def percent_change(current: float, previous: float) -> float:
    if previous == 0:
        return 100.0 if current > 0 else 0.0
    return (current - previous) / previous * 100


def general_summary(products: Sequence[ProductRow]) -> GeneralSummary:
    total = len(products)
    low = sum(1 for p in products if p.stock <= p.min_stock)
    return GeneralSummary(
        total_products=total,
        low_stock_products=low,
        out_of_stock_products=sum(1 for p in products if p.stock == 0),
        total_stock=sum(p.stock for p in products),
        stock_value=sum(p.price * p.stock for p in products),
        critical_stock_percentage=(low / total * 100) if total else 0.0,
    )


def window_totals(movements: Sequence[MovementRow], window: Window) -> WindowTotals:
    counts: Dict[MovementDirection, int] = defaultdict(int)
    quantities: Dict[MovementDirection, int] = defaultdict(int)
    for m in movements:
        if window.contains(m.date):
            counts[m.direction] += 1
            quantities[m.direction] += m.quantity
    return WindowTotals(
        entries_count=counts[MovementDirection.ENTRY],
        exits_count=counts[MovementDirection.EXIT],
        transfers_count=counts[MovementDirection.TRANSFER],
        entries_quantity=quantities[MovementDirection.ENTRY],
        exits_quantity=quantities[MovementDirection.EXIT],
        transfers_quantity=quantities[MovementDirection.TRANSFER],
    )


def movement_trends(current: WindowTotals, previous: WindowTotals) -> MovementTrends:
    return MovementTrends(
        entries_count=percent_change(current.entries_count, previous.entries_count),
        exits_count=percent_change(current.exits_count, previous.exits_count),
        transfers_count=percent_change(current.transfers_count, previous.transfers_count),
        entries_quantity=percent_change(current.entries_quantity, previous.entries_quantity),
        exits_quantity=percent_change(current.exits_quantity, previous.exits_quantity),
        total_movements=percent_change(current.total, previous.total),
    )


def _exits_by_product(movements: Sequence[MovementRow], window: Window) -> Dict[int, int]:
    exits: Dict[int, int] = defaultdict(int)
    for m in movements:
        if m.direction is MovementDirection.EXIT and window.contains(m.date):
            exits[m.product_id] += m.quantity
    return exits


def top_moved_products(
    products: Sequence[ProductRow],
    movements: Sequence[MovementRow],
    window: Window,
    limit: int = 5,
) -> List[MovedProduct]:
    names = {p.id: p.name for p in products}
    totals: Dict[int, Tuple[int, int]] = {}
    for m in movements:
        if m.product_id in names and window.contains(m.date):
            quantity, count = totals.get(m.product_id, (0, 0))
            totals[m.product_id] = (quantity + m.quantity, count + 1)
    ranked = sorted(totals.items(), key=lambda item: (-item[1][0], item[0]))
    return [
        MovedProduct(product_id=pid, name=names[pid], total_quantity=qty, movement_count=count)
        for pid, (qty, count) in ranked[:limit]
    ]


def category_valuation(products: Sequence[ProductRow]) -> List[CategoryValue]:
    groups: Dict[str, List[ProductRow]] = defaultdict(list)
    for p in products:
        groups[p.category or UNCATEGORIZED].append(p)
    rows = [
        CategoryValue(
            category=name,
            product_count=len(items),
            total_stock=sum(p.stock for p in items),
            stock_value=sum(p.price * p.stock for p in items),
        )
        for name, items in groups.items()
    ]
    return sorted(rows, key=lambda row: (-row.stock_value, row.category))


def days_until_reorder(current_stock: int, min_stock: int, avg_daily_usage: float,
                       sentinel: float = 999) -> float:
    if avg_daily_usage > 0:
        return (current_stock - min_stock) / avg_daily_usage
    return sentinel


def reorder_predictions(
    products: Sequence[ProductRow],
    movements: Sequence[MovementRow],
    window: Window,
    window_days: int = 30,
    horizon_days: float = 15,
    sentinel: float = 999,
    limit: int = 5,
) -> List[ReorderPrediction]:
    """Products expected to reach their minimum stock within ``horizon_days``."""
    exits = _exits_by_product(movements, window)
    predictions = []
    for p in products:
        usage = exits.get(p.id, 0) / window_days
        days = days_until_reorder(p.stock, p.min_stock, usage, sentinel)
        if 0 < days < horizon_days:
            predictions.append(ReorderPrediction(
                product_id=p.id,
                name=p.name,
                current_stock=p.stock,
                min_stock=p.min_stock,
                avg_daily_usage=usage,
                days_until_reorder=days,
            ))
    predictions.sort(key=lambda r: (r.days_until_reorder, r.product_id))
    return predictions[:limit]


def unit_cost(product: ProductRow, cost_ratio: float = 0.5) -> float:
    return product.cost if product.cost is not None else product.price * cost_ratio


def product_roi(product: ProductRow, total_exits: int, cost_ratio: float = 0.5) -> ProductRoi:
    exit_value = total_exits * product.price
    cost = unit_cost(product, cost_ratio)
    basis = total_exits * cost
    roi = (exit_value - basis) / basis * 100 if basis else 0.0
    return ProductRoi(
        product_id=product.id,
        name=product.name,
        total_exits=total_exits,
        total_exit_value=exit_value,
        unit_cost=cost,
        cost_basis=basis,
        roi=roi,
    )


def roi_summary(
    products: Sequence[ProductRow],
    movements: Sequence[MovementRow],
    window: Window,
    cost_ratio: float = 0.5,
    limit: int = 5,
) -> RoiSummary:
    exits = _exits_by_product(movements, window)
    rows = [product_roi(p, exits[p.id], cost_ratio) for p in products if exits.get(p.id, 0) > 0]
    avg = sum(r.roi for r in rows) / len(rows) if rows else 0.0
    top = sorted(rows, key=lambda r: (-r.roi, r.product_id))[:limit]
    return RoiSummary(avg_roi=avg, products_with_exits=len(rows), top_roi_products=top)


# ---- loading and composition ----

def load_products(db: Session, owner_id: int) -> List[ProductRow]:
    rows = (
        db.query(Product, Category.name)
        .outerjoin(Category, Category.id == Product.category_id)
        .filter(Product.user_id == owner_id)
        .all()
    )
    return [
        ProductRow(
            id=p.id,
            name=p.name,
            price=p.price or 0.0,
            cost=p.cost,
            stock=p.stock or 0,
            min_stock=p.min_stock or 0,
            category=category_name,
        )
        for p, category_name in rows
    ]


def load_movements(db: Session, owner_id: int, since: datetime, until: datetime) -> List[MovementRow]:
    rows = (
        db.query(
            StockMovement.id, StockMovement.product_id, StockMovement.direction,
            StockMovement.quantity, StockMovement.date, StockMovement.reverses_id,
        )
        .join(Product, Product.id == StockMovement.product_id)
        .filter(
            Product.user_id == owner_id,
            StockMovement.date > since,
            StockMovement.date <= until,
        )
        .all()
    )
    return [
        MovementRow(
            product_id=r.product_id, direction=r.direction, quantity=r.quantity, date=r.date,
            id=r.id, reverses_id=r.reverses_id,
        )
        for r in rows
    ]


def load_reversed_ids(db: Session, owner_id: int) -> List[int]:
    """Ids of every reversed movement of the owner's products, whatever the date of the reversal."""
    rows = (
        db.query(StockMovement.reverses_id)
        .join(Product, Product.id == StockMovement.product_id)
        .filter(Product.user_id == owner_id, StockMovement.reverses_id.isnot(None))
        .all()
    )
    return [r.reverses_id for r in rows]


def compute_statistics(db: Session, owner_id: int, as_of: Optional[datetime] = None) -> StatisticsReport:
    """Point-in-time inventory report for the products of ``owner_id``. Read-only."""
    as_of = as_naive_utc(as_of) or utcnow()
    days = settings.ANALYTICS_WINDOW_DAYS
    top_n = settings.ANALYTICS_TOP_N

    current = Window.trailing(as_of, days)
    previous = Window.trailing(as_of, days, offset_days=days)

    products = load_products(db, owner_id)
    movements = drop_reversals(
        load_movements(db, owner_id, since=previous.start, until=current.end),
        load_reversed_ids(db, owner_id),
    )
    logger.debug(
        "Computing statistics for owner %s: %s products, %s movements", owner_id, len(products), len(movements)
    )

    current_totals = window_totals(movements, current)
    previous_totals = window_totals(movements, previous)
    return StatisticsReport(
        as_of=as_of,
        window_days=days,
        general=general_summary(products),
        current_period=current_totals,
        previous_period=previous_totals,
        trends=movement_trends(current_totals, previous_totals),
        top_moved_products=top_moved_products(products, movements, current, limit=top_n),
        category_distribution=category_valuation(products),
        reorder_predictions=reorder_predictions(
            products, movements, current,
            window_days=days,
            horizon_days=settings.REORDER_HORIZON_DAYS,
            sentinel=settings.REORDER_SENTINEL_DAYS,
            limit=top_n,
        ),
        roi=roi_summary(products, movements, current, cost_ratio=settings.DEFAULT_COST_RATIO, limit=top_n),
    )
