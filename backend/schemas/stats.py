# backend/schemas/stats.py
from datetime import datetime
from typing import Annotated, List
from pydantic import BaseModel, ConfigDict, PlainSerializer

# Percentages and money are computed unrounded and rounded only on output
Rounded = Annotated[float, PlainSerializer(lambda v: round(v, 2), return_type=float)]


class ORMBase(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class GeneralStats(ORMBase):
    total_products: int
    low_stock_products: int
    out_of_stock_products: int
    total_stock: int
    stock_value: Rounded
    critical_stock_percentage: Rounded


class PeriodTotals(ORMBase):
    entries_count: int
    exits_count: int
    transfers_count: int
    entries_quantity: int
    exits_quantity: int
    transfers_quantity: int
    total: int


class Trends(ORMBase):
    entries_count: Rounded
    exits_count: Rounded
    transfers_count: Rounded
    entries_quantity: Rounded
    exits_quantity: Rounded
    total_movements: Rounded


class TopMovedProduct(ORMBase):
    product_id: int
    name: str
    total_quantity: int
    movement_count: int


class CategoryStock(ORMBase):
    category: str
    product_count: int
    total_stock: int
    stock_value: Rounded


class ReorderItem(ORMBase):
    product_id: int
    name: str
    current_stock: int
    min_stock: int
    avg_daily_usage: Rounded
    days_until_reorder: Rounded


class RoiProduct(ORMBase):
    product_id: int
    name: str
    total_exits: int
    total_exit_value: Rounded
    unit_cost: Rounded
    cost_basis: Rounded
    roi: Rounded


class RoiStats(ORMBase):
    avg_roi: Rounded
    products_with_exits: int
    top_roi_products: List[RoiProduct]


class RoiResponse(BaseModel):
    roi: RoiStats


class StatisticsResponse(ORMBase):
    as_of: datetime
    window_days: int
    general: GeneralStats
    current_period: PeriodTotals
    previous_period: PeriodTotals
    trends: Trends
    top_moved_products: List[TopMovedProduct]
    category_distribution: List[CategoryStock]
    reorder_predictions: List[ReorderItem]
    roi: RoiStats
