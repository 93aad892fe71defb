import logging
import math
from collections import OrderedDict
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional

from django.conf import settings
from django.db import transaction
from django.db.models import Count, Sum
from django.utils import timezone

from catalog.models import Product
from inventory.models import StockLedgerEntry
from order.models import Order, OrderLineItem

from .dates import day_bounds, local_today, reporting_zone, trailing_window
from .models import DailySalesSummary

logger = logging.getLogger(__name__)

CRITICAL = "critical"
WARNING = "warning"
HEALTHY = "healthy"


def sentinel_days() -> int:
    return getattr(settings, "RUNWAY_SENTINEL_DAYS", 999)


def velocity_windows():
    return tuple(getattr(settings, "VELOCITY_WINDOWS", (7, 14, 30)))


def _check_window(window_days: int):
    if window_days not in velocity_windows():
        raise ValueError(f"Unsupported velocity window {window_days}; expected one of {velocity_windows()}")


@dataclass(frozen=True)
class StockHealth:
    status: str
    label: str
    runway_days: int


def runway_days(available: int, velocity: float) -> int:
    if velocity <= 0:
        return sentinel_days()
    return math.floor(available / velocity)


def stockout_date(available: int, velocity: float, today: date) -> Optional[date]:
    if velocity <= 0:
        return None
    return today + timedelta(days=runway_days(available, velocity))


def classify_stock_health(available: int, quantity: int, par_level: int, velocity: float) -> StockHealth:
    """First matching rule wins."""
    runway = runway_days(available, velocity)
    if available == 0:
        return StockHealth(CRITICAL, "Out of Stock", runway)
    if runway <= 7:
        return StockHealth(CRITICAL, f"{runway}d remaining", runway)
    if quantity <= par_level * 0.5 or runway <= 14:
        label = f"{runway}d remaining" if runway <= 14 else "Low Stock"
        return StockHealth(WARNING, label, runway)
    if quantity <= par_level:
        return StockHealth(WARNING, "Below Par", runway)
    return StockHealth(HEALTHY, "Healthy", runway)


def _counted_line_items(start: datetime, end: datetime):
    return (
        OrderLineItem.objects.filter(
            product__isnull=False,
            order__placed_at__gte=start,
            order__placed_at__lt=end,
            order__cancelled_at__isnull=True,
        )
        .exclude(order__status=Order.Status.CANCELLED)
    )


def sales_velocity(product, window_days: int, now: datetime) -> float:
    """Units sold per day over ``[now - window_days, now)``."""
    start, end = trailing_window(now, window_days)
    units = (
        _counted_line_items(start, end)
        .filter(product_id=getattr(product, "pk", product))
        .aggregate(units=Sum("quantity"))["units"]
        or 0
    )
    return units / window_days


def update_product_velocities(now: Optional[datetime] = None) -> int:
    """Recompute the stored velocity fields of every product in one batch."""
    now = now or timezone.now()
    units_by_window = {}
    for window in velocity_windows():
        start, end = trailing_window(now, window)
        units_by_window[window] = dict(
            _counted_line_items(start, end)
            .values("product_id")
            .annotate(units=Sum("quantity"))
            .values_list("product_id", "units")
        )

    products = list(Product.objects.only("id", *(f"velocity_{window}d" for window in velocity_windows())))
    fields = []
    for window in velocity_windows():
        fields.append(f"velocity_{window}d")
        for product in products:
            setattr(product, f"velocity_{window}d", units_by_window[window].get(product.pk, 0) / window)

    with transaction.atomic():
        Product.objects.bulk_update(products, fields, batch_size=500)
    logger.info("Updated sales velocities for %s products", len(products))
    return len(products)


def stock_runway_report(now: Optional[datetime] = None, velocity_window: int = 30) -> List[Dict]:
    _check_window(velocity_window)
    today = local_today(now)
    rows = []
    entries = StockLedgerEntry.objects.select_related("product", "warehouse").filter(product__is_active=True)
    for entry in entries.order_by("product__sku", "warehouse__name"):
        velocity = entry.product.velocity_for(velocity_window)
        health = classify_stock_health(entry.available, entry.quantity, entry.par_level, velocity)
        rows.append(
            {
                "product_id": str(entry.product_id),
                "sku": entry.product.sku,
                "product_name": entry.product.name,
                "warehouse_id": str(entry.warehouse_id),
                "warehouse_name": entry.warehouse.name,
                "quantity": entry.quantity,
                "reserved": entry.reserved,
                "available": entry.available,
                "par_level": entry.par_level,
                "velocity": velocity,
                "runway_days": health.runway_days,
                "stockout_date": stockout_date(entry.available, velocity, today),
                "status": health.status,
                "label": health.label,
            }
        )
    return rows


def stockout_calendar(
    now: Optional[datetime] = None,
    velocity_window: int = 30,
    horizon_days: Optional[int] = None,
) -> "OrderedDict[date, List[Dict]]":
    """Group forecast stock-outs by date; rows without a forecastable date are left out."""
    today = local_today(now)
    calendar = OrderedDict()
    report = [row for row in stock_runway_report(now, velocity_window) if row["stockout_date"] is not None]
    for row in sorted(report, key=lambda r: (r["stockout_date"], r["sku"])):
        if horizon_days is not None and row["stockout_date"] > today + timedelta(days=horizon_days):
            continue
        calendar.setdefault(row["stockout_date"], []).append(row)
    return calendar


def recalculate_daily_summary(day: date, tz=None) -> DailySalesSummary:
    tz = tz or reporting_zone()
    start, end = day_bounds(day, tz)
    orders = Order.objects.filter(placed_at__gte=start, placed_at__lt=end, cancelled_at__isnull=True).exclude(
        status=Order.Status.CANCELLED
    )
    totals = orders.aggregate(
        order_count=Count("id"),
        product_revenue=Sum("product_revenue"),
        shipping_revenue=Sum("shipping_cost"),
        total_revenue=Sum("total_amount"),
    )
    units = (
        OrderLineItem.objects.filter(order__in=orders).aggregate(units=Sum("quantity"))["units"]
        or 0
    )
    summary, _ = DailySalesSummary.objects.update_or_create(
        summary_date=day,
        defaults={
            "order_count": totals["order_count"] or 0,
            "units_sold": units,
            "product_revenue": totals["product_revenue"] or Decimal("0.00"),
            "shipping_revenue": totals["shipping_revenue"] or Decimal("0.00"),
            "total_revenue": totals["total_revenue"] or Decimal("0.00"),
        },
    )
    return summary
