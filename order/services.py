import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone as dt_timezone
from decimal import Decimal, InvalidOperation
from typing import Dict, Iterable, List, Optional, Tuple

from django.db import DatabaseError, IntegrityError, transaction
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from catalog.models import Product
from core.retry import with_store_retry
from forecasting.dates import reporting_zone
from forecasting.services import recalculate_daily_summary
from inventory.models import ImportLog, StockMovement
from inventory.services import InsufficientStock, InventoryError, StockManager

from .models import Order, OrderLineItem, ProcessedOrderEvent

logger = logging.getLogger(__name__)

SHOPIFY_ACTOR = "shopify"
CENTS = Decimal("0.01")


class OrderIngestionError(Exception):
    """Raised when an incoming order record cannot be normalized or stored."""


@dataclass(frozen=True)
class NormalizedLineItem:
    sku: str
    name: str
    quantity: int
    unit_price: Decimal = Decimal("0.00")

    @property
    def total_price(self) -> Decimal:
        return (self.unit_price * self.quantity).quantize(CENTS)


@dataclass(frozen=True)
class NormalizedOrder:
    order_number: str
    placed_at: datetime
    platform_order_id: Optional[str] = None
    line_items: Tuple[NormalizedLineItem, ...] = ()
    status: str = Order.Status.PENDING
    fulfillment_status: str = Order.FulfillmentStatus.UNFULFILLED
    fulfilled_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    total_amount: Decimal = Decimal("0.00")
    product_revenue: Decimal = Decimal("0.00")
    shipping_cost: Decimal = Decimal("0.00")
    currency: str = "USD"
    customer_name: str = ""
    customer_email: str = ""
    is_new_customer: bool = False
    shipping_address: Optional[dict] = field(default=None, hash=False)
    country_code: str = ""

    def order_fields(self) -> Dict:
        return {
            "order_number": self.order_number,
            "platform_order_id": self.platform_order_id,
            "status": self.status,
            "fulfillment_status": self.fulfillment_status,
            "placed_at": self.placed_at,
            "fulfilled_at": self.fulfilled_at,
            "cancelled_at": self.cancelled_at,
            "total_amount": self.total_amount,
            "product_revenue": self.product_revenue,
            "shipping_cost": self.shipping_cost,
            "currency": self.currency,
            "customer_name": self.customer_name,
            "customer_email": self.customer_email,
            "is_new_customer": self.is_new_customer,
            "shipping_address": self.shipping_address,
            "country_code": self.country_code,
        }


# -----------------------------
# Normalization
# -----------------------------
def _money(value) -> Decimal:
    if value in (None, ""):
        return Decimal("0.00")
    try:
        return Decimal(str(value)).quantize(CENTS)
    except (InvalidOperation, ValueError):
        raise OrderIngestionError(f"Invalid amount {value!r}")


def _instant(value, required=False) -> Optional[datetime]:
    if value in (None, ""):
        if required:
            raise OrderIngestionError("Order is missing its placement time")
        return None
    parsed = parse_datetime(str(value).strip().replace(" UTC", "+00:00").replace(" +", "+").replace(" -", "-"))
    if parsed is None:
        raise OrderIngestionError(f"Invalid timestamp {value!r}")
    if timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed, dt_timezone.utc)
    return parsed


def _quantity(value) -> int:
    try:
        quantity = int(value)
    except (TypeError, ValueError):
        raise OrderIngestionError(f"Invalid line item quantity {value!r}")
    if quantity < 0:
        raise OrderIngestionError(f"Line item quantity must not be negative, got {quantity}")
    return quantity


def _order_number(value) -> str:
    number = str(value or "").strip().lstrip("#")
    if not number:
        raise OrderIngestionError("Order is missing its order number")
    return number


def normalize_status(value, cancelled_at=None) -> str:
    if cancelled_at is not None:
        return Order.Status.CANCELLED
    status = str(value or "").strip().lower()
    return status if status in Order.Status.values else Order.Status.PENDING


def normalize_fulfillment_status(value) -> str:
    status = str(value or "").strip().lower()
    if status == "fulfilled":
        return Order.FulfillmentStatus.FULFILLED
    if status in {"partial", "partially_fulfilled"}:
        return Order.FulfillmentStatus.PARTIAL
    return Order.FulfillmentStatus.UNFULFILLED


def normalize_shopify_order(payload: Dict) -> NormalizedOrder:
    """Normalize an order in the Admin REST/webhook shape."""
    if not isinstance(payload, dict):
        raise OrderIngestionError("Order payload must be an object")

    customer = payload.get("customer") or {}
    shipping_address = payload.get("shipping_address") or None
    cancelled_at = _instant(payload.get("cancelled_at"))
    shipping = ((payload.get("total_shipping_price_set") or {}).get("shop_money") or {}).get("amount")

    line_items = []
    for item in payload.get("line_items") or []:
        sku = item.get("sku") or (str(item["variant_id"]) if item.get("variant_id") else "")
        line_items.append(
            NormalizedLineItem(
                sku=sku,
                name=item.get("name") or item.get("title") or sku,
                quantity=_quantity(item.get("quantity", 0)),
                unit_price=_money(item.get("price")),
            )
        )

    name = " ".join(part for part in (customer.get("first_name"), customer.get("last_name")) if part).strip()
    platform_id = payload.get("id")
    return NormalizedOrder(
        order_number=_order_number(payload.get("order_number") or payload.get("name")),
        platform_order_id=str(platform_id) if platform_id else None,
        placed_at=_instant(payload.get("created_at")) or timezone.now(),
        line_items=tuple(line_items),
        status=normalize_status(payload.get("financial_status"), cancelled_at),
        fulfillment_status=normalize_fulfillment_status(payload.get("fulfillment_status")),
        fulfilled_at=None,
        cancelled_at=cancelled_at,
        total_amount=_money(payload.get("total_price")),
        product_revenue=_money(payload.get("subtotal_price")),
        shipping_cost=_money(shipping),
        currency=payload.get("currency") or "USD",
        customer_name=name or "Guest",
        customer_email=customer.get("email") or payload.get("email") or "",
        is_new_customer=customer.get("orders_count") == 1,
        shipping_address=shipping_address,
        country_code=(shipping_address or {}).get("country_code") or "",
    )


def _shop_money(node, key):
    return ((node.get(key) or {}).get("shopMoney") or {})


def normalize_bulk_order(node: Dict) -> NormalizedOrder:
    """Normalize an order from a GraphQL bulk export (line items under ``lineItems``)."""
    customer = node.get("customer") or {}
    shipping_address = node.get("shippingAddress") or None
    cancelled_at = _instant(node.get("cancelledAt"))
    fulfillment = str(node.get("displayFulfillmentStatus") or "")

    line_items = []
    for item in node.get("lineItems") or []:
        line_items.append(
            NormalizedLineItem(
                sku=item.get("sku") or "",
                name=item.get("name") or item.get("sku") or "",
                quantity=_quantity(item.get("quantity", 0)),
                unit_price=_money(_shop_money(item, "originalUnitPriceSet").get("amount")),
            )
        )

    name = " ".join(part for part in (customer.get("firstName"), customer.get("lastName")) if part).strip()
    fulfillment_status = normalize_fulfillment_status(fulfillment)
    return NormalizedOrder(
        order_number=_order_number(node.get("name")),
        platform_order_id=str(node.get("legacyResourceId") or node.get("id") or "") or None,
        placed_at=_instant(node.get("createdAt"), required=True),
        line_items=tuple(line_items),
        status=normalize_status(node.get("displayFinancialStatus"), cancelled_at),
        fulfillment_status=fulfillment_status,
        # The export has no fulfilment timestamp; the last update is the closest record.
        fulfilled_at=_instant(node.get("updatedAt")) if fulfillment_status == Order.FulfillmentStatus.FULFILLED else None,
        cancelled_at=cancelled_at,
        total_amount=_money(_shop_money(node, "currentTotalPriceSet").get("amount")),
        product_revenue=_money(_shop_money(node, "currentSubtotalPriceSet").get("amount")),
        shipping_cost=_money(_shop_money(node, "currentShippingPriceSet").get("amount")),
        currency=_shop_money(node, "currentTotalPriceSet").get("currencyCode") or "USD",
        customer_name=name or "Guest",
        customer_email=customer.get("email") or node.get("email") or "",
        is_new_customer=customer.get("numberOfOrders") in (1, "1"),
        shipping_address=shipping_address,
        country_code=(shipping_address or {}).get("countryCodeV2") or "",
    )


def normalize_csv_orders(rows: Iterable[Dict[str, str]]) -> Tuple[List[NormalizedOrder], List[Dict]]:
    """
    Group rows of a Shopify order export CSV into orders.

    Order-level columns are read from the first row of each order (the one
    with ``Financial Status``); every row with a ``Lineitem name`` adds a
    line item. An order with a malformed line item is rejected as a whole.
    Returns the orders and a list of per-order errors.
    """
    headers: Dict[str, Dict] = {}
    items: Dict[str, List[NormalizedLineItem]] = {}
    errors = []
    rejected = set()

    for index, row in enumerate(rows, start=1):
        raw_number = (row.get("Name") or "").strip()
        if not raw_number:
            continue
        number = raw_number.lstrip("#")
        if number not in headers and row.get("Financial Status"):
            headers[number] = row
        if (row.get("Lineitem name") or "").strip():
            try:
                items.setdefault(number, []).append(
                    NormalizedLineItem(
                        sku=row.get("Lineitem sku") or "",
                        name=row["Lineitem name"],
                        quantity=_quantity(row.get("Lineitem quantity") or 1),
                        unit_price=_money(row.get("Lineitem price")),
                    )
                )
            except OrderIngestionError as exc:
                errors.append({"order": number, "row": index, "error": str(exc)})
                rejected.add(number)

    orders = []
    for number, row in headers.items():
        if number in rejected:
            continue
        try:
            cancelled_at = _instant(row.get("Cancelled at"))
            financial = (row.get("Financial Status") or "").strip().lower()
            orders.append(
                NormalizedOrder(
                    order_number=number,
                    platform_order_id=(row.get("Id") or "").strip() or None,
                    placed_at=_instant(row.get("Created at")) or timezone.now(),
                    line_items=tuple(items.get(number, [])),
                    status=Order.Status.COMPLETED if financial == "paid" and not cancelled_at
                    else normalize_status(financial, cancelled_at),
                    fulfillment_status=normalize_fulfillment_status(row.get("Fulfillment Status")),
                    fulfilled_at=_instant(row.get("Fulfilled at")),
                    cancelled_at=cancelled_at,
                    total_amount=_money(row.get("Total")),
                    product_revenue=_money(row.get("Subtotal")),
                    shipping_cost=_money(row.get("Shipping")),
                    currency=row.get("Currency") or "USD",
                    customer_name=row.get("Billing Name") or row.get("Shipping Name") or "",
                    customer_email=row.get("Email") or "",
                    country_code=(row.get("Billing Country") or "")[:2],
                )
            )
        except OrderIngestionError as exc:
            errors.append({"order": number, "error": str(exc)})
    return orders, errors


# -----------------------------
# Storage
# -----------------------------
def _find_order(normalized: NormalizedOrder, lock=False) -> Optional[Order]:
    queryset = Order.objects.select_for_update() if lock else Order.objects.all()
    order = queryset.filter(order_number=normalized.order_number).first()
    if order is None and normalized.platform_order_id:
        order = queryset.filter(platform_order_id=normalized.platform_order_id).first()
    return order


def _create_line_items(order: Order, line_items: Iterable[NormalizedLineItem]):
    line_items = list(line_items)
    products = Product.objects.in_bulk([item.sku for item in line_items if item.sku], field_name="sku")
    OrderLineItem.objects.bulk_create(
        [
            OrderLineItem(
                order=order,
                product=products.get(item.sku),
                sku=item.sku or "UNKNOWN",
                product_name=item.name,
                quantity=item.quantity,
                unit_price=item.unit_price,
                total_price=item.total_price,
            )
            for item in line_items
        ]
    )


def _merge(order: Order, normalized: NormalizedOrder):
    # Cancellation and fulfilment are sticky; a late or re-delivered event never reverts them.
    if not order.is_cancelled:
        order.status = normalized.status
    if order.fulfillment_status != Order.FulfillmentStatus.FULFILLED:
        order.fulfillment_status = normalized.fulfillment_status
    order.fulfilled_at = order.fulfilled_at or normalized.fulfilled_at
    order.cancelled_at = order.cancelled_at or normalized.cancelled_at
    order.platform_order_id = order.platform_order_id or normalized.platform_order_id
    for attr in (
        "total_amount", "product_revenue", "shipping_cost", "currency",
        "customer_name", "customer_email", "shipping_address", "country_code",
    ):
        setattr(order, attr, getattr(normalized, attr))
    order.save()


@with_store_retry
def upsert_order(normalized: NormalizedOrder) -> Tuple[Order, bool]:
    """
    Insert the order or update the stored one, keyed by order number.

    Line items are written only when the order is created, so re-delivery
    never duplicates them.
    """
    with transaction.atomic():
        order = _find_order(normalized, lock=True)
        if order is not None:
            _merge(order, normalized)
            return order, False
        try:
            with transaction.atomic():
                order = Order.objects.create(**normalized.order_fields())
        except IntegrityError:
            order = _find_order(normalized, lock=True)
            if order is None:
                raise
            _merge(order, normalized)
            return order, False
        _create_line_items(order, normalized.line_items)
    logger.info("Created order %s with %s line items", order.order_number, len(normalized.line_items))
    return order, True


@with_store_retry
def apply_order_event(order: Order, event_type: str, *, actor: str = SHOPIFY_ACTOR) -> bool:
    """
    Apply the stock effect of an order event once.

    The ``(order, event_type)`` key is claimed in the same transaction as
    the stock changes. Returns False when the event was already applied.
    """
    EventType = ProcessedOrderEvent.EventType
    if event_type not in EventType.values:
        raise OrderIngestionError(f"Unknown order event '{event_type}'")

    with transaction.atomic():
        order = Order.objects.select_for_update().get(pk=order.pk)
        _, claimed = ProcessedOrderEvent.objects.get_or_create(order=order, event_type=event_type)
        if not claimed:
            logger.info("Order %s event %s already applied; skipping", order.order_number, event_type)
            return False

        seen = set(order.processed_events.values_list("event_type", flat=True))
        if event_type == EventType.CANCELLED and EventType.FULFILLED in seen:
            logger.info("Order %s cancelled after fulfilment; stock unchanged", order.order_number)
            return True
        if event_type == EventType.FULFILLED and EventType.CANCELLED in seen:
            logger.info("Order %s fulfilled after cancellation; stock unchanged", order.order_number)
            return True
        if event_type == EventType.CANCELLED and EventType.CREATE not in seen:
            logger.info("Order %s never reserved stock; nothing to release", order.order_number)
            return True

        reference = {
            "reference_type": StockMovement.ReferenceType.ORDER,
            "reference_id": order.order_number,
            "actor": actor,
        }
        for item in order.line_items.filter(product__isnull=False, quantity__gt=0).order_by("id"):
            held = item.reserved_quantity
            try:
                if event_type == EventType.CREATE:
                    StockManager.reserve(item.product_id, item.quantity, **reference)
                    held = item.quantity
                elif event_type == EventType.FULFILLED:
                    StockManager.deduct(item.product_id, item.quantity, from_reserved=held, **reference)
                    held = 0
                elif held:
                    StockManager.release(item.product_id, held, **reference)
                    held = 0
                else:
                    logger.info(
                        "Order %s: %s holds no reservation; nothing to release", order.order_number, item.sku
                    )
            except InsufficientStock as exc:
                logger.warning(
                    "Order %s: could not reserve %s x %s (available %s); order kept without reservation",
                    order.order_number, exc.requested, item.sku, exc.available,
                )
            except InventoryError as exc:
                logger.warning("Order %s: %s for %s failed: %s", order.order_number, event_type, item.sku, exc)
            if held != item.reserved_quantity:
                item.reserved_quantity = held
                item.save(update_fields=["reserved_quantity"])
    return True


def _mark_fulfilled(order: Order, fulfilled_at=None):
    order.fulfillment_status = Order.FulfillmentStatus.FULFILLED
    order.fulfilled_at = order.fulfilled_at or fulfilled_at or timezone.now()
    order.save(update_fields=["fulfillment_status", "fulfilled_at", "updated_at"])


def _mark_cancelled(order: Order, cancelled_at=None):
    order.status = Order.Status.CANCELLED
    order.cancelled_at = order.cancelled_at or cancelled_at or timezone.now()
    order.save(update_fields=["status", "cancelled_at", "updated_at"])


def handle_webhook(topic: str, payload: Dict) -> Optional[Order]:
    """Route an order webhook delivery to its stock effect."""
    EventType = ProcessedOrderEvent.EventType

    if topic == "orders/create":
        order, _ = upsert_order(normalize_shopify_order(payload))
        apply_order_event(order, EventType.CREATE)
    elif topic == "orders/fulfilled":
        normalized = normalize_shopify_order(payload)
        order, _ = upsert_order(normalized)
        _mark_fulfilled(order, normalized.fulfilled_at)
        apply_order_event(order, EventType.FULFILLED)
    elif topic == "orders/cancelled":
        normalized = normalize_shopify_order(payload)
        order, _ = upsert_order(normalized)
        _mark_cancelled(order, normalized.cancelled_at)
        apply_order_event(order, EventType.CANCELLED)
    elif topic == "orders/updated":
        normalized = normalize_shopify_order(payload)
        order = _find_order(normalized)
        if order is None:
            logger.info("orders/updated for unknown order %s; ignored", normalized.order_number)
            return None
        if not order.is_cancelled:
            order.status = normalized.status
        if order.fulfillment_status != Order.FulfillmentStatus.FULFILLED:
            order.fulfillment_status = normalized.fulfillment_status
        order.total_amount = normalized.total_amount
        order.product_revenue = normalized.product_revenue
        order.shipping_cost = normalized.shipping_cost
        order.save(update_fields=[
            "status", "fulfillment_status", "total_amount", "product_revenue", "shipping_cost", "updated_at",
        ])
    else:
        logger.info("Unhandled webhook topic: %s", topic)
        return None
    return order


def ingest_orders(
    normalized_orders: Iterable[NormalizedOrder],
    import_log: ImportLog,
    errors: Optional[List[Dict]] = None,
) -> ImportLog:
    """
    Store a batch of historical orders and finalize the import log.

    Imported orders are history only and do not reserve stock.
    """
    errors = list(errors or [])
    imported = 0
    days = set()
    zone = reporting_zone()
    for normalized in normalized_orders:
        try:
            upsert_order(normalized)
            imported += 1
            days.add(timezone.localtime(normalized.placed_at, zone).date())
        except (OrderIngestionError, DatabaseError) as exc:
            logger.warning("Import %s: order %s failed: %s", import_log.pk, normalized.order_number, exc)
            errors.append({"order": normalized.order_number, "error": str(exc)})

    for day in sorted(days):
        recalculate_daily_summary(day, zone)

    status = ImportLog.Status.COMPLETED_WITH_ERRORS if errors else ImportLog.Status.COMPLETED
    import_log.finalize(status, imported, len(errors), errors)
    logger.info("Import %s finalized as %s: %s imported, %s failed", import_log.pk, status, imported, len(errors))
    return import_log
