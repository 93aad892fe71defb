import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from django.db import IntegrityError, transaction
from django.db.models import Sum
from django.utils import timezone

from catalog.models import Product

from .models import PurchaseOrder, PurchaseOrderItem, StockLedgerEntry, StockMovement, Warehouse

logger = logging.getLogger(__name__)


class InventoryError(Exception):
    """Base exception for stock engine errors."""


class InsufficientStock(InventoryError):
    """Raised when a reservation asks for more than is available."""

    def __init__(self, product_id, requested: int, available: int):
        self.product_id = product_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock for product {product_id}: requested {requested}, available {available}"
        )


class StockRecordNotFound(InventoryError):
    """Raised when a product, warehouse or ledger entry does not exist."""


class InvalidQuantity(InventoryError):
    pass


ADJUST_MODES = ("add", "remove", "set")


def _validate_quantity(quantity, allow_zero=False):
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise InvalidQuantity(f"Quantity must be an integer, got {quantity!r}")
    if quantity < 0 or (quantity == 0 and not allow_zero):
        raise InvalidQuantity(f"Quantity must be {'non-negative' if allow_zero else 'positive'}, got {quantity}")


# -----------------------------
# Ledger access
# -----------------------------
def get_stock(product_id, warehouse_id) -> StockLedgerEntry:
    entry = (
        StockLedgerEntry.objects.select_related("product", "warehouse")
        .filter(product_id=product_id, warehouse_id=warehouse_id)
        .first()
    )
    if entry is None:
        raise StockRecordNotFound(f"No stock record for product {product_id} in warehouse {warehouse_id}")
    return entry


def product_stock_totals(product_id) -> Dict[str, int]:
    totals = StockLedgerEntry.objects.filter(product_id=product_id).aggregate(
        quantity=Sum("quantity"),
        reserved=Sum("reserved"),
        available=Sum("available"),
    )
    return {key: value or 0 for key, value in totals.items()}


def _ensure_exists(product_id, warehouse_id=None):
    if not Product.objects.filter(pk=product_id).exists():
        raise StockRecordNotFound(f"Product {product_id} not found")
    if warehouse_id is not None and not Warehouse.objects.filter(pk=warehouse_id).exists():
        raise StockRecordNotFound(f"Warehouse {warehouse_id} not found")


def lock_stock(product_id, warehouse_id, create=False) -> StockLedgerEntry:
    """
    Lock the ledger row for (product, warehouse) for the rest of the transaction.

    With ``create=True`` the row is created zero-initialized on first touch.
    Must be called inside ``transaction.atomic()``.
    """
    queryset = StockLedgerEntry.objects.select_for_update().filter(product_id=product_id, warehouse_id=warehouse_id)
    entry = queryset.first()
    if entry is not None:
        return entry
    if not create:
        raise StockRecordNotFound(f"No stock record for product {product_id} in warehouse {warehouse_id}")

    _ensure_exists(product_id, warehouse_id)
    try:
        with transaction.atomic():
            return StockLedgerEntry.objects.create(product_id=product_id, warehouse_id=warehouse_id)
    except IntegrityError:
        # Another writer created the row between our read and insert.
        return queryset.get()


def get_or_create_stock(product, warehouse) -> StockLedgerEntry:
    with transaction.atomic():
        return lock_stock(getattr(product, "pk", product), getattr(warehouse, "pk", warehouse), create=True)


def lock_product_stock(product_id, warehouse_id=None) -> List[StockLedgerEntry]:
    queryset = StockLedgerEntry.objects.select_for_update().filter(product_id=product_id)
    if warehouse_id is not None:
        queryset = queryset.filter(warehouse_id=warehouse_id)
    # Fixed lock order so concurrent multi-row writers cannot deadlock.
    return list(queryset.order_by("id"))


# -----------------------------
# Movement log
# -----------------------------
def record_movement(
    entry: StockLedgerEntry,
    movement_type: str,
    quantity: int,
    *,
    reference_type: str = "",
    reference_id="",
    actor: str = "",
    notes: str = "",
    anomaly: bool = False,
    requested_quantity: Optional[int] = None,
) -> StockMovement:
    return StockMovement.objects.create(
        product_id=entry.product_id,
        warehouse_id=entry.warehouse_id,
        movement_type=movement_type,
        quantity=quantity,
        reference_type=reference_type,
        reference_id=str(reference_id or ""),
        actor=actor or "",
        notes=notes or "",
        anomaly=anomaly,
        requested_quantity=requested_quantity,
    )


def movement_history(product_id=None, warehouse_id=None, start=None, end=None):
    queryset = StockMovement.objects.select_related("product", "warehouse")
    if product_id:
        queryset = queryset.filter(product_id=product_id)
    if warehouse_id:
        queryset = queryset.filter(warehouse_id=warehouse_id)
    if start:
        queryset = queryset.filter(created_at__gte=start)
    if end:
        queryset = queryset.filter(created_at__lt=end)
    return queryset.order_by("-created_at", "-id")


@dataclass(frozen=True)
class ReconciliationResult:
    product_id: object
    warehouse_id: object
    ledger_quantity: int
    movement_total: int

    @property
    def difference(self) -> int:
        return self.ledger_quantity - self.movement_total

    @property
    def is_consistent(self) -> bool:
        return self.difference == 0


def reconcile(product_id, warehouse_id) -> ReconciliationResult:
    entry = get_stock(product_id, warehouse_id)
    movement_total = (
        StockMovement.objects.filter(
            product_id=product_id,
            warehouse_id=warehouse_id,
            movement_type__in=StockMovement.QUANTITY_TYPES,
        ).aggregate(total=Sum("quantity"))["total"]
        or 0
    )
    return ReconciliationResult(
        product_id=product_id,
        warehouse_id=warehouse_id,
        ledger_quantity=entry.quantity,
        movement_total=movement_total,
    )


# -----------------------------
# Row-level primitives
# -----------------------------
class InventoryService:
    """
    Mutations of a single ledger row. The caller must hold the row lock
    (see ``lock_stock`` / ``lock_product_stock``) inside an atomic block.

    Movement deltas are signed from the point of view of available stock:
    reservations and outbound movements are negative, releases and inbound
    movements are positive.
    """

    @staticmethod
    def reserve_stock(entry: StockLedgerEntry, qty: int, **reference) -> StockLedgerEntry:
        available = entry.quantity - entry.reserved
        if qty > available:
            raise InsufficientStock(entry.product_id, qty, available)
        entry.reserved += qty
        entry.save(update_fields=["reserved"])
        record_movement(entry, StockMovement.MovementType.RESERVATION, -qty, **reference)
        return entry

    @staticmethod
    def release_stock(entry: StockLedgerEntry, qty: int, **reference) -> int:
        released = min(qty, entry.reserved)
        if released <= 0:
            return 0
        entry.reserved -= released
        entry.save(update_fields=["reserved"])
        record_movement(entry, StockMovement.MovementType.RELEASE, released, **reference)
        return released

    @staticmethod
    def deduct_stock(
        entry: StockLedgerEntry,
        qty: int,
        *,
        reserved_qty: Optional[int] = None,
        anomaly: bool = False,
        requested_quantity: Optional[int] = None,
        **reference,
    ) -> int:
        """
        Ship ``qty`` units from the row. ``reserved_qty`` of them come out of
        reservations (all of them by default); the rest must be unreserved.
        """
        removed = min(qty, entry.quantity)
        if reserved_qty is None:
            reserved_qty = qty
        entry.reserved -= min(reserved_qty, entry.reserved)
        entry.quantity -= removed
        entry.save(update_fields=["quantity", "reserved"])
        record_movement(
            entry,
            StockMovement.MovementType.OUTBOUND,
            -removed,
            anomaly=anomaly,
            requested_quantity=requested_quantity,
            **reference,
        )
        return removed

    @staticmethod
    def receive_stock(entry: StockLedgerEntry, qty: int, **reference) -> StockLedgerEntry:
        entry.quantity += qty
        entry.save(update_fields=["quantity"])
        record_movement(entry, StockMovement.MovementType.INBOUND, qty, **reference)
        return entry


# -----------------------------
# Reservation engine
# -----------------------------
class StockManager:
    """
    Product-level stock operations. Each call is one transaction: the
    product's ledger rows are locked, the decision is taken on the locked
    values, and the rows and their movements are written before commit.
    """

    @staticmethod
    def reserve(
        product_id,
        quantity: int,
        *,
        warehouse_id=None,
        reference_type: str = "",
        reference_id="",
        actor: str = "",
    ) -> List[StockLedgerEntry]:
        _validate_quantity(quantity)
        reference = {"reference_type": reference_type, "reference_id": reference_id, "actor": actor}
        with transaction.atomic():
            entries = lock_product_stock(product_id, warehouse_id)
            if not entries:
                _ensure_exists(product_id, warehouse_id)
            total_available = sum(entry.quantity - entry.reserved for entry in entries)
            if quantity > total_available:
                raise InsufficientStock(product_id, quantity, total_available)

            touched = []
            remaining = quantity
            for entry in sorted(entries, key=lambda e: e.reserved - e.quantity):
                if remaining == 0:
                    break
                take = min(remaining, entry.quantity - entry.reserved)
                if take <= 0:
                    continue
                InventoryService.reserve_stock(entry, take, notes=f"Reserved {take} units", **reference)
                touched.append(entry)
                remaining -= take
        return touched

    @staticmethod
    def release(
        product_id,
        quantity: int,
        *,
        warehouse_id=None,
        reference_type: str = "",
        reference_id="",
        actor: str = "",
    ) -> int:
        _validate_quantity(quantity)
        reference = {"reference_type": reference_type, "reference_id": reference_id, "actor": actor}
        with transaction.atomic():
            entries = lock_product_stock(product_id, warehouse_id)
            if not entries:
                _ensure_exists(product_id, warehouse_id)
            released = 0
            for entry in sorted(entries, key=lambda e: -e.reserved):
                if released == quantity:
                    break
                released += InventoryService.release_stock(
                    entry, quantity - released, notes="Reservation released", **reference
                )
        if released < quantity:
            logger.info(
                "Release for product=%s clamped: requested %s, released %s", product_id, quantity, released
            )
        return released

    @staticmethod
    def deduct(
        product_id,
        quantity: int,
        *,
        from_reserved: Optional[int] = None,
        warehouse_id=None,
        reference_type: str = "",
        reference_id="",
        actor: str = "",
    ) -> int:
        """
        Ship ``quantity`` units of a product.

        ``from_reserved`` caps how many units are taken out of reservations
        before unreserved stock is used; by default the whole quantity may
        be. Reservations beyond that cap are only consumed when unreserved
        stock cannot cover the shipment, and a shortfall beyond stock on hand
        is clamped at zero and flagged as an anomaly.
        """
        _validate_quantity(quantity)
        own_reserved = quantity if from_reserved is None else max(0, min(from_reserved, quantity))
        reference = {"reference_type": reference_type, "reference_id": reference_id, "actor": actor}
        with transaction.atomic():
            entries = lock_product_stock(product_id, warehouse_id)
            if not entries:
                _ensure_exists(product_id, warehouse_id)
                raise StockRecordNotFound(f"No stock record for product {product_id}")

            from_reservations: Dict[object, int] = {}
            from_free: Dict[object, int] = {}
            remaining = quantity

            own = own_reserved
            for entry in sorted(entries, key=lambda e: -e.reserved):
                take = min(own, remaining, entry.reserved)
                if take > 0:
                    from_reservations[entry.pk] = take
                    own -= take
                    remaining -= take
            for entry in sorted(entries, key=lambda e: e.reserved - e.quantity):
                take = min(remaining, entry.quantity - entry.reserved)
                if take > 0:
                    from_free[entry.pk] = take
                    remaining -= take
            if remaining:
                for entry in sorted(entries, key=lambda e: from_reservations.get(e.pk, 0) - e.reserved):
                    take = min(remaining, entry.reserved - from_reservations.get(entry.pk, 0))
                    if take > 0:
                        logger.warning(
                            "Deduct for product=%s consumes %s units reserved by other orders in warehouse=%s",
                            product_id, take, entry.warehouse_id,
                        )
                        from_reservations[entry.pk] = from_reservations.get(entry.pk, 0) + take
                        remaining -= take

            shortfall = remaining
            if shortfall:
                logger.warning(
                    "Deduct for product=%s exceeds stock on hand by %s units (requested %s); clamping at zero",
                    product_id, shortfall, quantity,
                )

            planned = any(from_reservations.values()) or any(from_free.values())
            deducted = 0
            anomaly_recorded = False
            for entry in entries:
                reserved_part = from_reservations.get(entry.pk, 0)
                take = reserved_part + from_free.get(entry.pk, 0)
                if take == 0 and (anomaly_recorded or not shortfall or planned):
                    continue
                flag = bool(shortfall) and not anomaly_recorded
                notes = "Order fulfilled"
                if flag:
                    notes = f"Order fulfilled; {shortfall} units short of requested {quantity}"
                deducted += InventoryService.deduct_stock(
                    entry,
                    take,
                    reserved_qty=reserved_part,
                    anomaly=flag,
                    requested_quantity=quantity if flag else None,
                    notes=notes,
                    **reference,
                )
                anomaly_recorded = anomaly_recorded or flag
        return deducted

    @staticmethod
    def adjust(
        product_id,
        warehouse_id,
        mode: str,
        quantity: int,
        note: Optional[str] = None,
        *,
        actor: str = "",
    ) -> StockLedgerEntry:
        if mode not in ADJUST_MODES:
            raise InvalidQuantity(f"Unknown adjustment mode '{mode}'; expected one of {', '.join(ADJUST_MODES)}")
        _validate_quantity(quantity, allow_zero=True)

        with transaction.atomic():
            entry = lock_stock(product_id, warehouse_id, create=True)
            previous = entry.quantity
            over_removal = False
            if mode == "add":
                new_quantity = previous + quantity
                movement_type = StockMovement.MovementType.INBOUND
            elif mode == "remove":
                over_removal = quantity > previous
                new_quantity = max(0, previous - quantity)
                movement_type = StockMovement.MovementType.ADJUSTMENT
            else:
                new_quantity = quantity
                movement_type = StockMovement.MovementType.ADJUSTMENT
                entry.last_counted_at = timezone.now()

            if over_removal:
                logger.info(
                    "Manual removal of %s units from product=%s warehouse=%s exceeds stock %s; floored at zero",
                    quantity, product_id, warehouse_id, previous,
                )
            clamped = max(0, entry.reserved - new_quantity)
            if clamped:
                logger.warning(
                    "Adjustment of product=%s warehouse=%s drops quantity below reserved (%s); clamping reserved to %s",
                    product_id, warehouse_id, entry.reserved, new_quantity,
                )
                entry.reserved = new_quantity

            entry.quantity = new_quantity
            entry.save()
            record_movement(
                entry,
                movement_type,
                new_quantity - previous,
                reference_type=StockMovement.ReferenceType.MANUAL,
                actor=actor,
                notes=note or f"Manual {mode} adjustment",
                anomaly=over_removal,
                requested_quantity=quantity if mode == "remove" else None,
            )
            if clamped:
                record_movement(
                    entry,
                    StockMovement.MovementType.RELEASE,
                    clamped,
                    reference_type=StockMovement.ReferenceType.MANUAL,
                    actor=actor,
                    notes=f"Reservation clamped by manual {mode} adjustment",
                )
        return entry

    @staticmethod
    def receive_purchase_order(
        purchase_order: PurchaseOrder,
        received: Optional[Dict[object, int]] = None,
        *,
        actor: str = "",
    ) -> PurchaseOrder:
        """
        Book received purchase order lines into the PO's warehouse.

        ``received`` maps item id to units received; when omitted every line
        is received in full.
        """
        with transaction.atomic():
            po = PurchaseOrder.objects.select_for_update().get(pk=purchase_order.pk)
            if po.status in {PurchaseOrder.Status.CANCELLED, PurchaseOrder.Status.RECEIVED}:
                raise InventoryError(f"Purchase order {po.order_number} cannot be received in status '{po.status}'")

            items = list(PurchaseOrderItem.objects.select_for_update().filter(purchase_order=po).order_by("id"))
            if received is None:
                received = {item.pk: item.outstanding for item in items}
            received = {str(key): value for key, value in received.items()}

            for item in items:
                qty = received.get(str(item.pk), 0)
                if not qty:
                    continue
                _validate_quantity(qty)
                if qty > item.outstanding:
                    raise InvalidQuantity(
                        f"Cannot receive {qty} units of {item.product_id}; only {item.outstanding} outstanding"
                    )
                entry = lock_stock(item.product_id, po.warehouse_id, create=True)
                InventoryService.receive_stock(
                    entry,
                    qty,
                    reference_type=StockMovement.ReferenceType.PURCHASE_ORDER,
                    reference_id=po.pk,
                    actor=actor,
                    notes=f"Received against {po.order_number}",
                )
                item.received_quantity += qty
                item.save(update_fields=["received_quantity"])

            if all(item.outstanding == 0 for item in items):
                po.status = PurchaseOrder.Status.RECEIVED
            elif any(item.received_quantity for item in items):
                po.status = PurchaseOrder.Status.PARTIALLY_RECEIVED
            po.save(update_fields=["status", "updated_at"])
        return po


# Module-level entry points used by order handlers and views.
reserve = StockManager.reserve
release = StockManager.release
deduct = StockManager.deduct
adjust = StockManager.adjust
