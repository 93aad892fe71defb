import uuid

from django.db import models
from django.utils import timezone

from catalog.models import Product, Supplier


class Warehouse(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=255, unique=True)
    location = models.CharField(max_length=255, blank=True)
    capacity = models.PositiveIntegerField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return self.name


class StockLedgerEntry(models.Model):
    """
    Authoritative stock record for one product in one warehouse.

    ``available`` is stored for query convenience but is only ever written by
    ``save()`` together with ``quantity`` and ``reserved``.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    product = models.ForeignKey(Product, related_name="stock_entries", on_delete=models.PROTECT)
    warehouse = models.ForeignKey(Warehouse, related_name="stock_entries", on_delete=models.PROTECT)
    quantity = models.PositiveIntegerField(default=0)
    reserved = models.PositiveIntegerField(default=0)
    available = models.PositiveIntegerField(default=0)
    par_level = models.PositiveIntegerField(default=0)
    reorder_point = models.PositiveIntegerField(default=0)
    last_counted_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "warehouse_stock"
        verbose_name_plural = "Stock ledger entries"
        unique_together = ("product", "warehouse")
        constraints = [
            models.CheckConstraint(condition=models.Q(quantity__gte=0), name="stock_quantity_non_negative"),
            models.CheckConstraint(condition=models.Q(reserved__gte=0), name="stock_reserved_non_negative"),
            models.CheckConstraint(
                condition=models.Q(reserved__lte=models.F("quantity")),
                name="stock_reserved_within_quantity",
            ),
        ]
        indexes = [
            models.Index(fields=["available"], name="stock_available_idx"),
        ]

    def save(self, *args, **kwargs):
        self.available = self.quantity - self.reserved
        update_fields = kwargs.get("update_fields")
        if update_fields is not None and ({"quantity", "reserved"} & set(update_fields)):
            kwargs["update_fields"] = set(update_fields) | {"available", "updated_at"}
        super().save(*args, **kwargs)

    def __str__(self):
        return f"{self.product.sku} @ {self.warehouse.name}: {self.quantity} ({self.reserved} reserved)"


class StockMovement(models.Model):
    """Append-only journal row. Rows are never updated or deleted."""

    class MovementType(models.TextChoices):
        INBOUND = "inbound", "Inbound"
        OUTBOUND = "outbound", "Outbound"
        ADJUSTMENT = "adjustment", "Adjustment"
        RESERVATION = "reservation", "Reservation"
        RELEASE = "release", "Release"

    class ReferenceType(models.TextChoices):
        ORDER = "order", "Order"
        IMPORT = "import", "Import"
        MANUAL = "manual", "Manual"
        PURCHASE_ORDER = "purchase_order", "Purchase order"

    # Movement types that change the physical quantity on hand.
    QUANTITY_TYPES = (MovementType.INBOUND, MovementType.OUTBOUND, MovementType.ADJUSTMENT)

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    product = models.ForeignKey(Product, related_name="movements", on_delete=models.PROTECT)
    warehouse = models.ForeignKey(Warehouse, related_name="movements", on_delete=models.PROTECT)
    movement_type = models.CharField(max_length=20, choices=MovementType.choices)
    quantity = models.IntegerField()  # signed delta
    reference_type = models.CharField(max_length=30, choices=ReferenceType.choices, blank=True)
    reference_id = models.CharField(max_length=100, blank=True)
    actor = models.CharField(max_length=255, blank=True)
    notes = models.TextField(blank=True)
    requested_quantity = models.PositiveIntegerField(null=True, blank=True)
    anomaly = models.BooleanField(default=False)
    created_at = models.DateTimeField(default=timezone.now, db_index=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["product", "warehouse", "created_at"], name="movement_prod_wh_created_idx"),
            models.Index(fields=["reference_type", "reference_id"], name="movement_reference_idx"),
        ]

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValueError("Stock movements are immutable")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValueError("Stock movements are immutable")

    def __str__(self):
        return f"{self.movement_type} {self.quantity:+d} {self.product_id}"


class ImportLog(models.Model):
    class ImportType(models.TextChoices):
        INVENTORY = "inventory", "Inventory"
        SHOPIFY_ORDERS = "shopify_orders", "Shopify orders"
        ORDERS_CSV = "orders_csv", "Orders CSV"

    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        IN_PROGRESS = "in_progress", "In progress"
        COMPLETED = "completed", "Completed"
        COMPLETED_WITH_ERRORS = "completed_with_errors", "Completed with errors"
        PARTIAL = "partial", "Partial"
        FAILED = "failed", "Failed"
        STALLED = "stalled", "Stalled"

    TERMINAL_STATUSES = {
        Status.COMPLETED,
        Status.COMPLETED_WITH_ERRORS,
        Status.PARTIAL,
        Status.FAILED,
        Status.STALLED,
    }

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    import_type = models.CharField(max_length=30, choices=ImportType.choices)
    file_name = models.CharField(max_length=255, blank=True)
    status = models.CharField(max_length=30, choices=Status.choices, default=Status.PENDING)
    records_imported = models.PositiveIntegerField(default=0)
    records_failed = models.PositiveIntegerField(default=0)
    error_log = models.JSONField(default=list, blank=True)
    imported_by = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    finalized_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["import_type", "created_at"], name="importlog_type_created_idx"),
            models.Index(fields=["file_name"], name="importlog_file_name_idx"),
        ]

    @property
    def is_finalized(self) -> bool:
        return self.status in self.TERMINAL_STATUSES

    def finalize(self, status, records_imported, records_failed, error_log=None):
        if self.is_finalized:
            raise ValueError(f"Import {self.id} is already finalized as '{self.status}'")
        self.status = status
        self.records_imported = records_imported
        self.records_failed = records_failed
        self.error_log = list(error_log or [])
        self.finalized_at = timezone.now()
        self.save(update_fields=["status", "records_imported", "records_failed", "error_log", "finalized_at"])
        return self

    def __str__(self):
        return f"{self.import_type} {self.file_name} ({self.status})"


class PurchaseOrder(models.Model):
    class Status(models.TextChoices):
        DRAFT = "draft", "Draft"
        ORDERED = "ordered", "Ordered"
        PARTIALLY_RECEIVED = "partially_received", "Partially received"
        RECEIVED = "received", "Received"
        CANCELLED = "cancelled", "Cancelled"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order_number = models.CharField(max_length=50, unique=True)
    supplier = models.ForeignKey(Supplier, related_name="purchase_orders", on_delete=models.PROTECT)
    warehouse = models.ForeignKey(Warehouse, related_name="purchase_orders", on_delete=models.PROTECT)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.DRAFT)
    order_date = models.DateField(default=timezone.localdate)
    expected_delivery_date = models.DateField(null=True, blank=True)
    notes = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    @property
    def total_amount(self):
        return sum((item.total_price for item in self.items.all()), 0)

    def __str__(self):
        return self.order_number


class PurchaseOrderItem(models.Model):
    purchase_order = models.ForeignKey(PurchaseOrder, related_name="items", on_delete=models.CASCADE)
    product = models.ForeignKey(Product, related_name="purchase_order_items", on_delete=models.PROTECT)
    quantity = models.PositiveIntegerField()
    received_quantity = models.PositiveIntegerField(default=0)
    unit_price = models.DecimalField(max_digits=12, decimal_places=2)

    @property
    def outstanding(self) -> int:
        return max(0, self.quantity - self.received_quantity)

    @property
    def total_price(self):
        return self.unit_price * self.quantity

    def __str__(self):
        return f"{self.purchase_order.order_number}: {self.quantity} x {self.product.sku}"
