import uuid
from decimal import Decimal

from django.db import models

from catalog.models import Product


class Order(models.Model):
    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        PAID = "paid", "Paid"
        PARTIALLY_PAID = "partially_paid", "Partially paid"
        REFUNDED = "refunded", "Refunded"
        PARTIALLY_REFUNDED = "partially_refunded", "Partially refunded"
        VOIDED = "voided", "Voided"
        AUTHORIZED = "authorized", "Authorized"
        COMPLETED = "completed", "Completed"
        CANCELLED = "cancelled", "Cancelled"

    class FulfillmentStatus(models.TextChoices):
        UNFULFILLED = "unfulfilled", "Unfulfilled"
        PARTIAL = "partial", "Partial"
        FULFILLED = "fulfilled", "Fulfilled"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order_number = models.CharField(max_length=50, unique=True)
    platform_order_id = models.CharField(max_length=100, unique=True, null=True, blank=True)

    status = models.CharField(max_length=30, choices=Status.choices, default=Status.PENDING)
    fulfillment_status = models.CharField(
        max_length=20,
        choices=FulfillmentStatus.choices,
        default=FulfillmentStatus.UNFULFILLED,
    )

    customer_name = models.CharField(max_length=255, blank=True)
    customer_email = models.EmailField(blank=True)
    is_new_customer = models.BooleanField(default=False)

    total_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    product_revenue = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    shipping_cost = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    currency = models.CharField(max_length=3, default="USD")

    shipping_address = models.JSONField(null=True, blank=True)
    country_code = models.CharField(max_length=2, blank=True)

    placed_at = models.DateTimeField(db_index=True)
    fulfilled_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-placed_at"]
        indexes = [
            models.Index(fields=["status", "placed_at"], name="order_status_placed_idx"),
        ]

    @property
    def is_cancelled(self) -> bool:
        return self.status == self.Status.CANCELLED or self.cancelled_at is not None

    def __str__(self):
        return self.order_number


class OrderLineItem(models.Model):
    order = models.ForeignKey(Order, related_name="line_items", on_delete=models.CASCADE)
    # Null when the SKU did not match a catalog product.
    product = models.ForeignKey(Product, related_name="order_line_items", on_delete=models.PROTECT, null=True, blank=True)

    # Snapshot fields
    sku = models.CharField(max_length=100, blank=True)
    product_name = models.CharField(max_length=255)
    quantity = models.PositiveIntegerField()
    # Units this line item currently holds in reservations.
    reserved_quantity = models.PositiveIntegerField(default=0)
    unit_price = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    total_price = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=["sku"], name="line_item_sku_idx"),
        ]

    def __str__(self):
        return f"{self.order.order_number}: {self.quantity} x {self.sku or self.product_name}"


class ProcessedOrderEvent(models.Model):
    """Idempotency key: one stock effect per (order, event type)."""

    class EventType(models.TextChoices):
        CREATE = "create", "Create"
        FULFILLED = "fulfilled", "Fulfilled"
        CANCELLED = "cancelled", "Cancelled"

    order = models.ForeignKey(Order, related_name="processed_events", on_delete=models.CASCADE)
    event_type = models.CharField(max_length=20, choices=EventType.choices)
    processed_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        unique_together = ("order", "event_type")

    def __str__(self):
        return f"{self.order.order_number}:{self.event_type}"


class WebhookLog(models.Model):

    provider = models.CharField(max_length=50)
    topic = models.CharField(max_length=100)

    reference = models.CharField(max_length=150)
    payload = models.JSONField()

    processed = models.BooleanField(default=False)
    processing_attempts = models.IntegerField(default=0)
    error = models.TextField(blank=True)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=["reference"], name="webhook_reference_idx"),
            models.Index(fields=["processed"], name="webhook_processed_idx"),
        ]

    def __str__(self):
        return f"{self.provider} {self.topic} {self.reference}"
