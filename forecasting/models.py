import uuid
from decimal import Decimal

from django.db import models


class DailySalesSummary(models.Model):
    """Pre-aggregated sales for one local reporting day."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    summary_date = models.DateField(unique=True)
    order_count = models.PositiveIntegerField(default=0)
    units_sold = models.PositiveIntegerField(default=0)
    product_revenue = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))
    shipping_revenue = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))
    total_revenue = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-summary_date"]
        verbose_name_plural = "Daily sales summaries"

    def __str__(self):
        return f"{self.summary_date}: {self.order_count} orders"
