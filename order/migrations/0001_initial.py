from decimal import Decimal

from django.db import migrations, models
import django.db.models.deletion
import uuid


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("catalog", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="Order",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("order_number", models.CharField(max_length=50, unique=True)),
                ("platform_order_id", models.CharField(blank=True, max_length=100, null=True, unique=True)),
                ("status", models.CharField(choices=[("pending", "Pending"), ("paid", "Paid"), ("partially_paid", "Partially paid"), ("refunded", "Refunded"), ("partially_refunded", "Partially refunded"), ("voided", "Voided"), ("authorized", "Authorized"), ("completed", "Completed"), ("cancelled", "Cancelled")], default="pending", max_length=30)),
                ("fulfillment_status", models.CharField(choices=[("unfulfilled", "Unfulfilled"), ("partial", "Partial"), ("fulfilled", "Fulfilled")], default="unfulfilled", max_length=20)),
                ("customer_name", models.CharField(blank=True, max_length=255)),
                ("customer_email", models.EmailField(blank=True, max_length=254)),
                ("is_new_customer", models.BooleanField(default=False)),
                ("total_amount", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=12)),
                ("product_revenue", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=12)),
                ("shipping_cost", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=12)),
                ("currency", models.CharField(default="USD", max_length=3)),
                ("shipping_address", models.JSONField(blank=True, null=True)),
                ("country_code", models.CharField(blank=True, max_length=2)),
                ("placed_at", models.DateTimeField(db_index=True)),
                ("fulfilled_at", models.DateTimeField(blank=True, null=True)),
                ("cancelled_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "ordering": ["-placed_at"],
                "indexes": [models.Index(fields=["status", "placed_at"], name="order_status_placed_idx")],
            },
        ),
        migrations.CreateModel(
            name="OrderLineItem",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("sku", models.CharField(blank=True, max_length=100)),
                ("product_name", models.CharField(max_length=255)),
                ("quantity", models.PositiveIntegerField()),
                ("unit_price", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=12)),
                ("total_price", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=12)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("order", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="line_items", to="order.order")),
                ("product", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name="order_line_items", to="catalog.product")),
            ],
            options={
                "indexes": [models.Index(fields=["sku"], name="line_item_sku_idx")],
            },
        ),
        migrations.CreateModel(
            name="ProcessedOrderEvent",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("event_type", models.CharField(choices=[("create", "Create"), ("fulfilled", "Fulfilled"), ("cancelled", "Cancelled")], max_length=20)),
                ("processed_at", models.DateTimeField(auto_now_add=True)),
                ("order", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="processed_events", to="order.order")),
            ],
            options={
                "unique_together": {("order", "event_type")},
            },
        ),
        migrations.CreateModel(
            name="WebhookLog",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("provider", models.CharField(max_length=50)),
                ("topic", models.CharField(max_length=100)),
                ("reference", models.CharField(max_length=150)),
                ("payload", models.JSONField()),
                ("processed", models.BooleanField(default=False)),
                ("processing_attempts", models.IntegerField(default=0)),
                ("error", models.TextField(blank=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={
                "indexes": [
                    models.Index(fields=["reference"], name="webhook_reference_idx"),
                    models.Index(fields=["processed"], name="webhook_processed_idx"),
                ],
            },
        ),
    ]
