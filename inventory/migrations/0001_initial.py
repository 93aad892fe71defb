from django.db import migrations, models
import django.db.models.deletion
import django.utils.timezone
import uuid


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("catalog", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="Warehouse",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("name", models.CharField(max_length=255, unique=True)),
                ("location", models.CharField(blank=True, max_length=255)),
                ("capacity", models.PositiveIntegerField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
        ),
        migrations.CreateModel(
            name="ImportLog",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("import_type", models.CharField(choices=[("inventory", "Inventory"), ("shopify_orders", "Shopify orders"), ("orders_csv", "Orders CSV")], max_length=30)),
                ("file_name", models.CharField(blank=True, max_length=255)),
                ("status", models.CharField(choices=[("pending", "Pending"), ("in_progress", "In progress"), ("completed", "Completed"), ("completed_with_errors", "Completed with errors"), ("partial", "Partial"), ("failed", "Failed"), ("stalled", "Stalled")], default="pending", max_length=30)),
                ("records_imported", models.PositiveIntegerField(default=0)),
                ("records_failed", models.PositiveIntegerField(default=0)),
                ("error_log", models.JSONField(blank=True, default=list)),
                ("imported_by", models.CharField(blank=True, max_length=255)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("finalized_at", models.DateTimeField(blank=True, null=True)),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["import_type", "created_at"], name="importlog_type_created_idx"),
                    models.Index(fields=["file_name"], name="importlog_file_name_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="StockLedgerEntry",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("quantity", models.PositiveIntegerField(default=0)),
                ("reserved", models.PositiveIntegerField(default=0)),
                ("available", models.PositiveIntegerField(default=0)),
                ("par_level", models.PositiveIntegerField(default=0)),
                ("reorder_point", models.PositiveIntegerField(default=0)),
                ("last_counted_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("product", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="stock_entries", to="catalog.product")),
                ("warehouse", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="stock_entries", to="inventory.warehouse")),
            ],
            options={
                "db_table": "warehouse_stock",
                "verbose_name_plural": "Stock ledger entries",
                "indexes": [models.Index(fields=["available"], name="stock_available_idx")],
                "constraints": [
                    models.CheckConstraint(condition=models.Q(("quantity__gte", 0)), name="stock_quantity_non_negative"),
                    models.CheckConstraint(condition=models.Q(("reserved__gte", 0)), name="stock_reserved_non_negative"),
                    models.CheckConstraint(condition=models.Q(("reserved__lte", models.F("quantity"))), name="stock_reserved_within_quantity"),
                ],
                "unique_together": {("product", "warehouse")},
            },
        ),
        migrations.CreateModel(
            name="StockMovement",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("movement_type", models.CharField(choices=[("inbound", "Inbound"), ("outbound", "Outbound"), ("adjustment", "Adjustment"), ("reservation", "Reservation"), ("release", "Release")], max_length=20)),
                ("quantity", models.IntegerField()),
                ("reference_type", models.CharField(blank=True, choices=[("order", "Order"), ("import", "Import"), ("manual", "Manual"), ("purchase_order", "Purchase order")], max_length=30)),
                ("reference_id", models.CharField(blank=True, max_length=100)),
                ("actor", models.CharField(blank=True, max_length=255)),
                ("notes", models.TextField(blank=True)),
                ("requested_quantity", models.PositiveIntegerField(blank=True, null=True)),
                ("anomaly", models.BooleanField(default=False)),
                ("created_at", models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
                ("product", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="movements", to="catalog.product")),
                ("warehouse", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="movements", to="inventory.warehouse")),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["product", "warehouse", "created_at"], name="movement_prod_wh_created_idx"),
                    models.Index(fields=["reference_type", "reference_id"], name="movement_reference_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="PurchaseOrder",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("order_number", models.CharField(max_length=50, unique=True)),
                ("status", models.CharField(choices=[("draft", "Draft"), ("ordered", "Ordered"), ("partially_received", "Partially received"), ("received", "Received"), ("cancelled", "Cancelled")], default="draft", max_length=20)),
                ("order_date", models.DateField(default=django.utils.timezone.localdate)),
                ("expected_delivery_date", models.DateField(blank=True, null=True)),
                ("notes", models.TextField(blank=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("supplier", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="purchase_orders", to="catalog.supplier")),
                ("warehouse", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="purchase_orders", to="inventory.warehouse")),
            ],
        ),
        migrations.CreateModel(
            name="PurchaseOrderItem",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("quantity", models.PositiveIntegerField()),
                ("received_quantity", models.PositiveIntegerField(default=0)),
                ("unit_price", models.DecimalField(decimal_places=2, max_digits=12)),
                ("product", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="purchase_order_items", to="catalog.product")),
                ("purchase_order", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="items", to="inventory.purchaseorder")),
            ],
        ),
    ]
