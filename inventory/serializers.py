from django.db import transaction
from rest_framework import serializers

from .models import ImportLog, PurchaseOrder, PurchaseOrderItem, StockLedgerEntry, StockMovement, Warehouse
from .services import ADJUST_MODES


class WarehouseSerializer(serializers.ModelSerializer):
    class Meta:
        model = Warehouse
        fields = ["id", "name", "location", "capacity", "created_at", "updated_at"]
        read_only_fields = ["id", "created_at", "updated_at"]


class StockLedgerEntrySerializer(serializers.ModelSerializer):
    sku = serializers.CharField(source="product.sku", read_only=True)
    product_name = serializers.CharField(source="product.name", read_only=True)
    warehouse_name = serializers.CharField(source="warehouse.name", read_only=True)
    health = serializers.SerializerMethodField(read_only=True)

    class Meta:
        model = StockLedgerEntry
        fields = [
            "id", "product", "sku", "product_name", "warehouse", "warehouse_name",
            "quantity", "reserved", "available", "par_level", "reorder_point",
            "last_counted_at", "health", "updated_at",
        ]
        read_only_fields = fields

    def get_health(self, obj):
        from forecasting.services import classify_stock_health

        window = self.context.get("velocity_window", 30)
        health = classify_stock_health(obj.available, obj.quantity, obj.par_level, obj.product.velocity_for(window))
        return {"status": health.status, "label": health.label, "runway_days": health.runway_days}


class StockMovementSerializer(serializers.ModelSerializer):
    sku = serializers.CharField(source="product.sku", read_only=True)
    warehouse_name = serializers.CharField(source="warehouse.name", read_only=True)

    class Meta:
        model = StockMovement
        fields = [
            "id", "product", "sku", "warehouse", "warehouse_name", "movement_type", "quantity",
            "reference_type", "reference_id", "actor", "notes", "anomaly", "requested_quantity", "created_at",
        ]
        read_only_fields = fields


class StockOperationSerializer(serializers.Serializer):
    product_id = serializers.UUIDField()
    quantity = serializers.IntegerField(min_value=1)
    warehouse_id = serializers.UUIDField(required=False, allow_null=True)
    reference_id = serializers.CharField(required=False, allow_blank=True, default="")


class StockAdjustmentSerializer(serializers.Serializer):
    product_id = serializers.UUIDField()
    warehouse_id = serializers.UUIDField()
    mode = serializers.ChoiceField(choices=ADJUST_MODES)
    quantity = serializers.IntegerField(min_value=0)
    note = serializers.CharField(required=False, allow_blank=True, allow_null=True)


class StockImportSerializer(serializers.Serializer):
    file = serializers.FileField(required=False)
    rows = serializers.ListField(child=serializers.DictField(), required=False)
    file_name = serializers.CharField(required=False, allow_blank=True)

    def validate(self, attrs):
        if not attrs.get("file") and not attrs.get("rows"):
            raise serializers.ValidationError("Provide a CSV file or a list of rows.")
        return attrs


class ImportLogSerializer(serializers.ModelSerializer):
    class Meta:
        model = ImportLog
        fields = [
            "id", "import_type", "file_name", "status", "records_imported", "records_failed",
            "error_log", "imported_by", "created_at", "finalized_at",
        ]
        read_only_fields = fields


class PurchaseOrderItemSerializer(serializers.ModelSerializer):
    outstanding = serializers.IntegerField(read_only=True)

    class Meta:
        model = PurchaseOrderItem
        fields = ["id", "product", "quantity", "received_quantity", "outstanding", "unit_price"]
        read_only_fields = ["id", "received_quantity", "outstanding"]


class PurchaseOrderSerializer(serializers.ModelSerializer):
    items = PurchaseOrderItemSerializer(many=True)
    total_amount = serializers.DecimalField(max_digits=14, decimal_places=2, read_only=True)

    class Meta:
        model = PurchaseOrder
        fields = [
            "id", "order_number", "supplier", "warehouse", "status", "order_date",
            "expected_delivery_date", "notes", "items", "total_amount", "created_at", "updated_at",
        ]
        read_only_fields = ["id", "status", "created_at", "updated_at"]

    def validate_items(self, value):
        if not value:
            raise serializers.ValidationError("A purchase order needs at least one line.")
        return value

    @transaction.atomic
    def create(self, validated_data):
        items = validated_data.pop("items")
        purchase_order = PurchaseOrder.objects.create(**validated_data)
        PurchaseOrderItem.objects.bulk_create(
            [PurchaseOrderItem(purchase_order=purchase_order, **item) for item in items]
        )
        return purchase_order

    def update(self, instance, validated_data):
        # Lines are fixed once the order exists; receiving goes through the receive endpoint.
        validated_data.pop("items", None)
        return super().update(instance, validated_data)


class ReceivePurchaseOrderSerializer(serializers.Serializer):
    # item id -> units received; omitted means receive everything outstanding
    items = serializers.DictField(child=serializers.IntegerField(min_value=0), required=False)
