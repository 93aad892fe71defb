from rest_framework import serializers

from .models import Order, OrderLineItem


class OrderLineItemSerializer(serializers.ModelSerializer):
    class Meta:
        model = OrderLineItem
        fields = ["id", "product", "sku", "product_name", "quantity", "reserved_quantity", "unit_price", "total_price"]
        read_only_fields = fields


class OrderSerializer(serializers.ModelSerializer):
    line_items = OrderLineItemSerializer(many=True, read_only=True)

    class Meta:
        model = Order
        fields = [
            "id", "order_number", "platform_order_id", "status", "fulfillment_status",
            "customer_name", "customer_email", "is_new_customer",
            "total_amount", "product_revenue", "shipping_cost", "currency",
            "shipping_address", "country_code",
            "placed_at", "fulfilled_at", "cancelled_at", "line_items", "created_at", "updated_at",
        ]
        read_only_fields = fields


class ShopifyImportActionSerializer(serializers.Serializer):
    action = serializers.ChoiceField(choices=["start", "check", "process"], default="start")
    operation_id = serializers.CharField(required=False, allow_blank=True)
    url = serializers.URLField(required=False, allow_blank=True)

    def validate(self, attrs):
        if attrs["action"] == "process" and not attrs.get("url"):
            raise serializers.ValidationError({"url": "URL required for processing."})
        return attrs


class OrderCsvImportSerializer(serializers.Serializer):
    file = serializers.FileField()
