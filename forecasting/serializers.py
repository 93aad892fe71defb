from rest_framework import serializers

from .models import DailySalesSummary


class DailySalesSummarySerializer(serializers.ModelSerializer):
    class Meta:
        model = DailySalesSummary
        fields = [
            "summary_date", "order_count", "units_sold",
            "product_revenue", "shipping_revenue", "total_revenue", "updated_at",
        ]
        read_only_fields = fields


class RunwayRowSerializer(serializers.Serializer):
    product_id = serializers.UUIDField()
    sku = serializers.CharField()
    product_name = serializers.CharField()
    warehouse_id = serializers.UUIDField()
    warehouse_name = serializers.CharField()
    quantity = serializers.IntegerField()
    reserved = serializers.IntegerField()
    available = serializers.IntegerField()
    par_level = serializers.IntegerField()
    velocity = serializers.FloatField()
    runway_days = serializers.IntegerField()
    stockout_date = serializers.DateField(allow_null=True)
    status = serializers.CharField()
    label = serializers.CharField()
