from django.db import transaction
from rest_framework import serializers

from .models import Bundle, BundleComponent, Category, Product, Supplier
from .services import BundleResolver


class CategorySerializer(serializers.ModelSerializer):
    class Meta:
        model = Category
        fields = "__all__"
        read_only_fields = ["id", "slug", "created_at", "updated_at"]


class SupplierSerializer(serializers.ModelSerializer):
    class Meta:
        model = Supplier
        fields = ["id", "name", "contact_person", "email", "phone", "address", "created_at", "updated_at"]
        read_only_fields = ["id", "created_at", "updated_at"]


class ProductSerializer(serializers.ModelSerializer):
    category = CategorySerializer(read_only=True)
    category_id = serializers.PrimaryKeyRelatedField(
        queryset=Category.objects.all(), source="category", write_only=True, required=False, allow_null=True
    )
    supplier_id = serializers.PrimaryKeyRelatedField(
        queryset=Supplier.objects.all(), source="supplier", write_only=True, required=False, allow_null=True
    )
    supplier = serializers.SerializerMethodField(read_only=True)

    class Meta:
        model = Product
        fields = [
            "id", "sku", "name", "description", "category_id", "category", "supplier_id", "supplier",
            "unit_price", "cost_price", "reorder_level", "unit_of_measure", "is_active",
            "velocity_7d", "velocity_14d", "velocity_30d", "created_at", "updated_at",
        ]
        # Velocities are written only by the forecaster batch job.
        read_only_fields = ["id", "velocity_7d", "velocity_14d", "velocity_30d", "created_at", "updated_at"]

    def get_supplier(self, obj):
        if not obj.supplier:
            return None
        return {"id": str(obj.supplier.id), "name": obj.supplier.name}

    def validate_unit_price(self, value):
        if value < 0:
            raise serializers.ValidationError("unit_price must not be negative.")
        return value

    def validate_cost_price(self, value):
        if value < 0:
            raise serializers.ValidationError("cost_price must not be negative.")
        return value


class BundleComponentSerializer(serializers.ModelSerializer):
    product_id = serializers.PrimaryKeyRelatedField(queryset=Product.objects.all(), source="product")
    sku = serializers.CharField(source="product.sku", read_only=True)
    name = serializers.CharField(source="product.name", read_only=True)

    class Meta:
        model = BundleComponent
        fields = ["id", "product_id", "sku", "name", "quantity", "position"]
        read_only_fields = ["id"]

    def validate_quantity(self, value):
        if value < 1:
            raise serializers.ValidationError("quantity must be at least 1.")
        return value


class BundleSerializer(serializers.ModelSerializer):
    components = BundleComponentSerializer(many=True, required=False)
    category_id = serializers.PrimaryKeyRelatedField(
        queryset=Category.objects.all(), source="category", write_only=True, required=False, allow_null=True
    )
    availability = serializers.SerializerMethodField(read_only=True)
    cost = serializers.SerializerMethodField(read_only=True)

    class Meta:
        model = Bundle
        fields = [
            "id", "sku", "name", "description", "category_id", "is_active",
            "components", "availability", "cost", "created_at", "updated_at",
        ]
        read_only_fields = ["id", "created_at", "updated_at"]

    def get_availability(self, obj):
        return BundleResolver.availability(obj)

    def get_cost(self, obj):
        return str(BundleResolver.cost(obj))

    def validate_components(self, value):
        product_ids = [item["product"].pk for item in value]
        if len(product_ids) != len(set(product_ids)):
            raise serializers.ValidationError("A product can appear only once in a bundle.")
        return value

    def _write_components(self, bundle, components_data):
        bundle.components.all().delete()
        for position, component in enumerate(components_data):
            BundleComponent.objects.create(
                bundle=bundle,
                product=component["product"],
                quantity=component.get("quantity", 1),
                position=component.get("position", position),
            )

    @transaction.atomic
    def create(self, validated_data):
        components_data = validated_data.pop("components", [])
        bundle = Bundle.objects.create(**validated_data)
        self._write_components(bundle, components_data)
        return bundle

    @transaction.atomic
    def update(self, instance, validated_data):
        components_data = validated_data.pop("components", None)
        for attr, value in validated_data.items():
            setattr(instance, attr, value)
        instance.save()
        if components_data is not None:
            self._write_components(instance, components_data)
        return instance
