from django.contrib import admin

from .models import Bundle, BundleComponent, Category, Product, Supplier


@admin.register(Category)
class CategoryAdmin(admin.ModelAdmin):
    list_display = ("name", "slug", "parent", "created_at")
    search_fields = ("name", "slug")


@admin.register(Supplier)
class SupplierAdmin(admin.ModelAdmin):
    list_display = ("name", "contact_person", "email", "phone")
    search_fields = ("name", "email")


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = ("sku", "name", "unit_price", "cost_price", "is_active", "velocity_7d", "velocity_30d")
    list_filter = ("is_active", "category")
    search_fields = ("sku", "name")
    readonly_fields = ("velocity_7d", "velocity_14d", "velocity_30d")


class BundleComponentInline(admin.TabularInline):
    model = BundleComponent
    extra = 1


@admin.register(Bundle)
class BundleAdmin(admin.ModelAdmin):
    list_display = ("sku", "name", "is_active", "created_at")
    search_fields = ("sku", "name")
    inlines = [BundleComponentInline]
