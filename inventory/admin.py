from django.contrib import admin

from .models import ImportLog, PurchaseOrder, PurchaseOrderItem, StockLedgerEntry, StockMovement, Warehouse


@admin.register(Warehouse)
class WarehouseAdmin(admin.ModelAdmin):
    list_display = ("name", "location", "capacity", "created_at")
    search_fields = ("name", "location")


@admin.register(StockLedgerEntry)
class StockLedgerEntryAdmin(admin.ModelAdmin):
    list_display = ("product", "warehouse", "quantity", "reserved", "available", "par_level", "updated_at")
    list_filter = ("warehouse",)
    search_fields = ("product__sku", "product__name")
    # Stock only changes through the stock services so every change is journaled.
    readonly_fields = ("quantity", "reserved", "available", "last_counted_at")


@admin.register(StockMovement)
class StockMovementAdmin(admin.ModelAdmin):
    list_display = ("created_at", "product", "warehouse", "movement_type", "quantity", "reference_type", "anomaly")
    list_filter = ("movement_type", "reference_type", "anomaly")
    search_fields = ("product__sku", "reference_id", "actor")

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(ImportLog)
class ImportLogAdmin(admin.ModelAdmin):
    list_display = ("import_type", "file_name", "status", "records_imported", "records_failed", "created_at")
    list_filter = ("import_type", "status")
    search_fields = ("file_name", "imported_by")


class PurchaseOrderItemInline(admin.TabularInline):
    model = PurchaseOrderItem
    extra = 0


@admin.register(PurchaseOrder)
class PurchaseOrderAdmin(admin.ModelAdmin):
    list_display = ("order_number", "supplier", "warehouse", "status", "order_date", "expected_delivery_date")
    list_filter = ("status", "warehouse")
    search_fields = ("order_number", "supplier__name")
    inlines = [PurchaseOrderItemInline]
