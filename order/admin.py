from django.contrib import admin

from .models import Order, OrderLineItem, ProcessedOrderEvent, WebhookLog


class OrderLineItemInline(admin.TabularInline):
    model = OrderLineItem
    extra = 0
    readonly_fields = ("product", "sku", "product_name", "quantity", "unit_price", "total_price")


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = ("order_number", "status", "fulfillment_status", "total_amount", "currency", "placed_at")
    list_filter = ("status", "fulfillment_status", "currency")
    search_fields = ("order_number", "platform_order_id", "customer_email", "customer_name")
    date_hierarchy = "placed_at"
    inlines = [OrderLineItemInline]


@admin.register(ProcessedOrderEvent)
class ProcessedOrderEventAdmin(admin.ModelAdmin):
    list_display = ("order", "event_type", "processed_at")
    list_filter = ("event_type",)
    search_fields = ("order__order_number",)


@admin.register(WebhookLog)
class WebhookLogAdmin(admin.ModelAdmin):
    list_display = ("provider", "topic", "reference", "processed", "processing_attempts", "created_at")
    list_filter = ("provider", "topic", "processed")
    search_fields = ("reference",)
