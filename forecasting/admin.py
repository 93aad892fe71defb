from django.contrib import admin

from .models import DailySalesSummary


@admin.register(DailySalesSummary)
class DailySalesSummaryAdmin(admin.ModelAdmin):
    list_display = ("summary_date", "order_count", "units_sold", "total_revenue", "updated_at")
    date_hierarchy = "summary_date"
