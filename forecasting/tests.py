from datetime import date, datetime, timedelta
from decimal import Decimal
from io import StringIO
from zoneinfo import ZoneInfo

from django.contrib.auth import get_user_model
from django.core.management import CommandError, call_command
from django.test import TestCase, override_settings
from rest_framework import status
from rest_framework.test import APITestCase

from catalog.models import Product
from inventory.models import StockLedgerEntry, Warehouse
from order.models import Order, OrderLineItem

from .dates import UTC, day_bounds, iter_days, local_day_range, local_today, trailing_window
from .models import DailySalesSummary
from .services import (
    CRITICAL,
    HEALTHY,
    WARNING,
    classify_stock_health,
    recalculate_daily_summary,
    runway_days,
    sales_velocity,
    stock_runway_report,
    stockout_calendar,
    stockout_date,
    update_product_velocities,
)

LA = ZoneInfo("America/Los_Angeles")
NOW = datetime(2024, 3, 31, 12, 0, tzinfo=UTC)


def place_order(number, placed_at, product=None, quantity=1, **fields):
    order = Order.objects.create(order_number=number, placed_at=placed_at, **fields)
    OrderLineItem.objects.create(
        order=order,
        product=product,
        sku=product.sku if product else "UNKNOWN",
        product_name=product.name if product else "Unknown",
        quantity=quantity,
    )
    return order


class DateRangeTests(TestCase):
    def test_day_bounds_on_spring_forward_day(self):
        start, end = day_bounds(date(2024, 3, 10), LA)
        self.assertEqual(start, datetime(2024, 3, 10, 8, 0, tzinfo=UTC))
        self.assertEqual(end, datetime(2024, 3, 11, 7, 0, tzinfo=UTC))
        self.assertEqual(end - start, timedelta(hours=23))

    def test_day_bounds_on_fall_back_day(self):
        start, end = day_bounds(date(2024, 11, 3), LA)
        self.assertEqual(end - start, timedelta(hours=25))

    def test_local_day_range_is_inclusive(self):
        start, end = local_day_range(date(2024, 1, 1), date(2024, 1, 3), ZoneInfo("UTC"))
        self.assertEqual(start, datetime(2024, 1, 1, tzinfo=UTC))
        self.assertEqual(end, datetime(2024, 1, 4, tzinfo=UTC))
        with self.assertRaises(ValueError):
            local_day_range(date(2024, 1, 3), date(2024, 1, 1))

    def test_iter_days(self):
        self.assertEqual(list(iter_days(date(2024, 2, 28), date(2024, 3, 1))), [
            date(2024, 2, 28), date(2024, 2, 29), date(2024, 3, 1),
        ])

    def test_trailing_window(self):
        start, end = trailing_window(NOW, 7)
        self.assertEqual(end - start, timedelta(days=7))
        with self.assertRaises(ValueError):
            trailing_window(datetime(2024, 3, 31, 12, 0), 7)
        with self.assertRaises(ValueError):
            trailing_window(NOW, 0)

    def test_local_today_uses_reporting_zone(self):
        self.assertEqual(local_today(datetime(2024, 3, 10, 6, 30, tzinfo=UTC), LA), date(2024, 3, 9))


class StockHealthTests(TestCase):
    def test_runway(self):
        self.assertEqual(runway_days(10, 3.0), 3)
        self.assertEqual(runway_days(10, 0.0), 999)
        self.assertIsNone(stockout_date(10, 0.0, date(2024, 1, 1)))
        self.assertEqual(stockout_date(10, 2.0, date(2024, 1, 1)), date(2024, 1, 6))

    @override_settings(RUNWAY_SENTINEL_DAYS=365)
    def test_sentinel_is_configurable(self):
        self.assertEqual(runway_days(10, 0.0), 365)

    def test_idle_product_falls_through_to_par_checks(self):
        healthy = classify_stock_health(50, 50, 20, 0.0)
        self.assertEqual((healthy.runway_days, healthy.status), (999, HEALTHY))
        below_par = classify_stock_health(50, 50, 60, 0.0)
        self.assertEqual((below_par.runway_days, below_par.status, below_par.label), (999, WARNING, "Below Par"))

    def test_rules_are_applied_in_order(self):
        cases = [
            ((0, 5, 10, 0.0), CRITICAL, "Out of Stock"),
            ((5, 50, 10, 1.0), CRITICAL, "5d remaining"),
            ((100, 4, 10, 0.0), WARNING, "Low Stock"),
            ((10, 50, 10, 1.0), WARNING, "10d remaining"),
            ((50, 8, 10, 0.0), WARNING, "Below Par"),
            ((50, 50, 10, 1.0), HEALTHY, "Healthy"),
        ]
        for args, expected_status, expected_label in cases:
            with self.subTest(args=args):
                health = classify_stock_health(*args)
                self.assertEqual(health.status, expected_status)
                self.assertEqual(health.label, expected_label)


class SalesVelocityTests(TestCase):
    def setUp(self):
        self.product = Product.objects.create(sku="CANDLE-01", name="Amber candle")
        place_order("1", NOW - timedelta(days=2), self.product, 7)
        place_order("2", NOW - timedelta(days=20), self.product, 8)
        place_order("3", NOW - timedelta(days=40), self.product, 50)
        place_order("4", NOW - timedelta(days=1), self.product, 100, status=Order.Status.CANCELLED)
        place_order("5", NOW - timedelta(days=1), None, 9)

    def test_velocity_counts_units_in_window(self):
        self.assertEqual(sales_velocity(self.product, 7, NOW), 1.0)
        self.assertEqual(sales_velocity(self.product, 14, NOW), 0.5)
        self.assertEqual(sales_velocity(self.product, 30, NOW), 0.5)

    def test_cancelled_by_timestamp_is_excluded(self):
        place_order("6", NOW - timedelta(days=1), self.product, 70, cancelled_at=NOW)
        self.assertEqual(sales_velocity(self.product, 7, NOW), 1.0)

    def test_update_product_velocities_stores_all_windows(self):
        idle = Product.objects.create(sku="IDLE", name="Idle", velocity_7d=3.0)
        self.assertEqual(update_product_velocities(NOW), 2)

        self.product.refresh_from_db()
        idle.refresh_from_db()
        self.assertEqual(
            (self.product.velocity_7d, self.product.velocity_14d, self.product.velocity_30d), (1.0, 0.5, 0.5)
        )
        self.assertEqual(idle.velocity_7d, 0.0)


@override_settings(REPORTING_TIME_ZONE="America/Los_Angeles")
class RunwayReportTests(TestCase):
    def setUp(self):
        self.main = Warehouse.objects.create(name="Main")
        self.fast = Product.objects.create(sku="FAST", name="Fast", velocity_30d=2.0)
        self.slow = Product.objects.create(sku="SLOW", name="Slow", velocity_30d=1.0)
        self.idle = Product.objects.create(sku="IDLE", name="Idle")
        self.retired = Product.objects.create(sku="OLD", name="Old", is_active=False, velocity_30d=5.0)
        for product, quantity in ((self.fast, 10), (self.slow, 20), (self.idle, 4), (self.retired, 1)):
            StockLedgerEntry.objects.create(product=product, warehouse=self.main, quantity=quantity, par_level=5)

    def test_report_rows(self):
        rows = {row["sku"]: row for row in stock_runway_report(NOW)}

        self.assertNotIn("OLD", rows)
        self.assertEqual(rows["FAST"]["runway_days"], 5)
        self.assertEqual(rows["FAST"]["stockout_date"], date(2024, 4, 5))
        self.assertEqual(rows["FAST"]["status"], CRITICAL)
        self.assertEqual(rows["IDLE"]["runway_days"], 999)
        self.assertIsNone(rows["IDLE"]["stockout_date"])
        self.assertEqual(rows["IDLE"]["label"], "Below Par")

    def test_unsupported_window(self):
        with self.assertRaises(ValueError):
            stock_runway_report(NOW, velocity_window=5)

    def test_calendar_groups_by_date_and_honours_horizon(self):
        calendar = stockout_calendar(NOW)
        self.assertEqual(list(calendar.keys()), [date(2024, 4, 5), date(2024, 4, 20)])
        self.assertEqual([row["sku"] for row in calendar[date(2024, 4, 5)]], ["FAST"])

        near = stockout_calendar(NOW, horizon_days=10)
        self.assertEqual(list(near.keys()), [date(2024, 4, 5)])


@override_settings(REPORTING_TIME_ZONE="America/Los_Angeles")
class DailySummaryTests(TestCase):
    def setUp(self):
        self.product = Product.objects.create(sku="CANDLE-01", name="Amber candle")

    def test_summary_covers_local_day_and_skips_cancelled(self):
        # Local 2024-03-09 runs from 08:00 UTC on the 9th to 08:00 UTC on the 10th.
        place_order("in-early", datetime(2024, 3, 9, 8, 0, tzinfo=UTC), self.product, 2,
                    total_amount=Decimal("20.00"), product_revenue=Decimal("16.00"), shipping_cost=Decimal("4.00"))
        place_order("in-late", datetime(2024, 3, 10, 7, 59, tzinfo=UTC), self.product, 1,
                    total_amount=Decimal("10.00"), product_revenue=Decimal("10.00"))
        place_order("next-day", datetime(2024, 3, 10, 8, 0, tzinfo=UTC), self.product, 5)
        place_order("cancelled", datetime(2024, 3, 9, 12, 0, tzinfo=UTC), self.product, 9,
                    status=Order.Status.CANCELLED, total_amount=Decimal("90.00"))

        summary = recalculate_daily_summary(date(2024, 3, 9))

        self.assertEqual(summary.order_count, 2)
        self.assertEqual(summary.units_sold, 3)
        self.assertEqual(summary.total_revenue, Decimal("30.00"))
        self.assertEqual(summary.product_revenue, Decimal("26.00"))
        self.assertEqual(summary.shipping_revenue, Decimal("4.00"))

    def test_recalculation_overwrites_existing_row(self):
        recalculate_daily_summary(date(2024, 3, 9))
        place_order("late-arrival", datetime(2024, 3, 9, 20, 0, tzinfo=UTC), self.product, 1)
        recalculate_daily_summary(date(2024, 3, 9))

        self.assertEqual(DailySalesSummary.objects.count(), 1)
        self.assertEqual(DailySalesSummary.objects.get().order_count, 1)

    def test_management_command_rebuilds_requested_day(self):
        place_order("cmd", datetime(2024, 3, 9, 20, 0, tzinfo=UTC), self.product, 4)
        out = StringIO()
        call_command("update_product_velocities", "--summary-date", "2024-03-09", stdout=out)

        self.assertIn("2024-03-09: 1 orders, 4 units", out.getvalue())
        self.assertEqual(DailySalesSummary.objects.get(summary_date=date(2024, 3, 9)).units_sold, 4)

    def test_management_command_rejects_bad_date(self):
        with self.assertRaises(CommandError):
            call_command("update_product_velocities", "--summary-date", "yesterday", stdout=StringIO())


class ForecastingApiTests(APITestCase):
    def setUp(self):
        self.user = get_user_model().objects.create_user(username="planner", password="pass1234")
        self.admin = get_user_model().objects.create_user(username="ops", password="pass1234", is_staff=True)
        warehouse = Warehouse.objects.create(name="Main")
        product = Product.objects.create(sku="FAST", name="Fast", velocity_30d=2.0, velocity_7d=0.5)
        StockLedgerEntry.objects.create(product=product, warehouse=warehouse, quantity=10)

    def test_runway_report(self):
        self.client.force_authenticate(user=self.user)
        response = self.client.get("/forecasting/runway/", {"window": 7})

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data[0]["runway_days"], 20)
        self.assertEqual(response.data[0]["status"], HEALTHY)

    def test_runway_report_rejects_bad_window(self):
        self.client.force_authenticate(user=self.user)
        self.assertEqual(self.client.get("/forecasting/runway/", {"window": 5}).status_code, 400)
        self.assertEqual(self.client.get("/forecasting/runway/", {"window": "week"}).status_code, 400)

    def test_stockout_calendar(self):
        self.client.force_authenticate(user=self.user)
        response = self.client.get("/forecasting/calendar/")

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data), 1)
        self.assertEqual(response.data[0]["items"][0]["sku"], "FAST")

    def test_velocity_recompute_requires_admin(self):
        self.client.force_authenticate(user=self.user)
        self.assertEqual(self.client.post("/forecasting/velocities/recompute/").status_code, 403)

        self.client.force_authenticate(user=self.admin)
        response = self.client.post("/forecasting/velocities/recompute/")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["updated"], 1)
