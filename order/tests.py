import json
import threading
from datetime import date, datetime, timezone as dt_timezone
from decimal import Decimal
from io import StringIO
from unittest import mock

from django.contrib.auth import get_user_model
from django.core.files.uploadedfile import SimpleUploadedFile
from django.core.management import CommandError, call_command
from django.test import TestCase, override_settings
from rest_framework import status
from rest_framework.test import APITestCase

from catalog.models import Product
from forecasting.models import DailySalesSummary
from inventory.models import ImportLog, StockLedgerEntry, StockMovement, Warehouse

from .bulk_import import BulkImportFailed, BulkImportStalled, BulkOrderImport, group_bulk_rows
from .models import Order, OrderLineItem, ProcessedOrderEvent, WebhookLog
from .services import (
    OrderIngestionError,
    apply_order_event,
    handle_webhook,
    ingest_orders,
    normalize_bulk_order,
    normalize_csv_orders,
    normalize_shopify_order,
    normalize_status,
    upsert_order,
)
from .shopify import (
    ORDER_WEBHOOK_TOPICS,
    ShopifyClient,
    ShopifyError,
    WebhookSignatureError,
    compute_webhook_hmac,
    verify_webhook,
)


def shopify_payload(**overrides):
    payload = {
        "id": 5550001,
        "name": "#1001",
        "order_number": 1001,
        "email": "ada@example.com",
        "created_at": "2024-03-10T06:30:00Z",
        "financial_status": "paid",
        "fulfillment_status": None,
        "cancelled_at": None,
        "currency": "USD",
        "total_price": "54.00",
        "subtotal_price": "48.00",
        "total_shipping_price_set": {"shop_money": {"amount": "6.00"}},
        "customer": {"first_name": "Ada", "last_name": "Lovelace", "email": "ada@example.com", "orders_count": 1},
        "shipping_address": {"city": "Portland", "country_code": "US"},
        "line_items": [
            {"sku": "CANDLE-01", "name": "Amber candle", "quantity": 3, "price": "16.00"},
        ],
    }
    payload.update(overrides)
    return payload


def bulk_rows():
    return [
        {
            "__typename": "Order",
            "id": "gid://shopify/Order/1",
            "legacyResourceId": "1",
            "name": "#2001",
            "createdAt": "2024-03-10T06:30:00Z",
            "updatedAt": "2024-03-11T10:00:00Z",
            "displayFinancialStatus": "PAID",
            "displayFulfillmentStatus": "FULFILLED",
            "currentTotalPriceSet": {"shopMoney": {"amount": "32.00", "currencyCode": "USD"}},
            "currentSubtotalPriceSet": {"shopMoney": {"amount": "32.00"}},
            "currentShippingPriceSet": {"shopMoney": {"amount": "0.00"}},
            "customer": {"firstName": "Grace", "lastName": "Hopper", "numberOfOrders": "3"},
            "shippingAddress": {"countryCodeV2": "CA"},
        },
        {
            "id": "gid://shopify/LineItem/11",
            "__parentId": "gid://shopify/Order/1",
            "sku": "CANDLE-01",
            "name": "Amber candle",
            "quantity": 2,
            "originalUnitPriceSet": {"shopMoney": {"amount": "16.00"}},
        },
        {
            "id": "gid://shopify/LineItem/99",
            "__parentId": "gid://shopify/Order/404",
            "sku": "LOST",
            "quantity": 1,
        },
    ]


class OrderFixtureMixin:
    def make_fixtures(self, quantity=10):
        self.warehouse = Warehouse.objects.create(name="Main")
        self.product = Product.objects.create(sku="CANDLE-01", name="Amber candle")
        self.stock = StockLedgerEntry.objects.create(product=self.product, warehouse=self.warehouse, quantity=quantity)

    def refresh_stock(self):
        self.stock.refresh_from_db()
        return self.stock.quantity, self.stock.reserved, self.stock.available


class NormalizationTests(TestCase):
    def test_shopify_order_is_normalized(self):
        normalized = normalize_shopify_order(shopify_payload())

        self.assertEqual(normalized.order_number, "1001")
        self.assertEqual(normalized.platform_order_id, "5550001")
        self.assertEqual(normalized.placed_at, datetime(2024, 3, 10, 6, 30, tzinfo=dt_timezone.utc))
        self.assertEqual(normalized.status, Order.Status.PAID)
        self.assertEqual(normalized.fulfillment_status, Order.FulfillmentStatus.UNFULFILLED)
        self.assertEqual(normalized.shipping_cost, Decimal("6.00"))
        self.assertEqual(normalized.customer_name, "Ada Lovelace")
        self.assertTrue(normalized.is_new_customer)
        self.assertEqual(normalized.country_code, "US")
        self.assertEqual(normalized.line_items[0].total_price, Decimal("48.00"))

    def test_cancelled_at_forces_cancelled_status(self):
        normalized = normalize_shopify_order(shopify_payload(cancelled_at="2024-03-11T00:00:00Z"))
        self.assertEqual(normalized.status, Order.Status.CANCELLED)

    def test_unknown_financial_status_falls_back_to_pending(self):
        self.assertEqual(normalize_status("on_hold"), Order.Status.PENDING)
        self.assertEqual(normalize_status("PARTIALLY_REFUNDED"), Order.Status.PARTIALLY_REFUNDED)

    def test_variant_id_stands_in_for_missing_sku(self):
        payload = shopify_payload(line_items=[{"variant_id": 42, "title": "Mystery", "quantity": 1, "price": "5"}])
        self.assertEqual(normalize_shopify_order(payload).line_items[0].sku, "42")

    def test_missing_order_number_is_rejected(self):
        with self.assertRaises(OrderIngestionError):
            normalize_shopify_order(shopify_payload(name="", order_number=None))

    def test_bad_quantity_is_rejected(self):
        with self.assertRaises(OrderIngestionError):
            normalize_shopify_order(shopify_payload(line_items=[{"sku": "X", "quantity": "many"}]))

    def test_bulk_rows_are_grouped_under_their_orders(self):
        orders = group_bulk_rows(bulk_rows())
        self.assertEqual(len(orders), 1)
        self.assertEqual([item["sku"] for item in orders[0]["lineItems"]], ["CANDLE-01"])

    def test_bulk_order_is_normalized(self):
        normalized = normalize_bulk_order(group_bulk_rows(bulk_rows())[0])

        self.assertEqual(normalized.order_number, "2001")
        self.assertEqual(normalized.platform_order_id, "1")
        self.assertEqual(normalized.status, Order.Status.PAID)
        self.assertEqual(normalized.fulfillment_status, Order.FulfillmentStatus.FULFILLED)
        self.assertEqual(normalized.fulfilled_at, datetime(2024, 3, 11, 10, 0, tzinfo=dt_timezone.utc))
        self.assertEqual(normalized.total_amount, Decimal("32.00"))
        self.assertEqual(normalized.country_code, "CA")
        self.assertFalse(normalized.is_new_customer)
        self.assertEqual(normalized.line_items[0].quantity, 2)

    def test_bulk_order_requires_creation_time(self):
        node = group_bulk_rows(bulk_rows())[0]
        node["createdAt"] = None
        with self.assertRaises(OrderIngestionError):
            normalize_bulk_order(node)

    def test_csv_rows_are_grouped_and_bad_orders_rejected(self):
        rows = [
            {
                "Name": "#3001", "Id": "777", "Financial Status": "paid", "Fulfillment Status": "fulfilled",
                "Created at": "2024-03-10 01:30:00 -0500", "Total": "20.00", "Subtotal": "16.00",
                "Shipping": "4.00", "Currency": "USD", "Email": "x@example.com", "Billing Name": "X",
                "Lineitem name": "Amber candle", "Lineitem sku": "CANDLE-01", "Lineitem quantity": "1",
                "Lineitem price": "16.00",
            },
            {"Name": "#3001", "Lineitem name": "Wick", "Lineitem sku": "WICK", "Lineitem quantity": "2"},
            {
                "Name": "#3002", "Financial Status": "pending", "Created at": "2024-03-10 02:00:00 +0000",
                "Lineitem name": "Amber candle", "Lineitem quantity": "lots",
            },
        ]
        orders, errors = normalize_csv_orders(rows)

        self.assertEqual([order.order_number for order in orders], ["3001"])
        order = orders[0]
        self.assertEqual(order.status, Order.Status.COMPLETED)
        self.assertEqual(order.placed_at, datetime(2024, 3, 10, 6, 30, tzinfo=dt_timezone.utc))
        self.assertEqual([item.sku for item in order.line_items], ["CANDLE-01", "WICK"])
        self.assertEqual(errors[0]["order"], "3002")


class UpsertOrderTests(OrderFixtureMixin, TestCase):
    def setUp(self):
        self.make_fixtures()

    def test_upsert_is_idempotent_by_order_number(self):
        normalized = normalize_shopify_order(shopify_payload())
        first, created = upsert_order(normalized)
        second, created_again = upsert_order(normalized)

        self.assertTrue(created)
        self.assertFalse(created_again)
        self.assertEqual(first.pk, second.pk)
        self.assertEqual(Order.objects.count(), 1)
        self.assertEqual(OrderLineItem.objects.count(), 1)
        self.assertEqual(OrderLineItem.objects.get().product, self.product)

    def test_unmatched_sku_is_kept_without_product(self):
        upsert_order(normalize_shopify_order(shopify_payload(
            line_items=[{"sku": "GONE", "name": "Retired", "quantity": 1, "price": "3.00"}, {"name": "Gift", "quantity": 1}]
        )))
        items = OrderLineItem.objects.order_by("id")
        self.assertEqual([(item.sku, item.product_id) for item in items], [("GONE", None), ("UNKNOWN", None)])

    def test_cancellation_is_not_reverted_by_a_late_update(self):
        upsert_order(normalize_shopify_order(shopify_payload(cancelled_at="2024-03-11T00:00:00Z")))
        order, _ = upsert_order(normalize_shopify_order(shopify_payload(financial_status="paid")))

        self.assertEqual(order.status, Order.Status.CANCELLED)
        self.assertIsNotNone(order.cancelled_at)


class OrderEventTests(OrderFixtureMixin, TestCase):
    def setUp(self):
        self.make_fixtures()
        self.order, _ = upsert_order(normalize_shopify_order(shopify_payload()))

    def test_create_reserves_once(self):
        self.assertTrue(apply_order_event(self.order, ProcessedOrderEvent.EventType.CREATE))
        self.assertFalse(apply_order_event(self.order, ProcessedOrderEvent.EventType.CREATE))

        self.assertEqual(self.refresh_stock(), (10, 3, 7))
        movement = StockMovement.objects.get()
        self.assertEqual(movement.reference_type, StockMovement.ReferenceType.ORDER)
        self.assertEqual(movement.reference_id, "1001")
        self.assertEqual(movement.actor, "shopify")

    def test_fulfilment_deducts_reserved_stock(self):
        apply_order_event(self.order, ProcessedOrderEvent.EventType.CREATE)
        apply_order_event(self.order, ProcessedOrderEvent.EventType.FULFILLED)
        apply_order_event(self.order, ProcessedOrderEvent.EventType.FULFILLED)

        self.assertEqual(self.refresh_stock(), (7, 0, 7))

    def test_cancel_releases_reservation(self):
        apply_order_event(self.order, ProcessedOrderEvent.EventType.CREATE)
        apply_order_event(self.order, ProcessedOrderEvent.EventType.CANCELLED)

        self.assertEqual(self.refresh_stock(), (10, 0, 10))

    def test_cancel_after_fulfilment_leaves_stock_alone(self):
        apply_order_event(self.order, ProcessedOrderEvent.EventType.CREATE)
        apply_order_event(self.order, ProcessedOrderEvent.EventType.FULFILLED)
        self.assertTrue(apply_order_event(self.order, ProcessedOrderEvent.EventType.CANCELLED))

        self.assertEqual(self.refresh_stock(), (7, 0, 7))
        self.assertFalse(StockMovement.objects.filter(movement_type=StockMovement.MovementType.RELEASE).exists())

    def test_cancel_without_create_changes_nothing(self):
        apply_order_event(self.order, ProcessedOrderEvent.EventType.CANCELLED)
        self.assertEqual(self.refresh_stock(), (10, 0, 10))
        self.assertFalse(StockMovement.objects.exists())

    def test_insufficient_stock_keeps_order_without_reservation(self):
        StockLedgerEntry.objects.filter(pk=self.stock.pk).update(quantity=2, available=2)
        with self.assertLogs("order.services", level="WARNING"):
            applied = apply_order_event(self.order, ProcessedOrderEvent.EventType.CREATE)

        self.assertTrue(applied)
        self.assertEqual(self.refresh_stock(), (2, 0, 2))
        self.assertTrue(ProcessedOrderEvent.objects.filter(order=self.order, event_type="create").exists())

    def test_unknown_event_type_is_rejected(self):
        with self.assertRaises(OrderIngestionError):
            apply_order_event(self.order, "refunded")


class WebhookHandlingTests(OrderFixtureMixin, TestCase):
    def setUp(self):
        self.make_fixtures()

    def test_redelivered_create_reserves_once(self):
        handle_webhook("orders/create", shopify_payload())
        handle_webhook("orders/create", shopify_payload())

        self.assertEqual(Order.objects.count(), 1)
        self.assertEqual(self.refresh_stock(), (10, 3, 7))

    def test_full_lifecycle(self):
        handle_webhook("orders/create", shopify_payload())
        order = handle_webhook("orders/fulfilled", shopify_payload(fulfillment_status="fulfilled"))

        self.assertEqual(order.fulfillment_status, Order.FulfillmentStatus.FULFILLED)
        self.assertIsNotNone(order.fulfilled_at)
        self.assertEqual(self.refresh_stock(), (7, 0, 7))

    def test_cancelled_webhook_marks_order_and_releases(self):
        handle_webhook("orders/create", shopify_payload())
        order = handle_webhook("orders/cancelled", shopify_payload(cancelled_at="2024-03-11T00:00:00Z"))

        self.assertEqual(order.status, Order.Status.CANCELLED)
        self.assertEqual(self.refresh_stock(), (10, 0, 10))

    def test_update_for_unknown_order_is_ignored(self):
        self.assertIsNone(handle_webhook("orders/updated", shopify_payload()))
        self.assertFalse(Order.objects.exists())

    def test_update_changes_totals_only(self):
        handle_webhook("orders/create", shopify_payload())
        order = handle_webhook("orders/updated", shopify_payload(total_price="60.00", financial_status="refunded"))

        self.assertEqual(order.total_amount, Decimal("60.00"))
        self.assertEqual(order.status, Order.Status.REFUNDED)
        self.assertEqual(self.refresh_stock(), (10, 3, 7))


def second_order(quantity, **overrides):
    return shopify_payload(
        id=5550002,
        name="#1002",
        order_number=1002,
        line_items=[{"sku": "CANDLE-01", "name": "Amber candle", "quantity": quantity, "price": "16.00"}],
        **overrides,
    )


class ReservationOwnershipTests(OrderFixtureMixin, TestCase):
    def setUp(self):
        self.make_fixtures(quantity=10)

    def test_line_item_tracks_its_reservation(self):
        handle_webhook("orders/create", shopify_payload())
        item = OrderLineItem.objects.get(order__order_number="1001")
        self.assertEqual(item.reserved_quantity, 3)

        handle_webhook("orders/cancelled", shopify_payload(cancelled_at="2024-03-11T00:00:00Z"))
        item.refresh_from_db()
        self.assertEqual(item.reserved_quantity, 0)

    def test_cancelling_unreserved_order_keeps_other_reservations(self):
        handle_webhook("orders/create", shopify_payload(line_items=[
            {"sku": "CANDLE-01", "name": "Amber candle", "quantity": 10, "price": "16.00"},
        ]))
        with self.assertLogs("order.services", level="WARNING"):
            handle_webhook("orders/create", second_order(5))
        self.assertEqual(OrderLineItem.objects.get(order__order_number="1002").reserved_quantity, 0)

        handle_webhook("orders/cancelled", second_order(5, cancelled_at="2024-03-11T00:00:00Z"))

        self.assertEqual(self.refresh_stock(), (10, 10, 0))
        self.assertFalse(StockMovement.objects.filter(movement_type=StockMovement.MovementType.RELEASE).exists())

    def test_fulfilling_unreserved_order_uses_free_stock(self):
        handle_webhook("orders/create", shopify_payload(line_items=[
            {"sku": "CANDLE-01", "name": "Amber candle", "quantity": 4, "price": "16.00"},
        ]))
        # Historical import: stored without a reservation.
        upsert_order(normalize_shopify_order(second_order(5)))

        handle_webhook("orders/fulfilled", second_order(5, fulfillment_status="fulfilled"))

        self.assertEqual(self.refresh_stock(), (5, 4, 1))
        self.assertEqual(OrderLineItem.objects.get(order__order_number="1001").reserved_quantity, 4)

    def test_fulfilment_beyond_free_stock_consumes_other_reservations(self):
        handle_webhook("orders/create", shopify_payload(line_items=[
            {"sku": "CANDLE-01", "name": "Amber candle", "quantity": 8, "price": "16.00"},
        ]))
        upsert_order(normalize_shopify_order(second_order(5)))

        with self.assertLogs("inventory.services", level="WARNING"):
            handle_webhook("orders/fulfilled", second_order(5, fulfillment_status="fulfilled"))

        # 2 free units plus 3 of the other order's reserved units left the building.
        self.assertEqual(self.refresh_stock(), (5, 5, 0))


class WebhookSignatureTests(TestCase):
    def test_hmac_round_trip(self):
        body = b'{"id": 1}'
        verify_webhook(body, compute_webhook_hmac(body, "s3cret"), secret="s3cret")
        with self.assertRaises(WebhookSignatureError):
            verify_webhook(body, compute_webhook_hmac(b"{}", "s3cret"), secret="s3cret")
        with self.assertRaises(WebhookSignatureError):
            verify_webhook(body, None, secret="s3cret")


@override_settings(SHOPIFY_WEBHOOK_SECRET="s3cret")
class ShopifyWebhookViewTests(OrderFixtureMixin, TestCase):
    url = "/order/webhooks/shopify/"

    def setUp(self):
        self.make_fixtures()

    def _post(self, body, topic="orders/create", signature=None):
        return self.client.post(
            self.url,
            data=body,
            content_type="application/json",
            HTTP_X_SHOPIFY_TOPIC=topic,
            HTTP_X_SHOPIFY_HMAC_SHA256=signature if signature is not None else compute_webhook_hmac(body, "s3cret"),
        )

    def test_signed_webhook_is_processed(self):
        response = self._post(json.dumps(shopify_payload()).encode("utf-8"))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"success": True})
        log = WebhookLog.objects.get()
        self.assertTrue(log.processed)
        self.assertEqual(log.reference, "5550001")
        self.assertEqual(self.refresh_stock(), (10, 3, 7))

    def test_bad_signature_is_rejected(self):
        response = self._post(json.dumps(shopify_payload()).encode("utf-8"), signature="bogus")

        self.assertEqual(response.status_code, 401)
        self.assertFalse(Order.objects.exists())
        self.assertFalse(WebhookLog.objects.exists())

    def test_invalid_json_is_logged(self):
        response = self._post(b"{not json")

        self.assertEqual(response.status_code, 400)
        log = WebhookLog.objects.get()
        self.assertEqual(log.reference, "INVALID_JSON")
        self.assertFalse(log.processed)

    def test_unprocessable_order_is_recorded(self):
        response = self._post(json.dumps(shopify_payload(name="", order_number=None)).encode("utf-8"))

        self.assertEqual(response.status_code, 400)
        self.assertIn("order number", WebhookLog.objects.get().error)

    @override_settings(SHOPIFY_WEBHOOK_SECRET="")
    def test_unsigned_webhook_accepted_when_no_secret_configured(self):
        response = self._post(json.dumps(shopify_payload()).encode("utf-8"), signature="")
        self.assertEqual(response.status_code, 200)


class FakeBulkClient:
    def __init__(self, statuses, rows=None, current_id="gid://shopify/BulkOperation/1", download_error=None):
        self.statuses = list(statuses)
        self.rows = rows or []
        self.current_id = current_id
        self.download_error = download_error
        self.downloaded = []

    def start_bulk_order_export(self, since):
        self.since = since
        return {"id": "gid://shopify/BulkOperation/1", "status": "CREATED"}

    def current_bulk_operation(self):
        status_value = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        operation = {"id": self.current_id, "status": status_value, "errorCode": None}
        if status_value == "COMPLETED" and self.rows:
            operation["url"] = "https://storage.example.com/export.jsonl"
        return operation

    def download_jsonl(self, url):
        self.downloaded.append(url)
        if self.download_error is not None:
            raise self.download_error
        return iter(self.rows)


class BulkOrderImportTests(OrderFixtureMixin, TestCase):
    def setUp(self):
        self.make_fixtures()
        self.sleeps = []

    def _importer(self, client, max_attempts=5):
        importer = BulkOrderImport(client=client)
        importer.max_attempts = max_attempts
        return importer

    def test_completed_export_is_ingested(self):
        client = FakeBulkClient(["RUNNING", "RUNNING", "COMPLETED"], rows=bulk_rows())
        log = self._importer(client).run(actor="ops", sleep=self.sleeps.append)

        self.assertEqual(log.status, ImportLog.Status.COMPLETED)
        self.assertEqual(log.records_imported, 1)
        self.assertEqual(log.file_name, "gid://shopify/BulkOperation/1")
        self.assertEqual(len(self.sleeps), 2)
        self.assertEqual(client.downloaded, ["https://storage.example.com/export.jsonl"])
        order = Order.objects.get(order_number="2001")
        self.assertEqual(order.line_items.get().product, self.product)
        # History imports never touch stock.
        self.assertEqual(self.refresh_stock(), (10, 0, 10))

    def test_completed_without_objects(self):
        log = self._importer(FakeBulkClient(["COMPLETED"])).run(sleep=self.sleeps.append)
        self.assertEqual(log.status, ImportLog.Status.COMPLETED)
        self.assertEqual(log.records_imported, 0)

    def test_polling_gives_up_and_marks_import_stalled(self):
        importer = self._importer(FakeBulkClient(["RUNNING"]), max_attempts=3)
        with self.assertRaises(BulkImportStalled):
            importer.run(sleep=self.sleeps.append)

        log = ImportLog.objects.get()
        self.assertEqual(log.status, ImportLog.Status.STALLED)
        self.assertIsNotNone(log.finalized_at)
        self.assertEqual(len(self.sleeps), 2)

    def test_timeout_marks_import_stalled(self):
        ticks = iter([0, 1000])
        importer = self._importer(FakeBulkClient(["RUNNING"]))
        importer.timeout = 900
        with self.assertRaises(BulkImportStalled):
            importer.run(sleep=self.sleeps.append, clock=lambda: next(ticks))
        self.assertEqual(ImportLog.objects.get().status, ImportLog.Status.STALLED)

    def test_cancel_event_stops_polling(self):
        cancel_event = threading.Event()
        cancel_event.set()
        with self.assertRaises(BulkImportStalled):
            self._importer(FakeBulkClient(["RUNNING"])).run(cancel_event=cancel_event, sleep=self.sleeps.append)
        self.assertEqual(ImportLog.objects.get().status, ImportLog.Status.STALLED)

    def test_failed_operation_marks_import_failed(self):
        with self.assertRaises(BulkImportFailed):
            self._importer(FakeBulkClient(["RUNNING", "FAILED"])).run(sleep=self.sleeps.append)

        log = ImportLog.objects.get()
        self.assertEqual(log.status, ImportLog.Status.FAILED)
        self.assertIn("FAILED", log.error_log[0]["error"])

    def test_api_error_while_polling_marks_import_failed(self):
        client = FakeBulkClient(["RUNNING"])
        client.current_bulk_operation = mock.Mock(side_effect=ShopifyError("Shopify request failed: 503"))
        with self.assertRaises(ShopifyError), self.assertLogs("order.bulk_import", level="ERROR"):
            self._importer(client).run(sleep=self.sleeps.append)

        log = ImportLog.objects.get()
        self.assertEqual(log.status, ImportLog.Status.FAILED)
        self.assertIsNotNone(log.finalized_at)
        self.assertIn("503", log.error_log[0]["error"])

    def test_download_error_marks_import_failed(self):
        client = FakeBulkClient(["COMPLETED"], rows=bulk_rows(), download_error=ShopifyError("download timed out"))
        with self.assertRaises(ShopifyError), self.assertLogs("order.bulk_import", level="ERROR"):
            self._importer(client).run(sleep=self.sleeps.append)

        self.assertEqual(ImportLog.objects.get().status, ImportLog.Status.FAILED)
        self.assertFalse(Order.objects.exists())

    def test_step_wise_process_failure_closes_the_log(self):
        log = ImportLog.objects.create(
            import_type=ImportLog.ImportType.SHOPIFY_ORDERS, status=ImportLog.Status.IN_PROGRESS
        )
        client = FakeBulkClient(["COMPLETED"], download_error=ShopifyError("gone"))
        with self.assertRaises(ShopifyError), self.assertLogs("order.bulk_import", level="ERROR"):
            BulkOrderImport(client=client).process("https://storage.example.com/export.jsonl", log)

        log.refresh_from_db()
        self.assertEqual(log.status, ImportLog.Status.FAILED)

    def test_superseded_operation_is_not_processed(self):
        client = FakeBulkClient(["COMPLETED"], rows=bulk_rows(), current_id="gid://shopify/BulkOperation/2")
        with self.assertRaises(BulkImportFailed):
            self._importer(client).run(sleep=self.sleeps.append)

        log = ImportLog.objects.get()
        self.assertEqual(log.status, ImportLog.Status.FAILED)
        self.assertIn("superseded", log.error_log[0]["error"])
        self.assertEqual(client.downloaded, [])
        self.assertFalse(Order.objects.exists())


class IngestOrdersTests(OrderFixtureMixin, TestCase):
    def setUp(self):
        self.make_fixtures()

    @override_settings(REPORTING_TIME_ZONE="America/Los_Angeles")
    def test_ingest_updates_local_day_summary(self):
        log = ImportLog.objects.create(
            import_type=ImportLog.ImportType.SHOPIFY_ORDERS, status=ImportLog.Status.IN_PROGRESS
        )
        ingest_orders([normalize_shopify_order(shopify_payload())], log, errors=[{"order": "X", "error": "bad"}])

        log.refresh_from_db()
        self.assertEqual(log.status, ImportLog.Status.COMPLETED_WITH_ERRORS)
        self.assertEqual((log.records_imported, log.records_failed), (1, 1))
        # 06:30 UTC on the 10th is the evening of the 9th in Los Angeles.
        summary = DailySalesSummary.objects.get(summary_date=date(2024, 3, 9))
        self.assertEqual(summary.order_count, 1)
        self.assertEqual(summary.units_sold, 3)
        self.assertEqual(summary.total_revenue, Decimal("54.00"))
        self.assertEqual(self.refresh_stock(), (10, 0, 10))


class ShopifyClientTests(TestCase):
    def _client(self, session):
        return ShopifyClient(store_domain="demo.myshopify.com", access_token="token", session=session)

    def test_graphql_returns_data(self):
        session = mock.Mock()
        session.post.return_value = mock.Mock(ok=True, status_code=200)
        session.post.return_value.json.return_value = {"data": {"currentBulkOperation": {"id": "op", "status": "RUNNING"}}}

        operation = self._client(session).current_bulk_operation()

        self.assertEqual(operation["status"], "RUNNING")
        _, kwargs = session.post.call_args
        self.assertEqual(kwargs["headers"]["X-Shopify-Access-Token"], "token")
        self.assertIn("demo.myshopify.com/admin/api/", session.post.call_args[0][0])

    def test_graphql_errors_raise(self):
        session = mock.Mock()
        session.post.return_value = mock.Mock(ok=True, status_code=200)
        session.post.return_value.json.return_value = {"errors": [{"message": "Throttled"}]}
        with self.assertRaises(ShopifyError):
            self._client(session).graphql("{ shop { name } }")

    def test_bulk_start_user_errors_raise(self):
        session = mock.Mock()
        session.post.return_value = mock.Mock(ok=True, status_code=200)
        session.post.return_value.json.return_value = {
            "data": {"bulkOperationRunQuery": {"bulkOperation": None, "userErrors": [{"message": "busy"}]}}
        }
        with self.assertRaises(ShopifyError):
            self._client(session).start_bulk_order_export(date(2024, 1, 1))

    def test_register_webhooks_subscribes_each_order_topic(self):
        def response(payload):
            resp = mock.Mock(ok=True, status_code=200)
            resp.json.return_value = {"data": {"webhookSubscriptionCreate": payload}}
            return resp

        session = mock.Mock()
        session.post.side_effect = [
            response({"webhookSubscription": {"id": "gid://shopify/WebhookSubscription/1"}, "userErrors": []}),
            response({"webhookSubscription": None, "userErrors": [{"field": ["callbackUrl"], "message": "taken"}]}),
        ]

        results = self._client(session).register_webhooks(
            "https://stock.example.com/order/webhooks/shopify/", topics=("ORDERS_CREATE", "ORDERS_CANCELLED")
        )

        self.assertEqual(
            [(result["topic"], result["success"]) for result in results],
            [("ORDERS_CREATE", True), ("ORDERS_CANCELLED", False)],
        )
        self.assertEqual(results[0]["id"], "gid://shopify/WebhookSubscription/1")
        self.assertEqual(results[1]["errors"][0]["message"], "taken")
        sent = session.post.call_args_list[0][1]["json"]
        self.assertIn("webhookSubscriptionCreate", sent["query"])
        self.assertEqual(sent["variables"]["topic"], "ORDERS_CREATE")
        self.assertEqual(
            sent["variables"]["webhookSubscription"],
            {"callbackUrl": "https://stock.example.com/order/webhooks/shopify/", "format": "JSON"},
        )

    def test_download_skips_malformed_lines(self):
        session = mock.Mock()
        session.get.return_value = mock.Mock(ok=True, status_code=200, text='{"id": 1}\nnot json\n\n{"id": 2}\n')
        rows = list(self._client(session).download_jsonl("https://storage.example.com/export.jsonl"))
        self.assertEqual(rows, [{"id": 1}, {"id": 2}])


class SetupWebhooksCommandTests(TestCase):
    @override_settings(SHOPIFY_WEBHOOK_CALLBACK_URL="")
    def test_callback_url_is_required(self):
        with self.assertRaises(CommandError):
            call_command("setup_shopify_webhooks", callback_url="", stdout=StringIO())

    @mock.patch("order.management.commands.setup_shopify_webhooks.ShopifyClient")
    def test_registers_all_order_topics(self, client_class):
        client_class.return_value.register_webhooks.return_value = [
            {"topic": topic, "success": True, "id": f"sub-{n}"} for n, topic in enumerate(ORDER_WEBHOOK_TOPICS)
        ]
        out = StringIO()
        call_command("setup_shopify_webhooks", callback_url="https://stock.example.com/hook/", stdout=out)

        client_class.return_value.register_webhooks.assert_called_once_with(
            "https://stock.example.com/hook/", ORDER_WEBHOOK_TOPICS
        )
        self.assertIn("4/4 successful", out.getvalue())

    @mock.patch("order.management.commands.setup_shopify_webhooks.ShopifyClient")
    def test_shopify_errors_become_command_errors(self, client_class):
        client_class.return_value.register_webhooks.side_effect = ShopifyError("401 Unauthorized")
        with self.assertRaises(CommandError):
            call_command("setup_shopify_webhooks", callback_url="https://stock.example.com/hook/", stdout=StringIO())


class OrderApiTests(OrderFixtureMixin, APITestCase):
    def setUp(self):
        self.make_fixtures()
        self.admin = get_user_model().objects.create_user(username="ops", password="pass1234", is_staff=True)
        self.clerk = get_user_model().objects.create_user(username="clerk", password="pass1234")

    def test_order_list_filters_by_status(self):
        handle_webhook("orders/create", shopify_payload())
        handle_webhook("orders/create", shopify_payload(id=5550002, name="#1002", order_number=1002, financial_status="pending"))
        self.client.force_authenticate(user=self.clerk)

        response = self.client.get("/order/orders/", {"status": "paid"})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["count"], 1)
        self.assertEqual(response.data["results"][0]["order_number"], "1001")

    def test_csv_import(self):
        content = (
            "Name,Id,Financial Status,Fulfillment Status,Created at,Total,Subtotal,Shipping,Currency,Email,"
            "Lineitem name,Lineitem sku,Lineitem quantity,Lineitem price\n"
            "#4001,888,paid,fulfilled,2024-03-10 12:00:00 +0000,20.00,16.00,4.00,USD,a@example.com,"
            "Amber candle,CANDLE-01,1,16.00\n"
        )
        upload = SimpleUploadedFile("orders.csv", content.encode("utf-8"), content_type="text/csv")
        self.client.force_authenticate(user=self.admin)

        response = self.client.post("/order/imports/csv/", {"file": upload}, format="multipart")

        self.assertEqual(response.status_code, status.HTTP_201_CREATED, response.data)
        self.assertEqual(response.data["status"], ImportLog.Status.COMPLETED)
        self.assertEqual(Order.objects.get(order_number="4001").line_items.count(), 1)

    def test_shopify_import_requires_admin(self):
        self.client.force_authenticate(user=self.clerk)
        response = self.client.post("/order/imports/shopify/", {"action": "check"}, format="json")
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_shopify_import_check_without_operation(self):
        self.client.force_authenticate(user=self.admin)
        with mock.patch("order.views.BulkOrderImport") as importer_cls:
            importer_cls.return_value.check.return_value = {"operation_id": None, "status": None}
            response = self.client.post("/order/imports/shopify/", {"action": "check"}, format="json")

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertFalse(response.data["success"])
