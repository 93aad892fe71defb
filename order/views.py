import csv
import io
import json
import logging

from django.http import HttpRequest, JsonResponse
from django.utils.decorators import method_decorator
from django.views import View
from django.views.decorators.csrf import csrf_exempt
from rest_framework import permissions, status
from rest_framework.generics import ListAPIView, RetrieveAPIView
from rest_framework.response import Response
from rest_framework.views import APIView

from inventory.models import ImportLog
from inventory.serializers import ImportLogSerializer
from inventory.views import request_actor

from .bulk_import import BulkOrderImport
from .models import Order, WebhookLog
from .serializers import OrderCsvImportSerializer, OrderSerializer, ShopifyImportActionSerializer
from .services import OrderIngestionError, handle_webhook, ingest_orders, normalize_csv_orders
from .shopify import ShopifyConfigurationError, ShopifyError, WebhookSignatureError, verify_webhook

logger = logging.getLogger(__name__)


class OrderListView(ListAPIView):
    permission_classes = [permissions.IsAuthenticated]
    serializer_class = OrderSerializer

    def get_queryset(self):
        queryset = Order.objects.prefetch_related("line_items")
        params = self.request.query_params
        if params.get("status"):
            queryset = queryset.filter(status=params["status"])
        if params.get("fulfillment_status"):
            queryset = queryset.filter(fulfillment_status=params["fulfillment_status"])
        if params.get("search"):
            queryset = queryset.filter(order_number__icontains=params["search"])
        return queryset.order_by("-placed_at")


class OrderDetailView(RetrieveAPIView):
    permission_classes = [permissions.IsAuthenticated]
    queryset = Order.objects.prefetch_related("line_items")
    serializer_class = OrderSerializer


@method_decorator(csrf_exempt, name="dispatch")
class ShopifyWebhookView(View):
    """
    Endpoint to receive Shopify order webhooks.
    Handles orders/create, orders/fulfilled, orders/cancelled and orders/updated.
    """

    def get(self, request: HttpRequest):
        return JsonResponse({"info": "Shopify Webhook endpoint, POST only"})

    def post(self, request: HttpRequest):
        topic = request.headers.get("X-Shopify-Topic", "")
        signature = request.headers.get("X-Shopify-Hmac-Sha256")

        try:
            verify_webhook(request.body, signature)
        except WebhookSignatureError as exc:
            logger.warning("Shopify webhook rejected (%s): %s", topic, exc)
            return JsonResponse({"error": "Invalid signature"}, status=401)

        try:
            payload = json.loads(request.body)
        except json.JSONDecodeError:
            logger.error("Shopify webhook invalid JSON: %s", request.body[:500])
            WebhookLog.objects.create(
                provider="SHOPIFY",
                topic=topic or "INVALID_JSON",
                reference="INVALID_JSON",
                payload={"raw_body": request.body.decode("utf-8", errors="replace")},
                processed=False,
                processing_attempts=1,
            )
            return JsonResponse({"error": "Invalid JSON"}, status=400)

        reference = str(payload.get("id") or payload.get("name") or "UNKNOWN") if isinstance(payload, dict) else "UNKNOWN"
        logger.info("Shopify webhook received: %s for order %s", topic, reference)
        webhook_log = WebhookLog.objects.create(
            provider="SHOPIFY",
            topic=topic,
            reference=reference,
            payload=payload,
            processed=False,
            processing_attempts=1,
        )

        try:
            handle_webhook(topic, payload)
        except OrderIngestionError as exc:
            webhook_log.error = str(exc)
            webhook_log.save(update_fields=["error"])
            logger.warning("Shopify webhook %s for %s rejected: %s", topic, reference, exc)
            return JsonResponse({"error": str(exc)}, status=400)
        except Exception as exc:
            webhook_log.error = str(exc)
            webhook_log.save(update_fields=["error"])
            logger.exception("Shopify webhook %s failed for %s", topic, reference)
            return JsonResponse({"error": str(exc)}, status=500)

        webhook_log.processed = True
        webhook_log.save(update_fields=["processed"])
        return JsonResponse({"success": True})


class ShopifyImportView(APIView):
    """Step-wise bulk import: ``start``, then ``check`` until COMPLETED, then ``process`` the url."""

    permission_classes = [permissions.IsAdminUser]

    def post(self, request):
        serializer = ShopifyImportActionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        action = data["action"]

        try:
            importer = BulkOrderImport()
            if action == "start":
                import_log = importer.start(actor=request_actor(request))
                return Response(
                    {
                        "success": True,
                        "operation_id": import_log.file_name,
                        "import_log_id": str(import_log.id),
                        "message": "Bulk operation started. Poll with action=check to see progress.",
                    },
                    status=status.HTTP_201_CREATED,
                )
            if action == "check":
                result = importer.check()
                if not result["operation_id"]:
                    return Response({"success": False, "message": "No bulk operation found"})
                message = (
                    "Ready to process. Call with action=process"
                    if result["status"] == "COMPLETED"
                    else f"Status: {result['status']}"
                )
                return Response({"success": True, **result, "message": message})

            operation_id = data.get("operation_id") or ""
            import_log = (
                ImportLog.objects.filter(
                    import_type=ImportLog.ImportType.SHOPIFY_ORDERS,
                    file_name=operation_id,
                    status=ImportLog.Status.IN_PROGRESS,
                ).first()
                if operation_id
                else None
            )
            if import_log is None:
                import_log = ImportLog.objects.create(
                    import_type=ImportLog.ImportType.SHOPIFY_ORDERS,
                    status=ImportLog.Status.IN_PROGRESS,
                    file_name=operation_id,
                    imported_by=request_actor(request),
                )
            import_log = importer.process(data["url"], import_log)
        except ShopifyConfigurationError as exc:
            return Response({"detail": str(exc)}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)
        except ShopifyError as exc:
            logger.exception("Shopify bulk import %s failed", action)
            return Response({"detail": str(exc)}, status=status.HTTP_502_BAD_GATEWAY)

        return Response(
            {
                "success": True,
                "records_imported": import_log.records_imported,
                "records_failed": import_log.records_failed,
                "errors": import_log.error_log[:100],
            }
        )


class OrderCsvImportView(APIView):
    permission_classes = [permissions.IsAdminUser]

    def post(self, request):
        serializer = OrderCsvImportSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        upload = serializer.validated_data["file"]

        content = upload.read().decode("utf-8-sig")
        orders, errors = normalize_csv_orders(csv.DictReader(io.StringIO(content)))
        import_log = ImportLog.objects.create(
            import_type=ImportLog.ImportType.ORDERS_CSV,
            status=ImportLog.Status.IN_PROGRESS,
            file_name=upload.name,
            imported_by=request_actor(request),
        )
        import_log = ingest_orders(orders, import_log, errors=errors)
        return Response(ImportLogSerializer(import_log).data, status=status.HTTP_201_CREATED)


class ImportLogListView(ListAPIView):
    permission_classes = [permissions.IsAuthenticated]
    serializer_class = ImportLogSerializer

    def get_queryset(self):
        queryset = ImportLog.objects.all()
        import_type = self.request.query_params.get("type")
        if import_type:
            queryset = queryset.filter(import_type=import_type)
        return queryset.order_by("-created_at")
