import logging

from django.shortcuts import get_object_or_404
from django.utils import timezone
from django.utils.dateparse import parse_date, parse_datetime
from rest_framework import permissions, status
from rest_framework.exceptions import ValidationError
from rest_framework.generics import ListAPIView, ListCreateAPIView, RetrieveUpdateDestroyAPIView
from rest_framework.response import Response
from rest_framework.views import APIView

from forecasting.dates import day_bounds, reporting_zone

from .importers import import_stock_rows, parse_stock_csv
from .models import PurchaseOrder, StockLedgerEntry, Warehouse
from .serializers import (
    ImportLogSerializer,
    PurchaseOrderSerializer,
    ReceivePurchaseOrderSerializer,
    StockAdjustmentSerializer,
    StockImportSerializer,
    StockLedgerEntrySerializer,
    StockMovementSerializer,
    StockOperationSerializer,
    WarehouseSerializer,
)
from .services import (
    InsufficientStock,
    InvalidQuantity,
    InventoryError,
    StockManager,
    StockRecordNotFound,
    movement_history,
)

logger = logging.getLogger(__name__)


def request_actor(request) -> str:
    user = getattr(request, "user", None)
    if user is None or not user.is_authenticated:
        return ""
    return user.get_username() or str(user.pk)


def _error_response(exc: InventoryError) -> Response:
    if isinstance(exc, InsufficientStock):
        return Response(
            {"detail": str(exc), "requested": exc.requested, "available": exc.available},
            status=status.HTTP_409_CONFLICT,
        )
    if isinstance(exc, StockRecordNotFound):
        return Response({"detail": str(exc)}, status=status.HTTP_404_NOT_FOUND)
    return Response({"detail": str(exc)}, status=status.HTTP_400_BAD_REQUEST)


def _parse_instant(value, param, end=False):
    """
    Read a ``start``/``end`` query value.

    A bare date means the local reporting day: its first instant for
    ``start`` and the first instant of the next day for ``end``, so the
    named end day is included.
    """
    if not value:
        return None
    try:
        parsed = parse_datetime(value)
        day = None if parsed is not None else parse_date(value)
    except ValueError:
        parsed = day = None
    if parsed is not None:
        if timezone.is_naive(parsed):
            parsed = timezone.make_aware(parsed, reporting_zone())
        return parsed
    if day is None:
        raise ValidationError({param: f"Expected an ISO date or datetime, got '{value}'."})
    day_start, day_end = day_bounds(day)
    return day_end if end else day_start


class WarehouseListCreateView(ListCreateAPIView):
    permission_classes = [permissions.IsAuthenticated]
    queryset = Warehouse.objects.all().order_by("name")
    serializer_class = WarehouseSerializer


class WarehouseDetailView(RetrieveUpdateDestroyAPIView):
    permission_classes = [permissions.IsAuthenticated]
    queryset = Warehouse.objects.all()
    serializer_class = WarehouseSerializer

    def destroy(self, request, *args, **kwargs):
        warehouse = self.get_object()
        if warehouse.stock_entries.exists():
            return Response(
                {"detail": "Warehouse still holds stock records and cannot be deleted."},
                status=status.HTTP_400_BAD_REQUEST,
            )
        return super().destroy(request, *args, **kwargs)


class StockListView(ListAPIView):
    permission_classes = [permissions.IsAuthenticated]
    serializer_class = StockLedgerEntrySerializer

    def get_queryset(self):
        queryset = StockLedgerEntry.objects.select_related("product", "warehouse")
        product = self.request.query_params.get("product")
        warehouse = self.request.query_params.get("warehouse")
        if product:
            queryset = queryset.filter(product_id=product)
        if warehouse:
            queryset = queryset.filter(warehouse_id=warehouse)
        return queryset.order_by("product__sku", "warehouse__name")


class StockDetailView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request, product_id, warehouse_id):
        entry = get_object_or_404(
            StockLedgerEntry.objects.select_related("product", "warehouse"),
            product_id=product_id,
            warehouse_id=warehouse_id,
        )
        return Response(StockLedgerEntrySerializer(entry).data)


class StockAdjustView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request):
        serializer = StockAdjustmentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        try:
            entry = StockManager.adjust(
                data["product_id"],
                data["warehouse_id"],
                data["mode"],
                data["quantity"],
                data.get("note"),
                actor=request_actor(request),
            )
        except InventoryError as exc:
            return _error_response(exc)
        entry = StockLedgerEntry.objects.select_related("product", "warehouse").get(pk=entry.pk)
        return Response(StockLedgerEntrySerializer(entry).data, status=status.HTTP_200_OK)


class _StockOperationView(APIView):
    permission_classes = [permissions.IsAuthenticated]
    operation = None

    def perform(self, request, data):
        raise NotImplementedError

    def post(self, request):
        serializer = StockOperationSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        try:
            result = self.perform(request, data)
        except InventoryError as exc:
            if isinstance(exc, InsufficientStock):
                logger.info("Manual %s rejected: %s", self.operation, exc)
            return _error_response(exc)
        return Response(result, status=status.HTTP_200_OK)

    @staticmethod
    def _kwargs(request, data):
        return {
            "warehouse_id": data.get("warehouse_id"),
            "reference_type": "manual",
            "reference_id": data.get("reference_id", ""),
            "actor": request_actor(request),
        }


class ReserveStockView(_StockOperationView):
    operation = "reserve"

    def perform(self, request, data):
        entries = StockManager.reserve(data["product_id"], data["quantity"], **self._kwargs(request, data))
        return {
            "product_id": str(data["product_id"]),
            "reserved": data["quantity"],
            "entries": [
                {"warehouse_id": str(entry.warehouse_id), "reserved": entry.reserved, "available": entry.available}
                for entry in entries
            ],
        }


class ReleaseStockView(_StockOperationView):
    operation = "release"

    def perform(self, request, data):
        released = StockManager.release(data["product_id"], data["quantity"], **self._kwargs(request, data))
        return {"product_id": str(data["product_id"]), "released": released}


class DeductStockView(_StockOperationView):
    operation = "deduct"

    def perform(self, request, data):
        deducted = StockManager.deduct(data["product_id"], data["quantity"], **self._kwargs(request, data))
        return {"product_id": str(data["product_id"]), "deducted": deducted}


class MovementListView(ListAPIView):
    permission_classes = [permissions.IsAuthenticated]
    serializer_class = StockMovementSerializer

    def get_queryset(self):
        params = self.request.query_params
        return movement_history(
            product_id=params.get("product"),
            warehouse_id=params.get("warehouse"),
            start=_parse_instant(params.get("start"), "start"),
            end=_parse_instant(params.get("end"), "end", end=True),
        )


class StockImportView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request):
        serializer = StockImportSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        upload = data.get("file")
        if upload is not None:
            rows = parse_stock_csv(upload.read())
            file_name = data.get("file_name") or upload.name
        else:
            rows = data["rows"]
            file_name = data.get("file_name") or "rows.json"

        import_log = import_stock_rows(rows, file_name=file_name, actor=request_actor(request))
        return Response(ImportLogSerializer(import_log).data, status=status.HTTP_201_CREATED)


class PurchaseOrderListCreateView(ListCreateAPIView):
    permission_classes = [permissions.IsAuthenticated]
    queryset = PurchaseOrder.objects.select_related("supplier", "warehouse").prefetch_related("items")
    serializer_class = PurchaseOrderSerializer


class ReceivePurchaseOrderView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request, pk):
        purchase_order = get_object_or_404(PurchaseOrder, pk=pk)
        serializer = ReceivePurchaseOrderSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            purchase_order = StockManager.receive_purchase_order(
                purchase_order,
                serializer.validated_data.get("items"),
                actor=request_actor(request),
            )
        except (InvalidQuantity, StockRecordNotFound) as exc:
            return _error_response(exc)
        except InventoryError as exc:
            return Response({"detail": str(exc)}, status=status.HTTP_400_BAD_REQUEST)
        return Response(PurchaseOrderSerializer(purchase_order).data, status=status.HTTP_200_OK)
