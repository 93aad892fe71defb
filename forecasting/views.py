import logging

from django.utils.dateparse import parse_date
from rest_framework import permissions, status
from rest_framework.generics import ListAPIView
from rest_framework.response import Response
from rest_framework.views import APIView

from .models import DailySalesSummary
from .serializers import DailySalesSummarySerializer, RunwayRowSerializer
from .services import stock_runway_report, stockout_calendar, update_product_velocities

logger = logging.getLogger(__name__)


def _window(request):
    raw = request.query_params.get("window", "30")
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ValueError(f"window must be a number of days, got '{raw}'")


class RunwayReportView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request):
        try:
            rows = stock_runway_report(velocity_window=_window(request))
        except ValueError as exc:
            return Response({"detail": str(exc)}, status=status.HTTP_400_BAD_REQUEST)
        status_filter = request.query_params.get("status")
        if status_filter:
            rows = [row for row in rows if row["status"] == status_filter]
        return Response(RunwayRowSerializer(rows, many=True).data)


class StockoutCalendarView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request):
        horizon = request.query_params.get("horizon")
        try:
            calendar = stockout_calendar(
                velocity_window=_window(request),
                horizon_days=int(horizon) if horizon else None,
            )
        except ValueError as exc:
            return Response({"detail": str(exc)}, status=status.HTTP_400_BAD_REQUEST)
        return Response(
            [
                {"date": day.isoformat(), "items": RunwayRowSerializer(rows, many=True).data}
                for day, rows in calendar.items()
            ]
        )


class RecomputeVelocitiesView(APIView):
    permission_classes = [permissions.IsAdminUser]

    def post(self, request):
        updated = update_product_velocities()
        logger.info("Velocity recompute triggered by %s", request.user)
        return Response({"updated": updated}, status=status.HTTP_200_OK)


class SalesSummaryView(ListAPIView):
    permission_classes = [permissions.IsAuthenticated]
    serializer_class = DailySalesSummarySerializer

    def get_queryset(self):
        queryset = DailySalesSummary.objects.all()
        start = parse_date(self.request.query_params.get("start") or "")
        end = parse_date(self.request.query_params.get("end") or "")
        if start:
            queryset = queryset.filter(summary_date__gte=start)
        if end:
            queryset = queryset.filter(summary_date__lte=end)
        return queryset.order_by("summary_date")
