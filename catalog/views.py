from rest_framework import permissions
from rest_framework.generics import ListCreateAPIView, RetrieveUpdateDestroyAPIView
from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework import status
from .models import *
from .serializers import *
from .services import BundleNotFound, BundleResolver


class ProductListCreateView(ListCreateAPIView):
    permission_classes = [permissions.IsAuthenticated]
    serializer_class = ProductSerializer

    def get_queryset(self):
        queryset = Product.objects.select_related("category", "supplier")
        search = self.request.query_params.get("search")
        if search:
            queryset = queryset.filter(sku__icontains=search) | queryset.filter(name__icontains=search)
        if self.request.query_params.get("active") == "true":
            queryset = queryset.filter(is_active=True)
        return queryset.order_by("sku")


class ProductDetailView(RetrieveUpdateDestroyAPIView):
    permission_classes = [permissions.IsAuthenticated]
    queryset = Product.objects.select_related("category", "supplier")
    serializer_class = ProductSerializer

    def perform_destroy(self, instance):
        # Products with stock or order history are retired, not deleted.
        if instance.stock_entries.exists() or instance.movements.exists():
            instance.is_active = False
            instance.save(update_fields=["is_active", "updated_at"])
            return
        instance.delete()


class CategoryListCreateView(ListCreateAPIView):
    permission_classes = [permissions.IsAuthenticated]
    queryset = Category.objects.all().order_by("name")
    serializer_class = CategorySerializer


class SupplierListCreateView(ListCreateAPIView):
    permission_classes = [permissions.IsAuthenticated]
    queryset = Supplier.objects.all().order_by("name")
    serializer_class = SupplierSerializer


class SupplierDetailView(RetrieveUpdateDestroyAPIView):
    permission_classes = [permissions.IsAuthenticated]
    queryset = Supplier.objects.all()
    serializer_class = SupplierSerializer


class BundleListCreateView(ListCreateAPIView):
    permission_classes = [permissions.IsAuthenticated]
    queryset = Bundle.objects.prefetch_related("components__product").order_by("sku")
    serializer_class = BundleSerializer


class BundleDetailView(RetrieveUpdateDestroyAPIView):
    permission_classes = [permissions.IsAuthenticated]
    queryset = Bundle.objects.prefetch_related("components__product")
    serializer_class = BundleSerializer


class BundleAvailabilityView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request, pk):
        try:
            availability = BundleResolver.availability(pk)
            cost = BundleResolver.cost(pk)
        except BundleNotFound as exc:
            return Response({"detail": str(exc)}, status=status.HTTP_404_NOT_FOUND)
        return Response({"bundle_id": str(pk), "availability": availability, "cost": str(cost)})
