from django.urls import path
from .views import *

urlpatterns = [
    path('warehouses/', WarehouseListCreateView.as_view(), name='warehouse-list'),
    path('warehouses/<uuid:pk>/', WarehouseDetailView.as_view(), name='warehouse-detail'),
    path('stock/', StockListView.as_view(), name='stock-list'),
    path('stock/adjust/', StockAdjustView.as_view(), name='stock-adjust'),
    path('stock/<uuid:product_id>/<uuid:warehouse_id>/', StockDetailView.as_view(), name='stock-detail'),
    path('reserve/', ReserveStockView.as_view(), name='stock-reserve'),
    path('release/', ReleaseStockView.as_view(), name='stock-release'),
    path('deduct/', DeductStockView.as_view(), name='stock-deduct'),
    path('movements/', MovementListView.as_view(), name='movement-list'),
    path('import/', StockImportView.as_view(), name='stock-import'),
    path('purchase-orders/', PurchaseOrderListCreateView.as_view(), name='purchase-order-list'),
    path('purchase-orders/<uuid:pk>/receive/', ReceivePurchaseOrderView.as_view(), name='purchase-order-receive'),
]
