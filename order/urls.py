from django.urls import path
from .views import *

urlpatterns = [
    path('orders/', OrderListView.as_view(), name='order-list'),
    path('orders/<uuid:pk>/', OrderDetailView.as_view(), name='order-detail'),
    path('webhooks/shopify/', ShopifyWebhookView.as_view(), name='shopify-webhook'),
    path('imports/', ImportLogListView.as_view(), name='import-log-list'),
    path('imports/shopify/', ShopifyImportView.as_view(), name='shopify-import'),
    path('imports/csv/', OrderCsvImportView.as_view(), name='order-csv-import'),
]
