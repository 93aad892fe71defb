from django.urls import path
from .views import *

urlpatterns = [
    path('products/', ProductListCreateView.as_view(), name='product-list'),
    path('products/<uuid:pk>/', ProductDetailView.as_view(), name='product-detail'),
    path('categories/', CategoryListCreateView.as_view(), name='category-list'),
    path('suppliers/', SupplierListCreateView.as_view(), name='supplier-list'),
    path('suppliers/<uuid:pk>/', SupplierDetailView.as_view(), name='supplier-detail'),
    path('bundles/', BundleListCreateView.as_view(), name='bundle-list'),
    path('bundles/<uuid:pk>/', BundleDetailView.as_view(), name='bundle-detail'),
    path('bundles/<uuid:pk>/availability/', BundleAvailabilityView.as_view(), name='bundle-availability'),
]
