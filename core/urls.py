
from django.contrib import admin
from django.urls import path, include
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView



urlpatterns = [
    path("admin/", admin.site.urls),
    path("auth/login/", TokenObtainPairView.as_view(), name="login"),
    path("auth/refresh/", TokenRefreshView.as_view(), name="refresh"),
    path('catalog/', include('catalog.urls')),
    path('inventory/', include('inventory.urls')),
    path('order/', include('order.urls')),
    path('forecasting/', include('forecasting.urls')),
]
