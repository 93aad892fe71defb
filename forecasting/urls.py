from django.urls import path
from .views import *

urlpatterns = [
    path('runway/', RunwayReportView.as_view(), name='runway-report'),
    path('calendar/', StockoutCalendarView.as_view(), name='stockout-calendar'),
    path('velocities/recompute/', RecomputeVelocitiesView.as_view(), name='velocity-recompute'),
    path('sales-summary/', SalesSummaryView.as_view(), name='sales-summary'),
]
