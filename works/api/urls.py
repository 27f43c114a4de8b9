"""API URL routing for PracticeFlow."""
from rest_framework.routers import DefaultRouter
from .views import InvoiceViewSet, PeriodTaskViewSet, PeriodViewSet, WorkTaskViewSet, WorkViewSet

router = DefaultRouter()
router.register(r'works', WorkViewSet, basename='api-works')
router.register(r'periods', PeriodViewSet, basename='api-periods')
router.register(r'period-tasks', PeriodTaskViewSet, basename='api-period-tasks')
router.register(r'work-tasks', WorkTaskViewSet, basename='api-work-tasks')
router.register(r'invoices', InvoiceViewSet, basename='api-invoices')

urlpatterns = router.urls
