from django.urls import path, include
from rest_framework.routers import DefaultRouter
from core.views import (
    ParticipantViewSet,
    ProductViewSet,
    TransferViewSet,
    NotificationViewSet,
    QualityCheckViewSet,
    ScanViewSet,
)

router = DefaultRouter()
router.register(r'participants', ParticipantViewSet, basename='participant')
router.register(r'products', ProductViewSet, basename='product')
router.register(r'transfers', TransferViewSet, basename='transfer')
router.register(r'notifications', NotificationViewSet, basename='notification')
router.register(r'quality_checks', QualityCheckViewSet, basename='quality-check')
router.register(r'scans', ScanViewSet, basename='scan')

urlpatterns = [
    path('', include(router.urls)),
]
