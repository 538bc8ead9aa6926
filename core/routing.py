from django.urls import re_path
from core.consumers import NotificationConsumer

websocket_urlpatterns = [
    re_path(r"ws/notifications/(?P<participant_id>[0-9a-fA-F-]{32,36})/$", NotificationConsumer.as_asgi()),
]
