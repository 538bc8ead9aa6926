from __future__ import annotations

import logging

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer

from core.models import Notification


logger = logging.getLogger(__name__)


def participant_group(participant_id) -> str:
    return f"participant_{participant_id}"


def notify(
    user_id,
    title: str,
    message: str,
    notification_type: str = Notification.Type.INFO,
    product_id=None,
) -> Notification | None:
    """
    Fire-and-forget: stores the notification and pushes it to the
    participant's websocket group. Failures are logged, never raised.
    """
    try:
        notification = Notification.objects.create(
            recipient_id=user_id,
            title=title,
            message=message,
            type=notification_type,
            product_id=product_id,
        )
    except Exception:
        logger.exception("could not store notification for participant=%s title=%r", user_id, title)
        return None

    try:
        channel_layer = get_channel_layer()
        if channel_layer is not None:
            async_to_sync(channel_layer.group_send)(
                participant_group(user_id),
                {
                    "type": "notification.created",
                    "message": {
                        "id": notification.id,
                        "title": notification.title,
                        "message": notification.message,
                        "type": notification.type,
                        "product_id": str(product_id) if product_id else None,
                        "created_at": notification.created_at.isoformat(),
                    },
                },
            )
    except Exception:
        logger.exception("could not push notification=%s to participant=%s", notification.id, user_id)
    return notification
