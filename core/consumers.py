from channels.generic.websocket import AsyncWebsocketConsumer
import json

from core.services.notifications import participant_group


class NotificationConsumer(AsyncWebsocketConsumer):
    """Pushes a participant's notifications; the group is joined per url participant_id."""

    async def connect(self):
        self.group_name = participant_group(self.scope["url_route"]["kwargs"]["participant_id"])
        await self.channel_layer.group_add(self.group_name, self.channel_name)
        await self.accept()

    async def disconnect(self, close_code):
        await self.channel_layer.group_discard(self.group_name, self.channel_name)

    async def notification_created(self, event):
        await self.send(text_data=json.dumps(event["message"]))
