import json
from channels.generic.websocket import AsyncWebsocketConsumer
import logging

logger = logging.getLogger(__name__)


class NotificationConsumer(AsyncWebsocketConsumer):
    """
    Per-user realtime channel. The escalation job publishes `alert_escalated`
    events to the `user_<id>_notifications` group.
    """

    async def connect(self):
        self.user = self.scope.get("user")
        if not self.user or not self.user.is_authenticated:
            await self.close()
            return

        self.room_group_name = f'user_{self.user.id}_notifications'
        await self.channel_layer.group_add(
            self.room_group_name,
            self.channel_name
        )
        await self.accept()
        await self.send(text_data=json.dumps({
            'type': 'connection_established',
            'message': f'Connected to notification channel. Group: {self.room_group_name}!'
        }))

    async def disconnect(self, close_code):
        if hasattr(self, 'room_group_name'):
            await self.channel_layer.group_discard(
                self.room_group_name,
                self.channel_name
            )

    async def receive(self, text_data):
        await self.send(text_data=json.dumps({
            'type': 'info',
            'message': 'This channel is primarily for server-to-client notifications.'
        }))

    # Receives group_send(..., {"type": "send_notification", "message": ...})
    async def send_notification(self, event):
        await self.send(text_data=json.dumps({
            'type': 'notification',
            'payload': event['message']
        }))
        logger.debug(f"Relayed {event['message'].get('type', 'notification')} to user {self.user.id}")
