import json

from channels.generic.websocket import AsyncWebsocketConsumer
from django.conf import settings


class ClinicEventsConsumer(AsyncWebsocketConsumer):
    """Pushes engine events to staff terminals subscribed at ``ws/events/``."""

    @property
    def group(self) -> str:
        return getattr(settings, 'CLINIC_EVENTS_GROUP', 'clinic.events')

    async def connect(self):
        await self.channel_layer.group_add(self.group, self.channel_name)
        await self.accept()
        await self.send(json.dumps({"type": "welcome", "message": "connected"}))

    async def disconnect(self, close_code):
        await self.channel_layer.group_discard(self.group, self.channel_name)

    async def clinic_event(self, event):
        # event: {"type": "clinic.event", "event": {"kind": ..., "timestamp": ..., ...}}
        await self.send(json.dumps(event["event"]))
