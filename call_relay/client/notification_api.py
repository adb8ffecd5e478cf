"""
MODULE OVERVIEW:
REST client for the platform's notification service.

WHAT IS HAPPENING HERE:
A notification channel is the server-side endpoint that pushes events to us.
Creating one returns the websocket URL we must connect to; deleting it releases
the server-side resources once we are done with it.
"""
from call_relay.client.base_client import BaseApiClient
from call_relay.shared.models import NotificationChannel

class NotificationServiceClient(BaseApiClient):
    async def create_channel(self) -> NotificationChannel:
        response = await self.client.post("/channels", json={"channelType": "websocket"})
        response.raise_for_status()
        return NotificationChannel.model_validate(response.json())

    async def delete_channel(self, channel_id: str) -> None:
        response = await self.client.delete(f"/channels/{channel_id}")
        response.raise_for_status()
