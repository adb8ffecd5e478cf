"""
MODULE OVERVIEW:
REST client for the platform's call-events-report API.

WHAT IS HAPPENING HERE:
Two jobs live here. First, registering (and dropping) our interest in call events
on a notification channel. Second, fetching the full event report for a
conversation space once the channel tells us something happened in it.
The websocket only carries the id; the report itself always comes over REST.
"""
from typing import Any

from call_relay.client.base_client import BaseApiClient
from call_relay.shared.models import Subscription

class CallEventsReportClient(BaseApiClient):
    async def create_subscription(self, channel_id: str) -> Subscription:
        response = await self.client.post("/subscriptions", json={"channelId": channel_id})
        response.raise_for_status()
        return Subscription.model_validate(response.json())

    async def delete_subscription(self, channel_id: str) -> None:
        response = await self.client.delete("/subscriptions", params={"channelId": channel_id})
        response.raise_for_status()

    async def fetch_call_events(self, conversation_space_id: str) -> Any:
        response = await self.client.get(f"/conversation-spaces/{conversation_space_id}/events")
        response.raise_for_status()
        return response.json()
