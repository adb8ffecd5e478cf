"""
MODULE OVERVIEW:
The downstream webhook sink.

WHAT IS HAPPENING HERE:
Each call-event report is POSTed as-is to a single pre-configured URL.
A non-2xx answer raises, so the caller can log the drop.
"""
from typing import Any

from call_relay.client.base_client import BaseApiClient

class WebhookSink(BaseApiClient):
    def __init__(self, webhook_url: str, timeout_s: float = 10.0, log_bodies: bool = False):
        # The webhook is unauthenticated, so no platform token is attached.
        super().__init__("", timeout_s=timeout_s, log_bodies=log_bodies)
        self.webhook_url = webhook_url

    async def forward(self, payload: Any) -> None:
        response = await self.client.post(self.webhook_url, json=payload)
        response.raise_for_status()
