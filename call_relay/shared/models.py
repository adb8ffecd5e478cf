"""
MODULE OVERVIEW:
Typed wire contracts for the telephony platform, powered by Pydantic v2.

WHAT IS HAPPENING HERE:
The notification service and the call-events-report API speak camelCase JSON.
We declare aliases so the rest of the code reads snake_case, while parsing and
serializing stays byte-compatible with the platform.
"""
from typing import Any
from pydantic import BaseModel, ConfigDict, Field

CALL_EVENTS_REPORT_SOURCE = "call-events-report"

class ChannelData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    channel_url: str = Field(alias="channelURL")

# A provisioned notification channel. `channel_url` is where the websocket connects.
class NotificationChannel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    channel_id: str = Field(alias="channelId")
    channel_data: ChannelData = Field(alias="channelData")

    @property
    def endpoint_url(self) -> str:
        return self.channel_data.channel_url

class SubscriptionItem(BaseModel):
    id: str

# The platform answers a subscription request with a list; we only ever create one.
class Subscription(BaseModel):
    items: list[SubscriptionItem] = Field(min_length=1)

    @property
    def subscription_id(self) -> str:
        return self.items[0].id

class NotificationData(BaseModel):
    source: str | None = None
    content: dict[str, Any] = Field(default_factory=dict)

# WHAT IS HAPPENING HERE:
# Every frame pushed over the channel is wrapped in this envelope. Only the
# `data.source` discriminator matters to us; everything else is ignored.
class NotificationEnvelope(BaseModel):
    data: NotificationData | None = None

    @property
    def is_call_events_report(self) -> bool:
        return self.data is not None and self.data.source == CALL_EVENTS_REPORT_SOURCE

    @property
    def conversation_space_id(self) -> str | None:
        if self.data is None:
            return None
        space_id = self.data.content.get("conversationSpaceId")
        return space_id if isinstance(space_id, str) and space_id else None

class PingPayload(BaseModel):
    sequence: int
