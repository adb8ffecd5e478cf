from __future__ import annotations

from collections.abc import AsyncGenerator, Generator

import pytest
import pytest_asyncio
from loguru import logger

from call_relay.client.listener import Listener
from fakes import FakeCallEvents, FakeNotificationService, FakeSink, FakeSocketFactory


@pytest.fixture
def notifications() -> FakeNotificationService:
    return FakeNotificationService()


@pytest.fixture
def call_events(notifications: FakeNotificationService) -> FakeCallEvents:
    # Shares the call log so tests can assert cross-client ordering.
    return FakeCallEvents(calls=notifications.calls)


@pytest.fixture
def sink() -> FakeSink:
    return FakeSink()


@pytest.fixture
def sockets() -> FakeSocketFactory:
    return FakeSocketFactory()


@pytest_asyncio.fixture
async def listener(
    notifications: FakeNotificationService,
    call_events: FakeCallEvents,
    sink: FakeSink,
    sockets: FakeSocketFactory,
) -> AsyncGenerator[Listener, None]:
    instance = Listener(notifications, call_events, sink, ws_connect=sockets)
    yield instance
    await instance.aclose(grace_s=1.0)


@pytest.fixture
def log_messages() -> Generator[list[str], None, None]:
    messages: list[str] = []
    handler_id = logger.add(lambda m: messages.append(m.record["message"]), level="DEBUG")
    yield messages
    logger.remove(handler_id)
