"""Connection lifecycle, reconnect scheduling, teardown and liveness."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

import call_relay.client.listener as listener_module
from call_relay.client.listener import Listener
from fakes import (
    FakeCallEvents,
    FakeNotificationService,
    FakeSocketFactory,
    wait_until,
)


class TestConnect:
    @pytest.mark.asyncio
    async def test_provisions_channel_then_subscription_then_socket(
        self, listener: Listener, notifications: FakeNotificationService, sockets: FakeSocketFactory
    ) -> None:
        await listener.connect()

        assert notifications.calls == ["create_channel:ch-1", "create_subscription:ch-1"]
        assert sockets.last.url == "wss://push.test/ch-1"
        assert listener.status == "CONNECTED"
        assert listener.stats["connected_at"] is not None
        assert not listener.reconnect_scheduled

    @pytest.mark.asyncio
    async def test_channel_failure_schedules_reconnect(
        self, listener: Listener, notifications: FakeNotificationService, sockets: FakeSocketFactory
    ) -> None:
        notifications.fail_create = httpx.ConnectError("no route to host")

        await listener.connect()

        assert listener.reconnect_scheduled
        assert listener.status == "RECONNECT_SCHEDULED"
        assert sockets.sockets == []

    @pytest.mark.asyncio
    async def test_subscription_failure_releases_the_channel(
        self,
        listener: Listener,
        notifications: FakeNotificationService,
        call_events: FakeCallEvents,
    ) -> None:
        call_events.fail_subscribe = httpx.HTTPStatusError(
            "boom", request=httpx.Request("POST", "http://x"), response=httpx.Response(500)
        )

        await listener.connect()

        await wait_until(lambda: notifications.deleted == ["ch-1"])
        assert call_events.unsubscribed == []
        assert listener.reconnect_scheduled

    @pytest.mark.asyncio
    async def test_socket_open_failure_releases_subscription_and_channel(
        self,
        listener: Listener,
        notifications: FakeNotificationService,
        call_events: FakeCallEvents,
        sockets: FakeSocketFactory,
    ) -> None:
        sockets.fail_with = OSError("connection refused")

        await listener.connect()

        await wait_until(lambda: notifications.deleted == ["ch-1"])
        assert call_events.unsubscribed == ["ch-1"]
        assert listener.reconnect_scheduled

    @pytest.mark.asyncio
    async def test_shutdown_during_provisioning_tears_down_new_resources(
        self,
        listener: Listener,
        notifications: FakeNotificationService,
        call_events: FakeCallEvents,
        sockets: FakeSocketFactory,
    ) -> None:
        notifications.gate = asyncio.Event()
        connecting = asyncio.create_task(listener.connect())
        await wait_until(lambda: listener.status == "CONNECTING")

        listener.disconnect(True)
        notifications.gate.set()
        await connecting

        await wait_until(lambda: notifications.deleted == ["ch-1"])
        assert call_events.unsubscribed == ["ch-1"]
        assert sockets.last.closed
        assert listener.status == "SHUTTING_DOWN"
        assert not listener.reconnect_scheduled


class TestScheduleReconnect:
    @pytest.mark.asyncio
    async def test_second_request_is_a_noop(self, listener: Listener) -> None:
        listener.schedule_reconnect()
        first_timer = listener._state.reconnect_timer

        listener.schedule_reconnect()

        assert listener._state.reconnect_timer is first_timer
        assert listener.stats["reconnect_count"] == 1

    @pytest.mark.asyncio
    async def test_close_event_arms_timer_for_fixed_delay(
        self, listener: Listener, sockets: FakeSocketFactory, log_messages: list[str]
    ) -> None:
        await listener.connect()

        sockets.last.simulate_close(1006, "going away")
        await wait_until(lambda: listener.reconnect_scheduled)

        loop = asyncio.get_running_loop()
        remaining = listener._state.reconnect_timer.when() - loop.time()
        assert listener_module.RECONNECT_DELAY_S - 1.0 < remaining <= listener_module.RECONNECT_DELAY_S
        assert any("code=1006" in m and "going away" in m for m in log_messages)

    @pytest.mark.asyncio
    async def test_elapsed_delay_triggers_exactly_one_connect(
        self,
        listener: Listener,
        notifications: FakeNotificationService,
        sockets: FakeSocketFactory,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setattr(listener_module, "RECONNECT_DELAY_S", 0.05)
        await listener.connect()
        first_socket = sockets.last

        first_socket.simulate_close()
        await wait_until(lambda: len(notifications.created) == 2 and listener.status == "CONNECTED")
        await asyncio.sleep(0.2)

        assert notifications.created == ["ch-1", "ch-2"]
        assert len(sockets.sockets) == 2
        assert first_socket.closed
        assert not listener.reconnect_scheduled
        assert listener.stats["reconnect_count"] == 1

    @pytest.mark.asyncio
    async def test_error_event_schedules_reconnect(
        self, listener: Listener, sockets: FakeSocketFactory
    ) -> None:
        await listener.connect()

        sockets.last.simulate_error(RuntimeError("protocol error"))

        await wait_until(lambda: listener.reconnect_scheduled)
        assert listener.status == "RECONNECT_SCHEDULED"


class TestDisconnect:
    @pytest.mark.asyncio
    async def test_teardown_closes_socket_then_deletes_subscription_then_channel(
        self,
        listener: Listener,
        notifications: FakeNotificationService,
        sockets: FakeSocketFactory,
    ) -> None:
        await listener.connect()
        ws = sockets.last

        listener.disconnect(False)

        await wait_until(lambda: "delete_channel:ch-1" in notifications.calls)
        assert ws.closed
        assert notifications.calls[-2:] == ["delete_subscription:ch-1", "delete_channel:ch-1"]
        assert listener.status == "DISCONNECTED"

    @pytest.mark.asyncio
    async def test_delete_failures_are_swallowed_and_disconnect_is_idempotent(
        self,
        listener: Listener,
        notifications: FakeNotificationService,
        call_events: FakeCallEvents,
    ) -> None:
        notifications.fail_delete = httpx.ConnectError("gone")
        call_events.fail_unsubscribe = httpx.ConnectError("gone")
        await listener.connect()

        listener.disconnect(False)
        listener.disconnect(False)
        await wait_until(lambda: "delete_channel:ch-1" in notifications.calls)
        await asyncio.sleep(0.01)

        assert notifications.calls.count("delete_channel:ch-1") == 1
        assert notifications.calls.count("delete_subscription:ch-1") == 1
        assert listener._state.channel is None
        assert listener._state.subscription is None

    @pytest.mark.asyncio
    async def test_handlers_are_detached_before_close(
        self, listener: Listener, sockets: FakeSocketFactory
    ) -> None:
        await listener.connect()
        ws = sockets.last

        listener.disconnect(False)
        ws.simulate_close()
        await asyncio.sleep(0.01)

        assert not listener.reconnect_scheduled

    @pytest.mark.asyncio
    async def test_shutdown_cancels_pending_reconnect_for_good(
        self,
        listener: Listener,
        notifications: FakeNotificationService,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setattr(listener_module, "RECONNECT_DELAY_S", 0.02)
        notifications.fail_create = httpx.ConnectError("down")
        await listener.connect()
        assert listener.reconnect_scheduled
        notifications.fail_create = None

        listener.disconnect(True)
        listener.schedule_reconnect()
        await asyncio.sleep(0.1)

        assert notifications.created == []
        assert not listener.reconnect_scheduled
        assert listener.status == "SHUTTING_DOWN"

    @pytest.mark.asyncio
    async def test_connect_after_shutdown_does_nothing(
        self, listener: Listener, notifications: FakeNotificationService
    ) -> None:
        listener.disconnect(True)

        await listener.connect()

        assert notifications.calls == []


class TestLiveness:
    @pytest.mark.asyncio
    async def test_missing_pongs_schedule_exactly_one_reconnect(
        self, listener: Listener, sockets: FakeSocketFactory, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr(listener_module, "PING_INTERVAL_S", 0.01)
        await listener.connect()
        ws = sockets.last
        ws.auto_pong = False

        await wait_until(lambda: listener.reconnect_scheduled)
        await asyncio.sleep(0.05)

        assert len(ws.pings) == listener_module.MAX_PENDING_PONGS + 1
        assert [json.loads(p)["sequence"] for p in ws.pings] == [1, 2, 3, 4]
        assert listener.stats["reconnect_count"] == 1
        assert ws.closed

    @pytest.mark.asyncio
    async def test_answered_pings_keep_the_connection(
        self, listener: Listener, sockets: FakeSocketFactory, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr(listener_module, "PING_INTERVAL_S", 0.005)
        await listener.connect()
        ws = sockets.last

        await wait_until(lambda: len(ws.pings) > listener_module.MAX_PENDING_PONGS + 2)

        assert not listener.reconnect_scheduled
        assert listener.status == "CONNECTED"
        assert listener._state.connection.pending_pongs <= 1
