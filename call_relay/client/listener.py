"""
MODULE OVERVIEW:
The Listener: the long-lived connection manager at the heart of the relay.

WHAT IS HAPPENING HERE:
Three loops share one asyncio event loop:
  1. The socket reader, which turns websocket frames into open/close/error/message
     handler calls for exactly one live Connection.
  2. The ping loop, which sends an application-level ping every few seconds and
     declares the connection stale when too many pongs go missing.
  3. The drain loop, which empties the pending event queue one item at a time:
     fetch the call-events report, then POST it to the webhook.
Any failure on the connection side tears everything down (socket, subscription,
channel) and arms a single reconnect timer. Nothing here ever raises to the caller;
operators see problems in the logs only.
"""

import asyncio
import json
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Coroutine, Literal

import websockets
from loguru import logger
from pydantic import ValidationError

from call_relay.client.call_events_api import CallEventsReportClient
from call_relay.client.notification_api import NotificationServiceClient
from call_relay.client.webhook import WebhookSink
from call_relay.shared.client_utils import make_listener_stats, utc_now_iso
from call_relay.shared.log_utils import log_connection
from call_relay.shared.models import (
    NotificationChannel,
    NotificationEnvelope,
    PingPayload,
    Subscription,
)

PING_INTERVAL_S = 8.0
RECONNECT_DELAY_S = 10.0
MAX_PENDING_PONGS = 3

ListenerStatus = Literal[
    "DISCONNECTED", "CONNECTING", "CONNECTED", "RECONNECT_SCHEDULED", "SHUTTING_DOWN"
]

@dataclass
class Connection:
    """One websocket session. Replaced wholesale on every reconnect, never resumed."""
    ws: Any
    url: str
    reader_task: asyncio.Task | None = None
    ping_task: asyncio.Task | None = None
    ping_sequence: int = 0
    pong_sequence: int = 0

    @property
    def pending_pongs(self) -> int:
        return self.ping_sequence - self.pong_sequence

@dataclass
class ListenerState:
    channel: NotificationChannel | None = None
    subscription: Subscription | None = None
    connection: Connection | None = None
    reconnect_timer: asyncio.TimerHandle | None = None
    is_shutting_down: bool = False
    queue: deque[str] = field(default_factory=deque)
    is_processing: bool = False
    status: ListenerStatus = "DISCONNECTED"

class Listener:
    def __init__(
        self,
        notifications: NotificationServiceClient,
        call_events: CallEventsReportClient,
        sink: WebhookSink,
        ws_connect: Callable[[str], Awaitable[Any]] | None = None,
        open_timeout_s: float = 10.0,
    ):
        self.notifications = notifications
        self.call_events = call_events
        self.sink = sink
        self.open_timeout_s = open_timeout_s
        self._ws_connect = ws_connect or self._open_websocket

        self.stats = make_listener_stats()
        self._state = ListenerState()
        # Strong references for fire-and-forget work (cleanup, drains, timer-driven connects).
        self._background_tasks: set[asyncio.Task] = set()

    @property
    def status(self) -> ListenerStatus:
        return self._state.status

    @property
    def pending(self) -> int:
        return len(self._state.queue)

    @property
    def is_processing(self) -> bool:
        return self._state.is_processing

    @property
    def reconnect_scheduled(self) -> bool:
        return self._state.reconnect_timer is not None

    # ==========================
    # CONNECTION LIFECYCLE
    # ==========================
    async def connect(self) -> None:
        self._cancel_reconnect_attempt()
        if self._state.is_shutting_down:
            logger.debug("Listener - connect(): shutdown in progress, not connecting")
            return
        if (
            self._state.connection is not None
            or self._state.subscription is not None
            or self._state.channel is not None
        ):
            self.disconnect(False)

        self._set_status("CONNECTING")
        try:
            logger.debug("Listener - connect(): creating notification channel")
            self._state.channel = await self.notifications.create_channel()
            channel_id = self._state.channel.channel_id
            log_connection("channel_created", {"channel_id": channel_id})

            logger.debug("Listener - connect(): creating subscription")
            self._state.subscription = await self.call_events.create_subscription(channel_id)
            log_connection(
                "subscription_created",
                {"channel_id": channel_id, "subscription_id": self._state.subscription.subscription_id},
            )

            url = self._state.channel.endpoint_url
            ws = await self._ws_connect(url)
        except Exception as e:
            logger.error(f"Listener - connect() failed: {e!r}")
            if self._state.is_shutting_down:
                self.disconnect(True)
            else:
                self.schedule_reconnect()
            return

        conn = Connection(ws=ws, url=url)
        self._state.connection = conn
        if self._state.is_shutting_down:
            logger.info("Listener - connect(): shutdown requested while connecting, releasing resources")
            self.disconnect(True)
            return

        conn.reader_task = asyncio.create_task(self._read_socket(conn))
        self._on_socket_open(conn)

    def disconnect(self, is_shutting_down: bool = False) -> None:
        """
        Best-effort, idempotent teardown: stop pinging, close the socket, then delete
        the subscription and the channel. Remote deletes are not awaited and their
        failures are ignored.
        """
        state = self._state
        if is_shutting_down:
            state.is_shutting_down = True
            self._cancel_reconnect_attempt()

        conn = state.connection
        if conn is not None:
            logger.info("Listener - disconnect(): closing websocket")
            # Cancelling the reader detaches the open/close/error/message handlers.
            if conn.reader_task is not None:
                conn.reader_task.cancel()
            if conn.ping_task is not None:
                conn.ping_task.cancel()
            self._spawn(self._close_socket(conn.ws))
            state.connection = None

        if state.subscription is not None:
            logger.info("Listener - disconnect(): deleting subscription")
            self._spawn(self._ignore_failure(
                "delete subscription", self.call_events.delete_subscription(state.channel.channel_id)
            ))
            state.subscription = None

        if state.channel is not None:
            logger.info("Listener - disconnect(): deleting notification channel")
            self._spawn(self._ignore_failure(
                "delete notification channel", self.notifications.delete_channel(state.channel.channel_id)
            ))
            state.channel = None

        self._set_status("SHUTTING_DOWN" if state.is_shutting_down else "DISCONNECTED")

    async def aclose(self, grace_s: float = 5.0) -> None:
        """Shut down for good and give in-flight cleanup and deliveries `grace_s` to finish."""
        self.disconnect(True)
        pending = [t for t in self._background_tasks if t is not asyncio.current_task()]
        if not pending:
            return
        _, still_running = await asyncio.wait(pending, timeout=grace_s)
        for task in still_running:
            task.cancel()
        if still_running:
            logger.warning(f"Listener - aclose(): cancelled {len(still_running)} unfinished background tasks")
            await asyncio.gather(*still_running, return_exceptions=True)

    async def _open_websocket(self, url: str) -> Any:
        # Library keepalive is off: liveness is tracked by our own ping loop.
        return await websockets.connect(url, ping_interval=None, open_timeout=self.open_timeout_s)

    async def _close_socket(self, ws: Any) -> None:
        try:
            await ws.close()
        except Exception as e:
            logger.debug(f"Listener - websocket close failed (ignored): {e!r}")

    async def _ignore_failure(self, description: str, operation: Coroutine[Any, Any, Any]) -> None:
        try:
            await operation
        except Exception as e:
            logger.debug(f"Listener - {description} failed (ignored): {e!r}")

    # ==========================
    # RECONNECT STATE MACHINE
    # ==========================
    def schedule_reconnect(self) -> None:
        if self._state.reconnect_timer is not None or self._state.is_shutting_down:
            return
        self.disconnect(False)
        loop = asyncio.get_running_loop()
        self._state.reconnect_timer = loop.call_later(RECONNECT_DELAY_S, self._on_reconnect_timer)
        self.stats["reconnect_count"] += 1
        self._set_status("RECONNECT_SCHEDULED")
        logger.info(f"Listener - reconnect attempt scheduled in {RECONNECT_DELAY_S:g}s")

    def _cancel_reconnect_attempt(self) -> None:
        if self._state.reconnect_timer is not None:
            self._state.reconnect_timer.cancel()
            self._state.reconnect_timer = None

    def _on_reconnect_timer(self) -> None:
        if self._state.is_shutting_down:
            return
        self._spawn(self.connect())

    # ==========================
    # SOCKET HANDLERS
    # ==========================
    async def _read_socket(self, conn: Connection) -> None:
        try:
            async for message in conn.ws:
                self._on_socket_message(message)
        except websockets.ConnectionClosed:
            pass
        except Exception as e:
            self._on_socket_error(e)
            return
        self._on_socket_close(getattr(conn.ws, "close_code", None), getattr(conn.ws, "close_reason", None))

    def _on_socket_open(self, conn: Connection) -> None:
        self.stats["connected_at"] = utc_now_iso()
        self._set_status("CONNECTED")
        log_connection("websocket_connected", {"url": conn.url})
        conn.ping_task = asyncio.create_task(self._ping_loop(conn))

    def _on_socket_close(self, code: int | None, reason: str | None) -> None:
        logger.info(f"Listener - websocket closed with code={code} and reason=[{reason or ''}]")
        self.schedule_reconnect()

    def _on_socket_error(self, error: BaseException) -> None:
        logger.error(f"Listener - websocket error: {error!r}")
        self.schedule_reconnect()

    def _on_socket_message(self, data: str | bytes) -> None:
        try:
            msg = json.loads(data)
        except ValueError as e:
            logger.error(f"Listener - message handler got malformed payload: {e}")
            return
        logger.debug(f"Listener - got message: {json.dumps(msg, indent=2)}")

        try:
            envelope = NotificationEnvelope.model_validate(msg)
        except ValidationError:
            logger.debug("Listener - ignoring message with unrecognised envelope")
            return

        if not envelope.is_call_events_report:
            return
        space_id = envelope.conversation_space_id
        if space_id is None:
            logger.warning("Listener - call-events-report notification without conversationSpaceId")
            return
        self.enqueue(space_id)

    # ==========================
    # LIVENESS
    # ==========================
    async def _ping_loop(self, conn: Connection) -> None:
        while True:
            await asyncio.sleep(PING_INTERVAL_S)
            await self._send_ping(conn)
            if conn.pending_pongs > MAX_PENDING_PONGS:
                logger.error("Listener - websocket liveness check failed: will attempt to reconnect...")
                self.schedule_reconnect()

    async def _send_ping(self, conn: Connection) -> None:
        conn.ping_sequence += 1
        sequence = conn.ping_sequence
        try:
            pong_waiter = await conn.ws.ping(PingPayload(sequence=sequence).model_dump_json())
        except websockets.ConnectionClosed as e:
            logger.debug(f"Listener - ping {sequence} not sent, socket closed: {e}")
            return
        except Exception as e:
            logger.warning(f"Listener - ping {sequence} failed: {e!r}")
            return
        pong_waiter.add_done_callback(lambda fut: self._on_pong(conn, sequence, fut))

    def _on_pong(self, conn: Connection, sequence: int, fut: asyncio.Future) -> None:
        if fut.cancelled() or fut.exception() is not None:
            return
        conn.pong_sequence = max(conn.pong_sequence, sequence)

    # ==========================
    # DELIVERY QUEUE
    # ==========================
    def enqueue(self, conversation_space_id: str) -> None:
        self._state.queue.append(conversation_space_id)
        self.stats["events_received"] += 1
        self.stats["last_event_at"] = utc_now_iso()
        self._spawn(self.process_queue())

    async def process_queue(self) -> None:
        if self._state.is_processing:
            return
        self._state.is_processing = True
        try:
            while self._state.queue:
                conversation_space_id = self._state.queue.popleft()
                await self.handle_call_event(conversation_space_id)
        finally:
            self._state.is_processing = False

    async def handle_call_event(self, conversation_space_id: str) -> None:
        try:
            call_details = await self.call_events.fetch_call_events(conversation_space_id)
        except Exception as e:
            self.stats["delivery_failures"] += 1
            logger.error(f"Listener - failed to fetch call events report {conversation_space_id}: {e!r}")
            return
        logger.debug(json.dumps(call_details, indent=2, default=str))

        try:
            await self.sink.forward(call_details)
        except Exception as e:
            self.stats["delivery_failures"] += 1
            logger.error(f"Listener - failed to send call events report {conversation_space_id} to webhook: {e!r}")
            return
        self.stats["events_delivered"] += 1
        logger.info(f"Listener - call events report {conversation_space_id} sent to webhook")

    # ==========================
    # INTERNALS
    # ==========================
    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        return task

    def _set_status(self, status: ListenerStatus) -> None:
        if self._state.status != status:
            logger.debug(f"Listener - state {self._state.status} -> {status}")
            self._state.status = status
