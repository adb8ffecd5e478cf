"""
CLI entrypoint for the Call Events Relay.
"""
import asyncio
import signal
from contextlib import asynccontextmanager
from typing import AsyncIterator

import typer
from loguru import logger

from call_relay.client.call_events_api import CallEventsReportClient
from call_relay.client.listener import Listener
from call_relay.client.notification_api import NotificationServiceClient
from call_relay.client.webhook import WebhookSink
from call_relay.shared.config import Settings, settings
from call_relay.shared.log_utils import configure_logging

app = typer.Typer(help="Call Events Relay CLI")

def build_listener(cfg: Settings, log_bodies: bool = False) -> Listener:
    notifications = NotificationServiceClient(
        cfg.NOTIFICATIONS_BASE_URL, cfg.ACCESS_TOKEN, cfg.HTTP_TIMEOUT_S, log_bodies
    )
    call_events = CallEventsReportClient(
        cfg.CALL_EVENTS_BASE_URL, cfg.ACCESS_TOKEN, cfg.HTTP_TIMEOUT_S, log_bodies
    )
    sink = WebhookSink(cfg.WEBHOOK_URL, cfg.HTTP_TIMEOUT_S, log_bodies)
    return Listener(notifications, call_events, sink, open_timeout_s=cfg.WS_OPEN_TIMEOUT_S)

@asynccontextmanager
async def relay_lifespan(listener: Listener) -> AsyncIterator[Listener]:
    # STARTUP
    logger.info("Call Events Relay starting up...")
    await listener.connect()

    try:
        yield listener
    finally:
        # SHUTDOWN
        logger.info("Relay shutting down. Releasing channel and subscription...")
        await listener.aclose()
        for client in (listener.notifications, listener.call_events, listener.sink):
            await client.aclose()
        logger.info(f"Shutdown complete. stats={listener.stats}")

async def run_relay(cfg: Settings, log_bodies: bool = False) -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows event loops have no signal handlers; Ctrl+C still raises KeyboardInterrupt.
            pass

    async with relay_lifespan(build_listener(cfg, log_bodies)):
        await stop.wait()

@app.command()
def listen(
    log_level: str = typer.Option(None, help="Override LOG_LEVEL (DEBUG, INFO, WARNING, ERROR)"),
):
    """Connect to the notification channel and relay call events until interrupted."""
    level = (log_level or settings.LOG_LEVEL).upper()
    log_file = configure_logging(level, settings.LOG_DIR if settings.LOG_TO_FILE else None)
    if log_file:
        logger.info(f"Writing log file {log_file}")
    try:
        asyncio.run(run_relay(settings, log_bodies=level == "DEBUG"))
    except KeyboardInterrupt:
        pass

@app.command("show-config")
def show_config():
    """Print the effective settings (the access token is masked)."""
    for key, value in settings.model_dump().items():
        if key == "ACCESS_TOKEN" and value:
            value = f"{value[:4]}***"
        typer.echo(f"{key}={value}")

if __name__ == "__main__":
    app()
