import httpx
from datetime import datetime, timezone
from loguru import logger

def make_listener_stats() -> dict:
    """
    Returns a fresh stats dictionary with zeroed counters.
    The Listener calls this once in __init__.
    Keys: events_received, events_delivered, delivery_failures,
          reconnect_count, last_event_at, connected_at.
    """
    return {
        "events_received": 0,
        "events_delivered": 0,
        "delivery_failures": 0,
        "reconnect_count": 0,
        "last_event_at": None,
        "connected_at": None,
    }

def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()

def make_http_logging_hooks(log_bodies: bool = False) -> dict:
    """
    Builds httpx event hooks that trace every request/response at DEBUG level.
    Bodies are only included when `log_bodies` is set (i.e. LOG_LEVEL=DEBUG),
    since call-event payloads can be large.
    """
    async def log_request(request: httpx.Request) -> None:
        line = f"{request.method} {request.url}"
        if log_bodies and request.content:
            line += f" body={request.content.decode('utf-8', errors='replace')}"
        logger.debug(line)

    async def log_response(response: httpx.Response) -> None:
        request = response.request
        line = f"{request.method} {request.url} -> {response.status_code}"
        if log_bodies:
            await response.aread()
            line += f" body={response.text}"
        logger.debug(line)

    return {"request": [log_request], "response": [log_response]}

def build_http_client(
    base_url: str = "",
    access_token: str | None = None,
    timeout_s: float = 10.0,
    log_bodies: bool = False,
) -> httpx.AsyncClient:
    """Shared AsyncClient factory so every collaborator traces and authenticates the same way."""
    headers = {"Accept": "application/json"}
    if access_token:
        headers["Authorization"] = f"Bearer {access_token}"
    return httpx.AsyncClient(
        base_url=base_url.rstrip('/'),
        headers=headers,
        timeout=timeout_s,
        event_hooks=make_http_logging_hooks(log_bodies),
    )
