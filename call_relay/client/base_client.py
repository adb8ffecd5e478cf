import httpx

from call_relay.shared.client_utils import build_http_client

class BaseApiClient:
    """Owns one pooled AsyncClient; subclasses issue requests relative to `base_url`."""

    def __init__(
        self,
        base_url: str,
        access_token: str | None = None,
        timeout_s: float = 10.0,
        log_bodies: bool = False,
    ):
        self.base_url = base_url.rstrip('/')
        self.client: httpx.AsyncClient = build_http_client(
            self.base_url, access_token=access_token, timeout_s=timeout_s, log_bodies=log_bodies
        )

    async def aclose(self) -> None:
        await self.client.aclose()
