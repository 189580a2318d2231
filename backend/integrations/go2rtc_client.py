# backend/integrations/go2rtc_client.py
"""
go2rtc Media Engine Client

Thin async wrapper over the go2rtc HTTP API. go2rtc does the actual RTSP
ingest and WebRTC offer/answer; this client only registers streams, relays
SDP and removes streams.

Endpoints used:
- PUT    /api/streams?name=<id>&src=<rtsp uri>   register (idempotent)
- POST   /api/webrtc?src=<id>                    SDP offer in, SDP answer out
- DELETE /api/streams?src=<id>                   remove
- GET    /api                                    liveness
"""

import logging
from typing import Optional

import httpx

from config import get_settings
from errors import UpstreamUnavailableError

logger = logging.getLogger(__name__)


class MediaEngineClient:
    """Async go2rtc API client; every failure surfaces as UpstreamUnavailableError"""

    def __init__(
        self,
        base_url: str = "http://localhost:1984",
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._http_client: Optional[httpx.AsyncClient] = None

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Lazy-initialized HTTP client"""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout),
                transport=self._transport,
            )
        return self._http_client

    async def close(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def register_stream(self, stream_id: str, source_uri: str) -> None:
        """Add (or re-add) a stream source; go2rtc treats repeats as no-ops."""
        await self._request(
            "register_stream", "PUT", "/api/streams",
            params={"name": stream_id, "src": source_uri},
        )
        logger.info(f"Registered stream {stream_id} with go2rtc")

    async def negotiate(self, stream_id: str, offer_sdp: str) -> str:
        """
        Exchange an SDP offer for an answer.

        Returns:
            SDP answer exactly as go2rtc produced it
        """
        response = await self._request(
            "negotiate", "POST", "/api/webrtc",
            params={"src": stream_id},
            content=offer_sdp.encode("utf-8"),
            headers={"Content-Type": "application/sdp"},
        )
        answer = response.text
        if not answer:
            raise UpstreamUnavailableError("negotiate", "Media engine returned an empty answer")
        return answer

    async def remove_stream(self, stream_id: str) -> None:
        await self._request("remove_stream", "DELETE", "/api/streams", params={"src": stream_id})
        logger.info(f"Removed stream {stream_id} from go2rtc")

    async def is_available(self) -> bool:
        """True if the go2rtc API answers."""
        try:
            await self._request("is_available", "GET", "/api")
            return True
        except UpstreamUnavailableError:
            return False

    async def _request(self, operation: str, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            response = await self.http_client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.warning(f"go2rtc {operation} failed: {e}")
            raise UpstreamUnavailableError(operation, details={"reason": str(e)})

        if response.status_code >= 300:
            logger.warning(f"go2rtc {operation} returned HTTP {response.status_code}")
            raise UpstreamUnavailableError(
                operation,
                message=f"Media engine returned HTTP {response.status_code}",
                details={"status": response.status_code},
            )
        return response


# Global client instance
_media_engine: Optional[MediaEngineClient] = None


def get_media_engine() -> MediaEngineClient:
    """Get or create the go2rtc client singleton."""
    global _media_engine
    if _media_engine is None:
        settings = get_settings()
        _media_engine = MediaEngineClient(settings.go2rtc_api_url, settings.go2rtc_timeout_seconds)
    return _media_engine
