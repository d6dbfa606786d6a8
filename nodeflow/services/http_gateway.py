"""
HTTP gateway - forwards a node's outbound request and normalizes the answer.

Any completed HTTP exchange is reported as a successful gateway response that
carries the upstream status; only requests that could not be sent or
completed (bad URL, DNS, connection refused, timeouts) are gateway failures.
"""

import json
import logging
from typing import Any, Dict, Optional

import httpx
from pydantic import BaseModel

from nodeflow.config import Settings, get_settings

logger = logging.getLogger(__name__)


class HttpProxyRequest(BaseModel):
    url: Optional[str] = None
    method: str = "GET"
    headers: Any = "{}"  # JSON string, a mapping is accepted as-is
    body: Any = None


class GatewayResponse(BaseModel):
    """Status plus JSON payload returned by an external collaborator"""
    status_code: int
    payload: Dict[str, Any]

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def error(self) -> Optional[str]:
        return self.payload.get("error") if not self.ok else None


def normalize_url(url: str) -> str:
    url = url.strip()
    if not url.startswith("http://") and not url.startswith("https://"):
        url = "https://" + url
    return url


def parse_headers(raw: Any) -> Dict[str, str]:
    """Headers come in as a JSON object string; anything unparsable is ignored."""
    if isinstance(raw, dict):
        parsed = raw
    else:
        try:
            parsed = json.loads(raw) if raw else {}
        except (TypeError, ValueError):
            return {}
    if not isinstance(parsed, dict):
        return {}
    return {str(k): str(v) for k, v in parsed.items()}


def parse_body(method: str, raw: Any) -> Any:
    """Body is JSON when it parses, otherwise the raw string. GET sends no body."""
    if method == "GET" or raw is None or raw == "":
        return None
    if not isinstance(raw, str):
        return raw
    try:
        return json.loads(raw)
    except ValueError:
        return raw


class HttpGateway:
    def __init__(self, settings: Settings = None, client: httpx.AsyncClient = None):
        self.settings = settings or get_settings()
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.settings.http_timeout_seconds)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def forward(self, request: HttpProxyRequest) -> GatewayResponse:
        if not request.url or not isinstance(request.url, str) or not request.url.strip():
            return GatewayResponse(status_code=400, payload={"error": "URL is required"})

        method = (request.method or "GET").upper()
        url = normalize_url(request.url)
        body = parse_body(method, request.body)
        headers = {
            "Content-Type": "application/json",
            "User-Agent": self.settings.user_agent,
            **parse_headers(request.headers),
        }

        try:
            response = await self._get_client().request(
                method,
                url,
                headers=headers,
                content=json.dumps(body) if body is not None else None,
            )
        except (httpx.HTTPError, httpx.InvalidURL, UnicodeError) as e:
            # UnicodeError: header values httpx cannot encode as ASCII
            cause = e.__cause__ or e.__context__
            logger.warning(f"HTTP proxy error for {method} {url}: {e}")
            payload = {"error": str(e) or e.__class__.__name__}
            if cause is not None and str(cause):
                payload["details"] = str(cause)
            return GatewayResponse(status_code=500, payload=payload)

        return GatewayResponse(
            status_code=200,
            payload={
                "status": response.status_code,
                "statusText": response.reason_phrase,
                "headers": dict(response.headers),
                "data": self._read_data(response),
            },
        )

    @staticmethod
    def _read_data(response: httpx.Response) -> Any:
        content_type = response.headers.get("content-type", "")
        if "application/json" in content_type:
            try:
                return response.json()
            except ValueError:
                return response.text
        return response.text
