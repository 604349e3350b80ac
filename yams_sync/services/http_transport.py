"""HTTP transport for the remote bucket: request builder, breaker and SOCKS5 proxy."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import httpx

from yams_sync.exceptions import ErrorResponse, YamsConnectionError
from yams_sync.services.circuit_breaker import CircuitOpenError, TooManyRequestsError

if TYPE_CHECKING:
    from yams_sync.services.circuit_breaker import CircuitBreaker

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0
IMAGE_CONTENT_TYPE = "images/jpg"

# Status codes the transport reports as errors instead of plain responses.
ERROR_STATUS_CODES = frozenset({400, 500})


@dataclass
class HTTPResponse:
    """Status code, decoded body and headers of a completed request."""

    status_code: int
    body: str = ""
    headers: httpx.Headers = field(default_factory=httpx.Headers)


class HTTPRequest:
    """Fluent request builder. Each caller builds its own instance per call."""

    def __init__(self) -> None:
        self.method = "GET"
        self.path = ""
        self.headers: dict[str, str] = {}
        self.query_params: dict[str, str] = {}
        self.content: bytes | None = None
        self.json_body: Any = None
        self.timeout: float | None = None

    def set_method(self, method: str) -> HTTPRequest:
        self.method = method.upper()
        return self

    def set_path(self, path: str) -> HTTPRequest:
        self.path = path
        return self

    def set_headers(self, headers: dict[str, str]) -> HTTPRequest:
        self.headers.update(headers)
        return self

    def set_body(self, body: Any) -> HTTPRequest:
        """Send ``body`` as JSON."""
        self.json_body = body
        self.content = None if body is None else json.dumps(body).encode("utf-8")
        return self.set_headers({"Content-Type": "application/json"})

    def set_image_body(self, data: bytes) -> HTTPRequest:
        """Send raw image bytes."""
        self.json_body = None
        self.content = data
        return self.set_headers({"Content-Type": IMAGE_CONTENT_TYPE})

    def set_query_params(self, params: dict[str, str]) -> HTTPRequest:
        self.query_params.update(params)
        return self

    def set_timeout(self, seconds: float) -> HTTPRequest:
        self.timeout = seconds
        return self


class HTTPTransport:
    """Sends requests through a circuit breaker, retrying while it rejects calls.

    ``proxy`` accepts a ``socks5://host:port`` URL to route traffic through a
    bandwidth-limiting SOCKS5 proxy.
    """

    def __init__(
        self,
        base_url: str,
        breaker: CircuitBreaker,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        proxy: str | None = None,
        retry_delay: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.breaker = breaker
        self.retry_delay = retry_delay
        self.client = httpx.AsyncClient(
            base_url=normalize_base_url(base_url),
            timeout=timeout,
            proxy=normalize_proxy_url(proxy),
            transport=transport,
        )

    def new_request(self) -> HTTPRequest:
        return HTTPRequest()

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self.client.aclose()

    async def send(self, req: HTTPRequest) -> HTTPResponse:
        """Send ``req`` and return its response.

        Raises ``ErrorResponse`` for 400/500 and ``YamsConnectionError`` when no
        response was received. While the breaker is open or its half-open probe
        is in flight, waits ``retry_delay`` seconds and tries again.
        """
        logger.debug("HTTP - %s - Sending request to %s", req.method, req.path)
        while True:
            try:
                return await self.breaker.call(self._send_once, req)
            except (CircuitOpenError, TooManyRequestsError) as exc:
                logger.debug("HTTP - %s - %s, retrying in %ss", req.method, exc, self.retry_delay)
                await asyncio.sleep(self.retry_delay)

    async def _send_once(self, req: HTTPRequest) -> HTTPResponse:
        kwargs: dict[str, Any] = {
            "params": req.query_params,
            "headers": req.headers,
        }
        if req.content is not None:
            kwargs["content"] = req.content
        if req.timeout is not None:
            kwargs["timeout"] = req.timeout
        try:
            resp = await self.client.request(req.method, req.path, **kwargs)
        except httpx.HTTPError as exc:
            logger.error("HTTP - %s - Error sending request: %s", req.method, exc)
            raise YamsConnectionError(f"{req.method} {req.path}: {exc}") from exc

        response = HTTPResponse(status_code=resp.status_code, body=resp.text, headers=resp.headers)
        if resp.status_code in ERROR_STATUS_CODES:
            logger.error(
                "HTTP - %s - Received an error response: %d %s",
                req.method,
                resp.status_code,
                response.body[:200],
            )
            raise ErrorResponse(response)
        return response


def normalize_base_url(url: str) -> str:
    """Add ``https://`` when the configured management URL has no scheme."""
    url = url.strip().rstrip("/")
    if "://" not in url:
        url = f"https://{url}"
    return url


def normalize_proxy_url(proxy: str | None) -> str | None:
    """Promote a bare ``host:port`` to ``socks5://host:port``. Empty means no proxy."""
    if proxy is None or not proxy.strip():
        return None
    proxy = proxy.strip()
    if "://" not in proxy:
        proxy = f"socks5://{proxy}"
    return proxy
