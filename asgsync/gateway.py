from __future__ import annotations

import logging
from threading import Lock
from typing import Any
from urllib.parse import quote

import httpx

from .config import MAX_HEADERS
from .errors import ConfigError, GatewayError
from .models import KINDS, UpstreamServer

logger = logging.getLogger(__name__)

# Highest NGINX Plus API version this client speaks.
MAX_API_VERSION = 9


def _error_text(resp: httpx.Response) -> str:
    """NGINX Plus reports errors as {"error": {"status": .., "text": .., "code": ..}}."""
    try:
        data = resp.json()
    except ValueError:
        return resp.text.strip() or resp.reason_phrase
    if isinstance(data, dict) and isinstance(data.get("error"), dict):
        err = data["error"]
        return f"{err.get('text', '')} ({err.get('code', 'unknown')})".strip()
    return resp.text.strip() or resp.reason_phrase


class NginxGateway:
    """Read/write access to NGINX Plus upstream server lists."""

    def __init__(
        self,
        endpoint: str,
        custom_headers: dict[str, str] | None = None,
        api_version: int | None = None,
        timeout_s: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ):
        headers = dict(custom_headers or {})
        if len(headers) > MAX_HEADERS:
            raise ConfigError(f"at most {MAX_HEADERS} custom headers are allowed, got {len(headers)}")
        self.endpoint = endpoint.rstrip("/")
        self._client = httpx.Client(timeout=timeout_s, headers=headers, transport=transport, follow_redirects=False)
        self._version = api_version
        self._version_lock = Lock()

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> NginxGateway:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            resp = self._client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise GatewayError(f"{method} {url} failed: {type(e).__name__}: {e}") from e
        if resp.status_code >= 400:
            raise GatewayError(
                f"{method} {url} returned HTTP {resp.status_code}: {_error_text(resp)}",
                status=resp.status_code,
            )
        return resp

    @staticmethod
    def _json(resp: httpx.Response) -> Any:
        try:
            return resp.json()
        except ValueError as e:
            raise GatewayError(f"invalid JSON from {resp.request.url}: {e}", status=resp.status_code) from e

    def api_version(self) -> int:
        """Configured version, or the highest one advertised by the API root that we support."""
        with self._version_lock:
            if self._version is None:
                data = self._json(self._request("GET", f"{self.endpoint}/"))
                supported = [v for v in data if isinstance(v, int) and v <= MAX_API_VERSION] if isinstance(data, list) else []
                if not supported:
                    raise GatewayError(f"no supported API version advertised by {self.endpoint}: {data!r}")
                self._version = max(supported)
                logger.info("Using NGINX Plus API version %d", self._version)
            return self._version

    def _servers_url(self, upstream: str, kind: str) -> str:
        if kind not in KINDS:
            raise ValueError(f"unknown upstream kind {kind!r}")
        return f"{self.endpoint}/{self.api_version()}/{kind}/upstreams/{quote(upstream, safe='')}/servers"

    def list_servers(self, upstream: str, kind: str) -> list[UpstreamServer]:
        data = self._json(self._request("GET", self._servers_url(upstream, kind)))
        if not isinstance(data, list):
            raise GatewayError(f"unexpected servers payload for upstream {upstream}: {data!r}")
        return [UpstreamServer.from_api(item) for item in data]

    def add_server(self, upstream: str, kind: str, server: UpstreamServer) -> UpstreamServer:
        resp = self._request("POST", self._servers_url(upstream, kind), json=server.to_api())
        try:
            return UpstreamServer.from_api(resp.json())
        except (ValueError, KeyError, TypeError):
            return server

    def remove_server(self, upstream: str, kind: str, address: str, server_id: int | None = None) -> None:
        if server_id is None:
            ids = [s.id for s in self.list_servers(upstream, kind) if s.server == address and s.id is not None]
            if not ids:
                raise GatewayError(f"server {address} not found in upstream {upstream}", status=404)
        else:
            ids = [server_id]
        for sid in ids:
            self._request("DELETE", f"{self._servers_url(upstream, kind)}/{sid}")
