from __future__ import annotations

import ipaddress
from dataclasses import dataclass, field
from typing import Any, Iterable

KIND_HTTP = "http"
KIND_STREAM = "stream"
KINDS = (KIND_HTTP, KIND_STREAM)

DEFAULT_FAIL_TIMEOUT = "10s"
DEFAULT_SLOW_START = "0s"


def format_address(ip: str, port: int) -> str:
    """Return the ``ip:port`` form NGINX uses for upstream servers (IPv6 bracketed)."""
    addr = ipaddress.ip_address(ip)
    if addr.version == 6:
        return f"[{addr.compressed}]:{port}"
    return f"{addr.compressed}:{port}"


@dataclass(frozen=True)
class Upstream:
    name: str
    port: int
    kind: str
    scaling_group: str
    max_conns: int | None = None
    max_fails: int | None = None
    fail_timeout: str = DEFAULT_FAIL_TIMEOUT
    slow_start: str = DEFAULT_SLOW_START
    in_service: bool = False

    def server_for(self, ip: str) -> UpstreamServer:
        """Build the server entry added to NGINX for a newly discovered member."""
        return UpstreamServer(
            server=format_address(ip, self.port),
            max_conns=self.max_conns,
            max_fails=self.max_fails,
            fail_timeout=self.fail_timeout,
            slow_start=self.slow_start,
        )


@dataclass(frozen=True)
class UpstreamServer:
    server: str
    id: int | None = None
    max_conns: int | None = None
    max_fails: int | None = None
    fail_timeout: str | None = None
    slow_start: str | None = None
    weight: int | None = None
    extra: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    _FIELDS = ("max_conns", "max_fails", "fail_timeout", "slow_start", "weight")

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> UpstreamServer:
        known = {"server", "id", *cls._FIELDS}
        return cls(
            server=data["server"],
            id=data.get("id"),
            max_conns=data.get("max_conns"),
            max_fails=data.get("max_fails"),
            fail_timeout=data.get("fail_timeout"),
            slow_start=data.get("slow_start"),
            weight=data.get("weight"),
            extra={k: v for k, v in data.items() if k not in known},
        )

    def to_api(self) -> dict[str, Any]:
        body: dict[str, Any] = {"server": self.server}
        for name in self._FIELDS:
            value = getattr(self, name)
            if value is not None:
                body[name] = value
        return body


@dataclass(frozen=True)
class Diff:
    to_add: list[str]
    to_remove: list[str]

    @property
    def is_empty(self) -> bool:
        return not self.to_add and not self.to_remove


def compute_diff(desired: Iterable[str], actual: Iterable[str]) -> Diff:
    """Addresses present on both sides appear in neither list."""
    want = set(desired)
    have = set(actual)
    return Diff(to_add=sorted(want - have), to_remove=sorted(have - want))
