from __future__ import annotations

from dataclasses import replace

import pytest

from asgsync import db
from asgsync.errors import GatewayError, ProviderError
from asgsync.models import Upstream, UpstreamServer


@pytest.fixture(autouse=True)
def journal(tmp_path, monkeypatch):
    """Point the event journal at an isolated sqlite file for every test."""
    monkeypatch.setattr(db, "settings", replace(db.settings, db_path=str(tmp_path / "events.db")))
    db.init_db()
    return tmp_path / "events.db"


class FakeProvider:
    """In-memory provider: group name -> IPs, or an exception to raise."""

    def __init__(self, upstreams: list[Upstream], members: dict[str, object]):
        self._upstreams = upstreams
        self.members = members
        self.calls: list[str] = []

    def list_upstreams(self) -> list[Upstream]:
        return list(self._upstreams)

    def resolve_members(self, scaling_group: str) -> set[str]:
        self.calls.append(scaling_group)
        value = self.members.get(scaling_group)
        if value is None:
            raise ProviderError(f"autoscaling group {scaling_group} doesn't exist", kind=ProviderError.NOT_FOUND)
        if isinstance(value, Exception):
            raise value
        return set(value)

    def group_exists(self, scaling_group: str) -> bool:
        return scaling_group in self.members


class FakeGateway:
    """In-memory NGINX Plus upstreams recording every write call."""

    def __init__(self, servers: dict[tuple[str, str], list[str]] | None = None):
        self.servers: dict[tuple[str, str], list[UpstreamServer]] = {}
        self._next_id = 0
        for key, addrs in (servers or {}).items():
            self.servers[key] = [self._new(UpstreamServer(server=a)) for a in addrs]
        self.calls: list[tuple] = []
        self.fail_list: set[str] = set()
        self.fail_add: set[str] = set()
        self.removed_ids: list[int | None] = []

    def _new(self, server: UpstreamServer) -> UpstreamServer:
        s = replace(server, id=self._next_id)
        self._next_id += 1
        return s

    def close(self) -> None:
        pass

    def __enter__(self) -> FakeGateway:
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def addresses(self, upstream: str, kind: str) -> set[str]:
        return {s.server for s in self.servers.get((upstream, kind), [])}

    def list_servers(self, upstream: str, kind: str) -> list[UpstreamServer]:
        if upstream in self.fail_list:
            raise GatewayError(f"upstream {upstream} not found", status=404)
        return list(self.servers.get((upstream, kind), []))

    def add_server(self, upstream: str, kind: str, server: UpstreamServer) -> UpstreamServer:
        self.calls.append(("add", upstream, kind, server.server))
        if server.server in self.fail_add:
            raise GatewayError("server already exists", status=409)
        s = self._new(server)
        self.servers.setdefault((upstream, kind), []).append(s)
        return s

    def remove_server(self, upstream: str, kind: str, address: str, server_id: int | None = None) -> None:
        self.calls.append(("remove", upstream, kind, address))
        self.removed_ids.append(server_id)
        current = self.servers.get((upstream, kind), [])
        if server_id is None:
            self.servers[(upstream, kind)] = [s for s in current if s.server != address]
        else:
            self.servers[(upstream, kind)] = [s for s in current if s.id != server_id]


@pytest.fixture
def api_upstream() -> Upstream:
    return Upstream(name="api", port=80, kind="http", scaling_group="g1")
