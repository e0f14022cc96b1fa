from __future__ import annotations

import ipaddress
import logging
from concurrent.futures import ThreadPoolExecutor
from threading import Event, Thread
from typing import Protocol

from . import db
from .errors import GatewayError, ProviderError
from .models import Upstream, UpstreamServer, compute_diff, format_address
from .providers import CloudProvider
from .runtime import RuntimeState, SyncResult
from .settings import settings

logger = logging.getLogger(__name__)


class Gateway(Protocol):
    def list_servers(self, upstream: str, kind: str) -> list[UpstreamServer]: ...

    def add_server(self, upstream: str, kind: str, server: UpstreamServer) -> UpstreamServer: ...

    def remove_server(self, upstream: str, kind: str, address: str, server_id: int | None = None) -> None: ...


def _valid_ips(upstream: Upstream, ips: set[str]) -> set[str]:
    out: set[str] = set()
    for ip in ips:
        try:
            ipaddress.ip_address(ip)
        except ValueError:
            db.log_event("WARN", f"Ignoring invalid address {ip!r} reported for {upstream.scaling_group}", upstream=upstream.name)
            continue
        out.add(ip)
    return out


class Reconciler:
    """Keeps NGINX Plus upstream server lists equal to scaling-group membership.

    Each tick runs one pass over the catalog. Upstreams are reconciled in
    parallel and independently: a failure is reported and the upstream is
    skipped until the next tick, which is the only retry. The next tick starts
    ``interval_s`` after the previous pass has finished, so passes never
    overlap; manual passes (status API) are serialized per upstream.
    """

    def __init__(
        self,
        provider: CloudProvider,
        gateway: Gateway,
        runtime: RuntimeState | None = None,
        interval_s: float = 5.0,
        max_workers: int | None = None,
        dry_run: bool | None = None,
    ):
        self.provider = provider
        self.gateway = gateway
        self.runtime = runtime or RuntimeState()
        self.interval_s = max(0.1, float(interval_s))
        self.max_workers = settings.max_workers if max_workers is None else max_workers
        self.dry_run = settings.dry_run if dry_run is None else dry_run
        self._stop = Event()
        self._thr: Thread | None = None

    def start(self) -> None:
        if self._thr and self._thr.is_alive():
            return
        self._stop.clear()
        self._thr = Thread(target=self._loop, name="reconciler", daemon=True)
        self._thr.start()

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thr:
            self._thr.join(timeout)

    def is_running(self) -> bool:
        return bool(self._thr and self._thr.is_alive())

    def _loop(self) -> None:
        db.log_event("INFO", f"Reconciler started, syncing every {self.interval_s:g}s")
        while not self._stop.is_set():
            try:
                self.run_once()
            except Exception as e:
                db.log_event("ERROR", f"Reconciler tick failed: {type(e).__name__}: {e}")
            self._stop.wait(self.interval_s)
        db.log_event("INFO", "Reconciler stopped")

    def run_once(self) -> list[SyncResult]:
        """Reconcile every configured upstream once."""
        upstreams = self.provider.list_upstreams()
        if not upstreams:
            return []
        workers = self.max_workers or len(upstreams)
        with ThreadPoolExecutor(max_workers=min(workers, len(upstreams)), thread_name_prefix="sync") as pool:
            results = list(pool.map(self.sync_upstream, upstreams))
        n = self.runtime.finish_pass()
        logger.debug("Pass %d finished: %d upstreams, %d failed", n, len(results), sum(not r.ok for r in results))
        return results

    def sync_upstream(self, upstream: Upstream) -> SyncResult:
        with self.runtime.upstream_lock(upstream.name):
            try:
                result = self._sync(upstream)
            except Exception as e:
                logger.exception("Unexpected error while syncing upstream %s", upstream.name)
                db.log_event("ERROR", f"Sync failed: {type(e).__name__}: {e}", upstream=upstream.name)
                result = SyncResult(upstream=upstream.name, error=f"{type(e).__name__}: {e}")
        self.runtime.record(result)
        return result

    def _desired(self, upstream: Upstream) -> dict[str, str]:
        """Map of server address (ip:port) to member IP."""
        try:
            ips = self.provider.resolve_members(upstream.scaling_group)
        except ProviderError as e:
            if not e.is_not_found:
                raise
            # A deleted group is a steady state: it simply has no members.
            db.log_event("WARN", f"Scaling group {upstream.scaling_group} doesn't exist, removing all servers", upstream=upstream.name)
            return {}
        return {format_address(ip, upstream.port): ip for ip in _valid_ips(upstream, ips)}

    def _sync(self, upstream: Upstream) -> SyncResult:
        try:
            desired = self._desired(upstream)
        except ProviderError as e:
            db.log_event("ERROR", f"Couldn't get the IP addresses for {upstream.scaling_group}: {e}", upstream=upstream.name)
            return SyncResult(upstream=upstream.name, error=str(e))

        try:
            actual = self.gateway.list_servers(upstream.name, upstream.kind)
        except GatewayError as e:
            db.log_event("ERROR", f"Couldn't get the servers of the {upstream.kind} upstream: {e}", upstream=upstream.name)
            return SyncResult(upstream=upstream.name, error=str(e))

        # NGINX may list one address more than once; every entry is removed.
        ids: dict[str, list[int | None]] = {}
        for s in actual:
            ids.setdefault(s.server, []).append(s.id)
        diff = compute_diff(desired, ids)
        if diff.is_empty:
            logger.debug("Upstream %s is up to date (%d servers)", upstream.name, len(ids))
            return SyncResult(upstream=upstream.name)

        if self.dry_run:
            db.log_event("INFO", f"[dry run] would remove {diff.to_remove}, add {diff.to_add}", upstream=upstream.name)
            return SyncResult(upstream=upstream.name)

        removed: list[str] = []
        added: list[str] = []
        try:
            # Removals first so backends with fixed connection budgets never see both sets at once.
            for address in diff.to_remove:
                for server_id in ids[address]:
                    self.gateway.remove_server(upstream.name, upstream.kind, address, server_id=server_id)
                removed.append(address)
            for address in diff.to_add:
                self.gateway.add_server(upstream.name, upstream.kind, upstream.server_for(desired[address]))
                added.append(address)
        except GatewayError as e:
            db.log_event("ERROR", f"Couldn't update the servers of the {upstream.kind} upstream: {e}", upstream=upstream.name)
            self._report(upstream, added, removed)
            return SyncResult(upstream=upstream.name, added=added, removed=removed, error=str(e))

        self._report(upstream, added, removed)
        return SyncResult(upstream=upstream.name, added=added, removed=removed)

    def _report(self, upstream: Upstream, added: list[str], removed: list[str]) -> None:
        if added or removed:
            db.log_event("INFO", f"Updated {upstream.kind} upstream: added {added}, removed {removed}", upstream=upstream.name)
