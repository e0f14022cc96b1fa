from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Any


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass(frozen=True)
class SyncResult:
    upstream: str
    added: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    error: str | None = None
    finished_at: str = field(default_factory=utc_now)

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["ok"] = self.ok
        return d


class RuntimeState:
    """In-memory state shared by the reconcile loop and the status API."""

    def __init__(self) -> None:
        self.lock = Lock()
        self._upstream_locks: dict[str, Lock] = {}  # upstream -> serializes passes
        self.last_results: dict[str, SyncResult] = {}  # upstream -> last pass
        self.passes = 0

    def upstream_lock(self, name: str) -> Lock:
        with self.lock:
            lk = self._upstream_locks.get(name)
            if lk is None:
                lk = self._upstream_locks[name] = Lock()
            return lk

    def record(self, result: SyncResult) -> None:
        with self.lock:
            self.last_results[result.upstream] = result

    def finish_pass(self) -> int:
        with self.lock:
            self.passes += 1
            return self.passes

    def get_result(self, name: str) -> SyncResult | None:
        with self.lock:
            return self.last_results.get(name)

    def list_results(self) -> list[SyncResult]:
        with self.lock:
            return list(self.last_results.values())
