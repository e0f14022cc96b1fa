from __future__ import annotations

from fastapi import FastAPI, Query
from pydantic import BaseModel

from . import __version__, db
from .reconciler import Reconciler


class UpstreamStatus(BaseModel):
    name: str
    kind: str
    port: int
    scaling_group: str
    in_service: bool
    last_sync: dict | None = None


def create_app(reconciler: Reconciler) -> FastAPI:
    """Status API: catalog, last sync result per upstream, event journal, manual sync."""
    app = FastAPI(title="asgsync", version=__version__)

    @app.get("/health")
    def health() -> dict:
        return {"status": "healthy", "reconciler_running": reconciler.is_running()}

    @app.get("/upstreams", response_model=list[UpstreamStatus])
    def upstreams() -> list[UpstreamStatus]:
        out = []
        for u in reconciler.provider.list_upstreams():
            last = reconciler.runtime.get_result(u.name)
            out.append(
                UpstreamStatus(
                    name=u.name,
                    kind=u.kind,
                    port=u.port,
                    scaling_group=u.scaling_group,
                    in_service=u.in_service,
                    last_sync=last.to_dict() if last else None,
                )
            )
        return out

    @app.get("/events")
    def events(limit: int = Query(50, ge=1, le=1000), upstream: str | None = None) -> list[dict]:
        return db.latest_events(limit=limit, upstream=upstream)

    @app.post("/sync")
    def sync_now() -> list[dict]:
        return [r.to_dict() for r in reconciler.run_once()]

    return app
