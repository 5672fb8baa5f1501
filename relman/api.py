from __future__ import annotations

from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse

from . import db
from .api_models import CreateReleaseRequest, ReleaseOut
from .backends import Manager, build_manager
from .errors import DependencyError, NotFound, ValidationError
from .models import Release


app = FastAPI(title="Release Lifecycle Manager")

_manager: Manager | None = None


def get_manager() -> Manager:
    global _manager
    if _manager is None:
        _manager = build_manager()
    return _manager


@app.on_event("startup")
def startup() -> None:
    db.init_db()


@app.exception_handler(NotFound)
async def _not_found(request: Request, exc: NotFound) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(ValidationError)
async def _invalid(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(DependencyError)
async def _dependency(request: Request, exc: DependencyError) -> JSONResponse:
    db.log_event("ERROR", str(exc))
    return JSONResponse(
        status_code=502,
        content={"detail": str(exc), "collaborator": exc.collaborator, "operation": exc.operation},
    )


def _out(r: Release) -> ReleaseOut:
    return ReleaseOut(
        id=r.id,
        cluster=r.cluster,
        app=r.app,
        build=r.build,
        env=r.env,
        manifest=r.manifest,
        tasks=r.tasks,
        created=r.created.isoformat() if r.created else None,
        active=r.active,
    )


@app.get("/apps/{cluster}/{app_name}/releases", response_model=list[ReleaseOut])
def list_releases(cluster: str, app_name: str, manager: Manager = Depends(get_manager)):
    return [_out(r) for r in manager.releases.list(cluster, app_name)]


@app.get("/apps/{cluster}/{app_name}/releases/{release_id}", response_model=ReleaseOut)
def get_release(cluster: str, app_name: str, release_id: str, manager: Manager = Depends(get_manager)):
    return _out(manager.releases.get(cluster, app_name, release_id))


@app.post("/apps/{cluster}/{app_name}/releases", response_model=ReleaseOut, status_code=201)
def create_release(
    cluster: str,
    app_name: str,
    req: CreateReleaseRequest,
    manager: Manager = Depends(get_manager),
):
    release = Release.new(cluster, app_name)
    release.build = req.build
    release.env = req.env
    release.manifest = req.manifest
    if release.env:
        # Refuse before anything is saved when the env has nowhere to go.
        manager.releases.settings_location(release)
    manager.releases.save(release)
    if release.env:
        manager.releases.store_env(release)
    db.log_event("INFO", f"Created release {release.id}", app=app_name, release=release.id)
    return _out(manager.releases.get(cluster, app_name, release.id))


@app.post("/apps/{cluster}/{app_name}/releases/{release_id}/promote", response_model=ReleaseOut)
def promote_release(cluster: str, app_name: str, release_id: str, manager: Manager = Depends(get_manager)):
    release = manager.releases.get(cluster, app_name, release_id)
    manager.promoter.promote(release)
    return _out(release)


@app.post("/apps/{cluster}/{app_name}/releases/{release_id}/cleanup")
def cleanup_release(cluster: str, app_name: str, release_id: str, manager: Manager = Depends(get_manager)):
    release = manager.releases.get(cluster, app_name, release_id)
    manager.releases.cleanup(release)
    return {"ok": True, "release": release_id}


@app.get("/events")
def events(limit: int = Query(50, ge=1, le=500)):
    return db.latest_events(limit)
