from __future__ import annotations

import json
import sqlite3
from datetime import datetime
from typing import Any

from . import db
from .errors import NotFound, ValidationError, dependency
from .models import App, Release, format_time, parse_time
from .tasks import TaskRegistrar, require_app


# Listing never returns more than one page.
PAGE_SIZE = 10


def env_key(release: Release) -> str:
    return f"releases/{release.id}/env"


def release_to_item(release: Release) -> dict[str, str]:
    item = {
        "id": release.id,
        "cluster": release.cluster,
        "app": release.app,
        "created": format_time(release.created),
        "tasks": json.dumps(release.tasks or {}, sort_keys=True),
    }
    if release.build:
        item["build"] = release.build
    if release.env:
        item["env"] = release.env
    if release.manifest:
        item["manifest"] = release.manifest
    return item


def release_from_item(item: dict[str, Any]) -> Release:
    return Release(
        id=item.get("id") or "",
        cluster=item.get("cluster") or "",
        app=item.get("app") or "",
        build=item.get("build") or "",
        env=item.get("env") or "",
        manifest=item.get("manifest") or "",
        tasks=json.loads(item.get("tasks") or "{}"),
        created=parse_time(item.get("created")),
    )


class ReleaseStore:
    """Persistence for releases, one table per (cluster, app)."""

    def __init__(self, registrar: TaskRegistrar, objects):
        self.registrar = registrar
        self.objects = objects

    def _app(self, cluster: str, app: str) -> App:
        return require_app(cluster, app)

    def list(self, cluster: str, app: str) -> list[Release]:
        """Newest releases first, at most one page."""
        a = self._app(cluster, app)
        with dependency("metadata store", f"query releases of {cluster}/{app}", sqlite3.Error):
            items = db.query_release_items(cluster, app, PAGE_SIZE)

        releases = [release_from_item(item) for item in items]
        for r in releases:
            r.active = a.release == r.id
        return releases

    def get(self, cluster: str, app: str, release_id: str) -> Release:
        a = self._app(cluster, app)
        with dependency("metadata store", f"get release {release_id}", sqlite3.Error):
            item = db.get_release_item(cluster, app, release_id)
        if item is None:
            raise NotFound(f"Release {release_id} not found for {cluster}/{app}.")

        release = release_from_item(item)
        release.active = a.release == release.id
        return release

    def save(self, release: Release) -> None:
        """Register the release's tasks, then write the record.

        Nothing is written if registration fails.
        """
        if not release.id:
            raise ValidationError("Release id must not be blank.")

        if release.created is None:
            release.created = datetime.utcnow()

        self.registrar.register(release)

        with dependency("metadata store", f"put release {release.id}", sqlite3.Error):
            db.put_release_item(release.cluster, release.app, release_to_item(release))

    def store_env(self, release: Release) -> None:
        """Write the release's environment to the app's settings location."""
        bucket = self.settings_location(release)
        self.objects.put(bucket, env_key(release), release.env.encode("utf-8"))

    def cleanup(self, release: Release) -> None:
        """Delete the release's stored environment; the record is kept."""
        bucket = self.settings_location(release)
        self.objects.delete(bucket, env_key(release))
        db.log_event("INFO", f"Deleted {env_key(release)} from {bucket}", app=release.app, release=release.id)

    def settings_location(self, release: Release) -> str:
        a = self._app(release.cluster, release.app)
        bucket = a.outputs.get("Settings")
        if not bucket:
            raise ValidationError(f"App {release.cluster}/{release.app} has no Settings output.")
        return bucket
