from __future__ import annotations

import json
import os
import sqlite3
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any

from .models import App, Build, LoadBalancerBinding, ServiceInfo, validate_name
from .settings import settings


RELEASE_COLUMNS = ("id", "cluster", "app", "build", "env", "manifest", "tasks", "created")


def utc_now() -> str:
    return datetime.utcnow().strftime("%Y-%m-%dT%H:%M:%SZ")


def _resolve_db_path() -> str:
    """Return a file path usable by sqlite.

    A bind-mounted path that did not exist shows up as a directory, so a
    directory path gets the DB file placed inside it.
    """

    p = os.path.abspath(settings.db_path)

    if os.path.isdir(p):
        p = os.path.join(p, "relman.db")

    parent = os.path.dirname(p)
    if parent and not os.path.exists(parent):
        os.makedirs(parent, exist_ok=True)

    return p


def connect() -> sqlite3.Connection:
    conn = sqlite3.connect(_resolve_db_path(), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


def init_db() -> None:
    """Create the shared tables if they do not exist.

    Release tables are per (cluster, app) and are created on first use.
    """
    with connect() as conn:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS apps (
              cluster TEXT NOT NULL,
              name TEXT NOT NULL,
              release TEXT,
              parameters TEXT NOT NULL DEFAULT '{}',
              outputs TEXT NOT NULL DEFAULT '{}',
              created_at TEXT NOT NULL,
              PRIMARY KEY(cluster, name)
            );

            CREATE TABLE IF NOT EXISTS builds (
              cluster TEXT NOT NULL,
              app TEXT NOT NULL,
              id TEXT NOT NULL,
              repository TEXT,
              created_at TEXT NOT NULL,
              PRIMARY KEY(cluster, app, id)
            );

            CREATE TABLE IF NOT EXISTS task_definitions (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              family TEXT NOT NULL,
              revision INTEGER NOT NULL,
              definition TEXT NOT NULL,
              created_at TEXT NOT NULL,
              UNIQUE(family, revision)
            );

            CREATE TABLE IF NOT EXISTS services (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              cluster TEXT NOT NULL,
              name TEXT NOT NULL,
              task_definition TEXT NOT NULL,
              desired_count INTEGER NOT NULL,
              load_balancers TEXT NOT NULL DEFAULT '[]',
              status TEXT NOT NULL, -- ACTIVE|DRAINING
              created_at TEXT NOT NULL,
              updated_at TEXT NOT NULL,
              UNIQUE(cluster, name)
            );

            CREATE TABLE IF NOT EXISTS stacks (
              name TEXT PRIMARY KEY,
              template TEXT NOT NULL,
              parameters TEXT NOT NULL DEFAULT '{}',
              updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS events (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              ts TEXT NOT NULL,
              level TEXT NOT NULL,
              app TEXT,
              release TEXT,
              message TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_events_ts ON events(ts);
            """
        )


def log_event(level: str, message: str, app: str | None = None, release: str | None = None) -> None:
    with connect() as conn:
        conn.execute(
            "INSERT INTO events (ts, level, app, release, message) VALUES (?, ?, ?, ?, ?)",
            (utc_now(), level.upper(), app, release, message),
        )


def latest_events(limit: int = 100) -> list[dict[str, Any]]:
    with connect() as conn:
        rows = conn.execute("SELECT * FROM events ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
        return [dict(r) for r in rows]


# --- releases -------------------------------------------------------------


def releases_table(cluster: str, app: str) -> str:
    validate_name("cluster", cluster)
    validate_name("app", app)
    return f"{cluster}-{app}-releases"


def ensure_releases_table(cluster: str, app: str) -> str:
    table = releases_table(cluster, app)
    with connect() as conn:
        conn.executescript(
            f"""
            CREATE TABLE IF NOT EXISTS "{table}" (
              id TEXT PRIMARY KEY,
              cluster TEXT NOT NULL,
              app TEXT NOT NULL,
              build TEXT,
              env TEXT,
              manifest TEXT,
              tasks TEXT,
              created TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS "{table}.app.created" ON "{table}"(app, created);
            """
        )
    return table


def put_release_item(cluster: str, app: str, item: dict[str, str]) -> None:
    """Write one release row; attributes missing from item are stored as NULL."""
    table = ensure_releases_table(cluster, app)
    values = [item.get(c) for c in RELEASE_COLUMNS]
    with connect() as conn:
        conn.execute(
            f'INSERT OR REPLACE INTO "{table}" ({", ".join(RELEASE_COLUMNS)}) VALUES ({", ".join("?" * len(RELEASE_COLUMNS))})',
            values,
        )


def get_release_item(cluster: str, app: str, release_id: str) -> dict[str, Any] | None:
    table = ensure_releases_table(cluster, app)
    with connect() as conn:
        row = conn.execute(f'SELECT * FROM "{table}" WHERE id=?', (release_id,)).fetchone()
        return dict(row) if row else None


def query_release_items(cluster: str, app: str, limit: int) -> list[dict[str, Any]]:
    table = ensure_releases_table(cluster, app)
    with connect() as conn:
        rows = conn.execute(
            f'SELECT * FROM "{table}" WHERE app=? ORDER BY created DESC LIMIT ?',
            (app, limit),
        ).fetchall()
        return [dict(r) for r in rows]


# --- apps and builds ------------------------------------------------------


def upsert_app(
    cluster: str,
    name: str,
    release: str = "",
    parameters: dict[str, str] | None = None,
    outputs: dict[str, str] | None = None,
) -> App:
    validate_name("cluster", cluster)
    validate_name("app", name)
    with connect() as conn:
        conn.execute(
            """
            INSERT INTO apps (cluster, name, release, parameters, outputs, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(cluster, name) DO UPDATE SET
              release=excluded.release,
              parameters=excluded.parameters,
              outputs=excluded.outputs
            """,
            (cluster, name, release or None, json.dumps(parameters or {}), json.dumps(outputs or {}), utc_now()),
        )
    return App(cluster=cluster, name=name, release=release, parameters=dict(parameters or {}), outputs=dict(outputs or {}))


def set_app_release(cluster: str, name: str, release: str) -> None:
    with connect() as conn:
        conn.execute("UPDATE apps SET release=? WHERE cluster=? AND name=?", (release, cluster, name))


def get_app(cluster: str, name: str) -> App | None:
    with connect() as conn:
        row = conn.execute("SELECT * FROM apps WHERE cluster=? AND name=?", (cluster, name)).fetchone()
    if not row:
        return None
    return App(
        cluster=row["cluster"],
        name=row["name"],
        release=row["release"] or "",
        parameters=json.loads(row["parameters"] or "{}"),
        outputs=json.loads(row["outputs"] or "{}"),
    )


def upsert_build(cluster: str, app: str, build_id: str, repository: str = "") -> Build:
    with connect() as conn:
        conn.execute(
            """
            INSERT INTO builds (cluster, app, id, repository, created_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(cluster, app, id) DO UPDATE SET repository=excluded.repository
            """,
            (cluster, app, build_id, repository or None, utc_now()),
        )
    return Build(id=build_id, cluster=cluster, app=app, repository=repository, registry_host=settings.registry_host)


def get_build(cluster: str, app: str, build_id: str) -> Build | None:
    with connect() as conn:
        row = conn.execute(
            "SELECT * FROM builds WHERE cluster=? AND app=? AND id=?",
            (cluster, app, build_id),
        ).fetchone()
    if not row:
        return None
    return Build(
        id=row["id"],
        cluster=row["cluster"],
        app=row["app"],
        repository=row["repository"] or "",
        registry_host=settings.registry_host,
    )


# --- local scheduler state ------------------------------------------------


@dataclass(frozen=True)
class TaskDefinitionRow:
    family: str
    revision: int
    definition: dict[str, Any]
    created_at: str


def insert_task_definition(family: str, definition: dict[str, Any]) -> TaskDefinitionRow:
    """Store a new revision of a family; revisions start at 1 and only grow."""
    with connect() as conn:
        row = conn.execute("SELECT MAX(revision) AS rev FROM task_definitions WHERE family=?", (family,)).fetchone()
        revision = (row["rev"] or 0) + 1
        ts = utc_now()
        conn.execute(
            "INSERT INTO task_definitions (family, revision, definition, created_at) VALUES (?, ?, ?, ?)",
            (family, revision, json.dumps(definition), ts),
        )
    return TaskDefinitionRow(family=family, revision=revision, definition=definition, created_at=ts)


def get_task_definition(family: str, revision: int) -> TaskDefinitionRow | None:
    with connect() as conn:
        row = conn.execute(
            "SELECT * FROM task_definitions WHERE family=? AND revision=?",
            (family, revision),
        ).fetchone()
    if not row:
        return None
    return TaskDefinitionRow(
        family=row["family"],
        revision=row["revision"],
        definition=json.loads(row["definition"]),
        created_at=row["created_at"],
    )


def _service_from_row(row: sqlite3.Row) -> ServiceInfo:
    return ServiceInfo(
        name=row["name"],
        task_definition=row["task_definition"],
        desired_count=row["desired_count"],
        load_balancers=tuple(LoadBalancerBinding(**lb) for lb in json.loads(row["load_balancers"] or "[]")),
        status=row["status"],
    )


def find_services(cluster: str, names: list[str]) -> list[ServiceInfo]:
    if not names:
        return []
    with connect() as conn:
        rows = conn.execute(
            f"SELECT * FROM services WHERE cluster=? AND name IN ({', '.join('?' * len(names))}) ORDER BY id",
            (cluster, *names),
        ).fetchall()
        return [_service_from_row(r) for r in rows]


def insert_service(
    cluster: str,
    name: str,
    task_definition: str,
    desired_count: int,
    load_balancers: list[LoadBalancerBinding],
) -> ServiceInfo:
    ts = utc_now()
    with connect() as conn:
        conn.execute(
            """
            INSERT INTO services (cluster, name, task_definition, desired_count, load_balancers, status, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, 'ACTIVE', ?, ?)
            """,
            (
                cluster,
                name,
                task_definition,
                desired_count,
                json.dumps([asdict(lb) for lb in load_balancers]),
                ts,
                ts,
            ),
        )
    return ServiceInfo(
        name=name,
        task_definition=task_definition,
        desired_count=desired_count,
        load_balancers=tuple(load_balancers),
    )


def update_service_row(cluster: str, name: str, task_definition: str, desired_count: int) -> None:
    with connect() as conn:
        conn.execute(
            "UPDATE services SET task_definition=?, desired_count=?, updated_at=? WHERE cluster=? AND name=?",
            (task_definition, desired_count, utc_now(), cluster, name),
        )


# --- local stacks ---------------------------------------------------------


def put_stack(name: str, template: str, parameters: dict[str, str]) -> None:
    with connect() as conn:
        conn.execute(
            """
            INSERT INTO stacks (name, template, parameters, updated_at) VALUES (?, ?, ?, ?)
            ON CONFLICT(name) DO UPDATE SET
              template=excluded.template,
              parameters=excluded.parameters,
              updated_at=excluded.updated_at
            """,
            (name, template, json.dumps(parameters), utc_now()),
        )


def get_stack(name: str) -> dict[str, Any] | None:
    with connect() as conn:
        row = conn.execute("SELECT * FROM stacks WHERE name=?", (name,)).fetchone()
    if not row:
        return None
    return {
        "name": row["name"],
        "template": row["template"],
        "parameters": json.loads(row["parameters"] or "{}"),
        "updated_at": row["updated_at"],
    }
