from __future__ import annotations

import re
import secrets
import string
from dataclasses import dataclass, field
from datetime import datetime

from .errors import ValidationError


SORTABLE_TIME = "%Y%m%d.%H%M%S.%f"
NAME_RE = re.compile(r"^[a-z][a-z0-9\-]{0,62}$")


def validate_name(kind: str, name: str) -> None:
    if not NAME_RE.match(name or ""):
        raise ValidationError(
            f"Invalid {kind} name {name!r}. Use lowercase letters/numbers and hyphen, starting with a letter (max 63 chars)."
        )


def generate_id(prefix: str, size: int) -> str:
    return prefix + "".join(secrets.choice(string.ascii_uppercase) for _ in range(size))


def format_time(ts: datetime) -> str:
    return ts.strftime(SORTABLE_TIME)


def parse_time(raw: str | None) -> datetime | None:
    if not raw:
        return None
    try:
        return datetime.strptime(raw, SORTABLE_TIME)
    except ValueError:
        return None


@dataclass
class Process:
    name: str
    count: int = 1
    command: str = ""
    ports: list[int] = field(default_factory=list)


@dataclass(frozen=True)
class App:
    cluster: str
    name: str
    release: str = ""
    parameters: dict[str, str] = field(default_factory=dict)
    outputs: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class Build:
    id: str
    cluster: str
    app: str
    repository: str = ""
    registry_host: str | None = None

    def image(self, process: str) -> str:
        """Pullable image reference for one process of this build."""
        if self.repository:
            return f"{self.repository}:{self.id}"
        name = f"{self.app}-{process}:{self.id}"
        if self.registry_host:
            return f"{self.registry_host}/{name}"
        return name


@dataclass(frozen=True)
class PortBinding:
    container_port: int
    host_port: int


@dataclass(frozen=True)
class TaskReference:
    family: str
    revision: int

    def __str__(self) -> str:
        return f"{self.family}:{self.revision}"

    @classmethod
    def parse(cls, raw: str) -> "TaskReference":
        family, sep, revision = raw.rpartition(":")
        if not sep or not family or not revision.isdigit():
            raise ValidationError(f"Invalid task reference {raw!r}; expected family:revision.")
        return cls(family=family, revision=int(revision))


@dataclass
class ContainerDefinition:
    name: str
    image: str
    cpu: int
    memory: int
    essential: bool = True
    command: list[str] | None = None
    environment: list[tuple[str, str]] = field(default_factory=list)
    port_mappings: list[PortBinding] = field(default_factory=list)


@dataclass(frozen=True)
class LoadBalancerBinding:
    container_name: str
    container_port: int
    load_balancer_name: str


@dataclass(frozen=True)
class ServiceInfo:
    name: str
    task_definition: str
    desired_count: int
    load_balancers: tuple[LoadBalancerBinding, ...] = ()
    status: str = "ACTIVE"


@dataclass
class Release:
    id: str
    cluster: str
    app: str
    build: str = ""
    env: str = ""
    manifest: str = ""
    tasks: dict[str, str] = field(default_factory=dict)
    created: datetime | None = None
    # Computed from the app record on every read, never stored.
    active: bool = False

    @classmethod
    def new(cls, cluster: str, app: str) -> "Release":
        return cls(id=generate_id("R", 10), cluster=cluster, app=app)

    def processes(self) -> list[Process]:
        from .manifest import load_manifest

        return load_manifest(self.manifest)

    def stack_name(self) -> str:
        return f"{self.cluster}-{self.app}"

    def service_name(self, process: str) -> str:
        return f"{self.cluster}-{self.app}-{process}"
