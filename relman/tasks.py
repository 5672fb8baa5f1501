from __future__ import annotations

import sqlite3

from . import db
from .errors import NotFound, dependency
from .manifest import load_environment
from .models import App, Build, ContainerDefinition, PortBinding, Release
from .settings import settings


class PortAllocator:
    """Turns a process's declared container ports into host port bindings."""

    def bindings(self, ports: list[int]) -> list[PortBinding]:
        raise NotImplementedError


class FixedBasePorts(PortAllocator):
    """Host port = base + index of the declared port.

    Two processes placed on the same host with ports both collide on the
    base port; the scheduler is left to reject that placement.
    """

    def __init__(self, base: int | None = None):
        self.base = settings.base_port if base is None else int(base)

    def bindings(self, ports: list[int]) -> list[PortBinding]:
        return [PortBinding(container_port=int(p), host_port=self.base + i) for i, p in enumerate(ports)]


def require_app(cluster: str, app: str) -> App:
    with dependency("metadata store", f"get app {cluster}/{app}", sqlite3.Error):
        a = db.get_app(cluster, app)
    if a is None:
        raise NotFound(f"App {cluster}/{app} not found.")
    return a


def resolve_build(release: Release) -> Build:
    if not release.build:
        raise NotFound(f"Release {release.id} has no build.")
    with dependency("metadata store", f"get build {release.build}", sqlite3.Error):
        build = db.get_build(release.cluster, release.app, release.build)
    if build is None:
        raise NotFound(f"Build {release.build} not found for {release.cluster}/{release.app}.")
    return build


class TaskRegistrar:
    """Registers one task definition per manifest process."""

    def __init__(self, scheduler, ports: PortAllocator | None = None):
        self.scheduler = scheduler
        self.ports = ports or FixedBasePorts()

    def container_definition(self, release: Release, build: Build, process) -> ContainerDefinition:
        container = ContainerDefinition(
            name="main",
            image=build.image(process.name),
            cpu=settings.task_cpu,
            memory=settings.task_memory,
        )
        if process.command:
            container.command = ["sh", "-c", process.command]
        container.environment = sorted(load_environment(release.env).items())
        container.port_mappings = self.ports.bindings(process.ports)
        return container

    def register(self, release: Release) -> dict[str, str]:
        """Register every process and set release.tasks.

        On failure release.tasks is left as it was; definitions registered
        for earlier processes stay with the scheduler.
        """
        tasks: dict[str, str] = {}
        for process in release.processes():
            build = resolve_build(release)
            container = self.container_definition(release, build, process)
            ref = self.scheduler.register_task_definition(release.service_name(process.name), container)
            tasks[process.name] = str(ref)
            db.log_event("INFO", f"Registered task definition {ref} for {process.name}", app=release.app, release=release.id)
        release.tasks = tasks
        return tasks
