from __future__ import annotations

import secrets
from dataclasses import dataclass
from typing import Any

import docker
from docker.errors import ContainerError, DockerException, NotFound

from .db import log_event
from .errors import DependencyError
from .settings import settings


@dataclass(frozen=True)
class ContainerRef:
    id: str
    name: str


def _client() -> docker.DockerClient:
    return docker.from_env()


def docker_available() -> bool:
    try:
        c = _client()
        c.ping()
        return True
    except DockerException:
        return False


def _require_docker(operation: str) -> docker.DockerClient:
    if not docker_available():
        raise DependencyError("docker", operation, "Docker is not available. Start the docker daemon and try again.")
    return _client()


def ensure_network() -> None:
    if not docker_available():
        return
    c = _client()
    try:
        c.networks.get(settings.docker_network)
    except NotFound:
        c.networks.create(settings.docker_network, driver="bridge")
        log_event("INFO", f"Created docker network '{settings.docker_network}'.")


def run_task_container(service: str, task_definition: str, definition: dict[str, Any]) -> ContainerRef:
    """Create and start one container for a service from a stored task definition.

    Containers are labeled so a service's containers can be found again.
    """
    ensure_network()
    c = _require_docker("run task")

    container = definition["containers"][0]
    name = f"{service}-{secrets.token_hex(3)}"
    labels: dict[str, str] = {
        "relman.service": service,
        "relman.task": task_definition,
    }
    ports = {f"{p['container_port']}/tcp": p["host_port"] for p in container.get("port_mappings", [])}

    try:
        run = c.containers.run(
            container["image"],
            command=container.get("command"),
            detach=True,
            name=name,
            environment=dict(container.get("environment", [])),
            ports=ports or None,
            network=settings.docker_network,
            labels=labels,
            mem_limit=f"{int(container['memory'])}m",
            cpu_shares=int(container["cpu"]),
            restart_policy={"Name": "unless-stopped"},
        )
    except DockerException as e:
        raise DependencyError("docker", f"run task {task_definition}", f"{type(e).__name__}: {e}") from e

    log_event("INFO", f"Started container {name} from image {container['image']}")
    return ContainerRef(id=run.id, name=name)


def list_service_containers(service: str) -> list[ContainerRef]:
    if not docker_available():
        return []
    c = _client()
    containers = c.containers.list(all=True, filters={"label": [f"relman.service={service}"]})
    return [ContainerRef(id=x.id, name=x.name) for x in containers]


def remove_container(container_id: str, force: bool = True) -> None:
    if not docker_available():
        return
    c = _client()
    try:
        cont = c.containers.get(container_id)
        cont.remove(force=force)
    except NotFound:
        return


def run_generator(image: str, args: list[str]) -> str:
    """Run a one-shot generator container and return what it printed."""
    c = _require_docker("run generator")
    try:
        out = c.containers.run(image, command=args, remove=True, stdout=True, stderr=True)
    except ContainerError as e:
        stderr = e.stderr.decode("utf-8", errors="replace") if isinstance(e.stderr, bytes) else str(e.stderr or "")
        raise DependencyError("template generator", f"run {image}", stderr.strip() or str(e)) from e
    except DockerException as e:
        raise DependencyError("template generator", f"run {image}", f"{type(e).__name__}: {e}") from e
    return out.decode("utf-8", errors="replace") if isinstance(out, bytes) else str(out)
