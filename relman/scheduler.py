from __future__ import annotations

import sqlite3
from dataclasses import asdict
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from . import db, docker_ops
from .errors import NotFound, dependency
from .models import ContainerDefinition, LoadBalancerBinding, ServiceInfo, TaskReference
from .settings import settings


class DockerScheduler:
    """Container scheduler backed by the local docker daemon.

    Task definitions and services are kept in sqlite; creating or updating a
    service starts labeled containers. Load balancer bindings are recorded but
    not wired to anything on a single host.
    """

    def register_task_definition(self, family: str, container: ContainerDefinition) -> TaskReference:
        definition = {"family": family, "containers": [asdict(container)]}
        with dependency("scheduler", f"register task definition {family}", sqlite3.Error):
            row = db.insert_task_definition(family, definition)
        return TaskReference(family=row.family, revision=row.revision)

    def describe_services(self, cluster: str, names: list[str]) -> list[ServiceInfo]:
        with dependency("scheduler", "describe services", sqlite3.Error):
            return [s for s in db.find_services(cluster, names) if s.status != "INACTIVE"]

    def _definition(self, task_definition: str) -> dict[str, Any]:
        ref = TaskReference.parse(task_definition)
        with dependency("scheduler", f"describe task definition {task_definition}", sqlite3.Error):
            row = db.get_task_definition(ref.family, ref.revision)
        if row is None:
            raise NotFound(f"Task definition {task_definition} not found.")
        return row.definition

    def _start(self, name: str, task_definition: str, count: int) -> None:
        definition = self._definition(task_definition)
        for _ in range(count):
            docker_ops.run_task_container(name, task_definition, definition)

    def create_service(
        self,
        cluster: str,
        name: str,
        task_definition: str,
        desired_count: int,
        load_balancers: list[LoadBalancerBinding],
    ) -> ServiceInfo:
        self._definition(task_definition)
        with dependency("scheduler", f"create service {name}", sqlite3.Error):
            service = db.insert_service(cluster, name, task_definition, desired_count, load_balancers)
        self._start(name, task_definition, desired_count)
        return service

    def update_service(self, cluster: str, name: str, task_definition: str, desired_count: int) -> None:
        self._definition(task_definition)
        with dependency("scheduler", f"update service {name}", sqlite3.Error):
            db.update_service_row(cluster, name, task_definition, desired_count)
        for ref in docker_ops.list_service_containers(name):
            docker_ops.remove_container(ref.id)
        self._start(name, task_definition, desired_count)


class EcsScheduler:
    """Container scheduler backed by Amazon ECS."""

    def __init__(self, client=None):
        if client is None:
            client = boto3.client("ecs", region_name=settings.aws_region) if settings.aws_region else boto3.client("ecs")
        self.client = client

    def register_task_definition(self, family: str, container: ContainerDefinition) -> TaskReference:
        spec: dict[str, Any] = {
            "name": container.name,
            "image": container.image,
            "cpu": container.cpu,
            "memory": container.memory,
            "essential": container.essential,
        }
        if container.command:
            spec["command"] = list(container.command)
        if container.environment:
            spec["environment"] = [{"name": k, "value": v} for k, v in container.environment]
        if container.port_mappings:
            spec["portMappings"] = [
                {"containerPort": p.container_port, "hostPort": p.host_port} for p in container.port_mappings
            ]

        with dependency("scheduler", f"register task definition {family}", ClientError, BotoCoreError):
            resp = self.client.register_task_definition(family=family, containerDefinitions=[spec])
        td = resp["taskDefinition"]
        return TaskReference(family=td["family"], revision=int(td["revision"]))

    def describe_services(self, cluster: str, names: list[str]) -> list[ServiceInfo]:
        with dependency("scheduler", "describe services", ClientError, BotoCoreError):
            resp = self.client.describe_services(cluster=cluster, services=names)
        out: list[ServiceInfo] = []
        for s in resp.get("services", []):
            # Deleted services linger as INACTIVE and can be recreated.
            if s.get("status") == "INACTIVE":
                continue
            out.append(
                ServiceInfo(
                    name=s["serviceName"],
                    task_definition=s.get("taskDefinition", ""),
                    desired_count=int(s.get("desiredCount", 0)),
                    load_balancers=tuple(
                        LoadBalancerBinding(
                            container_name=lb.get("containerName", ""),
                            container_port=int(lb.get("containerPort", 0)),
                            load_balancer_name=lb.get("loadBalancerName", ""),
                        )
                        for lb in s.get("loadBalancers", [])
                    ),
                    status=s.get("status", "ACTIVE"),
                )
            )
        return out

    def create_service(
        self,
        cluster: str,
        name: str,
        task_definition: str,
        desired_count: int,
        load_balancers: list[LoadBalancerBinding],
    ) -> ServiceInfo:
        req: dict[str, Any] = {
            "cluster": cluster,
            "serviceName": name,
            "taskDefinition": task_definition,
            "desiredCount": desired_count,
        }
        if load_balancers:
            req["loadBalancers"] = [
                {
                    "loadBalancerName": lb.load_balancer_name,
                    "containerName": lb.container_name,
                    "containerPort": lb.container_port,
                }
                for lb in load_balancers
            ]
            if settings.service_role:
                req["role"] = settings.service_role

        with dependency("scheduler", f"create service {name}", ClientError, BotoCoreError):
            self.client.create_service(**req)
        return ServiceInfo(
            name=name,
            task_definition=task_definition,
            desired_count=desired_count,
            load_balancers=tuple(load_balancers),
        )

    def update_service(self, cluster: str, name: str, task_definition: str, desired_count: int) -> None:
        with dependency("scheduler", f"update service {name}", ClientError, BotoCoreError):
            self.client.update_service(
                cluster=cluster,
                service=name,
                taskDefinition=task_definition,
                desiredCount=desired_count,
            )
