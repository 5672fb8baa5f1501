from __future__ import annotations

import os
from dataclasses import dataclass


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    # Core
    db_path: str = os.getenv("RELMAN_DB_PATH", "relman.db")
    backend: str = os.getenv("RELMAN_BACKEND", "local")  # local|aws
    aws_region: str | None = os.getenv("RELMAN_AWS_REGION")
    objects_root: str = os.getenv("RELMAN_OBJECTS_ROOT", "objects")

    # Task definitions
    task_cpu: int = _env_int("RELMAN_TASK_CPU", 200)
    task_memory: int = _env_int("RELMAN_TASK_MEMORY", 300)
    base_port: int = _env_int("RELMAN_BASE_PORT", 8000)
    registry_host: str | None = os.getenv("RELMAN_REGISTRY_HOST")

    # Promotion
    template_image: str = os.getenv("RELMAN_TEMPLATE_IMAGE", "convox/app")
    service_role: str | None = os.getenv("RELMAN_SERVICE_ROLE")
    docker_network: str = os.getenv("RELMAN_DOCKER_NETWORK", "relman")

    # Existing services are left alone unless this is switched on.
    update_existing_services: bool = _env_bool("RELMAN_UPDATE_EXISTING_SERVICES", False)


settings = Settings()
