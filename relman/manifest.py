from __future__ import annotations

from typing import Any

import yaml

from .errors import ValidationError
from .models import Process


def _container_port(raw: Any) -> int:
    # "80:5000" publishes container port 5000; a bare value is the container port.
    text = str(raw).split("/", 1)[0]
    try:
        port = int(text.rsplit(":", 1)[-1])
    except ValueError:
        raise ValidationError(f"Invalid port {raw!r} in manifest.") from None
    if not 1 <= port <= 65535:
        raise ValidationError(f"Port {port} out of range in manifest.")
    return port


def load_manifest(data: str) -> list[Process]:
    """Parse a YAML manifest into processes, keeping document order.

    Expected shape:
        web:
          command: bin/web
          ports: ["80:5000"]
          count: 2
        worker:
          command: bin/worker
    """
    if not data or not data.strip():
        return []
    try:
        doc = yaml.safe_load(data)
    except yaml.YAMLError as e:
        raise ValidationError(f"Manifest is not valid YAML: {e}") from e
    if doc is None:
        return []
    if not isinstance(doc, dict):
        raise ValidationError("Manifest must be a mapping of process name to definition.")

    processes: list[Process] = []
    for name, spec in doc.items():
        spec = spec or {}
        if not isinstance(spec, dict):
            raise ValidationError(f"Process {name!r} must be a mapping.")
        command = spec.get("command") or ""
        if isinstance(command, list):
            command = " ".join(str(c) for c in command)
        count = spec.get("count", 1)
        if not isinstance(count, int) or count < 0:
            raise ValidationError(f"Process {name!r} count must be a non-negative integer.")
        processes.append(
            Process(
                name=str(name),
                count=count,
                command=str(command),
                ports=[_container_port(p) for p in spec.get("ports") or []],
            )
        )
    return processes


def load_environment(data: str) -> dict[str, str]:
    """Parse KEY=VALUE lines; blank lines and # comments are skipped."""
    env: dict[str, str] = {}
    for line in (data or "").splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        if not sep:
            continue
        env[key.strip()] = value
    return env
