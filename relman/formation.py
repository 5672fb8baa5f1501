from __future__ import annotations

import json

from . import docker_ops
from .models import Process
from .settings import settings
from .tasks import FixedBasePorts, PortAllocator


def template_parameters(template: str) -> set[str]:
    """Names declared in a stack template's Parameters section."""
    doc = json.loads(template)
    if not isinstance(doc, dict):
        raise ValueError("stack template must be a JSON object")
    return set((doc.get("Parameters") or {}).keys())


class TemplateCompiler:
    """Renders a stack template by running the generator image.

    Each declared port is exposed as host:host using the same allocator the
    task definitions use, so the template and the tasks agree on host ports.
    """

    def __init__(self, image: str | None = None, ports: PortAllocator | None = None, runner=None):
        self.image = image or settings.template_image
        self.ports = ports or FixedBasePorts()
        self.runner = runner or docker_ops.run_generator

    def arguments(self, processes: list[Process]) -> list[str]:
        args: list[str] = []
        for ps in processes:
            for b in self.ports.bindings(ps.ports):
                args.extend(["-p", f"{b.host_port}:{b.host_port}"])
        return args

    def compile(self, processes: list[Process]) -> str:
        return self.runner(self.image, self.arguments(processes))
