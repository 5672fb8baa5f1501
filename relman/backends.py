from __future__ import annotations

from dataclasses import dataclass

from .formation import TemplateCompiler
from .objects import LocalObjects, S3Objects
from .orchestrator import CloudFormationStacks, LocalStacks
from .releases import ReleaseStore
from .scheduler import DockerScheduler, EcsScheduler
from .services import ServiceReconciler
from .settings import Settings, settings
from .stacks import StackPromoter
from .tasks import FixedBasePorts, PortAllocator, TaskRegistrar


@dataclass
class Manager:
    releases: ReleaseStore
    registrar: TaskRegistrar
    promoter: StackPromoter
    reconciler: ServiceReconciler


def build_manager(
    cfg: Settings = settings,
    scheduler=None,
    stacks=None,
    objects=None,
    compiler: TemplateCompiler | None = None,
    ports: PortAllocator | None = None,
) -> Manager:
    """Wire the release components to the collaborators for cfg.backend.

    Any collaborator passed in explicitly wins over the configured one.
    """
    if cfg.backend not in {"local", "aws"}:
        raise ValueError(f"Unknown backend {cfg.backend!r}; use 'local' or 'aws'.")
    aws = cfg.backend == "aws"

    if scheduler is None:
        scheduler = EcsScheduler() if aws else DockerScheduler()
    if stacks is None:
        stacks = CloudFormationStacks() if aws else LocalStacks()
    if objects is None:
        objects = S3Objects() if aws else LocalObjects(cfg.objects_root)

    ports = ports or FixedBasePorts(cfg.base_port)
    compiler = compiler or TemplateCompiler(cfg.template_image, ports)

    registrar = TaskRegistrar(scheduler, ports)
    reconciler = ServiceReconciler(scheduler, cfg.update_existing_services)
    return Manager(
        releases=ReleaseStore(registrar, objects),
        registrar=registrar,
        promoter=StackPromoter(stacks, compiler, reconciler),
        reconciler=reconciler,
    )
