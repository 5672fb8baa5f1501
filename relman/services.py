from __future__ import annotations

from . import db
from .errors import ValidationError
from .models import LoadBalancerBinding, Release
from .settings import settings
from .tasks import require_app


class ServiceReconciler:
    """Makes sure every process of a release has a scheduler service.

    A missing service is created from the release's task reference. An
    existing one is left alone unless update_existing is set: by default a
    promotion does not move existing services onto new task definitions.
    """

    def __init__(self, scheduler, update_existing: bool | None = None):
        self.scheduler = scheduler
        self.update_existing = settings.update_existing_services if update_existing is None else update_existing

    def reconcile(self, release: Release) -> None:
        app = require_app(release.cluster, release.app)

        for ps in release.processes():
            name = release.service_name(ps.name)
            task = release.tasks.get(ps.name)
            if not task:
                raise ValidationError(f"Release {release.id} has no task definition for process {ps.name}.")

            existing = self.scheduler.describe_services(release.cluster, [name])
            if existing:
                if self.update_existing:
                    self.scheduler.update_service(release.cluster, name, task, ps.count)
                    db.log_event("INFO", f"Updated service {name} to {task}", app=release.app, release=release.id)
                else:
                    db.log_event(
                        "WARN",
                        f"Service {name} exists; left on {existing[0].task_definition}, not {task}",
                        app=release.app,
                        release=release.id,
                    )
                continue

            balancers = []
            if ps.ports:
                balancer = app.outputs.get("Balancer")
                if not balancer:
                    raise ValidationError(f"App {release.app} has no Balancer output for process {ps.name}.")
                balancers = [
                    LoadBalancerBinding(container_name="main", container_port=port, load_balancer_name=balancer)
                    for port in ps.ports
                ]

            self.scheduler.create_service(release.cluster, name, task, ps.count, balancers)
            db.log_event(
                "INFO",
                f"Created service {name} ({ps.count} x {task}, {len(balancers)} balancer bindings)",
                app=release.app,
                release=release.id,
            )
