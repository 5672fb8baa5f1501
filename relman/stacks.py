from __future__ import annotations

from . import db
from .formation import TemplateCompiler
from .models import Release
from .services import ServiceReconciler
from .tasks import require_app


class StackPromoter:
    """Pushes a release into the app's stack, then reconciles services.

    Only parameters the live stack already declares are sent; the orchestrator
    rejects unknown ones. The update is not awaited, so services are
    reconciled while the stack may still be applying.
    """

    def __init__(self, stacks, compiler: TemplateCompiler, reconciler: ServiceReconciler):
        self.stacks = stacks
        self.compiler = compiler
        self.reconciler = reconciler

    def parameters(self, release: Release) -> dict[str, str]:
        app = require_app(release.cluster, release.app)

        existing = self.stacks.parameter_keys(release.stack_name())
        params = {k: v for k, v in app.parameters.items() if k in existing}

        dropped = sorted(set(app.parameters) - existing)
        if dropped:
            db.log_event(
                "WARN",
                f"Stack {release.stack_name()} does not accept {', '.join(dropped)}; not sent",
                app=release.app,
                release=release.id,
            )
        return params

    def promote(self, release: Release) -> None:
        template = self.compiler.compile(release.processes())
        params = self.parameters(release)

        self.stacks.update(release.stack_name(), template, params)
        db.log_event("INFO", f"Submitted update of stack {release.stack_name()}", app=release.app, release=release.id)

        self.reconciler.reconcile(release)
