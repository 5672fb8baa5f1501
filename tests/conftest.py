import json
import os as _os
import sys
from dataclasses import replace

import pytest

# Ensure project root is importable (so `import relman` works without installing)
_project_root = _os.path.dirname(_os.path.dirname(__file__))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from relman import db  # noqa: E402
from relman.backends import build_manager  # noqa: E402
from relman.errors import DependencyError  # noqa: E402
from relman.formation import TemplateCompiler  # noqa: E402
from relman.models import ServiceInfo, TaskReference  # noqa: E402
from relman.objects import LocalObjects  # noqa: E402
from relman.orchestrator import LocalStacks  # noqa: E402
from relman.settings import settings  # noqa: E402


CLUSTER = "prod"
APP = "shop"

TEMPLATE = json.dumps(
    {
        "AWSTemplateFormatVersion": "2010-09-09",
        "Parameters": {"Release": {"Type": "String"}, "Size": {"Type": "String"}},
        "Resources": {},
    }
)


@pytest.fixture(autouse=True)
def isolated_db(tmp_path, monkeypatch):
    """Every test gets its own sqlite file."""
    monkeypatch.setattr(db, "settings", replace(settings, db_path=str(tmp_path / "relman.db")))
    db.init_db()


class FakeScheduler:
    """In-memory scheduler that records every call."""

    def __init__(self):
        self.revisions: dict[str, int] = {}
        self.definitions: list[tuple[str, object]] = []
        self.services: dict[str, ServiceInfo] = {}
        self.created: list[ServiceInfo] = []
        self.updated: list[tuple[str, str, int]] = []
        self.fail_family: str | None = None

    def register_task_definition(self, family, container):
        if self.fail_family and family.endswith(self.fail_family):
            raise DependencyError("scheduler", f"register task definition {family}", "ClientException: boom")
        self.revisions[family] = self.revisions.get(family, 0) + 1
        self.definitions.append((family, container))
        return TaskReference(family=family, revision=self.revisions[family])

    def describe_services(self, cluster, names):
        return [self.services[n] for n in names if n in self.services]

    def create_service(self, cluster, name, task_definition, desired_count, load_balancers):
        info = ServiceInfo(
            name=name,
            task_definition=task_definition,
            desired_count=desired_count,
            load_balancers=tuple(load_balancers),
        )
        self.services[name] = info
        self.created.append(info)
        return info

    def update_service(self, cluster, name, task_definition, desired_count):
        self.updated.append((name, task_definition, desired_count))
        self.services[name] = replace(self.services[name], task_definition=task_definition, desired_count=desired_count)


class GeneratorRecorder:
    def __init__(self, output: str = TEMPLATE):
        self.output = output
        self.calls: list[tuple[str, list[str]]] = []

    def __call__(self, image, args):
        self.calls.append((image, list(args)))
        return self.output


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def generator():
    return GeneratorRecorder()


@pytest.fixture
def objects(tmp_path):
    return LocalObjects(str(tmp_path / "objects"))


@pytest.fixture
def manager(scheduler, generator, objects):
    return build_manager(
        replace(settings, backend="local", update_existing_services=False),
        scheduler=scheduler,
        stacks=LocalStacks(),
        objects=objects,
        compiler=TemplateCompiler("convox/app", runner=generator),
    )


@pytest.fixture
def seeded():
    """App with a live stack and a build whose image is app:abc123."""
    db.upsert_app(
        CLUSTER,
        APP,
        parameters={"Release": "", "Size": "small", "Brand": "new"},
        outputs={"Balancer": "shop-balancer", "Settings": "shop-settings"},
    )
    db.upsert_build(CLUSTER, APP, "abc123", repository="app")
    db.put_stack(f"{CLUSTER}-{APP}", TEMPLATE, {"Release": "", "Size": "small"})
