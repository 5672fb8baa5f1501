import datetime
import sqlite3

import boto3
import pytest
from botocore.stub import Stubber

from relman import db
from relman.errors import DependencyError, NotFound, ValidationError
from relman.models import LoadBalancerBinding, Release
from relman.orchestrator import CloudFormationStacks, LocalStacks
from relman.services import ServiceReconciler

from conftest import APP, CLUSTER, TEMPLATE


MANIFEST = "web:\n  command: bin/web\n  ports: ['80:5000']\n  count: 2\nworker:\n  command: bin/worker\n"


class CountingStacks(LocalStacks):
    def __init__(self, fail: bool = False):
        self.updates = []
        self.fail = fail

    def update(self, stack, template, parameters):
        self.updates.append((stack, template, parameters))
        if self.fail:
            raise DependencyError("stack orchestrator", f"update stack {stack}", "Throttling: Rate exceeded")
        super().update(stack, template, parameters)


@pytest.fixture
def saved(manager, seeded):
    r = Release.new(CLUSTER, APP)
    r.build = "abc123"
    r.env = "KEY=VALUE\n"
    r.manifest = MANIFEST
    manager.releases.save(r)
    return manager.releases.get(CLUSTER, APP, r.id)


def test_end_to_end_promotion(manager, saved, scheduler, generator):
    stacks = CountingStacks()
    manager.promoter.stacks = stacks

    assert set(saved.tasks) == {"web", "worker"}
    for family, container in scheduler.definitions:
        assert container.image == "app:abc123"
        assert container.environment == [("KEY", "VALUE")]

    manager.promoter.promote(saved)

    assert len(stacks.updates) == 1
    assert generator.calls == [("convox/app", ["-p", "8000:8000"])]

    by_name = {s.name: s for s in scheduler.created}
    assert len(scheduler.created) == 2
    web = by_name[f"{CLUSTER}-{APP}-web"]
    worker = by_name[f"{CLUSTER}-{APP}-worker"]
    assert web.task_definition == saved.tasks["web"]
    assert web.desired_count == 2
    assert web.load_balancers == (LoadBalancerBinding("main", 5000, "shop-balancer"),)
    assert worker.task_definition == saved.tasks["worker"]
    assert worker.desired_count == 1
    assert worker.load_balancers == ()


def test_only_parameters_known_to_live_stack_are_sent(manager, saved):
    stacks = CountingStacks()
    manager.promoter.stacks = stacks

    manager.promoter.promote(saved)

    stack, template, params = stacks.updates[0]
    assert stack == f"{CLUSTER}-{APP}"
    assert template == TEMPLATE
    assert params == {"Release": "", "Size": "small"}
    assert db.get_stack(stack)["parameters"] == params

    warnings = [e["message"] for e in db.latest_events() if e["level"] == "WARN"]
    assert any("Brand" in m for m in warnings)


def test_parameters_come_from_the_live_stack_not_the_new_template(manager, saved, generator):
    generator.output = '{"Parameters": {"Brand": {"Type": "String"}}}'
    stacks = CountingStacks()
    manager.promoter.stacks = stacks

    manager.promoter.promote(saved)
    assert "Brand" not in stacks.updates[0][2]


def test_stack_update_failure_propagates_and_skips_reconcile(manager, saved, scheduler):
    manager.promoter.stacks = CountingStacks(fail=True)

    with pytest.raises(DependencyError) as exc:
        manager.promoter.promote(saved)

    assert exc.value.collaborator == "stack orchestrator"
    assert scheduler.created == []


def test_missing_stack_aborts_before_update(manager, saved, scheduler):
    db.upsert_app(CLUSTER, "other", outputs={"Balancer": "b"})
    saved.app = "other"
    with pytest.raises(NotFound):
        manager.promoter.promote(saved)
    assert scheduler.created == []


def test_generator_failure_aborts(manager, saved, scheduler):
    def broken(image, args):
        raise DependencyError("template generator", f"run {image}", "unknown flag: -p")

    manager.promoter.compiler.runner = broken
    stacks = CountingStacks()
    manager.promoter.stacks = stacks

    with pytest.raises(DependencyError) as exc:
        manager.promoter.promote(saved)
    assert "unknown flag" in str(exc.value)
    assert stacks.updates == []


def test_reconcile_twice_creates_once_and_never_updates(saved, scheduler):
    reconciler = ServiceReconciler(scheduler, update_existing=False)

    reconciler.reconcile(saved)
    assert len(scheduler.created) == 2

    newer = Release(id="RNEWERXXXXX", cluster=CLUSTER, app=APP, manifest=MANIFEST)
    newer.tasks = {"web": f"{CLUSTER}-{APP}-web:99", "worker": f"{CLUSTER}-{APP}-worker:99"}
    reconciler.reconcile(newer)

    # Known gap: existing services stay on the old task definition.
    assert len(scheduler.created) == 2
    assert scheduler.updated == []
    assert scheduler.services[f"{CLUSTER}-{APP}-web"].task_definition == saved.tasks["web"]


def test_reconcile_can_update_existing_services(saved, scheduler):
    reconciler = ServiceReconciler(scheduler, update_existing=True)
    reconciler.reconcile(saved)

    newer = Release(id="RNEWERXXXXX", cluster=CLUSTER, app=APP, manifest=MANIFEST)
    newer.tasks = {"web": f"{CLUSTER}-{APP}-web:99", "worker": f"{CLUSTER}-{APP}-worker:99"}
    reconciler.reconcile(newer)

    assert len(scheduler.created) == 2
    assert scheduler.updated == [
        (f"{CLUSTER}-{APP}-web", f"{CLUSTER}-{APP}-web:99", 2),
        (f"{CLUSTER}-{APP}-worker", f"{CLUSTER}-{APP}-worker:99", 1),
    ]


def test_reconcile_requires_task_references(saved, scheduler):
    saved.tasks = {"web": saved.tasks["web"]}
    with pytest.raises(ValidationError):
        ServiceReconciler(scheduler).reconcile(saved)
    # web was handled before worker failed; nothing is rolled back.
    assert [s.name for s in scheduler.created] == [f"{CLUSTER}-{APP}-web"]


def test_reconcile_requires_balancer_for_ported_processes(saved, scheduler):
    db.upsert_app(CLUSTER, APP, outputs={"Settings": "shop-settings"})
    with pytest.raises(ValidationError):
        ServiceReconciler(scheduler).reconcile(saved)
    assert scheduler.created == []


def test_unchanged_cloudformation_stack_still_reconciles(manager, saved, scheduler):
    client = boto3.client(
        "cloudformation",
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )
    manager.promoter.stacks = CloudFormationStacks(client)

    with Stubber(client) as stub:
        stub.add_response(
            "describe_stacks",
            {
                "Stacks": [
                    {
                        "StackName": f"{CLUSTER}-{APP}",
                        "CreationTime": datetime.datetime(2024, 1, 1),
                        "StackStatus": "UPDATE_COMPLETE",
                        "Parameters": [{"ParameterKey": "Size", "ParameterValue": "small"}],
                    }
                ]
            },
            {"StackName": f"{CLUSTER}-{APP}"},
        )
        stub.add_client_error(
            "update_stack",
            service_error_code="ValidationError",
            service_message="No updates are to be performed.",
        )
        manager.promoter.promote(saved)
        stub.assert_no_pending_responses()

    assert len(scheduler.created) == 2
    messages = [e["message"] for e in db.latest_events()]
    assert f"Stack {CLUSTER}-{APP} already up to date" in messages


def test_locked_store_during_reconcile(saved, scheduler, monkeypatch):
    def locked(*args):
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(db, "get_app", locked)
    with pytest.raises(DependencyError) as exc:
        ServiceReconciler(scheduler).reconcile(saved)
    assert exc.value.collaborator == "metadata store"
    assert scheduler.created == []
