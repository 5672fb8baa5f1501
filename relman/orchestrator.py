from __future__ import annotations

import sqlite3

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from . import db
from .errors import DependencyError, NotFound, dependency
from .formation import template_parameters
from .settings import settings


class LocalStacks:
    """Stack orchestrator that keeps stacks in sqlite."""

    def parameter_keys(self, stack: str) -> set[str]:
        with dependency("stack orchestrator", f"describe stack {stack}", sqlite3.Error):
            row = db.get_stack(stack)
        if row is None:
            raise NotFound(f"Stack {stack} does not exist.")
        with dependency("stack orchestrator", f"read template of {stack}", ValueError):
            return template_parameters(row["template"])

    def update(self, stack: str, template: str, parameters: dict[str, str]) -> None:
        with dependency("stack orchestrator", f"update stack {stack}", ValueError):
            template_parameters(template)
        with dependency("stack orchestrator", f"update stack {stack}", sqlite3.Error):
            if db.get_stack(stack) is None:
                raise NotFound(f"Stack {stack} does not exist.")
            db.put_stack(stack, template, parameters)


class CloudFormationStacks:
    """Stack orchestrator backed by AWS CloudFormation."""

    def __init__(self, client=None):
        if client is None:
            client = (
                boto3.client("cloudformation", region_name=settings.aws_region)
                if settings.aws_region
                else boto3.client("cloudformation")
            )
        self.client = client

    def parameter_keys(self, stack: str) -> set[str]:
        with dependency("stack orchestrator", f"describe stack {stack}", ClientError, BotoCoreError):
            resp = self.client.describe_stacks(StackName=stack)
        stacks = resp.get("Stacks", [])
        if not stacks:
            raise NotFound(f"Stack {stack} does not exist.")
        return {p["ParameterKey"] for p in stacks[0].get("Parameters", [])}

    def update(self, stack: str, template: str, parameters: dict[str, str]) -> None:
        """Submit the update; returns once CloudFormation accepts it.

        An update that changes nothing is not an error: the stack already
        matches, so promotion carries on.
        """
        try:
            with dependency("stack orchestrator", f"update stack {stack}", BotoCoreError):
                self.client.update_stack(
                    StackName=stack,
                    TemplateBody=template,
                    Parameters=[{"ParameterKey": k, "ParameterValue": v} for k, v in parameters.items()],
                )
        except ClientError as e:
            if not _no_updates(e):
                raise DependencyError("stack orchestrator", f"update stack {stack}", f"{type(e).__name__}: {e}") from e
            db.log_event("INFO", f"Stack {stack} already up to date")


def _no_updates(e: ClientError) -> bool:
    err = e.response.get("Error", {})
    return err.get("Code") == "ValidationError" and "No updates are to be performed" in err.get("Message", "")
