from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator


class ReleaseError(Exception):
    pass


class ValidationError(ReleaseError):
    pass


class NotFound(ReleaseError):
    pass


class DependencyError(ReleaseError):
    """A collaborator (store, scheduler, orchestrator, generator) failed."""

    def __init__(self, collaborator: str, operation: str, detail: str):
        super().__init__(f"{collaborator}: {operation} failed: {detail}")
        self.collaborator = collaborator
        self.operation = operation
        self.detail = detail


@contextmanager
def dependency(collaborator: str, operation: str, *errors: type[BaseException]) -> Iterator[None]:
    """Re-raise the given collaborator exceptions as DependencyError.

    Usage:
        with dependency("scheduler", "create service", ClientError):
            client.create_service(...)
    """
    try:
        yield
    except errors as e:
        raise DependencyError(collaborator, operation, f"{type(e).__name__}: {e}") from e
