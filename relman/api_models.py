from __future__ import annotations

from pydantic import BaseModel, Field


class CreateReleaseRequest(BaseModel):
    build: str = Field("", description="Build id the release packages")
    env: str = Field("", description="Environment as KEY=VALUE lines")
    manifest: str = Field("", description="YAML process manifest")


class ReleaseOut(BaseModel):
    id: str
    cluster: str
    app: str
    build: str = ""
    env: str = ""
    manifest: str = ""
    tasks: dict[str, str] = Field(default_factory=dict)
    created: str | None = None
    active: bool = False
