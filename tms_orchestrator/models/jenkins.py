"""Pydantic models for Jenkins notification webhooks."""

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, Field


class JenkinsBuild(BaseModel):
    """Build as embedded in a Jenkins notification."""

    number: int | None = None
    phase: str | None = None
    status: str | None = None
    full_url: str | None = None
    parameters: Mapping[str, Any] = Field(default_factory=dict)


class JenkinsNotification(BaseModel):
    """Job notification sent by the Jenkins notification plugin.

    Older plugin versions put ``phase`` and ``status`` on the top level rather
    than on the build.
    """

    name: str | None = None
    url: str | None = None
    phase: str | None = None
    status: str | None = None
    build: JenkinsBuild = Field(default_factory=JenkinsBuild)

    @property
    def build_phase(self) -> str | None:
        return self.build.phase or self.phase

    @property
    def build_status(self) -> str | None:
        return self.build.status or self.status
