from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from toolrun.workspace import ScratchWorkspace

ArtifactReference = str
ResultSet = list[ArtifactReference]


@dataclass(frozen=True, slots=True)
class InputSource:
    """A URL to download, or bytes that are already in hand."""

    url: str | None = None
    data: bytes | None = None
    content_type: str | None = None

    @classmethod
    def from_url(cls, url: str) -> InputSource:
        return cls(url=url)

    @classmethod
    def from_bytes(cls, data: bytes, content_type: str) -> InputSource:
        return cls(data=data, content_type=content_type)


@dataclass(frozen=True, slots=True)
class FetchedInput:
    content_type: str | None
    data: bytes


@dataclass(slots=True)
class ExecutionRequest:
    sources: list[InputSource]
    arguments: list[str]
    timeout_s: float | None = None


@dataclass(slots=True)
class ExecutionResult:
    output: str
    artifacts: list[Path]
    workspace: ScratchWorkspace
    stderr: str = ""
    warnings: list[str] = field(default_factory=list)

    @property
    def folder(self) -> Path:
        return self.workspace.path

    def cleanup(self) -> None:
        self.workspace.release()
