"""Interfaces of the collaborators an editing session talks to.

The engine never generates proposals or reports itself, never reads files
directly and never decides how a task is stored. Each of those concerns is
reached through one of the protocols below.
"""

from __future__ import annotations

import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import Any, ContextManager, Dict, Optional, Protocol, TYPE_CHECKING, runtime_checkable

from .models import ExtendedDetails, Task

if TYPE_CHECKING:
    from .reconciler import ProposalBatch


@dataclass(frozen=True, slots=True)
class RawFile:
    """A file selected by the user, before ingestion.

    ``size`` is known up front so oversized files can be rejected without
    reading their content.
    """

    name: str
    type: str
    size: int
    data: Optional[bytes] = None
    path: Optional[Path] = None

    @classmethod
    def from_bytes(cls, name: str, data: bytes, type: Optional[str] = None) -> "RawFile":
        return cls(name=name, type=type or _guess_type(name), size=len(data), data=data)

    @classmethod
    def from_path(cls, path: Path | str, type: Optional[str] = None) -> "RawFile":
        resolved = Path(path).expanduser().resolve()
        return cls(
            name=resolved.name,
            type=type or _guess_type(resolved.name),
            size=resolved.stat().st_size,
            path=resolved,
        )

    def read_bytes(self) -> bytes:
        if self.data is not None:
            return self.data
        if self.path is not None:
            return self.path.read_bytes()
        raise ValueError(f"File '{self.name}' has no content to read")


def _guess_type(name: str) -> str:
    guessed, _ = mimetypes.guess_type(name)
    return guessed or "application/octet-stream"


@dataclass(frozen=True, slots=True)
class IngestedFile:
    """Result of reading a file into an inline data URL."""

    name: str
    type: str
    data_url: Any


@runtime_checkable
class FileIngestor(Protocol):
    async def ingest(self, raw_file: RawFile) -> IngestedFile:
        """Read the file into ``{name, type, data_url}`` or raise."""
        ...


@runtime_checkable
class ProposalGenerator(Protocol):
    async def generate(self, task: Task) -> "ProposalBatch":
        """Propose sub-steps and action items for a task, or raise."""
        ...


@runtime_checkable
class ReportGenerator(Protocol):
    async def generate(self, task: Task, project_goal: str) -> Any:
        """Produce an opaque slide deck for a task, or raise."""
        ...


@runtime_checkable
class TaskPersistence(Protocol):
    def save_core_info(self, task_id: str, core_info: Dict[str, str]) -> None:
        """Persist ``{title, description, status}`` of a task."""
        ...

    def save_extended_details(self, task_id: str, details: ExtendedDetails) -> None:
        """Persist the full details block of a task."""
        ...

    def save_batch(self, task_id: str) -> ContextManager[None]:
        """Group both save calls so they are committed together or not at all."""
        ...
