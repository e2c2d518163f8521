"""Data models for the work-breakdown editor.

This module contains the core data structures for a task's breakdown:
sub-steps placed on a canvas, their action items, completion reports and
attachments. All models are frozen; edits produce new values through
``dataclasses.replace`` (see ``breakdown.tree``).
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Tuple

from .config import DEFAULT_CANVAS_HEIGHT, DEFAULT_CANVAS_WIDTH

NOT_STARTED = "NOT_STARTED"
IN_PROGRESS = "IN_PROGRESS"
COMPLETED = "COMPLETED"
SUB_STEP_STATUSES: Tuple[str, ...] = (NOT_STARTED, IN_PROGRESS, COMPLETED)


def _compact(data: Dict[str, Any]) -> Dict[str, Any]:
    """Drop keys whose value is None."""
    return {key: value for key, value in data.items() if value is not None}


@dataclass(frozen=True, slots=True)
class Position:
    """A point on the sub-step canvas, in pixels."""

    x: float = 0
    y: float = 0

    def clamped(self) -> "Position":
        """Return the position with negative coordinates raised to zero."""
        if self.x >= 0 and self.y >= 0:
            return self
        return Position(max(0, self.x), max(0, self.y))

    def minus(self, other: "Position") -> "Position":
        return Position(self.x - other.x, self.y - other.y)

    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "Position":
        if not data:
            return cls()
        return cls(x=data.get("x") or 0, y=data.get("y") or 0)


@dataclass(frozen=True, slots=True)
class CanvasSize:
    """Bounding box of the free-placement canvas."""

    width: int = DEFAULT_CANVAS_WIDTH
    height: int = DEFAULT_CANVAS_HEIGHT

    def to_dict(self) -> Dict[str, int]:
        return {"width": self.width, "height": self.height}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "CanvasSize":
        if not data:
            return cls()
        return cls(
            width=data.get("width") or DEFAULT_CANVAS_WIDTH,
            height=data.get("height") or DEFAULT_CANVAS_HEIGHT,
        )


@dataclass(frozen=True, slots=True)
class Attachment:
    """A file embedded inline as a data URL."""

    id: str
    name: str
    type: str
    data_url: str

    def to_dict(self) -> Dict[str, str]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "dataUrl": self.data_url,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Attachment":
        """Create from dictionary representation."""
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            type=data.get("type", ""),
            data_url=data.get("dataUrl", ""),
        )

    def validate(self) -> List[str]:
        """Validate the attachment and return any issues."""
        issues = []
        if not self.id:
            issues.append("Attachment ID is required")
        if not self.name:
            issues.append("Attachment name is required")
        if not self.data_url.startswith("data:"):
            issues.append(f"Attachment '{self.name}' does not carry an inline data URL")
        return issues


@dataclass(frozen=True, slots=True)
class ActionItemReport:
    """Completion report filed against an action item."""

    notes: Optional[str] = None
    attachments: Tuple[Attachment, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return _compact({
            "notes": self.notes,
            "attachments": [attachment.to_dict() for attachment in self.attachments],
        })

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ActionItemReport":
        return cls(
            notes=data.get("notes"),
            attachments=tuple(Attachment.from_dict(item) for item in data.get("attachments") or []),
        )


@dataclass(frozen=True, slots=True)
class ActionItem:
    """Leaf of the breakdown: a single actionable item under a sub-step."""

    id: str
    text: str
    completed: bool = False
    responsible: Optional[str] = None
    due_date: Optional[str] = None
    completed_date: Optional[str] = None
    report: Optional[ActionItemReport] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return _compact({
            "id": self.id,
            "text": self.text,
            "completed": self.completed,
            "responsible": self.responsible,
            "dueDate": self.due_date,
            "completedDate": self.completed_date,
            "report": self.report.to_dict() if self.report else None,
        })

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ActionItem":
        """Create from dictionary representation."""
        report = data.get("report")
        return cls(
            id=data["id"],
            text=data.get("text", ""),
            completed=bool(data.get("completed", False)),
            responsible=data.get("responsible"),
            due_date=data.get("dueDate"),
            completed_date=data.get("completedDate"),
            report=ActionItemReport.from_dict(report) if report else None,
        )

    def validate(self) -> List[str]:
        """Validate the action item and return any issues."""
        issues = []
        if not self.id:
            issues.append("Action item ID is required")
        if self.report:
            for attachment in self.report.attachments:
                issues.extend(attachment.validate())
        return issues


@dataclass(frozen=True, slots=True)
class SubStep:
    """A decomposition node of a task, placed as a card on the canvas."""

    id: str
    text: str
    notes: Optional[str] = None
    status: str = NOT_STARTED
    responsible: Optional[str] = None
    due_date: Optional[str] = None
    position: Position = field(default_factory=Position)
    action_items: Tuple[ActionItem, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return _compact({
            "id": self.id,
            "text": self.text,
            "notes": self.notes,
            "status": self.status,
            "responsible": self.responsible,
            "dueDate": self.due_date,
            "position": self.position.to_dict(),
            "actionItems": [item.to_dict() for item in self.action_items],
        })

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SubStep":
        """Create from dictionary representation."""
        return cls(
            id=data["id"],
            text=data.get("text", ""),
            notes=data.get("notes"),
            status=data.get("status") or NOT_STARTED,
            responsible=data.get("responsible"),
            due_date=data.get("dueDate"),
            position=Position.from_dict(data.get("position")),
            action_items=tuple(ActionItem.from_dict(item) for item in data.get("actionItems") or []),
        )

    def validate(self) -> List[str]:
        """Validate the sub-step and return any issues."""
        issues = []
        if not self.id:
            issues.append("Sub-step ID is required")
        if self.status not in SUB_STEP_STATUSES:
            issues.append(f"Invalid sub-step status: {self.status}")
        if self.position.x < 0 or self.position.y < 0:
            issues.append(f"Sub-step '{self.id}' has a negative position")
        for item in self.action_items:
            issues.extend(item.validate())
        return issues


@dataclass(frozen=True, slots=True)
class ExtendedDetails:
    """Elaborated plan of a task, owned exclusively by that task."""

    sub_steps: Tuple[SubStep, ...] = ()
    resources: str = ""
    responsible: str = ""
    notes: str = ""
    numerical_target: Optional[float] = None
    due_date: str = ""
    report_deck: Optional[Any] = None
    resource_matrix: Optional[Any] = None
    attachments: Tuple[Attachment, ...] = ()
    decisions: Tuple[Any, ...] = ()
    sub_step_canvas_size: CanvasSize = field(default_factory=CanvasSize)

    @classmethod
    def empty(cls, canvas_size: Optional[CanvasSize] = None) -> "ExtendedDetails":
        """Default details for a task that has not been elaborated yet."""
        return cls(sub_step_canvas_size=canvas_size or CanvasSize())

    def iter_ids(self) -> Iterator[str]:
        """Yield every identifier in the document."""
        for attachment in self.attachments:
            yield attachment.id
        for sub_step in self.sub_steps:
            yield sub_step.id
            for item in sub_step.action_items:
                yield item.id
                if item.report:
                    for attachment in item.report.attachments:
                        yield attachment.id

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "subSteps": [sub_step.to_dict() for sub_step in self.sub_steps],
            "resources": self.resources,
            "responsible": self.responsible,
            "notes": self.notes,
            "numericalTarget": self.numerical_target,
            "dueDate": self.due_date,
            "reportDeck": self.report_deck,
            "resourceMatrix": self.resource_matrix,
            "attachments": [attachment.to_dict() for attachment in self.attachments],
            "decisions": list(self.decisions),
            "subStepCanvasSize": self.sub_step_canvas_size.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExtendedDetails":
        """Create from dictionary representation."""
        return cls(
            sub_steps=tuple(SubStep.from_dict(item) for item in data.get("subSteps") or []),
            resources=data.get("resources") or "",
            responsible=data.get("responsible") or "",
            notes=data.get("notes") or "",
            numerical_target=data.get("numericalTarget"),
            due_date=data.get("dueDate") or "",
            report_deck=data.get("reportDeck"),
            resource_matrix=data.get("resourceMatrix"),
            attachments=tuple(Attachment.from_dict(item) for item in data.get("attachments") or []),
            decisions=tuple(data.get("decisions") or []),
            sub_step_canvas_size=CanvasSize.from_dict(data.get("subStepCanvasSize")),
        )

    def validate(self) -> List[str]:
        """Validate the whole document and return any issues."""
        issues = []
        for attachment in self.attachments:
            issues.extend(attachment.validate())
        for sub_step in self.sub_steps:
            issues.extend(sub_step.validate())
        duplicates = [ident for ident, count in Counter(self.iter_ids()).items() if count > 1]
        for ident in sorted(duplicates):
            issues.append(f"Duplicate identifier: {ident}")
        size = self.sub_step_canvas_size
        if size.width <= 0 or size.height <= 0:
            issues.append(f"Canvas size must be positive, got {size.width}x{size.height}")
        return issues


@dataclass(frozen=True, slots=True)
class Task:
    """Top-level unit of work being decomposed."""

    id: str
    title: str
    description: str = ""
    status: str = ""
    extended_details: Optional[ExtendedDetails] = None

    @property
    def is_elaborated(self) -> bool:
        return self.extended_details is not None

    def core_info(self) -> Dict[str, str]:
        """Fields saved through the core-info persistence call."""
        return {
            "title": self.title,
            "description": self.description,
            "status": self.status,
        }

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            **self.core_info(),
            "extendedDetails": self.extended_details.to_dict() if self.extended_details else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Task":
        """Create from dictionary representation."""
        details = data.get("extendedDetails")
        return cls(
            id=data["id"],
            title=data.get("title", ""),
            description=data.get("description", ""),
            status=data.get("status", ""),
            extended_details=ExtendedDetails.from_dict(details) if details else None,
        )


@dataclass(frozen=True, slots=True)
class FlatActionItem:
    """An action item annotated with its owning sub-step and task titles."""

    action_item: ActionItem
    sub_step_id: str
    sub_step_name: str
    task_name: str

    @property
    def id(self) -> str:
        return self.action_item.id

    @property
    def text(self) -> str:
        return self.action_item.text

    @property
    def completed(self) -> bool:
        return self.action_item.completed

    @property
    def responsible(self) -> Optional[str]:
        return self.action_item.responsible

    @property
    def due_date(self) -> Optional[str]:
        return self.action_item.due_date

    @property
    def completed_date(self) -> Optional[str]:
        return self.action_item.completed_date

    @property
    def report(self) -> Optional[ActionItemReport]:
        return self.action_item.report

    def to_dict(self) -> Dict[str, Any]:
        return {
            **self.action_item.to_dict(),
            "subStepId": self.sub_step_id,
            "subStepName": self.sub_step_name,
            "taskName": self.task_name,
        }
