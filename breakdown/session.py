"""Editing session for one task.

An ``EditorSession`` holds the single in-memory copy of a task while it is
being edited: the core fields, the extended details, the canvas drag state
and the status of pending proposal, report and attachment requests. It is
created when the editor opens and torn down by ``save()``, ``cancel()`` or
``close()``. Results of asynchronous requests that complete after the
session closed are dropped.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Any, Dict, Iterable, Mapping, Optional

from . import tree
from .attachments import DataUrlIngestor, read_attachment
from .breakdown_logging import (
    log_action_item_event,
    log_error_with_context,
    log_operation,
    log_proposals_merged,
    log_session_event,
    log_sub_step_event,
)
from .canvas import CanvasLayout
from .collaborators import FileIngestor, ProposalGenerator, RawFile, ReportGenerator, TaskPersistence
from .config import DEFAULT_ACTION_ITEM_TEXT, DEFAULT_SUB_STEP_TEXT, Settings
from .errors import SessionClosedError
from .identity import IdentityGenerator
from .models import (
    ActionItem,
    ActionItemReport,
    Attachment,
    CanvasSize,
    ExtendedDetails,
    Position,
    SubStep,
    Task,
)
from .reconciler import ProposalBatch, ReconcileResult, reconcile
from .sorting import ActionItemTable

logger = logging.getLogger("breakdown.session")

ALL_SUB_STEPS = "all"
ALL_SUB_STEPS_LABEL = "All"

PROPOSAL_FAILURE_MESSAGE = "Failed to generate step proposals."
REPORT_FAILURE_MESSAGE = "Failed to generate the report."

CORE_FIELDS = frozenset({"title", "description", "status"})


class EditorSession:
    """Session-scoped editing context for a single task."""

    def __init__(
        self,
        task: Task,
        *,
        ids: Optional[IdentityGenerator] = None,
        settings: Optional[Settings] = None,
        persistence: Optional[TaskPersistence] = None,
        ingestor: Optional[FileIngestor] = None,
    ):
        self.settings = settings or Settings()
        self.persistence = persistence
        self.ingestor: FileIngestor = ingestor or DataUrlIngestor()

        self.task = replace(task, extended_details=None)
        self.details = task.extended_details or ExtendedDetails.empty(
            CanvasSize(self.settings.canvas_width, self.settings.canvas_height)
        )
        self.ids = ids or IdentityGenerator()
        self.ids.reserve([task.id])
        self.ids.reserve(tree.collect_ids(self.details))

        self.canvas = CanvasLayout()

        self.pending_proposals: Optional[ProposalBatch] = None
        self.proposal_error: Optional[str] = None
        self.is_generating_proposals = False

        self.report_editor_open = False
        self.report_error: Optional[str] = None
        self.is_generating_report = False

        self._attachment_lock = asyncio.Lock()
        self._queued_reads = 0

        self._closed = False
        self._epoch = 0

    @classmethod
    def open(cls, task: Task, **kwargs: Any) -> "EditorSession":
        """Open an editing session on ``task``."""
        session = cls(task, **kwargs)
        logger.info(f"Opened editing session for task {task.id}")
        log_session_event("opened", task.id, sub_steps=len(session.details.sub_steps))
        return session

    # ------------------------------------------------------------------
    # Session state
    # ------------------------------------------------------------------

    @property
    def task_id(self) -> str:
        return self.task.id

    @property
    def is_open(self) -> bool:
        return not self._closed

    @property
    def attachment_pending(self) -> bool:
        """True while a file read is running or queued; the shell disables its file input."""
        return self._queued_reads > 0

    def _ensure_open(self) -> None:
        if self._closed:
            raise SessionClosedError(f"Editing session for task {self.task.id} is closed")

    def _is_stale(self, epoch: int) -> bool:
        return self._closed or epoch != self._epoch

    def snapshot(self) -> Task:
        """The task as currently edited, details included."""
        return replace(self.task, extended_details=self.details)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task": self.snapshot().to_dict(),
            "canvas": {
                "expanded": self.canvas.expanded,
                "dragging": self.canvas.dragged_sub_step_id,
            },
            "pending_proposals": self.pending_proposals.to_dict() if self.pending_proposals else None,
            "proposal_error": self.proposal_error,
            "report_error": self.report_error,
            "report_editor_open": self.report_editor_open,
            "attachment_pending": self.attachment_pending,
            "is_open": self.is_open,
        }

    # ------------------------------------------------------------------
    # Task fields
    # ------------------------------------------------------------------

    def edit_core(self, **fields: str) -> Task:
        """Edit title, description or status of the task."""
        self._ensure_open()
        unknown = set(fields) - CORE_FIELDS
        if unknown:
            raise TypeError(f"Cannot edit task fields: {', '.join(sorted(unknown))}")
        self.task = replace(self.task, **fields)
        return self.task

    def update_fields(self, **fields: Any) -> ExtendedDetails:
        self._ensure_open()
        self.details = tree.update_fields(self.details, **fields)
        return self.details

    # ------------------------------------------------------------------
    # Sub-steps and action items
    # ------------------------------------------------------------------

    def add_sub_step(self, text: str = DEFAULT_SUB_STEP_TEXT) -> SubStep:
        self._ensure_open()
        self.details = tree.add_sub_step(self.details, self.ids, text=text)
        sub_step = self.details.sub_steps[-1]
        log_sub_step_event("added", self.task.id, sub_step.id)
        return sub_step

    def update_sub_step(self, sub_step_id: str, **changes: Any) -> Optional[SubStep]:
        self._ensure_open()
        self.details = tree.update_sub_step(self.details, sub_step_id, **changes)
        return tree.get_sub_step(self.details, sub_step_id)

    def remove_sub_step(self, sub_step_id: str) -> bool:
        self._ensure_open()
        before = self.details
        self.details = tree.remove_sub_step(self.details, sub_step_id)
        if self.canvas.dragged_sub_step_id == sub_step_id:
            self.canvas.release()
        removed = self.details is not before
        if removed:
            log_sub_step_event("removed", self.task.id, sub_step_id)
        return removed

    def add_action_item(self, sub_step_id: str, text: str = DEFAULT_ACTION_ITEM_TEXT) -> Optional[ActionItem]:
        self._ensure_open()
        before = self.details
        self.details = tree.add_action_item(self.details, sub_step_id, self.ids, text=text)
        if self.details is before:
            return None
        item = tree.get_sub_step(self.details, sub_step_id).action_items[-1]
        log_action_item_event("added", self.task.id, item.id, sub_step_id=sub_step_id)
        return item

    def update_action_item(self, sub_step_id: str, action_item_id: str, **changes: Any) -> Optional[ActionItem]:
        self._ensure_open()
        self.details = tree.update_action_item(self.details, sub_step_id, action_item_id, **changes)
        sub_step = tree.get_sub_step(self.details, sub_step_id)
        if sub_step is None:
            return None
        return next((item for item in sub_step.action_items if item.id == action_item_id), None)

    def remove_action_item(self, sub_step_id: str, action_item_id: str) -> bool:
        self._ensure_open()
        before = self.details
        self.details = tree.remove_action_item(self.details, sub_step_id, action_item_id)
        removed = self.details is not before
        if removed:
            log_action_item_event("removed", self.task.id, action_item_id, sub_step_id=sub_step_id)
        return removed

    def save_action_item_report(self, action_item_id: str, **changes: Any) -> Optional[ActionItem]:
        """Store what the report sub-editor produced for an action item."""
        self._ensure_open()
        self.details = tree.save_action_item_report(self.details, action_item_id, **changes)
        located = tree.find_action_item(self.details, action_item_id)
        return located[1] if located else None

    # ------------------------------------------------------------------
    # Attachments
    # ------------------------------------------------------------------

    async def _read(self, raw_file: RawFile) -> Optional[Attachment]:
        """Read one file; reads are serialized in request order."""
        epoch = self._epoch
        self._queued_reads += 1
        try:
            async with self._attachment_lock:
                if self._is_stale(epoch):
                    return None
                attachment = await read_attachment(
                    raw_file,
                    self.ingestor,
                    self.ids,
                    max_bytes=self.settings.max_attachment_bytes,
                )
        finally:
            self._queued_reads -= 1

        if self._is_stale(epoch):
            logger.info(f"Dropping attachment '{raw_file.name}' read after session close")
            return None
        return attachment

    async def attach_file(self, raw_file: RawFile) -> Optional[Attachment]:
        """Ingest a file and append it to the task's attachments."""
        self._ensure_open()
        attachment = await self._read(raw_file)
        if attachment is None:
            return None
        self.details = tree.add_attachment(self.details, attachment)
        return attachment

    def remove_attachment(self, attachment_id: str) -> bool:
        self._ensure_open()
        before = self.details
        self.details = tree.remove_attachment(self.details, attachment_id)
        return self.details is not before

    async def attach_report_file(self, action_item_id: str, raw_file: RawFile) -> Optional[Attachment]:
        """Ingest a file into an action item's completion report."""
        self._ensure_open()
        if tree.find_action_item(self.details, action_item_id) is None:
            return None
        attachment = await self._read(raw_file)
        if attachment is None:
            return None
        # Re-locate: the item may have been edited or removed while the file was read
        located = tree.find_action_item(self.details, action_item_id)
        if located is None:
            return None
        report = located[1].report or ActionItemReport()
        report = replace(report, attachments=report.attachments + (attachment,))
        self.details = tree.save_action_item_report(self.details, action_item_id, report=report)
        return attachment

    def remove_report_attachment(self, action_item_id: str, attachment_id: str) -> bool:
        self._ensure_open()
        located = tree.find_action_item(self.details, action_item_id)
        if located is None or located[1].report is None:
            return False
        report = located[1].report
        remaining = tuple(item for item in report.attachments if item.id != attachment_id)
        if len(remaining) == len(report.attachments):
            return False
        self.details = tree.save_action_item_report(
            self.details, action_item_id, report=replace(report, attachments=remaining)
        )
        return True

    # ------------------------------------------------------------------
    # Proposals
    # ------------------------------------------------------------------

    async def request_proposals(self, generator: ProposalGenerator) -> Optional[ProposalBatch]:
        """Ask the generator for proposals and hold them for review."""
        self._ensure_open()
        if self.is_generating_proposals:
            logger.info(f"Proposal request for task {self.task.id} already running")
            return None

        epoch = self._epoch
        self.is_generating_proposals = True
        self.proposal_error = None
        try:
            batch = await generator.generate(self.snapshot())
        except Exception as e:
            if self._is_stale(epoch):
                return None
            self.proposal_error = str(e) or PROPOSAL_FAILURE_MESSAGE
            log_error_with_context(e, {"operation": "request_proposals", "task_id": self.task.id})
            return None
        finally:
            self.is_generating_proposals = False

        if self._is_stale(epoch):
            logger.info(f"Dropping proposals for task {self.task.id} that arrived after close")
            return None
        if isinstance(batch, Mapping):
            batch = ProposalBatch.from_dict(batch)
        self.pending_proposals = batch
        return batch

    def confirm_proposals(self, batch: Optional[ProposalBatch] = None) -> ReconcileResult:
        """Merge reviewed proposals and close the review surface."""
        self._ensure_open()
        batch = batch if batch is not None else self.pending_proposals
        if batch is None:
            raise ValueError("No proposals are waiting for review")

        with log_operation("confirm_proposals", task_id=self.task.id):
            result = reconcile(self.details, batch, self.ids)
            self.details = result.details
            self.pending_proposals = None

        log_proposals_merged(
            self.task.id,
            len(result.created_sub_step_ids),
            len(result.created_action_item_ids),
            len(result.dropped_action_items),
        )
        return result

    def dismiss_proposals(self) -> None:
        self.pending_proposals = None

    # ------------------------------------------------------------------
    # Report deck and decisions
    # ------------------------------------------------------------------

    async def open_report(self, generator: ReportGenerator, project_goal: str) -> Optional[Any]:
        """Open the report editor, generating the deck first when there is none."""
        self._ensure_open()
        if self.details.report_deck is not None:
            self.report_editor_open = True
            return self.details.report_deck
        if self.is_generating_report:
            logger.info(f"Report request for task {self.task.id} already running")
            return None

        epoch = self._epoch
        self.is_generating_report = True
        self.report_error = None
        try:
            deck = await generator.generate(self.snapshot(), project_goal)
        except Exception as e:
            if self._is_stale(epoch):
                return None
            self.report_error = str(e) or REPORT_FAILURE_MESSAGE
            log_error_with_context(e, {"operation": "open_report", "task_id": self.task.id})
            return None
        finally:
            self.is_generating_report = False

        if self._is_stale(epoch):
            logger.info(f"Dropping report deck for task {self.task.id} that arrived after close")
            return None
        self.details = tree.set_report_deck(self.details, deck)
        self.report_editor_open = True
        return deck

    def save_report_deck(self, deck: Any) -> None:
        self._ensure_open()
        self.details = tree.set_report_deck(self.details, deck)

    def apply_custom_report(self, deck: Any) -> None:
        """Store a deck built by the custom report dialog and open it."""
        self.save_report_deck(deck)
        self.report_editor_open = True

    def close_report_editor(self) -> None:
        self.report_editor_open = False

    def save_decisions(self, decisions: Iterable[Any]) -> None:
        self._ensure_open()
        self.details = tree.set_decisions(self.details, decisions)

    def dismiss_errors(self) -> None:
        self.proposal_error = None
        self.report_error = None

    # ------------------------------------------------------------------
    # Canvas
    # ------------------------------------------------------------------

    def begin_drag(self, sub_step_id: str, pointer: Position, origin: Position = Position()) -> bool:
        self._ensure_open()
        return self.canvas.press(self.details, sub_step_id, pointer, origin)

    def drag_to(self, pointer: Position, origin: Position = Position()) -> Optional[Position]:
        """Move the dragged card; returns its new position."""
        self._ensure_open()
        dragged = self.canvas.dragged_sub_step_id
        if dragged is None:
            return None
        self.details = self.canvas.move(self.details, pointer, origin)
        sub_step = tree.get_sub_step(self.details, dragged)
        return sub_step.position if sub_step else None

    def end_drag(self) -> None:
        self.canvas.release()

    def set_canvas_size(self, width: int, height: int) -> CanvasSize:
        self._ensure_open()
        self.details = tree.set_canvas_size(self.details, width, height)
        return self.details.sub_step_canvas_size

    def toggle_canvas_expanded(self) -> bool:
        return self.canvas.toggle_expanded()

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    def all_action_items(self) -> tree.FlattenedActionItems:
        return tree.flatten_action_items(self.details, self.task.title)

    def action_item_table(self, sub_step_id: str = ALL_SUB_STEPS) -> Optional[ActionItemTable]:
        """Table over one sub-step's action items, or over all of them."""
        if sub_step_id == ALL_SUB_STEPS:
            return ActionItemTable(self.all_action_items(), ALL_SUB_STEPS_LABEL, self.task.title)
        sub_step = tree.get_sub_step(self.details, sub_step_id)
        if sub_step is None:
            return None
        return ActionItemTable(sub_step.action_items, sub_step.text, self.task.title)

    # ------------------------------------------------------------------
    # Save / close
    # ------------------------------------------------------------------

    def save(self) -> Task:
        """Persist core fields and details, then close the session."""
        self._ensure_open()
        if self.persistence is None:
            raise ValueError("No persistence configured for this session")

        snapshot = self.snapshot()
        with log_operation("save_task", task_id=self.task.id), self.persistence.save_batch(self.task.id):
            issues = self.details.validate()
            if issues:
                logger.warning(f"Saving task {self.task.id} with validation issues: {issues}")
            self.persistence.save_core_info(self.task.id, self.task.core_info())
            self.persistence.save_extended_details(self.task.id, self.details)

        log_session_event("saved", self.task.id)
        self.close()
        return snapshot

    def cancel(self) -> None:
        """Close without saving."""
        self.close()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._epoch += 1
        self.canvas.release()
        self.pending_proposals = None
        self.report_editor_open = False
        log_session_event("closed", self.task.id)
