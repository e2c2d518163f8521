"""MCP server exposing the task breakdown editor as tools."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from mcp.server.fastmcp import FastMCP

from breakdown import tree
from breakdown.breakdown_logging import (
    editor_events,
    log_error_with_context,
    operation_timings,
    setup_logging,
)
from breakdown.collaborators import RawFile
from breakdown.config import PROJECT_ROOT_ENV, Settings
from breakdown.errors import ValidationError
from breakdown.models import ActionItemReport, Position, Task
from breakdown.reconciler import ProposalBatch
from breakdown.session import ALL_SUB_STEPS, EditorSession
from breakdown.sorting import SortConfig
from breakdown.workspace import Workspace

mcp = FastMCP("task-breakdown")

SETTINGS = Settings.from_env()
SERVER_ROOT = Path(__file__).resolve().parent

# Open editing sessions, keyed by task id
_SESSIONS: Dict[str, EditorSession] = {}
# Column sort state of action item tables, keyed by (task id, sub-step id)
_TABLE_SORTS: Dict[Tuple[str, str], SortConfig] = {}


def _candidate_bases() -> List[Path]:
    cwd = Path.cwd().resolve()
    bases: List[Path] = [cwd]
    bases.extend(cwd.parents)
    if SERVER_ROOT not in bases:
        bases.append(SERVER_ROOT)
    return bases


def _locate_workspace_root() -> Optional[Path]:
    for base in _candidate_bases():
        if (base / SETTINGS.storage_dir).exists():
            return base
    return None


def _resolve_root(root: Optional[str]) -> Path:
    if root:
        resolved = Path(root).expanduser().resolve()
        if not resolved.exists():
            raise ValueError(f"Provided root '{root}' does not exist.")
        return resolved

    env_root = os.getenv(PROJECT_ROOT_ENV)
    if env_root:
        env_path = Path(env_root).expanduser().resolve()
        if not env_path.exists():
            raise ValueError(
                f"Environment variable {PROJECT_ROOT_ENV} points to '{env_root}', which does not exist."
            )
        return env_path

    detected_root = _locate_workspace_root()
    if detected_root:
        return detected_root

    raise ValueError(
        "Unable to determine project root automatically. Provide the 'root' argument when calling the tool "
        f"or set the {PROJECT_ROOT_ENV} environment variable."
    )


def _workspace(root: Optional[str]) -> Workspace:
    return Workspace(_resolve_root(root), storage_dir=SETTINGS.storage_dir)


def _session(task_id: str) -> EditorSession:
    session = _SESSIONS.get(task_id)
    if session is None or not session.is_open:
        raise ValueError(f"No open editing session for task '{task_id}'. Call open_task first.")
    return session


def _forget(task_id: str) -> None:
    _SESSIONS.pop(task_id, None)
    for key in [key for key in _TABLE_SORTS if key[0] == task_id]:
        del _TABLE_SORTS[key]


def _changes(**fields: Any) -> Dict[str, Any]:
    """Keep only the arguments the caller actually supplied."""
    return {key: value for key, value in fields.items() if value is not None}


class SuppliedProposals:
    """Proposal generator backed by a batch the MCP client already produced."""

    def __init__(self, batch: ProposalBatch):
        self._batch = batch

    async def generate(self, task: Task) -> ProposalBatch:
        return self._batch


class SuppliedReport:
    """Report generator backed by a deck the MCP client already produced."""

    def __init__(self, deck: Any):
        self._deck = deck

    async def generate(self, task: Task, project_goal: str) -> Any:
        return self._deck


# ----------------------------------------------------------------------
# Tasks and sessions
# ----------------------------------------------------------------------

@mcp.tool()
def create_task(
    title: str,
    description: str = "",
    status: str = "",
    task_id: Optional[str] = None,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Create a new task in the project workspace, ready to be broken down."""

    workspace = _workspace(root)
    task = workspace.create_task(title, description=description, status=status, task_id=task_id)
    return {
        "task": task.to_dict(),
        "next_suggested_step": "open_task",
        "message": f"Created task {task.id}. Open it with open_task to start breaking it down.",
    }


@mcp.tool()
def list_tasks(root: Optional[str] = None) -> Dict[str, Any]:
    """List stored tasks with their breakdown size."""

    workspace = _workspace(root)
    tasks = workspace.list_tasks()
    for summary in tasks:
        summary["open"] = summary["task_id"] in _SESSIONS
    return {
        "tasks": tasks,
        "count": len(tasks),
        "message": f"Found {len(tasks)} tasks" if tasks else "No tasks yet. Use create_task to add one.",
    }


@mcp.resource("breakdown://tasks")
def resource_tasks() -> str:
    """Resource view listing stored tasks for discovery."""

    try:
        workspace = _workspace(None)
    except ValueError:
        return f"No project root detected. Launch tools with a 'root' argument or set {PROJECT_ROOT_ENV}."

    tasks = workspace.list_tasks()
    if not tasks:
        return "No tasks have been created yet."

    lines = ["Tasks"]
    for item in tasks:
        lines.append(f"- {item['task_id']}: {item['title']} "
                     f"({item['sub_steps']} sub-steps, {item['action_items']} action items)")
    return "\n".join(lines)


@mcp.tool()
def open_task(task_id: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Open an editing session on a stored task. Edits stay in the session until save_task."""

    existing = _SESSIONS.get(task_id)
    if existing is not None and existing.is_open:
        return {**existing.to_dict(), "message": f"Task {task_id} is already open"}

    workspace = _workspace(root)
    task = workspace.load_task(task_id)
    if task is None:
        raise ValueError(f"Task '{task_id}' not found in {workspace.tasks_dir}")

    session = EditorSession.open(task, settings=SETTINGS, persistence=workspace)
    _SESSIONS[task_id] = session
    return {
        **session.to_dict(),
        "next_suggested_step": "propose_sub_steps",
        "message": f"Opened task {task_id} with {len(session.details.sub_steps)} sub-steps",
    }


@mcp.tool()
def get_task(task_id: str) -> Dict[str, Any]:
    """Show the task as currently edited in its open session."""

    return _session(task_id).to_dict()


@mcp.tool()
def save_task(task_id: str) -> Dict[str, Any]:
    """Save core fields and the full breakdown, then close the session."""

    session = _session(task_id)
    try:
        task = session.save()
    except Exception as e:
        log_error_with_context(e, {"operation": "save_task", "task_id": task_id})
        return {
            "error": f"Failed to save task: {e}",
            "suggestion": "Check that the project root is writable; the session stays open",
            "message": f"Error: {e}",
        }
    _forget(task_id)
    return {"task": task.to_dict(), "saved": True, "message": f"Task {task_id} saved"}


@mcp.tool()
def close_task(task_id: str) -> Dict[str, Any]:
    """Close the editing session without saving."""

    session = _SESSIONS.get(task_id)
    if session is not None:
        session.cancel()
    _forget(task_id)
    return {"task_id": task_id, "closed": True, "message": "Session closed, unsaved edits discarded"}


@mcp.tool()
def update_task_fields(
    task_id: str,
    title: Optional[str] = None,
    description: Optional[str] = None,
    status: Optional[str] = None,
    resources: Optional[str] = None,
    responsible: Optional[str] = None,
    notes: Optional[str] = None,
    numerical_target: Optional[float] = None,
    due_date: Optional[str] = None,
) -> Dict[str, Any]:
    """Edit the task's own fields and its plan details (resources, responsible, notes, target, due date)."""

    session = _session(task_id)
    core = _changes(title=title, description=description, status=status)
    if core:
        session.edit_core(**core)
    details = _changes(
        resources=resources,
        responsible=responsible,
        notes=notes,
        numerical_target=numerical_target,
        due_date=due_date,
    )
    if details:
        session.update_fields(**details)
    return {**session.to_dict(), "message": f"Updated {len(core) + len(details)} fields"}


# ----------------------------------------------------------------------
# Sub-steps and action items
# ----------------------------------------------------------------------

@mcp.tool()
def add_sub_step(task_id: str, text: Optional[str] = None) -> Dict[str, Any]:
    """Add a sub-step card, stacked below the existing ones."""

    session = _session(task_id)
    sub_step = session.add_sub_step(text) if text else session.add_sub_step()
    return {"sub_step": sub_step.to_dict(), "message": f"Added sub-step {sub_step.id}"}


@mcp.tool()
def update_sub_step(
    task_id: str,
    sub_step_id: str,
    text: Optional[str] = None,
    notes: Optional[str] = None,
    status: Optional[str] = None,
    responsible: Optional[str] = None,
    due_date: Optional[str] = None,
    x: Optional[float] = None,
    y: Optional[float] = None,
) -> Dict[str, Any]:
    """Update fields of a sub-step. Status is NOT_STARTED, IN_PROGRESS or COMPLETED."""

    session = _session(task_id)
    changes = _changes(text=text, notes=notes, status=status, responsible=responsible, due_date=due_date)
    if x is not None or y is not None:
        current = tree.get_sub_step(session.details, sub_step_id)
        base = current.position if current else Position()
        changes["position"] = Position(x if x is not None else base.x, y if y is not None else base.y)
    sub_step = session.update_sub_step(sub_step_id, **changes)
    if sub_step is None:
        return {"sub_step": None, "message": f"Sub-step {sub_step_id} not found, nothing changed"}
    return {"sub_step": sub_step.to_dict(), "message": f"Updated sub-step {sub_step_id}"}


@mcp.tool()
def remove_sub_step(task_id: str, sub_step_id: str) -> Dict[str, Any]:
    """Remove a sub-step and all of its action items."""

    removed = _session(task_id).remove_sub_step(sub_step_id)
    return {"removed": removed, "message": f"Removed sub-step {sub_step_id}" if removed else "Nothing removed"}


@mcp.tool()
def add_action_item(task_id: str, sub_step_id: str, text: Optional[str] = None) -> Dict[str, Any]:
    """Add an action item to a sub-step."""

    session = _session(task_id)
    item = session.add_action_item(sub_step_id, text) if text else session.add_action_item(sub_step_id)
    if item is None:
        return {"action_item": None, "message": f"Sub-step {sub_step_id} not found, nothing added"}
    return {"action_item": item.to_dict(), "message": f"Added action item {item.id}"}


@mcp.tool()
def update_action_item(
    task_id: str,
    sub_step_id: str,
    action_item_id: str,
    text: Optional[str] = None,
    completed: Optional[bool] = None,
    responsible: Optional[str] = None,
    due_date: Optional[str] = None,
    completed_date: Optional[str] = None,
) -> Dict[str, Any]:
    """Update fields of an action item within a sub-step."""

    changes = _changes(
        text=text,
        completed=completed,
        responsible=responsible,
        due_date=due_date,
        completed_date=completed_date,
    )
    item = _session(task_id).update_action_item(sub_step_id, action_item_id, **changes)
    if item is None:
        return {"action_item": None, "message": f"Action item {action_item_id} not found, nothing changed"}
    return {"action_item": item.to_dict(), "message": f"Updated action item {action_item_id}"}


@mcp.tool()
def remove_action_item(task_id: str, sub_step_id: str, action_item_id: str) -> Dict[str, Any]:
    """Remove an action item from a sub-step."""

    removed = _session(task_id).remove_action_item(sub_step_id, action_item_id)
    return {"removed": removed, "message": f"Removed action item {action_item_id}" if removed else "Nothing removed"}


@mcp.tool()
def save_action_item_report(
    task_id: str,
    action_item_id: str,
    notes: Optional[str] = None,
    completed: Optional[bool] = None,
    completed_date: Optional[str] = None,
) -> Dict[str, Any]:
    """File a completion report on an action item, located anywhere in the task."""

    session = _session(task_id)
    changes = _changes(completed=completed, completed_date=completed_date)
    if notes is not None:
        found = tree.find_action_item(session.details, action_item_id)
        if found is not None:
            report = found[1].report or ActionItemReport()
            changes["report"] = ActionItemReport(notes=notes, attachments=report.attachments)
    item = session.save_action_item_report(action_item_id, **changes)
    if item is None:
        return {"action_item": None, "message": f"Action item {action_item_id} not found, report discarded"}
    return {"action_item": item.to_dict(), "message": f"Saved report for {action_item_id}"}


# ----------------------------------------------------------------------
# Attachments
# ----------------------------------------------------------------------

@mcp.tool()
async def attach_file(task_id: str, path: str, action_item_id: Optional[str] = None) -> Dict[str, Any]:
    """Attach a local file (inlined as a data URL, 5MB max) to the task or to an action item's report."""

    session = _session(task_id)
    try:
        raw_file = RawFile.from_path(path)
        if action_item_id:
            attachment = await session.attach_report_file(action_item_id, raw_file)
        else:
            attachment = await session.attach_file(raw_file)
    except (ValidationError, OSError) as e:
        return {
            "error": str(e),
            "suggestion": f"Choose a readable file smaller than {SETTINGS.max_attachment_mb:g}MB",
            "message": f"Error: {e}",
        }
    if attachment is None:
        return {"attachment": None, "message": "Nothing attached"}
    summary = {"id": attachment.id, "name": attachment.name, "type": attachment.type}
    return {"attachment": summary, "message": f"Attached {attachment.name}"}


@mcp.tool()
def remove_attachment(task_id: str, attachment_id: str, action_item_id: Optional[str] = None) -> Dict[str, Any]:
    """Remove an attachment from the task, or from an action item's report."""

    session = _session(task_id)
    if action_item_id:
        removed = session.remove_report_attachment(action_item_id, attachment_id)
    else:
        removed = session.remove_attachment(attachment_id)
    return {"removed": removed, "message": f"Removed attachment {attachment_id}" if removed else "Nothing removed"}


# ----------------------------------------------------------------------
# Proposals, report deck, decisions
# ----------------------------------------------------------------------

@mcp.tool()
async def propose_sub_steps(
    task_id: str,
    sub_steps: List[Dict[str, Any]],
    action_items: Optional[List[Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    """Submit proposed sub-steps for review.

    sub_steps: [{"title", "description", "id"?}]. action_items:
    [{"targetSubStepId", "title"}] where targetSubStepId is a proposed
    sub-step's "id", or its zero-based position in sub_steps when it has none.
    Existing sub-steps cannot be targeted. Call confirm_proposals to merge.
    """

    session = _session(task_id)
    batch = ProposalBatch.from_dict({"newSubSteps": sub_steps, "newActionItems": action_items or []})
    pending = await session.request_proposals(SuppliedProposals(batch))
    if pending is None:
        return {
            "error": session.proposal_error or "Proposals were not accepted",
            "message": "Error: proposals could not be prepared",
        }
    return {
        "pending_proposals": pending.to_dict(),
        "next_suggested_step": "confirm_proposals",
        "message": f"{len(pending.sub_steps)} sub-steps and {len(pending.action_items)} action items awaiting review",
    }


@mcp.tool()
def confirm_proposals(task_id: str) -> Dict[str, Any]:
    """Merge the pending proposals into the task's breakdown."""

    session = _session(task_id)
    if session.pending_proposals is None:
        return {
            "error": "No proposals are waiting for review",
            "next_suggested_step": "propose_sub_steps",
            "message": "Error: nothing to confirm",
        }
    result = session.confirm_proposals()
    return {
        **result.to_dict(),
        "message": (
            f"Merged {len(result.created_sub_step_ids)} sub-steps and "
            f"{len(result.created_action_item_ids)} action items"
        ),
    }


@mcp.tool()
def dismiss_proposals(task_id: str) -> Dict[str, Any]:
    """Discard the pending proposals without merging."""

    _session(task_id).dismiss_proposals()
    return {"message": "Proposals dismissed"}


@mcp.tool()
async def store_report_deck(
    task_id: str,
    deck: Dict[str, Any],
    project_goal: str = "",
    replace: bool = False,
) -> Dict[str, Any]:
    """Store a slide deck for the task's report. An existing deck is kept unless replace is true."""

    session = _session(task_id)
    if replace:
        session.save_report_deck(deck)
        stored = deck
    else:
        stored = await session.open_report(SuppliedReport(deck), project_goal)
    if stored is None:
        return {"error": session.report_error, "message": "Error: report could not be stored"}
    return {"report_deck": stored, "message": "Report deck stored"}


@mcp.tool()
def save_decisions(task_id: str, decisions: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Replace the task's decision log."""

    session = _session(task_id)
    session.save_decisions(decisions)
    return {"count": len(decisions), "message": f"Saved {len(decisions)} decisions"}


# ----------------------------------------------------------------------
# Canvas
# ----------------------------------------------------------------------

@mcp.tool()
def set_canvas_size(task_id: str, width: int, height: int) -> Dict[str, Any]:
    """Resize the sub-step canvas."""

    size = _session(task_id).set_canvas_size(width, height)
    return {"canvas_size": size.to_dict(), "message": f"Canvas resized to {size.width}x{size.height}"}


@mcp.tool()
def canvas_pointer(
    task_id: str,
    event: str,
    x: float = 0,
    y: float = 0,
    sub_step_id: Optional[str] = None,
    origin_x: float = 0,
    origin_y: float = 0,
) -> Dict[str, Any]:
    """Feed one pointer event to the canvas: event is press (needs sub_step_id), move or release."""

    session = _session(task_id)
    pointer = Position(x, y)
    origin = Position(origin_x, origin_y)
    if event == "press":
        if not sub_step_id:
            raise ValueError("sub_step_id is required for a press event")
        started = session.begin_drag(sub_step_id, pointer, origin)
        return {"dragging": session.canvas.dragged_sub_step_id, "started": started}
    if event == "move":
        position = session.drag_to(pointer, origin)
        return {
            "dragging": session.canvas.dragged_sub_step_id,
            "position": position.to_dict() if position else None,
        }
    if event == "release":
        session.end_drag()
        return {"dragging": None}
    raise ValueError(f"Unknown pointer event '{event}'. Use press, move or release.")


@mcp.tool()
def drag_sub_step(
    task_id: str,
    sub_step_id: str,
    press_x: float,
    press_y: float,
    release_x: float,
    release_y: float,
) -> Dict[str, Any]:
    """Drag a card in one gesture: press at (press_x, press_y), move to and release at (release_x, release_y)."""

    session = _session(task_id)
    if not session.begin_drag(sub_step_id, Position(press_x, press_y)):
        return {"position": None, "message": f"Sub-step {sub_step_id} could not be picked up"}
    try:
        position = session.drag_to(Position(release_x, release_y))
    finally:
        session.end_drag()
    return {"position": position.to_dict() if position else None, "message": f"Moved sub-step {sub_step_id}"}


@mcp.tool()
def toggle_canvas_expanded(task_id: str) -> Dict[str, Any]:
    """Switch the canvas between the embedded and the full-surface view."""

    session = _session(task_id)
    expanded = session.toggle_canvas_expanded()
    size = session.canvas.viewport(session.details)
    return {"expanded": expanded, "canvas_size": size.to_dict()}


# ----------------------------------------------------------------------
# Action item tables
# ----------------------------------------------------------------------

@mcp.tool()
def list_action_items(
    task_id: str,
    sub_step_id: str = ALL_SUB_STEPS,
    sort_column: Optional[str] = None,
) -> Dict[str, Any]:
    """Show action items of one sub-step, or of all sub-steps with sub_step_id="all".

    sort_column clicks a column header (status, text, responsible, due_date,
    completed_date): a new column sorts ascending, the same column again
    flips between ascending and descending.
    """

    session = _session(task_id)
    table = session.action_item_table(sub_step_id)
    if table is None:
        return {"rows": [], "message": f"Sub-step {sub_step_id} not found"}

    key = (task_id, sub_step_id)
    table.sort_config = _TABLE_SORTS.get(key)
    if sort_column:
        _TABLE_SORTS[key] = table.request_sort(sort_column)

    data = table.to_dict()
    data["message"] = "No action items" if table.is_empty else f"{len(data['rows'])} action items"
    return data


# ----------------------------------------------------------------------
# Activity
# ----------------------------------------------------------------------

@mcp.tool()
def editor_activity(task_id: Optional[str] = None, limit: int = 20) -> Dict[str, Any]:
    """Recent editor events, optionally for one task, and timings of instrumented operations."""

    events = editor_events.recent(task_id, limit)
    return {
        "events": events,
        "timings": operation_timings.summary(),
        "message": f"{len(events)} recent editor events",
    }


if __name__ == "__main__":
    setup_logging(SETTINGS.log_level, SETTINGS.log_file)
    mcp.run(transport="stdio")
