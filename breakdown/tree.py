"""Update operations on a task's work-breakdown tree.

Every function here is a pure transformation: it takes an
``ExtendedDetails`` value and returns a new one, rebuilding only the
sub-tree that changed. Siblings that were not touched are carried over as
the same objects. Updating or removing an identifier that no longer exists
returns the input unchanged rather than raising, because such calls can race
with a removal made earlier in the same session.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Iterable, Iterator, Optional, Sequence, Tuple

from .config import CARD_MARGIN, CARD_SPACING, DEFAULT_ACTION_ITEM_TEXT, DEFAULT_SUB_STEP_TEXT
from .identity import IdentityGenerator
from .models import (
    ActionItem,
    ActionItemReport,
    Attachment,
    CanvasSize,
    ExtendedDetails,
    FlatActionItem,
    NOT_STARTED,
    Position,
    SubStep,
    SUB_STEP_STATUSES,
)

logger = logging.getLogger("breakdown.tree")

SCALAR_FIELDS = frozenset({"resources", "responsible", "notes", "numerical_target", "due_date"})
REQUIRED_SUB_STEP_FIELDS = ("text", "status", "position")


def stacked_position(count: int) -> Position:
    """Default card position below ``count`` existing cards."""
    return Position(CARD_MARGIN, count * CARD_SPACING + CARD_MARGIN)


def collect_ids(details: ExtendedDetails) -> Tuple[str, ...]:
    """Every identifier present in the document."""
    return tuple(details.iter_ids())


def get_sub_step(details: ExtendedDetails, sub_step_id: str) -> Optional[SubStep]:
    for sub_step in details.sub_steps:
        if sub_step.id == sub_step_id:
            return sub_step
    return None


def _replace_sub_step(details: ExtendedDetails, sub_step_id: str, rebuild) -> ExtendedDetails:
    """Rebuild the sub-step matching ``sub_step_id`` with ``rebuild``."""
    found = False
    sub_steps = []
    for sub_step in details.sub_steps:
        if sub_step.id == sub_step_id:
            found = True
            sub_steps.append(rebuild(sub_step))
        else:
            sub_steps.append(sub_step)
    if not found:
        logger.debug(f"Sub-step {sub_step_id} not found, nothing to update")
        return details
    return replace(details, sub_steps=tuple(sub_steps))


# ------------------------------------------------------------------
# Sub-steps
# ------------------------------------------------------------------

def add_sub_step(
    details: ExtendedDetails,
    ids: IdentityGenerator,
    text: str = DEFAULT_SUB_STEP_TEXT,
) -> ExtendedDetails:
    """Append a new sub-step stacked below the existing cards."""
    sub_step = SubStep(
        id=ids.generate("substep"),
        text=text,
        status=NOT_STARTED,
        position=stacked_position(len(details.sub_steps)),
    )
    return replace(details, sub_steps=details.sub_steps + (sub_step,))


def update_sub_step(details: ExtendedDetails, sub_step_id: str, **changes: Any) -> ExtendedDetails:
    """Replace the named fields of one sub-step."""
    if "id" in changes:
        raise TypeError("A sub-step's id cannot be changed")
    for name in REQUIRED_SUB_STEP_FIELDS:
        if name in changes and changes[name] is None:
            raise ValueError(f"A sub-step's {name} cannot be cleared")
    status = changes.get("status")
    if status is not None and status not in SUB_STEP_STATUSES:
        raise ValueError(f"Invalid sub-step status: {status}")
    position = changes.get("position")
    if position is not None:
        if not isinstance(position, Position):
            position = Position.from_dict(position)
        changes["position"] = position.clamped()
    if "action_items" in changes:
        changes["action_items"] = tuple(changes["action_items"] or ())

    return _replace_sub_step(details, sub_step_id, lambda sub_step: replace(sub_step, **changes))


def remove_sub_step(details: ExtendedDetails, sub_step_id: str) -> ExtendedDetails:
    """Delete a sub-step together with all of its action items."""
    remaining = tuple(sub_step for sub_step in details.sub_steps if sub_step.id != sub_step_id)
    if len(remaining) == len(details.sub_steps):
        return details
    return replace(details, sub_steps=remaining)


# ------------------------------------------------------------------
# Action items
# ------------------------------------------------------------------

def add_action_item(
    details: ExtendedDetails,
    sub_step_id: str,
    ids: IdentityGenerator,
    text: str = DEFAULT_ACTION_ITEM_TEXT,
) -> ExtendedDetails:
    """Append a new, open action item to a sub-step."""
    if get_sub_step(details, sub_step_id) is None:
        return details
    item = ActionItem(id=ids.generate("action"), text=text, completed=False)
    return _replace_sub_step(
        details,
        sub_step_id,
        lambda sub_step: replace(sub_step, action_items=sub_step.action_items + (item,)),
    )


def update_action_item(
    details: ExtendedDetails,
    sub_step_id: str,
    action_item_id: str,
    **changes: Any,
) -> ExtendedDetails:
    """Replace the named fields of one action item within a sub-step."""
    if "id" in changes:
        raise TypeError("An action item's id cannot be changed")
    if isinstance(changes.get("report"), dict):
        changes["report"] = ActionItemReport.from_dict(changes["report"])
    sub_step = get_sub_step(details, sub_step_id)
    if sub_step is None or not any(item.id == action_item_id for item in sub_step.action_items):
        return details

    items = tuple(
        replace(item, **changes) if item.id == action_item_id else item
        for item in sub_step.action_items
    )
    return _replace_sub_step(details, sub_step_id, lambda current: replace(current, action_items=items))


def remove_action_item(details: ExtendedDetails, sub_step_id: str, action_item_id: str) -> ExtendedDetails:
    """Delete one action item from a sub-step."""
    sub_step = get_sub_step(details, sub_step_id)
    if sub_step is None:
        return details
    items = tuple(item for item in sub_step.action_items if item.id != action_item_id)
    if len(items) == len(sub_step.action_items):
        return details
    return _replace_sub_step(details, sub_step_id, lambda current: replace(current, action_items=items))


def find_action_item(details: ExtendedDetails, action_item_id: str) -> Optional[Tuple[SubStep, ActionItem]]:
    """Locate an action item anywhere in the task by identifier alone."""
    for sub_step in details.sub_steps:
        for item in sub_step.action_items:
            if item.id == action_item_id:
                return sub_step, item
    return None


def save_action_item_report(details: ExtendedDetails, action_item_id: str, **changes: Any) -> ExtendedDetails:
    """Apply a report sub-editor's changes to the action item it edited."""
    located = find_action_item(details, action_item_id)
    if located is None:
        logger.debug(f"Action item {action_item_id} not found, report discarded")
        return details
    sub_step, _ = located
    return update_action_item(details, sub_step.id, action_item_id, **changes)


# ------------------------------------------------------------------
# Task-level fields
# ------------------------------------------------------------------

def update_fields(details: ExtendedDetails, **fields: Any) -> ExtendedDetails:
    """Update the free-text and scalar fields of the details block."""
    unknown = set(fields) - SCALAR_FIELDS
    if unknown:
        raise TypeError(f"Cannot update fields: {', '.join(sorted(unknown))}")
    if not fields:
        return details
    return replace(details, **fields)


def add_attachment(details: ExtendedDetails, attachment: Attachment) -> ExtendedDetails:
    """Append an already-ingested attachment."""
    return replace(details, attachments=details.attachments + (attachment,))


def remove_attachment(details: ExtendedDetails, attachment_id: str) -> ExtendedDetails:
    remaining = tuple(item for item in details.attachments if item.id != attachment_id)
    if len(remaining) == len(details.attachments):
        return details
    return replace(details, attachments=remaining)


def set_canvas_size(details: ExtendedDetails, width: int, height: int) -> ExtendedDetails:
    """Resize the sub-step canvas; stored positions are left as they are."""
    if width <= 0 or height <= 0:
        raise ValueError(f"Canvas size must be positive, got {width}x{height}")
    return replace(details, sub_step_canvas_size=CanvasSize(width=width, height=height))


def set_report_deck(details: ExtendedDetails, deck: Any) -> ExtendedDetails:
    return replace(details, report_deck=deck)


def set_decisions(details: ExtendedDetails, decisions: Iterable[Any]) -> ExtendedDetails:
    return replace(details, decisions=tuple(decisions))


# ------------------------------------------------------------------
# Read-only views
# ------------------------------------------------------------------

class FlattenedActionItems:
    """Lazy, restartable view over every action item of a task.

    Items come out in storage order, sub-step by sub-step, each annotated
    with its sub-step title and the task title. Iterating twice walks the
    tree twice; nothing is materialized up front.
    """

    def __init__(self, sub_steps: Sequence[SubStep], task_name: str):
        self._sub_steps = sub_steps
        self._task_name = task_name

    def __iter__(self) -> Iterator[FlatActionItem]:
        for sub_step in self._sub_steps:
            for item in sub_step.action_items:
                yield FlatActionItem(
                    action_item=item,
                    sub_step_id=sub_step.id,
                    sub_step_name=sub_step.text,
                    task_name=self._task_name,
                )

    def __bool__(self) -> bool:
        return any(sub_step.action_items for sub_step in self._sub_steps)

    def count(self) -> int:
        return sum(len(sub_step.action_items) for sub_step in self._sub_steps)


def flatten_action_items(details: ExtendedDetails, task_name: str) -> FlattenedActionItems:
    """All action items of the task, for aggregate read-only views."""
    return FlattenedActionItems(details.sub_steps, task_name)
