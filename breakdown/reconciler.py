"""Merge externally generated proposals into a task's breakdown.

Proposed action items point at proposed sub-steps through references that
only exist inside the proposal batch; the real identifiers are generated
here, at merge time. The merge therefore runs in two passes: the first
materializes every proposed sub-step and records ``reference -> new id`` in
a correspondence table, the second resolves each action item through that
table. Pre-existing sub-steps are never merge targets, and an action item
whose reference resolves to nothing is dropped without error.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .breakdown_logging import log_performance
from .identity import IdentityGenerator
from .models import ActionItem, ExtendedDetails, NOT_STARTED, SubStep
from .tree import stacked_position

logger = logging.getLogger("breakdown.reconciler")


@dataclass(frozen=True, slots=True)
class ProposedSubStep:
    """A candidate sub-step; ``ref`` is how action items in the batch point at it."""

    title: str
    description: str = ""
    ref: Optional[str] = None

    def reference(self, index: int) -> str:
        """The batch-local reference, falling back to the position in the batch."""
        return self.ref if self.ref else str(index)

    def to_dict(self) -> Dict[str, Any]:
        data = {"title": self.title, "description": self.description}
        if self.ref:
            data["id"] = self.ref
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ProposedSubStep":
        ref = data.get("ref", data.get("id"))
        return cls(
            title=data.get("title", ""),
            description=data.get("description", ""),
            ref=str(ref) if ref is not None else None,
        )


@dataclass(frozen=True, slots=True)
class ProposedActionItem:
    """A candidate action item targeting one of the batch's proposed sub-steps."""

    target_sub_step_id: str
    title: str

    def to_dict(self) -> Dict[str, str]:
        return {"targetSubStepId": self.target_sub_step_id, "title": self.title}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ProposedActionItem":
        target = data.get("targetSubStepId", data.get("target_sub_step_id"))
        return cls(
            target_sub_step_id=str(target) if target is not None else "",
            title=data.get("title", ""),
        )


@dataclass(frozen=True, slots=True)
class ProposalBatch:
    """One round of proposals awaiting review."""

    sub_steps: Tuple[ProposedSubStep, ...] = ()
    action_items: Tuple[ProposedActionItem, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.sub_steps and not self.action_items

    def to_dict(self) -> Dict[str, Any]:
        return {
            "newSubSteps": [proposal.to_dict() for proposal in self.sub_steps],
            "newActionItems": [proposal.to_dict() for proposal in self.action_items],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ProposalBatch":
        """Accept the generator payload in either naming."""
        sub_steps = data.get("newSubSteps", data.get("subSteps", data.get("sub_steps"))) or []
        action_items = data.get("newActionItems", data.get("actionItems", data.get("action_items"))) or []
        return cls(
            sub_steps=tuple(ProposedSubStep.from_dict(item) for item in sub_steps),
            action_items=tuple(ProposedActionItem.from_dict(item) for item in action_items),
        )


@dataclass(frozen=True, slots=True)
class ReconcileResult:
    """Outcome of merging one batch."""

    details: ExtendedDetails
    created_sub_step_ids: Tuple[str, ...] = ()
    created_action_item_ids: Tuple[str, ...] = ()
    dropped_action_items: Tuple[ProposedActionItem, ...] = ()
    correspondence: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "created_sub_step_ids": list(self.created_sub_step_ids),
            "created_action_item_ids": list(self.created_action_item_ids),
            "dropped_action_items": [item.to_dict() for item in self.dropped_action_items],
            "correspondence": dict(self.correspondence),
        }


@log_performance("reconcile_proposals")
def reconcile(details: ExtendedDetails, batch: ProposalBatch, ids: IdentityGenerator) -> ReconcileResult:
    """Merge a proposal batch into ``details`` and return the merged value."""

    # Pass 1: materialize proposed sub-steps and record their new identities
    working: List[SubStep] = list(details.sub_steps)
    correspondence: Dict[str, str] = {}
    created_positions: Dict[str, int] = {}
    created_sub_steps: List[str] = []
    explicit_refs = {proposal.ref for proposal in batch.sub_steps if proposal.ref}
    for index, proposal in enumerate(batch.sub_steps):
        sub_step = SubStep(
            id=ids.generate("substep"),
            text=proposal.title,
            notes=proposal.description,
            status=NOT_STARTED,
            position=stacked_position(len(working)),
        )
        reference = proposal.reference(index)
        if not proposal.ref and reference in explicit_refs:
            # An explicit id owns this key; the unnamed proposal gets no reference
            logger.warning(f"Batch position '{reference}' is claimed by an explicit proposal id, "
                           f"proposal '{proposal.title}' cannot be targeted")
        else:
            if reference in correspondence:
                logger.warning(f"Duplicate proposal reference '{reference}', later proposal wins")
            correspondence[reference] = sub_step.id
        created_positions[sub_step.id] = len(working)
        created_sub_steps.append(sub_step.id)
        working.append(sub_step)

    # Pass 2: resolve action item targets through the table
    pending: Dict[str, List[ActionItem]] = {}
    created_items: List[str] = []
    dropped: List[ProposedActionItem] = []
    for proposal in batch.action_items:
        target_id = correspondence.get(proposal.target_sub_step_id)
        if target_id is None:
            logger.debug(f"Dropping proposed action item '{proposal.title}': "
                         f"no proposed sub-step '{proposal.target_sub_step_id}'")
            dropped.append(proposal)
            continue
        item = ActionItem(id=ids.generate("action"), text=proposal.title, completed=False)
        pending.setdefault(target_id, []).append(item)
        created_items.append(item.id)

    for sub_step_id, items in pending.items():
        slot = created_positions[sub_step_id]
        current = working[slot]
        working[slot] = replace(current, action_items=current.action_items + tuple(items))

    merged = replace(details, sub_steps=tuple(working))
    logger.info(
        f"Merged {len(batch.sub_steps)} proposed sub-steps and {len(created_items)} action items "
        f"({len(dropped)} dropped)"
    )
    return ReconcileResult(
        details=merged,
        created_sub_step_ids=tuple(created_sub_steps),
        created_action_item_ids=tuple(created_items),
        dropped_action_items=tuple(dropped),
        correspondence=correspondence,
    )
