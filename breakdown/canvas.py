"""Free-placement canvas for sub-step cards.

A canvas is either idle or dragging exactly one card. Pressing on a card
records the grab point relative to the card's corner; every pointer move then
places the card so that grab point stays under the pointer, with both
coordinates clamped at zero. Positions are written through
``tree.update_sub_step`` on each move, there is no separate commit.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Union

from .models import CanvasSize, ExtendedDetails, Position
from .tree import get_sub_step, update_sub_step

logger = logging.getLogger("breakdown.canvas")


@dataclass(frozen=True, slots=True)
class Idle:
    pass


@dataclass(frozen=True, slots=True)
class Dragging:
    sub_step_id: str
    offset: Position


IDLE = Idle()

CanvasState = Union[Idle, Dragging]


class CanvasLayout:
    """Drag state machine for one canvas."""

    def __init__(self) -> None:
        self.state: CanvasState = IDLE
        self.expanded = False

    @property
    def is_dragging(self) -> bool:
        return isinstance(self.state, Dragging)

    @property
    def dragged_sub_step_id(self) -> Optional[str]:
        if isinstance(self.state, Dragging):
            return self.state.sub_step_id
        return None

    def press(
        self,
        details: ExtendedDetails,
        sub_step_id: str,
        pointer: Position,
        origin: Position = Position(),
    ) -> bool:
        """Start dragging a card; returns whether a drag started."""
        if isinstance(self.state, Dragging):
            logger.debug(f"Ignoring press on {sub_step_id}: already dragging {self.state.sub_step_id}")
            return False
        sub_step = get_sub_step(details, sub_step_id)
        if sub_step is None:
            return False

        offset = pointer.minus(origin).minus(sub_step.position)
        self.state = Dragging(sub_step_id=sub_step_id, offset=offset)
        return True

    def move(self, details: ExtendedDetails, pointer: Position, origin: Position = Position()) -> ExtendedDetails:
        """Move the dragged card under the pointer."""
        if not isinstance(self.state, Dragging):
            return details
        target = pointer.minus(origin).minus(self.state.offset).clamped()
        return update_sub_step(details, self.state.sub_step_id, position=target)

    def release(self) -> None:
        """End any drag, wherever the pointer was released."""
        self.state = IDLE

    def toggle_expanded(self) -> bool:
        self.expanded = not self.expanded
        return self.expanded

    def viewport(self, details: ExtendedDetails) -> CanvasSize:
        """Drawing surface size; the same whether or not the canvas is expanded."""
        return details.sub_step_canvas_size
