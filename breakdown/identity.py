"""Identifier generation for documents being edited."""

from __future__ import annotations

import logging
import uuid
from typing import Iterable, Set

logger = logging.getLogger("breakdown.identity")


class IdentityGenerator:
    """Issue ``<prefix>-<hex>`` identifiers that never collide within a session.

    Every identifier handed out, and every identifier reserved from a loaded
    document, stays in the taken set for the generator's lifetime, so removed
    entities never see their identifier recycled.
    """

    def __init__(self, reserved: Iterable[str] = (), *, token_length: int = 8):
        if token_length < 4:
            raise ValueError("token_length must be at least 4")
        self._taken: Set[str] = set(reserved)
        self._token_length = token_length

    def reserve(self, identifiers: Iterable[str]) -> None:
        """Mark identifiers already present in a document as taken."""
        self._taken.update(identifiers)

    def is_taken(self, identifier: str) -> bool:
        return identifier in self._taken

    def generate(self, prefix: str) -> str:
        """Generate a unique identifier in the given category."""
        if not prefix or not prefix.strip():
            raise ValueError("Identifier prefix cannot be empty")
        while True:
            candidate = f"{prefix}-{uuid.uuid4().hex[:self._token_length]}"
            if candidate not in self._taken:
                self._taken.add(candidate)
                return candidate
            logger.debug(f"Identifier collision on {candidate}, regenerating")

    def __len__(self) -> int:
        return len(self._taken)
