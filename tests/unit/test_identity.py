"""Unit tests for identifier generation."""

from unittest.mock import patch
import uuid

import pytest

from breakdown.identity import IdentityGenerator


class TestIdentityGenerator:
    """Test cases for IdentityGenerator."""

    def test_generate_uses_prefix(self):
        """Test that identifiers carry their category prefix."""
        ids = IdentityGenerator()

        identifier = ids.generate("substep")

        assert identifier.startswith("substep-")
        assert len(identifier) == len("substep-") + 8
        assert ids.is_taken(identifier)

    def test_generate_never_repeats(self):
        """Test that a generator never hands out the same identifier twice."""
        ids = IdentityGenerator()
        issued = {ids.generate("action") for _ in range(500)}
        assert len(issued) == 500

    def test_collision_regenerates(self):
        """Test that a colliding candidate is discarded."""
        taken = uuid.UUID("abcdef00000000000000000000000000")
        fresh = uuid.UUID("12345678000000000000000000000000")
        ids = IdentityGenerator(reserved=["substep-abcdef00"])

        with patch("breakdown.identity.uuid.uuid4", side_effect=[taken, fresh]):
            identifier = ids.generate("substep")

        assert identifier == "substep-12345678"

    def test_reserve_after_construction(self):
        """Test reserving identifiers of a loaded document."""
        ids = IdentityGenerator()
        ids.reserve(["substep-1", "action-1"])

        assert ids.is_taken("substep-1")
        assert len(ids) == 2

    def test_empty_prefix_rejected(self):
        """Test that an empty prefix raises an error."""
        with pytest.raises(ValueError, match="prefix"):
            IdentityGenerator().generate(" ")

    def test_short_token_rejected(self):
        """Test that very short tokens are refused."""
        with pytest.raises(ValueError):
            IdentityGenerator(token_length=2)
