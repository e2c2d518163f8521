"""Unit tests for the editing session.

These tests drive an ``EditorSession`` with mocked collaborators: the
persistence boundary, the proposal and report generators and the file
ingestor.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from breakdown.collaborators import IngestedFile, RawFile
from breakdown.config import Settings
from breakdown.errors import AttachmentTooLargeError, SessionClosedError
from breakdown.models import (
    ActionItem,
    ActionItemReport,
    ExtendedDetails,
    Position,
    SubStep,
    Task,
)
from breakdown.reconciler import ProposalBatch, ProposedActionItem, ProposedSubStep
from breakdown.session import (
    ALL_SUB_STEPS,
    EditorSession,
    PROPOSAL_FAILURE_MESSAGE,
    REPORT_FAILURE_MESSAGE,
)
from breakdown.workspace import Workspace

MIB = 1024 * 1024


def _task(details=None):
    return Task(id="TASK-1", title="Launch", description="Ship v1", status="todo", extended_details=details)


def _elaborated():
    return _task(
        ExtendedDetails(
            sub_steps=(
                SubStep(
                    id="substep-a",
                    text="Prepare",
                    position=Position(10, 10),
                    action_items=(ActionItem(id="action-1", text="Book", due_date="2024-02-01"),),
                ),
            )
        )
    )


def _ingestor():
    ingestor = AsyncMock()

    async def ingest(raw_file):
        return IngestedFile(raw_file.name, raw_file.type, f"data:{raw_file.type};base64,AA==")

    ingestor.ingest.side_effect = ingest
    return ingestor


class TestSessionBasics:
    """Test cases for opening and editing a session."""

    def test_unelaborated_task_gets_default_details(self):
        """Test that a task without details starts from the default block."""
        session = EditorSession.open(_task(), settings=Settings(canvas_width=900, canvas_height=700))

        assert session.details.sub_steps == ()
        assert session.details.sub_step_canvas_size.width == 900
        assert session.task.extended_details is None
        assert session.snapshot().extended_details is session.details

    def test_loaded_ids_are_reserved(self):
        """Test that new identifiers never collide with the loaded document."""
        session = EditorSession(_elaborated())

        assert session.ids.is_taken("substep-a")
        assert session.ids.is_taken("action-1")
        assert session.ids.is_taken("TASK-1")

    def test_edit_core(self):
        session = EditorSession(_task())

        session.edit_core(title="Launch v2", status="doing")

        assert session.task.title == "Launch v2"
        assert session.task.status == "doing"

    def test_edit_core_rejects_other_fields(self):
        with pytest.raises(TypeError):
            EditorSession(_task()).edit_core(id="TASK-2")

    def test_sub_step_lifecycle(self):
        """Test add, update and remove through the session."""
        session = EditorSession(_task())

        sub_step = session.add_sub_step()
        assert sub_step.position == Position(10, 10)

        updated = session.update_sub_step(sub_step.id, text="Plan", responsible="Ana")
        assert updated.text == "Plan"

        assert session.remove_sub_step(sub_step.id) is True
        assert session.update_sub_step(sub_step.id, text="Ghost") is None
        assert session.remove_sub_step(sub_step.id) is False

    def test_action_item_lifecycle(self):
        session = EditorSession(_elaborated())

        item = session.add_action_item("substep-a", text="Invite")
        assert item.text == "Invite"
        assert session.add_action_item("substep-x") is None

        updated = session.update_action_item("substep-a", item.id, completed=True)
        assert updated.completed is True

        assert session.remove_action_item("substep-a", item.id) is True
        assert session.remove_action_item("substep-a", item.id) is False

    def test_update_action_item_under_other_sub_step(self):
        """Test that an update scoped to the wrong sub-step reports no item and changes nothing."""
        session = EditorSession(_elaborated())
        other = session.add_sub_step("Other")
        before = session.details

        assert session.update_action_item(other.id, "action-1", text="changed") is None
        assert session.update_action_item("substep-x", "action-1", text="changed") is None
        assert session.details is before
        assert session.details.sub_steps[0].action_items[0].text == "Book"

    def test_save_action_item_report(self):
        """Test that the report editor writes to the item by id alone."""
        session = EditorSession(_elaborated())

        item = session.save_action_item_report(
            "action-1", report=ActionItemReport(notes="Booked"), completed=True, completed_date="2024-02-02"
        )

        assert item.report.notes == "Booked"
        assert item.completed_date == "2024-02-02"

    def test_removing_dragged_card_ends_drag(self):
        session = EditorSession(_elaborated())
        session.begin_drag("substep-a", Position(15, 15))

        session.remove_sub_step("substep-a")

        assert not session.canvas.is_dragging


class TestSessionCanvas:
    """Test cases for dragging through the session."""

    def test_drag_sequence(self):
        """Test press, move and release on a card."""
        session = EditorSession(_elaborated())

        assert session.begin_drag("substep-a", Position(15, 15))
        assert session.drag_to(Position(100, 100)) == Position(95, 95)
        assert session.drag_to(Position(-40, 3)) == Position(0, 0)
        session.end_drag()

        assert session.drag_to(Position(300, 300)) is None
        assert session.details.sub_steps[0].position == Position(0, 0)

    def test_canvas_size_and_expand(self):
        session = EditorSession(_task())

        assert session.set_canvas_size(1600, 900).height == 900
        assert session.toggle_canvas_expanded() is True


class TestSessionTables:
    """Test cases for the action item tables."""

    def test_all_items_table(self):
        session = EditorSession(_elaborated())

        table = session.action_item_table(ALL_SUB_STEPS)

        assert table.sub_step_name == "All"
        assert table.task_name == "Launch"
        assert [row.sub_step_name for row in table.rows()] == ["Prepare"]

    def test_single_sub_step_table(self):
        session = EditorSession(_elaborated())

        table = session.action_item_table("substep-a")

        assert table.sub_step_name == "Prepare"
        assert session.action_item_table("substep-x") is None


class TestSessionAttachments:
    """Test cases for attachments through the session."""

    def test_attach_file_appends(self):
        session = EditorSession(_task(), ingestor=_ingestor())

        attachment = asyncio.run(session.attach_file(RawFile("a.pdf", "application/pdf", MIB)))

        assert session.details.attachments == (attachment,)
        assert not session.attachment_pending

    def test_oversized_file_is_rejected_without_reading(self):
        ingestor = _ingestor()
        session = EditorSession(_task(), ingestor=ingestor)

        with pytest.raises(AttachmentTooLargeError):
            asyncio.run(session.attach_file(RawFile("big.pdf", "application/pdf", 6 * MIB)))

        ingestor.ingest.assert_not_called()
        assert session.details.attachments == ()

    def test_setting_lowers_the_ceiling(self):
        session = EditorSession(_task(), ingestor=_ingestor(), settings=Settings(max_attachment_bytes=100))

        with pytest.raises(AttachmentTooLargeError):
            asyncio.run(session.attach_file(RawFile("a.pdf", "application/pdf", 101)))

    def test_concurrent_reads_are_serialized_in_order(self):
        """Test that overlapping reads run one at a time and append in request order."""
        active = []
        overlaps = []

        async def ingest(raw_file):
            active.append(raw_file.name)
            if len(active) > 1:
                overlaps.append(raw_file.name)
            await asyncio.sleep(0.01 if raw_file.name == "first.pdf" else 0)
            active.remove(raw_file.name)
            return IngestedFile(raw_file.name, raw_file.type, "data:application/pdf;base64,AA==")

        ingestor = AsyncMock()
        ingestor.ingest.side_effect = ingest
        session = EditorSession(_task(), ingestor=ingestor)

        async def scenario():
            first = asyncio.create_task(session.attach_file(RawFile("first.pdf", "application/pdf", 10)))
            second = asyncio.create_task(session.attach_file(RawFile("second.pdf", "application/pdf", 10)))
            await asyncio.sleep(0)
            pending = session.attachment_pending
            await asyncio.gather(first, second)
            return pending

        assert asyncio.run(scenario()) is True
        assert overlaps == []
        assert [a.name for a in session.details.attachments] == ["first.pdf", "second.pdf"]

    def test_read_completing_after_close_is_dropped(self):
        """Test that a late attachment never reaches the closed session."""
        session = EditorSession(_task())

        async def ingest(raw_file):
            session.close()
            return IngestedFile(raw_file.name, raw_file.type, "data:text/plain;base64,AA==")

        session.ingestor = AsyncMock()
        session.ingestor.ingest.side_effect = ingest

        result = asyncio.run(session.attach_file(RawFile("late.txt", "text/plain", 2)))

        assert result is None
        assert session.details.attachments == ()

    def test_report_attachment(self):
        session = EditorSession(_elaborated(), ingestor=_ingestor())

        attachment = asyncio.run(
            session.attach_report_file("action-1", RawFile("proof.png", "image/png", 10))
        )

        item = session.details.sub_steps[0].action_items[0]
        assert item.report.attachments == (attachment,)
        assert session.remove_report_attachment("action-1", attachment.id) is True
        assert session.details.sub_steps[0].action_items[0].report.attachments == ()

    def test_remove_attachment(self):
        session = EditorSession(_task(), ingestor=_ingestor())
        attachment = asyncio.run(session.attach_file(RawFile("a.txt", "text/plain", 1)))

        assert session.remove_attachment(attachment.id) is True
        assert session.remove_attachment(attachment.id) is False


class TestSessionProposals:
    """Test cases for proposal generation and review."""

    def _batch(self):
        return ProposalBatch(
            sub_steps=(ProposedSubStep("Research", ref="p1"), ProposedSubStep("Build", ref="p2")),
            action_items=(ProposedActionItem("p1", "Read"), ProposedActionItem("p3", "Lost")),
        )

    def test_request_and_confirm(self):
        """Test that confirmed proposals are merged and the review closes."""
        generator = AsyncMock()
        generator.generate.return_value = self._batch()
        session = EditorSession(_elaborated())

        batch = asyncio.run(session.request_proposals(generator))
        assert session.pending_proposals is batch

        result = session.confirm_proposals()

        assert [s.text for s in session.details.sub_steps] == ["Prepare", "Research", "Build"]
        assert len(result.created_action_item_ids) == 1
        assert len(result.dropped_action_items) == 1
        assert session.pending_proposals is None

    def test_generator_receives_snapshot(self):
        generator = AsyncMock()
        generator.generate.return_value = ProposalBatch()
        session = EditorSession(_elaborated())

        asyncio.run(session.request_proposals(generator))

        task = generator.generate.await_args.args[0]
        assert task.extended_details.sub_steps[0].id == "substep-a"

    def test_mapping_payload_is_accepted(self):
        generator = AsyncMock()
        generator.generate.return_value = {"newSubSteps": [{"title": "A"}], "newActionItems": []}
        session = EditorSession(_task())

        batch = asyncio.run(session.request_proposals(generator))

        assert batch.sub_steps[0].title == "A"

    def test_failure_sets_message(self):
        """Test that a failing generator leaves the document untouched."""
        generator = AsyncMock()
        generator.generate.side_effect = RuntimeError("quota exceeded")
        session = EditorSession(_elaborated())
        before = session.details

        assert asyncio.run(session.request_proposals(generator)) is None
        assert session.proposal_error == "quota exceeded"
        assert session.details is before
        assert not session.is_generating_proposals

    def test_failure_without_message_uses_fallback(self):
        generator = AsyncMock()
        generator.generate.side_effect = RuntimeError()
        session = EditorSession(_task())

        asyncio.run(session.request_proposals(generator))

        assert session.proposal_error == PROPOSAL_FAILURE_MESSAGE

    def test_result_after_close_is_dropped(self):
        session = EditorSession(_task())

        async def generate(task):
            session.close()
            return ProposalBatch(sub_steps=(ProposedSubStep("Late"),))

        generator = AsyncMock()
        generator.generate.side_effect = generate

        assert asyncio.run(session.request_proposals(generator)) is None
        assert session.pending_proposals is None

    def test_confirm_without_pending(self):
        with pytest.raises(ValueError):
            EditorSession(_task()).confirm_proposals()

    def test_dismiss(self):
        session = EditorSession(_task())
        session.pending_proposals = self._batch()

        session.dismiss_proposals()

        assert session.pending_proposals is None
        assert session.details.sub_steps == ()


class TestSessionReport:
    """Test cases for the report deck."""

    def test_generates_when_missing(self):
        generator = AsyncMock()
        generator.generate.return_value = {"slides": ["intro"]}
        session = EditorSession(_task())

        deck = asyncio.run(session.open_report(generator, "Grow revenue"))

        assert deck == {"slides": ["intro"]}
        assert session.details.report_deck == deck
        assert session.report_editor_open
        generator.generate.assert_awaited_once()
        assert generator.generate.await_args.args[1] == "Grow revenue"

    def test_existing_deck_is_reused(self):
        generator = AsyncMock()
        session = EditorSession(_task())
        session.save_report_deck({"slides": []})

        asyncio.run(session.open_report(generator, "goal"))

        generator.generate.assert_not_called()
        assert session.report_editor_open

    def test_failure_uses_fallback_message(self):
        generator = AsyncMock()
        generator.generate.side_effect = ValueError()
        session = EditorSession(_task())

        asyncio.run(session.open_report(generator, "goal"))

        assert session.report_error == REPORT_FAILURE_MESSAGE
        assert session.details.report_deck is None
        assert not session.report_editor_open

    def test_custom_report_opens_editor(self):
        session = EditorSession(_task())

        session.apply_custom_report({"slides": ["custom"]})

        assert session.details.report_deck == {"slides": ["custom"]}
        assert session.report_editor_open

    def test_save_decisions(self):
        session = EditorSession(_task())
        session.save_decisions([{"id": "d1", "text": "Go"}])
        assert session.details.decisions == ({"id": "d1", "text": "Go"},)


class TestSessionSaveAndClose:
    """Test cases for saving and closing."""

    def test_save_calls_persistence_then_closes(self):
        """Test that save persists core info and details, then tears down."""
        persistence = MagicMock()
        session = EditorSession(_elaborated(), persistence=persistence)
        session.edit_core(title="Launch v2")

        task = session.save()

        persistence.save_core_info.assert_called_once_with(
            "TASK-1", {"title": "Launch v2", "description": "Ship v1", "status": "todo"}
        )
        persistence.save_extended_details.assert_called_once_with("TASK-1", session.details)
        assert task.title == "Launch v2"
        assert not session.is_open

    def test_save_without_persistence(self):
        with pytest.raises(ValueError):
            EditorSession(_task()).save()

    def test_failed_save_keeps_session_open(self):
        persistence = MagicMock()
        persistence.save_extended_details.side_effect = OSError("read-only")
        session = EditorSession(_task(), persistence=persistence)

        with pytest.raises(OSError):
            session.save()

        assert session.is_open

    def test_save_groups_both_calls(self):
        persistence = MagicMock()
        session = EditorSession(_task(), persistence=persistence)

        session.save()

        persistence.save_batch.assert_called_once_with("TASK-1")
        persistence.save_batch.return_value.__exit__.assert_called_once()

    def test_failed_details_save_leaves_stored_task_untouched(self, tmp_path):
        """Test that core fields are not written when the details write fails."""
        workspace = Workspace(tmp_path)
        workspace.create_task("Launch", task_id="TASK-1")
        session = EditorSession(workspace.load_task("TASK-1"), persistence=workspace)
        session.edit_core(title="Launch v2")
        session.add_sub_step("Prepare")

        with patch.object(workspace, "save_extended_details", side_effect=OSError("disk full")):
            with pytest.raises(OSError):
                session.save()

        stored = workspace.load_task("TASK-1")
        assert stored.title == "Launch"
        assert stored.extended_details is None
        assert session.is_open

        session.save()
        assert workspace.load_task("TASK-1").title == "Launch v2"

    def test_cancel_discards(self):
        persistence = MagicMock()
        session = EditorSession(_task(), persistence=persistence)
        session.add_sub_step()

        session.cancel()

        persistence.save_extended_details.assert_not_called()
        assert not session.is_open

    def test_operations_after_close_raise(self):
        session = EditorSession(_task())
        session.close()
        session.close()

        with pytest.raises(SessionClosedError):
            session.add_sub_step()
