"""Workspace storage for tasks being broken down.

This module provides a JSON-file implementation of the persistence
boundary used by editing sessions: one file per task under
``<root>/.breakdown/tasks``.
"""

from __future__ import annotations

import json
import logging
import os
import re
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from .breakdown_logging import (
    editor_events,
    log_error_with_context,
    log_operation,
    log_performance,
)
from .config import DEFAULT_STORAGE_DIR, STORAGE_DIR_ENV
from .models import ExtendedDetails, Task

logger = logging.getLogger("breakdown.workspace")

TASK_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]{0,127}$")


def _generate_task_id() -> str:
    """Generate a unique task ID."""
    return f"TASK-{uuid.uuid4().hex[:8].upper()}"


class Workspace:
    """Manage stored tasks within a project directory."""

    def __init__(self, root: Path | str, storage_dir: Optional[str] = None):
        """Initialize workspace with given root directory."""
        try:
            self.root = Path(root).resolve()
            dir_name = storage_dir or os.getenv(STORAGE_DIR_ENV) or DEFAULT_STORAGE_DIR

            self.base_dir = self.root / dir_name
            self.tasks_dir = self.base_dir / "tasks"
            self._staged: Dict[str, Task] = {}

            try:
                self.tasks_dir.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                logger.error(f"Failed to create workspace directories: {e}")
                raise RuntimeError(f"Could not initialize workspace at {self.root}: {e}")

            logger.debug(f"Workspace initialized at {self.root}")

        except Exception as e:
            log_error_with_context(e, {"operation": "workspace_init", "root": str(root)})
            raise

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def task_path(self, task_id: str) -> Path:
        if not TASK_ID_RE.match(task_id or ""):
            raise ValueError(f"Invalid task id: '{task_id}'")
        return self.tasks_dir / f"{task_id}.json"

    def task_exists(self, task_id: str) -> bool:
        return self.task_path(task_id).exists()

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def _read_raw(self, task_id: str) -> Optional[Dict[str, Any]]:
        path = self.task_path(task_id)
        if not path.exists():
            return None
        return json.loads(path.read_text(encoding="utf-8"))

    def load_task(self, task_id: str) -> Optional[Task]:
        """Load a task, or None when it was never stored."""
        try:
            data = self._read_raw(task_id)
        except json.JSONDecodeError as e:
            log_error_with_context(e, {"operation": "load_task", "task_id": task_id})
            raise ValueError(f"Stored task '{task_id}' is not valid JSON: {e}")
        if data is None:
            return None
        return Task.from_dict(data)

    def list_tasks(self) -> List[Dict[str, Any]]:
        """Summaries of all stored tasks."""
        tasks: List[Dict[str, Any]] = []
        for path in sorted(self.tasks_dir.glob("*.json")):
            try:
                task = Task.from_dict(json.loads(path.read_text(encoding="utf-8")))
            except (json.JSONDecodeError, KeyError, AttributeError, TypeError) as e:
                logger.warning(f"Skipping unreadable task file {path}: {e}")
                continue
            details = task.extended_details
            tasks.append(
                {
                    "task_id": task.id,
                    "title": task.title,
                    "status": task.status,
                    "elaborated": details is not None,
                    "sub_steps": len(details.sub_steps) if details else 0,
                    "action_items": sum(len(s.action_items) for s in details.sub_steps) if details else 0,
                    "path": str(path),
                }
            )
        return tasks

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def _write(self, task: Task) -> Path:
        path = self.task_path(task.id)
        tmp_path = path.with_suffix(".json.tmp")
        tmp_path.write_text(json.dumps(task.to_dict(), indent=2, ensure_ascii=False), encoding="utf-8")
        tmp_path.replace(path)
        return path

    @log_performance("create_task")
    def create_task(
        self,
        title: str,
        description: str = "",
        status: str = "",
        task_id: Optional[str] = None,
    ) -> Task:
        """Create and store a new, not yet elaborated task."""
        if not title or not title.strip():
            raise ValueError("Task title cannot be empty")
        task_id = task_id or _generate_task_id()
        if self.task_exists(task_id):
            raise ValueError(f"Task '{task_id}' already exists")

        task = Task(id=task_id, title=title.strip(), description=description, status=status)
        with log_operation("write_task", task_id=task_id):
            path = self._write(task)

        editor_events.log_editor_event("task_created", task_id=task_id, path=str(path))
        return task

    @contextmanager
    def save_batch(self, task_id: str) -> Iterator[None]:
        """Stage the save calls made inside the block and write the task file once.

        When the block raises, the stored file is left untouched.
        """
        self._staged[task_id] = self._current(task_id)
        try:
            yield
            path = self._write(self._staged[task_id])
            logger.info(f"Saved task {task_id} to {path}")
        finally:
            self._staged.pop(task_id, None)

    def _current(self, task_id: str) -> Task:
        staged = self._staged.get(task_id)
        if staged is not None:
            return staged
        return self.load_task(task_id) or Task(id=task_id, title="")

    def _store(self, task: Task, part: str) -> None:
        if task.id in self._staged:
            self._staged[task.id] = task
            logger.debug(f"Staged {part} of task {task.id}")
            return
        path = self._write(task)
        logger.info(f"Saved {part} of task {task.id} to {path}")

    def save_core_info(self, task_id: str, core_info: Dict[str, str]) -> None:
        """Persist title, description and status of a task."""
        try:
            current = self._current(task_id)
            updated = Task(
                id=task_id,
                title=core_info.get("title", current.title),
                description=core_info.get("description", current.description),
                status=core_info.get("status", current.status),
                extended_details=current.extended_details,
            )
            self._store(updated, "core info")
        except Exception as e:
            log_error_with_context(e, {"operation": "save_core_info", "task_id": task_id})
            raise

    def save_extended_details(self, task_id: str, details: ExtendedDetails) -> None:
        """Persist the whole details block of a task."""
        try:
            current = self._current(task_id)
            updated = Task(
                id=current.id,
                title=current.title,
                description=current.description,
                status=current.status,
                extended_details=details,
            )
            self._store(updated, "details")
        except Exception as e:
            log_error_with_context(e, {"operation": "save_extended_details", "task_id": task_id})
            raise

    def delete_task(self, task_id: str) -> bool:
        path = self.task_path(task_id)
        if not path.exists():
            return False
        path.unlink()
        editor_events.log_editor_event("task_deleted", task_id=task_id)
        return True
