"""Project store management for QDG.

This module owns the ``.qdg`` directory of a project: initializing the
tree, writing the final task record that combines both LLM outputs,
and looking up earlier records by content fingerprint.
"""

from __future__ import annotations

import json
import logging
import re
import threading
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Union

from .errors import StorageError, ValidationError
from .identity import (
    CONFIG_DIR_NAME,
    CONFIG_FILE_NAME,
    QDG_DIR_NAME,
    TASK_ID_PATTERN,
    TASKS_DIR_NAME,
    derive_metadata_root,
    sanitize_name,
)
from .models import Settings, StoreInitialization, TaskAnalysis, TaskRecordInfo
from .qdg_logging import (
    log_error_with_context,
    log_operation,
    log_performance,
    log_store_initialized,
    log_task_record_replaced,
    log_task_record_saved,
)

logger = logging.getLogger("qdg.workspace")

RECORD_SUFFIX = ".md"
LEGACY_RECORD_SUFFIX = "_dimension.md"
_UNSAFE_ID_CHARS = re.compile(r'[<>:"/\\|?*\s\x00-\x1f\x7f]')

_PROJECT_LOCKS: Dict[Path, threading.RLock] = {}
_PROJECT_LOCKS_GUARD = threading.Lock()


def project_lock(root: Union[Path, str]) -> threading.RLock:
    """Return the in-process lock serializing writes to one project's store."""
    key = Path(root).resolve()
    with _PROJECT_LOCKS_GUARD:
        lock = _PROJECT_LOCKS.get(key)
        if lock is None:
            lock = _PROJECT_LOCKS[key] = threading.RLock()
        return lock


def _write_text(path: Path, content: str) -> None:
    with path.open("w", encoding="utf-8", newline="") as handle:
        handle.write(content)


def _read_text(path: Path) -> str:
    with path.open("r", encoding="utf-8", newline="") as handle:
        return handle.read()


def render_task_record(
    task_id: str,
    task_name: str,
    refined_description: str,
    dimensions_text: str,
    task_metadata: Optional[TaskAnalysis] = None,
    created_at: Optional[datetime] = None,
) -> str:
    """Render the markdown document saved for a task."""
    created = (created_at or datetime.now().astimezone()).strftime("%Y-%m-%d %H:%M:%S %Z").strip()

    header = [
        f"# Quality Evaluation Standards: {task_name}",
        "",
        "## Task Information",
        f"- **Task ID**: {task_id}",
        f"- **Task Name**: {task_name}",
        f"- **Created**: {created}",
    ]
    if task_metadata is not None:
        objectives = "\n".join(f"- {item}" for item in task_metadata.objectives) or "- None"
        elements = "\n".join(f"- {item}" for item in task_metadata.key_elements) or "- None"
        header.extend([
            f"- **Core Task**: {task_metadata.core_task}",
            f"- **Task Type**: {task_metadata.task_type}",
            f"- **Complexity**: {task_metadata.complexity}/5",
            f"- **Domain**: {task_metadata.domain}",
            "",
            "### Objectives",
            objectives,
            "",
            "### Key Elements",
            elements,
        ])

    return "\n".join(header) + f"""

---

## Task Refinement (Stage 1 Output)

{refined_description}

---

## Evaluation Dimensions (Stage 2 Output)

{dimensions_text}

---

## Usage

- **Scoring**: Each dimension is scored on a continuous 0-10 scale (decimals allowed)
- **Reference Tiers**: 6 = acceptable, 8 = excellent, 10 = outstanding
- **Final Score**: The average (arithmetic mean) of all dimension scores

*Generated by Quality Dimension Generator*
"""


class Workspace:
    """Manage the ``.qdg`` metadata store of a single project."""

    def __init__(self, root: Union[Path, str]):
        self.root = Path(root).expanduser().resolve()
        self.base_dir = derive_metadata_root(self.root)
        self.config_dir = self.base_dir / CONFIG_DIR_NAME
        self.tasks_dir = self.base_dir / TASKS_DIR_NAME

    @property
    def config_path(self) -> Path:
        """Path of the per-project settings document."""
        return self.config_dir / CONFIG_FILE_NAME

    def subpaths(self) -> Dict[str, Path]:
        """Directories making up the store, parents first."""
        return {
            QDG_DIR_NAME: self.base_dir,
            CONFIG_DIR_NAME: self.config_dir,
            TASKS_DIR_NAME: self.tasks_dir,
        }

    # ------------------------------------------------------------------
    # Initialization
    # ------------------------------------------------------------------

    def is_initialized(self) -> bool:
        return self.base_dir.is_dir()

    def initialize(self) -> StoreInitialization:
        """Create the store tree and default settings; safe to call repeatedly.

        A failure on one subpath is logged and recorded, the remaining
        subpaths are still attempted. Callers detect overall failure through
        ``result.failed`` or :meth:`is_initialized`.
        """
        result = StoreInitialization(root=self.base_dir)

        with project_lock(self.root):
            for name, path in self.subpaths().items():
                try:
                    path.mkdir(parents=True, exist_ok=True)
                except OSError as e:
                    logger.warning(f"Failed to create {name} directory at {path}: {e}")
                    result.failed.append(name)
                    continue
                try:
                    populated = any(path.iterdir())
                except OSError:
                    populated = False
                (result.existed if populated else result.created).append(name)

            if CONFIG_DIR_NAME not in result.failed:
                self._write_default_config(result)

        log_store_initialized(str(self.base_dir), result.created, result.existed, result.failed)
        return result

    def _write_default_config(self, result: StoreInitialization) -> None:
        document = {"settings": Settings().to_dict()}
        try:
            # "x" mode never replaces a settings document that already exists.
            with self.config_path.open("x", encoding="utf-8") as handle:
                handle.write(json.dumps(document, indent=2))
            logger.info(f"Created default settings at {self.config_path}")
        except FileExistsError:
            logger.debug(f"Keeping existing settings at {self.config_path}")
        except OSError as e:
            logger.warning(f"Failed to write default settings to {self.config_path}: {e}")
            result.failed.append(CONFIG_FILE_NAME)

    # ------------------------------------------------------------------
    # Record paths
    # ------------------------------------------------------------------

    @staticmethod
    def _check_task_id(task_id: str) -> None:
        if not isinstance(task_id, str) or not task_id or task_id in {".", ".."}:
            raise ValidationError("Task ID must be a non-empty string")
        if _UNSAFE_ID_CHARS.search(task_id):
            raise ValidationError(f"Task ID contains characters not allowed in file names: {task_id!r}")
        if not TASK_ID_PATTERN.fullmatch(task_id):
            raise ValidationError(f"Task ID must look like task_<millis>_<8-hex fingerprint>, got: {task_id!r}")

    def record_path(self, task_id: str, task_name: Optional[str]) -> Path:
        """Flat-layout path ``tasks/<task_id>_<SanitizedName>.md``."""
        self._check_task_id(task_id)
        return self.tasks_dir / f"{task_id}_{sanitize_name(task_name)}{RECORD_SUFFIX}"

    def legacy_record_path(self, task_id: str) -> Path:
        """Path used by the earlier nested layout ``tasks/<id>/<id>_dimension.md``."""
        self._check_task_id(task_id)
        return self.tasks_dir / task_id / f"{task_id}{LEGACY_RECORD_SUFFIX}"

    # ------------------------------------------------------------------
    # Record writing
    # ------------------------------------------------------------------

    @log_performance("save_task_record")
    def save_task_record(
        self,
        task_id: str,
        task_name: Optional[str],
        task_metadata: Optional[TaskAnalysis],
        refined_description: str,
        dimensions_text: str,
        *,
        created_at: Optional[datetime] = None,
    ) -> Path:
        """Write the final record for a task and verify it landed on disk.

        A task ID owns exactly one flat record: saving again overwrites it,
        and a record saved earlier under a different name is removed once
        the new one is verified.
        """
        path = self.record_path(task_id, task_name)
        content = render_task_record(
            task_id,
            task_name or sanitize_name(task_name),
            refined_description,
            dimensions_text,
            task_metadata=task_metadata,
            created_at=created_at,
        )

        try:
            with project_lock(self.root), log_operation("save_task_record", task_id=task_id, path=str(path)):
                try:
                    self.tasks_dir.mkdir(parents=True, exist_ok=True)
                    _write_text(path, content)
                    size = path.stat().st_size
                except OSError as e:
                    raise StorageError(f"Failed to write task record {path}", e) from e

                if size == 0:
                    raise StorageError(f"Task record {path} was written but is empty")

                try:
                    saved = _read_text(path)
                except OSError as e:
                    raise StorageError(f"Failed to verify task record {path}", e) from e
                if task_id not in saved or dimensions_text not in saved:
                    raise StorageError(f"Task record {path} is incomplete after writing")

                for stale in self._flat_records(task_id):
                    if stale == path:
                        continue
                    try:
                        stale.unlink()
                    except OSError as e:
                        raise StorageError(f"Saved {path} but could not remove previous record {stale}", e) from e
                    logger.info(f"Replaced task record {stale.name} with {path.name}")
                    log_task_record_replaced(task_id, str(stale))

        except StorageError as e:
            log_error_with_context(e, {
                "operation": "save_task_record",
                "task_id": task_id,
                "path": str(path),
            })
            raise

        logger.info(f"Task record saved to {path} ({size} bytes)")
        log_task_record_saved(task_id, str(path), size, task_name=task_name)
        return path

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def _entries(self) -> List[Path]:
        try:
            return sorted(self.tasks_dir.iterdir())
        except OSError:
            return []

    def _flat_records(self, task_id: str) -> List[Path]:
        # IDs have a fixed shape, so the "<task_id>_" prefix belongs to one task only.
        prefix = f"{task_id}_"
        return [
            entry for entry in self._entries()
            if entry.name.startswith(prefix) and entry.name.endswith(RECORD_SUFFIX) and entry.is_file()
        ]

    def record_name(self, task_id: str) -> Optional[str]:
        """Return the sanitized name of the flat record saved for ``task_id``, if any."""
        self._check_task_id(task_id)
        records = self._flat_records(task_id)
        if not records:
            return None
        return records[0].name[len(task_id) + 1:-len(RECORD_SUFFIX)] or None

    @staticmethod
    def _entry_task_id(entry: Path) -> Optional[str]:
        match = TASK_ID_PATTERN.match(entry.name)
        return match.group(0) if match else None

    def find_existing_task(self, fingerprint: str) -> Optional[str]:
        """Return the first stored task ID containing ``fingerprint``, if any."""
        if not fingerprint:
            return None
        for entry in self._entries():
            task_id = self._entry_task_id(entry)
            if task_id and fingerprint in task_id:
                logger.debug(f"Found existing task {task_id} for fingerprint {fingerprint}")
                return task_id
        return None

    def list_task_records(self) -> List[TaskRecordInfo]:
        """Enumerate saved records in both the flat and the legacy nested layout."""
        records = []
        for entry in self._entries():
            try:
                if entry.is_file() and entry.suffix == RECORD_SUFFIX:
                    match = TASK_ID_PATTERN.match(entry.name)
                    if not match:
                        continue
                    task_id = match.group(0)
                    name = entry.name[len(task_id):-len(RECORD_SUFFIX)].lstrip("_") or None
                    path, layout = entry, "flat"
                elif entry.is_dir() and TASK_ID_PATTERN.fullmatch(entry.name):
                    task_id, name = entry.name, None
                    path, layout = entry / f"{entry.name}{LEGACY_RECORD_SUFFIX}", "nested"
                    if not path.is_file():
                        continue
                else:
                    continue
                stat = path.stat()
            except OSError as e:
                logger.debug(f"Skipping unreadable task entry {entry}: {e}")
                continue
            records.append(TaskRecordInfo(
                task_id=task_id,
                task_name=name,
                path=path,
                size=stat.st_size,
                modified=stat.st_mtime,
                layout=layout,
            ))
        return records

    def read_task_record(self, task_id: str) -> Optional[str]:
        """Return the saved record for ``task_id``, or None when there is none."""
        self._check_task_id(task_id)
        candidates = self._flat_records(task_id)
        candidates.append(self.legacy_record_path(task_id))
        for path in candidates:
            try:
                if path.is_file():
                    return _read_text(path)
            except OSError as e:
                logger.warning(f"Failed to read task record {path}: {e}")
        return None
