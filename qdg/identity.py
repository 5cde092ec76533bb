"""Path and identity derivation for QDG project stores.

Everything here is pure apart from the discovery helpers, which only read
the filesystem and take an explicit :class:`Environment` instead of
consulting the process environment.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from .models import ProjectLocation, TaskAnalysis

logger = logging.getLogger("qdg.identity")

QDG_DIR_NAME = ".qdg"
CONFIG_DIR_NAME = "config"
TASKS_DIR_NAME = "tasks"
CONFIG_FILE_NAME = "qdg.config.json"

TASK_ID_PREFIX = "task"
FINGERPRINT_LENGTH = 8
MAX_SANITIZED_LENGTH = 50
DEFAULT_TASK_NAME = "UnnamedTask"

PROJECT_ROOT_ENV = "QDG_PROJECT_ROOT"
PROJECT_BASE_ENV = "PROJECT_BASE_PATH"

TASK_ID_PATTERN = re.compile(r"task_(\d+)_([0-9a-f]{%d})" % FINGERPRINT_LENGTH)
_ILLEGAL_NAME_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f\x7f]')
_WHITESPACE = re.compile(r"\s+")
_SEPARATOR_RUNS = re.compile(r"_{2,}")


@dataclass(frozen=True)
class Environment:
    """Snapshot of the ambient process state used for path discovery."""

    cwd: Path
    home: Path
    env: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def from_os(cls) -> "Environment":
        """Capture the current process state. Only call this at the server edge."""
        return cls(cwd=Path.cwd().resolve(), home=Path.home(), env=dict(os.environ))

    def get(self, key: str) -> Optional[str]:
        value = self.env.get(key)
        return value or None


# ----------------------------------------------------------------------
# Pure derivations
# ----------------------------------------------------------------------


def derive_metadata_root(project_path: Union[Path, str]) -> Path:
    """Return the ``.qdg`` directory for a project."""
    return Path(project_path) / QDG_DIR_NAME


def _normalized_fields(task_fields: Union[TaskAnalysis, Mapping[str, Any]]) -> Dict[str, Any]:
    if isinstance(task_fields, TaskAnalysis):
        task_fields = task_fields.fingerprint_fields()

    def text(key: str) -> str:
        value = task_fields.get(key)
        return value if isinstance(value, str) else ""

    def items(key: str) -> List[str]:
        value = task_fields.get(key)
        if not isinstance(value, (list, tuple)):
            return []
        return sorted(str(item) for item in value)

    # Key order is part of the fingerprint.
    return {
        "coreTask": text("coreTask"),
        "taskType": text("taskType"),
        "domain": text("domain"),
        "keyElements": items("keyElements"),
        "objectives": items("objectives"),
    }


def derive_task_fingerprint(task_fields: Union[TaskAnalysis, Mapping[str, Any]]) -> str:
    """Hash the order-independent task content into a short hex fingerprint."""
    canonical = json.dumps(_normalized_fields(task_fields), ensure_ascii=False, separators=(",", ":"))
    digest = hashlib.md5(canonical.encode("utf-8"), usedforsecurity=False).hexdigest()
    return digest[:FINGERPRINT_LENGTH]


def derive_task_id(timestamp_ms: int, fingerprint: str) -> str:
    """Compose ``task_<timestampMillis>_<fingerprint>``."""
    return f"{TASK_ID_PREFIX}_{int(timestamp_ms)}_{fingerprint}"


def parse_task_id(value: str) -> Optional[Tuple[int, str]]:
    """Extract ``(timestamp, fingerprint)`` from a task ID or record file name."""
    match = TASK_ID_PATTERN.search(value)
    if not match:
        return None
    return int(match.group(1)), match.group(2)


def sanitize_name(raw_name: Optional[str]) -> str:
    """Make a task name safe for use in a file name."""
    name = _ILLEGAL_NAME_CHARS.sub("", raw_name or "")
    name = _WHITESPACE.sub("_", name.strip())
    name = _SEPARATOR_RUNS.sub("_", name)
    name = name[:MAX_SANITIZED_LENGTH].strip("._")
    return name or DEFAULT_TASK_NAME


# ----------------------------------------------------------------------
# Discovery
# ----------------------------------------------------------------------


def _nearest_store_owner(start: Path) -> Optional[Path]:
    for base in [start, *start.parents]:
        if (base / QDG_DIR_NAME).is_dir():
            return base
    return None


def resolve_project_path(provided: Optional[str], env: Environment) -> Path:
    """Pick the project root for a tool call.

    Order: explicit argument, ``QDG_PROJECT_ROOT``, the nearest directory
    at or above the working directory that already owns a ``.qdg`` folder,
    then the working directory itself.
    """
    if provided:
        resolved = Path(provided).expanduser()
        if not resolved.is_absolute():
            resolved = env.cwd / resolved
        resolved = resolved.resolve()
        if not resolved.exists():
            raise ValueError(f"Provided project path '{provided}' does not exist.")
        return resolved

    env_root = env.get(PROJECT_ROOT_ENV)
    if env_root:
        env_path = Path(env_root).expanduser().resolve()
        if not env_path.exists():
            raise ValueError(
                f"Environment variable {PROJECT_ROOT_ENV} points to '{env_root}', which does not exist."
            )
        return env_path

    detected = _nearest_store_owner(env.cwd)
    if detected:
        return detected
    return env.cwd


def _candidate_bases(env: Environment) -> List[Path]:
    bases = []
    base_override = env.get(PROJECT_BASE_ENV)
    if base_override:
        bases.append(Path(base_override).expanduser())
    bases.extend([env.home / "Projects", env.cwd, env.cwd.parent])

    seen = set()
    ordered = []
    for base in bases:
        if base not in seen:
            seen.add(base)
            ordered.append(base)
    return ordered


def discover_projects(env: Environment) -> List[ProjectLocation]:
    """Find projects with a ``.qdg`` folder in the usual project locations."""
    found: List[ProjectLocation] = []
    seen = set()

    def add(project: Path) -> None:
        if project not in seen:
            seen.add(project)
            found.append(ProjectLocation(project_path=project, qdg_path=project / QDG_DIR_NAME))

    for base in _candidate_bases(env):
        try:
            if not base.is_dir():
                continue
            if (base / QDG_DIR_NAME).is_dir():
                add(base)
                continue
            for child in sorted(base.iterdir()):
                if child.is_dir() and (child / QDG_DIR_NAME).is_dir():
                    add(child)
        except OSError as e:
            logger.debug(f"Skipping unreadable project location {base}: {e}")

    return found
