"""Data models for the Quality Dimension Generator.

This module contains the core data structures used throughout QDG,
representing task analyses, project settings, quality dimensions,
time context and the results of store operations.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from .errors import ValidationError

logger = logging.getLogger("qdg.models")

DEFAULT_DIMENSION_COUNT = 5
DEFAULT_EXPECTED_SCORE = 8
MIN_DIMENSION_COUNT, MAX_DIMENSION_COUNT = 1, 10
MIN_EXPECTED_SCORE, MAX_EXPECTED_SCORE = 0, 10
MIN_COMPLEXITY, MAX_COMPLEXITY = 1, 5
MIN_NAME_LENGTH, MAX_NAME_LENGTH = 3, 15

SCORE_LEVELS = ("6", "8", "10")

# Fixed scoring conventions; these are not part of the editable settings.
SCORING_CONVENTIONS = {
    "scoringSystem": "single-dimension-0-10",
    "scoreStandards": "three-tier-guidance",
    "finalScoreMethod": "average",
}


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_text(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


# ----------------------------------------------------------------------
# Task analysis
# ----------------------------------------------------------------------


@dataclass(slots=True)
class TaskAnalysis:
    """Structured interpretation of the user's task, as returned by the LLM."""

    core_task: str
    task_name: str
    task_type: str
    complexity: int
    domain: str
    key_elements: List[str] = field(default_factory=list)
    objectives: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the camelCase wire representation."""
        return {
            "coreTask": self.core_task,
            "taskName": self.task_name,
            "taskType": self.task_type,
            "complexity": self.complexity,
            "domain": self.domain,
            "keyElements": list(self.key_elements),
            "objectives": list(self.objectives),
        }

    def fingerprint_fields(self) -> Dict[str, Any]:
        """Return the fields that identify the task's content."""
        return {
            "coreTask": self.core_task,
            "taskType": self.task_type,
            "domain": self.domain,
            "keyElements": list(self.key_elements),
            "objectives": list(self.objectives),
        }

    @staticmethod
    def validate_payload(data: Any) -> List[str]:
        """Validate a decoded TaskAnalysis payload and return any issues."""
        if not isinstance(data, Mapping):
            return ["Task analysis must be a JSON object"]

        issues = []
        for key in ("coreTask", "taskName", "taskType", "domain"):
            if not _is_text(data.get(key)):
                issues.append(f"Missing or invalid {key} field")

        complexity = data.get("complexity")
        if not _is_number(complexity) or not MIN_COMPLEXITY <= complexity <= MAX_COMPLEXITY:
            issues.append(f"complexity must be a number between {MIN_COMPLEXITY}-{MAX_COMPLEXITY}")

        for key in ("keyElements", "objectives"):
            value = data.get(key)
            if not isinstance(value, list):
                issues.append(f"{key} must be an array")
            elif not all(isinstance(item, str) for item in value):
                issues.append(f"{key} must only contain strings")

        name = data.get("taskName")
        if _is_text(name) and not MIN_NAME_LENGTH <= len(name.strip()) <= MAX_NAME_LENGTH:
            issues.append(
                f"taskName should be {MIN_NAME_LENGTH}-{MAX_NAME_LENGTH} characters for file naming"
            )

        return issues

    @classmethod
    def from_payload(cls, data: Any) -> "TaskAnalysis":
        """Build a validated TaskAnalysis, raising ValidationError on any issue."""
        issues = cls.validate_payload(data)
        if issues:
            raise ValidationError("Task analysis validation failed: " + "; ".join(issues), issues)
        return cls(
            core_task=data["coreTask"].strip(),
            task_name=data["taskName"].strip(),
            task_type=data["taskType"].strip(),
            complexity=data["complexity"],
            domain=data["domain"].strip(),
            key_elements=list(data["keyElements"]),
            objectives=list(data["objectives"]),
        )


# ----------------------------------------------------------------------
# Settings
# ----------------------------------------------------------------------


SETTING_KEYS = ("dimensionCount", "expectedScore")


@dataclass(slots=True)
class Settings:
    """Per-project settings stored in ``config/qdg.config.json``."""

    dimension_count: int = DEFAULT_DIMENSION_COUNT
    expected_score: float = DEFAULT_EXPECTED_SCORE

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the document representation."""
        return {
            "dimensionCount": self.dimension_count,
            "expectedScore": self.expected_score,
        }

    @staticmethod
    def validate_partial(partial: Mapping[str, Any]) -> List[str]:
        """Return range violations for a partial settings mapping without raising."""
        issues = []
        for key in partial:
            if key not in SETTING_KEYS:
                issues.append(f"Unknown setting '{key}'")

        if "dimensionCount" in partial:
            count = partial["dimensionCount"]
            if (
                not _is_number(count)
                or not MIN_DIMENSION_COUNT <= count <= MAX_DIMENSION_COUNT
                or count != int(count)
            ):
                issues.append(
                    f"dimensionCount must be an integer between "
                    f"{MIN_DIMENSION_COUNT}-{MAX_DIMENSION_COUNT}, got: {count!r}"
                )

        if "expectedScore" in partial:
            score = partial["expectedScore"]
            if not _is_number(score) or not MIN_EXPECTED_SCORE <= score <= MAX_EXPECTED_SCORE:
                issues.append(
                    f"expectedScore must be a number between "
                    f"{MIN_EXPECTED_SCORE}-{MAX_EXPECTED_SCORE}, got: {score!r}"
                )

        return issues

    def merge(self, partial: Mapping[str, Any]) -> "Settings":
        """Return new settings with the validated fields of ``partial`` applied."""
        issues = self.validate_partial(partial)
        if issues:
            raise ValidationError("Invalid settings: " + "; ".join(issues), issues)
        return Settings(
            dimension_count=int(partial.get("dimensionCount", self.dimension_count)),
            expected_score=partial.get("expectedScore", self.expected_score),
        )

    @classmethod
    def from_document(cls, data: Any) -> "Settings":
        """Read settings leniently, falling back to defaults for bad fields."""
        settings = cls()
        if not isinstance(data, Mapping) or not isinstance(data.get("settings"), Mapping):
            logger.warning("Settings document has no 'settings' object, using defaults")
            return settings

        raw = data["settings"]
        for key in SETTING_KEYS:
            if key not in raw:
                continue
            if cls.validate_partial({key: raw[key]}):
                logger.warning(f"Ignoring invalid stored setting {key}={raw[key]!r}")
                continue
            settings = settings.merge({key: raw[key]})
        return settings


# ----------------------------------------------------------------------
# Quality dimensions
# ----------------------------------------------------------------------


@dataclass(slots=True)
class QualityDimension:
    """One evaluation dimension with 6/8/10 scoring guidance."""

    name: str
    description: str
    importance: str
    scoring: Dict[str, str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "importance": self.importance,
            "scoring": dict(self.scoring),
        }

    @staticmethod
    def validate_payload(data: Any, index: int) -> List[str]:
        """Validate a single decoded dimension object."""
        prefix = f"Dimension {index + 1}:"
        if not isinstance(data, Mapping):
            return [f"{prefix} must be an object"]

        issues = []
        name = data.get("name")
        if not _is_text(name):
            issues.append(f"{prefix} Missing or invalid name field")
        elif not MIN_NAME_LENGTH <= len(name) <= MAX_NAME_LENGTH:
            issues.append(
                f"{prefix} name should be {MIN_NAME_LENGTH}-{MAX_NAME_LENGTH} characters, got {len(name)}"
            )
        for key in ("description", "importance"):
            if not _is_text(data.get(key)):
                issues.append(f"{prefix} Missing or invalid {key} field")

        scoring = data.get("scoring")
        if not isinstance(scoring, Mapping):
            issues.append(f"{prefix} Missing or invalid scoring object")
            return issues
        for level in SCORE_LEVELS:
            if not _is_text(scoring.get(level)):
                issues.append(f'{prefix} Missing or invalid scoring["{level}"] field')
        extra = [level for level in scoring if level not in SCORE_LEVELS]
        if extra:
            issues.append(f"{prefix} Unexpected scoring levels: {', '.join(extra)}")
        return issues


@dataclass(slots=True)
class QualityDimensionsResponse:
    """Complete dimension set returned by the LLM."""

    dimensions: List[QualityDimension]

    def to_dict(self) -> Dict[str, Any]:
        return {"dimensions": [dimension.to_dict() for dimension in self.dimensions]}

    @classmethod
    def from_payload(cls, data: Any, expected_count: int) -> "QualityDimensionsResponse":
        """Build a validated response, raising ValidationError listing every issue."""
        if not isinstance(data, Mapping) or not isinstance(data.get("dimensions"), list):
            raise ValidationError("Missing or invalid dimensions array")

        raw = data["dimensions"]
        issues = []
        if len(raw) != expected_count:
            issues.append(f"Expected {expected_count} dimensions, got {len(raw)}")
        for index, item in enumerate(raw):
            issues.extend(QualityDimension.validate_payload(item, index))
        if issues:
            raise ValidationError("Quality dimensions validation failed: " + "; ".join(issues), issues)

        return cls(
            dimensions=[
                QualityDimension(
                    name=item["name"],
                    description=item["description"],
                    importance=item["importance"],
                    scoring={level: item["scoring"][level] for level in SCORE_LEVELS},
                )
                for item in raw
            ]
        )


# ----------------------------------------------------------------------
# Conversation and time context
# ----------------------------------------------------------------------


@dataclass(slots=True)
class ConversationMessage:
    """A single prior turn of the conversation."""

    role: str
    content: str
    timestamp: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ConversationMessage":
        if not isinstance(data, Mapping):
            raise ValidationError(f"Conversation message must be an object, got: {type(data).__name__}")
        role = data.get("role")
        if role not in ("user", "assistant"):
            raise ValidationError(f"Conversation role must be 'user' or 'assistant', got: {role!r}")
        content = data.get("content")
        if not isinstance(content, str):
            raise ValidationError("Conversation message content must be a string")
        return cls(role=role, content=content, timestamp=data.get("timestamp"))


@dataclass(slots=True)
class ConversationInput:
    """User message plus optional history and free-form context."""

    user_message: str
    history: List[ConversationMessage] = field(default_factory=list)
    context: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class TimeContext:
    """Basic time information handed to the dimension prompt."""

    timestamp: int
    formatted_time: str
    timezone: str
    year: int
    month: int
    day: int
    weekday: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "formattedTime": self.formatted_time,
            "timezone": self.timezone,
            "year": self.year,
            "month": self.month,
            "day": self.day,
            "weekday": self.weekday,
        }


# ----------------------------------------------------------------------
# Store results
# ----------------------------------------------------------------------


@dataclass(slots=True)
class StoreInitialization:
    """Outcome of initializing a project's ``.qdg`` tree.

    The created/existed split is diagnostic only: a directory counts as
    created when it was empty right after ``mkdir``.
    """

    root: Path
    created: List[str] = field(default_factory=list)
    existed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "root": str(self.root),
            "created": list(self.created),
            "existed": list(self.existed),
            "failed": list(self.failed),
        }


@dataclass(slots=True)
class TaskRecordInfo:
    """Filesystem summary of a saved task record."""

    task_id: str
    task_name: Optional[str]
    path: Path
    size: int
    modified: float
    layout: str = "flat"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "task_name": self.task_name,
            "path": str(self.path),
            "size": self.size,
            "modified": self.modified,
            "layout": self.layout,
        }


@dataclass(slots=True)
class ProjectLocation:
    """A discovered project that owns a ``.qdg`` directory."""

    project_path: Path
    qdg_path: Path

    def to_dict(self) -> Dict[str, str]:
        return {"project_path": str(self.project_path), "qdg_path": str(self.qdg_path)}
