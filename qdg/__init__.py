"""Quality Dimension Generator - core package."""

from .config import ConfigManager
from .errors import QdgError, StorageError, ValidationError
from .identity import (
    Environment,
    derive_metadata_root,
    derive_task_fingerprint,
    derive_task_id,
    discover_projects,
    resolve_project_path,
    sanitize_name,
)
from .models import Settings, StoreInitialization, TaskAnalysis
from .workflow import WorkflowManager
from .workspace import Workspace

__all__ = [
    "ConfigManager",
    "Environment",
    "QdgError",
    "Settings",
    "StorageError",
    "StoreInitialization",
    "TaskAnalysis",
    "ValidationError",
    "WorkflowManager",
    "Workspace",
    "derive_metadata_root",
    "derive_task_fingerprint",
    "derive_task_id",
    "discover_projects",
    "resolve_project_path",
    "sanitize_name",
]
