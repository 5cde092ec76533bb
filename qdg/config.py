"""Per-project settings access for QDG.

Reads never fail: a missing or damaged ``qdg.config.json`` yields the
default settings. Writes validate first and merge field by field into
the stored document.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

from .errors import StorageError, ValidationError
from .models import SCORING_CONVENTIONS, Settings
from .qdg_logging import log_error_with_context, log_settings_updated
from .workspace import Workspace, project_lock

logger = logging.getLogger("qdg.config")


class ConfigManager:
    """Read, validate and update the settings of one project."""

    def __init__(self, workspace: Union[Workspace, Path, str]):
        self.workspace = workspace if isinstance(workspace, Workspace) else Workspace(workspace)

    @property
    def config_path(self) -> Path:
        return self.workspace.config_path

    def _read_document(self) -> Optional[Dict[str, Any]]:
        path = self.config_path
        if not path.exists():
            logger.debug(f"No settings document at {path}, using defaults")
            return None
        try:
            document = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"Unreadable settings document at {path}, using defaults: {e}")
            return None
        if not isinstance(document, dict):
            logger.warning(f"Settings document at {path} is not a JSON object, using defaults")
            return None
        return document

    def get_settings(self) -> Settings:
        """Return stored settings merged over the defaults."""
        document = self._read_document()
        if document is None:
            return Settings()
        return Settings.from_document(document)

    def save_settings(self, partial: Mapping[str, Any]) -> Settings:
        """Validate ``partial`` and merge it into the stored settings.

        Read-merge-write is serialized per project only within this process.
        """
        issues = self.validate(partial)
        if issues:
            raise ValidationError("Invalid settings: " + "; ".join(issues), issues)

        with project_lock(self.workspace.root):
            self.workspace.initialize()
            document = self._read_document() or {}
            merged = Settings.from_document(document).merge(partial) if document else Settings().merge(partial)
            document["settings"] = merged.to_dict()

            try:
                self.config_path.write_text(json.dumps(document, indent=2), encoding="utf-8")
            except OSError as e:
                error = StorageError(f"Failed to write settings to {self.config_path}", e)
                log_error_with_context(error, {"operation": "save_settings", "path": str(self.config_path)})
                raise error from e

        logger.info(f"Settings updated at {self.config_path}: {merged.to_dict()}")
        log_settings_updated(str(self.workspace.root), merged.to_dict())
        return merged

    def set_dimension_count(self, count: int) -> Settings:
        return self.save_settings({"dimensionCount": count})

    def set_expected_score(self, score: float) -> Settings:
        return self.save_settings({"expectedScore": score})

    def get_dimension_count(self) -> int:
        return self.get_settings().dimension_count

    def get_expected_score(self) -> float:
        return self.get_settings().expected_score

    @staticmethod
    def validate(partial: Mapping[str, Any]) -> List[str]:
        """Return human-readable problems with ``partial``; never raises."""
        if not isinstance(partial, Mapping):
            return ["Settings must be an object"]
        return Settings.validate_partial(partial)

    @staticmethod
    def default_settings() -> Settings:
        return Settings()

    @staticmethod
    def scoring_conventions() -> Dict[str, str]:
        """Fixed scoring rules shared by every project."""
        return dict(SCORING_CONVENTIONS)
