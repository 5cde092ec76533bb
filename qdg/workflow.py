"""Workflow management for QDG.

This module drives the three-stage workflow (task analysis prompt,
dimension prompt, saving both LLM outputs) on top of a project's store,
and turns every failure into a descriptive result for the client.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from .config import ConfigManager
from .errors import QdgError, ValidationError
from .identity import DEFAULT_TASK_NAME, derive_task_fingerprint, derive_task_id
from .models import Settings
from .prompts import (
    build_conversation,
    build_dimensions_prompt,
    build_task_analysis_prompt,
    parse_task_analysis,
    summarize_dimension_issues,
)
from .qdg_logging import (
    log_duplicate_task,
    log_error_with_context,
    log_performance,
    log_workflow_stage,
)
from .time_context import get_current_time_context
from .workspace import Workspace

logger = logging.getLogger("qdg.workflow")

HANDLED_ERRORS = (QdgError, OSError, ValueError)


class WorkflowManager:
    """Runs the QDG workflow for one project."""

    def __init__(self, root: Union[Path, str], *, clock: Callable[[], float] = time.time):
        self.workspace = Workspace(root)
        self.config = ConfigManager(self.workspace)
        self.clock = clock

    @property
    def root(self) -> Path:
        return self.workspace.root

    def _relative(self, path: Path) -> str:
        try:
            return str(path.relative_to(self.root))
        except ValueError:
            return str(path)

    def _error_response(
        self,
        operation: str,
        error: Exception,
        suggestion: str,
        next_step: Optional[str],
        **context: Any,
    ) -> Dict[str, Any]:
        log_error_with_context(error, {"operation": operation, "root": str(self.root), **context})
        return {
            "error": str(error),
            "error_type": type(error).__name__,
            "errors": list(getattr(error, "errors", [])) or [str(error)],
            "suggestion": suggestion,
            "next_suggested_step": next_step,
            "message": f"Error: {error}",
        }

    # ------------------------------------------------------------------
    # Stage 1
    # ------------------------------------------------------------------

    @log_performance("analyze_conversation")
    def analyze_conversation(
        self,
        user_message: str,
        conversation_history: Optional[List[Mapping[str, Any]]] = None,
        context: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Stage 1: prepare the store and render the task analysis prompt."""
        try:
            store = self.workspace.initialize()
            conversation = build_conversation(user_message, conversation_history, context)
            prompt = build_task_analysis_prompt(conversation)
        except HANDLED_ERRORS as e:
            return self._error_response(
                "analyze_conversation",
                e,
                "Check the user message and that conversation history entries have a role and content",
                "generate_task_analysis_prompt",
            )

        log_workflow_stage(1, history_length=len(conversation.history))
        return {
            "stage": 1,
            "project_path": str(self.root),
            "store": store.to_dict(),
            "prompt": prompt,
            "next_suggested_step": "generate_quality_dimensions_prompt",
            "workflow_tip": (
                "Execute the prompt to get the task analysis JSON, then call "
                "generate_quality_dimensions_prompt with it"
            ),
            "message": f"Task analysis prompt generated. Store ready at {store.root}.",
        }

    # ------------------------------------------------------------------
    # Stage 2
    # ------------------------------------------------------------------

    @log_performance("prepare_dimensions")
    def prepare_dimensions(
        self,
        task_analysis_json: str,
        target_score: Optional[float] = None,
        timezone: Optional[str] = None,
        locale: str = "en-US",
    ) -> Dict[str, Any]:
        """Stage 2: assign a task ID and render the dimension prompt.

        Deduplication is advisory: when a record with the same content
        fingerprint already exists its ID is reused, otherwise a new
        timestamped ID is issued.
        """
        try:
            self.workspace.initialize()
            task = parse_task_analysis(task_analysis_json)
            settings = self.config.get_settings()
            if target_score is not None:
                issues = Settings.validate_partial({"expectedScore": target_score})
                if issues:
                    raise ValidationError("Invalid target score: " + "; ".join(issues), issues)
                expected_score = target_score
            else:
                expected_score = settings.expected_score

            fingerprint = derive_task_fingerprint(task)
            existing_id = self.workspace.find_existing_task(fingerprint)
            task_id = existing_id or derive_task_id(int(self.clock() * 1000), fingerprint)

            time_context = get_current_time_context(timezone, locale)
            prompt = build_dimensions_prompt(task, time_context, settings.dimension_count, expected_score)
            record_path = self.workspace.record_path(task_id, task.task_name)
        except HANDLED_ERRORS as e:
            return self._error_response(
                "prepare_dimensions",
                e,
                "Verify the task analysis JSON contains every required field and retry",
                "generate_task_analysis_prompt",
            )

        if existing_id:
            logger.info(f"Reusing existing task {existing_id} for fingerprint {fingerprint}")
            log_duplicate_task(existing_id, fingerprint)
            message = f"Found an existing record for the same task: {existing_id}"
        else:
            message = f"New task registered: {task_id}"

        log_workflow_stage(2, task_id=task_id, fingerprint=fingerprint, existing=bool(existing_id))
        return {
            "stage": 2,
            "project_path": str(self.root),
            "task_id": task_id,
            "fingerprint": fingerprint,
            "existing": bool(existing_id),
            "task_name": task.task_name,
            "task_analysis": task.to_dict(),
            "record_path": self._relative(record_path),
            "dimension_count": settings.dimension_count,
            "expected_score": expected_score,
            "time_context": time_context.to_dict(),
            "prompt": prompt,
            "next_suggested_step": "save_quality_dimensions",
            "save_arguments": {"task_id": task_id, "task_name": task.task_name},
            "workflow_tip": (
                f"Execute the prompt, then call save_quality_dimensions with task_id={task_id}, "
                f"task_name=\"{task.task_name}\" (or task_analysis_json), "
                "the refined task description (output 1) and the dimensions (output 2). "
                f"The record is saved to {self._relative(record_path)}."
            ),
            "message": message,
        }

    # ------------------------------------------------------------------
    # Stage 3
    # ------------------------------------------------------------------

    @log_performance("save_dimensions")
    def save_dimensions(
        self,
        task_id: str,
        refined_task_description: str,
        dimensions_content: str,
        task_analysis_json: Optional[str] = None,
        task_name: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Stage 3: persist both LLM outputs as the task's record."""
        try:
            if not refined_task_description or not refined_task_description.strip():
                raise ValidationError("Refined task description cannot be empty")
            if not dimensions_content or not dimensions_content.strip():
                raise ValidationError("Dimensions content cannot be empty")

            task = parse_task_analysis(task_analysis_json) if task_analysis_json else None
            name = (
                task_name
                or (task.task_name if task else None)
                or self.workspace.record_name(task_id)
                or DEFAULT_TASK_NAME
            )

            self.workspace.initialize()
            settings = self.config.get_settings()
            warnings = summarize_dimension_issues(dimensions_content, settings.dimension_count)

            path = self.workspace.save_task_record(
                task_id,
                name,
                task,
                refined_task_description,
                dimensions_content,
            )
        except HANDLED_ERRORS as e:
            return self._error_response(
                "save_dimensions",
                e,
                "Check that the project path is writable and the task ID is valid, then retry this stage only",
                "save_quality_dimensions",
                task_id=task_id,
            )

        if warnings:
            logger.warning(f"Saved dimensions for {task_id} with issues: {warnings}")

        log_workflow_stage(3, task_id=task_id, path=str(path))
        return {
            "stage": 3,
            "project_path": str(self.root),
            "task_id": task_id,
            "task_name": name,
            "record_path": self._relative(path),
            "absolute_path": str(path),
            "warnings": warnings,
            "next_suggested_step": None,
            "workflow_tip": (
                "Use the refined task description and the saved dimensions to guide execution, "
                "then score each dimension 0-10 and average the scores"
            ),
            "message": f"Quality standards saved to {self._relative(path)}",
        }

    # ------------------------------------------------------------------
    # Settings and records
    # ------------------------------------------------------------------

    def get_settings(self) -> Dict[str, Any]:
        settings = self.config.get_settings()
        return {
            "project_path": str(self.root),
            "config_path": str(self.config.config_path),
            "settings": settings.to_dict(),
            "scoring": self.config.scoring_conventions(),
        }

    def update_settings(
        self,
        dimension_count: Optional[int] = None,
        expected_score: Optional[float] = None,
    ) -> Dict[str, Any]:
        partial: Dict[str, Any] = {}
        if dimension_count is not None:
            partial["dimensionCount"] = dimension_count
        if expected_score is not None:
            partial["expectedScore"] = expected_score

        try:
            if not partial:
                raise ValidationError("Provide dimension_count and/or expected_score to update")
            settings = self.config.save_settings(partial)
        except HANDLED_ERRORS as e:
            return self._error_response(
                "update_settings",
                e,
                "dimension_count must be an integer from 1 to 10 and expected_score a number from 0 to 10",
                "update_settings",
            )

        return {
            "project_path": str(self.root),
            "config_path": str(self.config.config_path),
            "settings": settings.to_dict(),
            "message": "Settings updated",
        }

    def list_task_records(self) -> Dict[str, Any]:
        records = self.workspace.list_task_records()
        return {
            "project_path": str(self.root),
            "tasks": [record.to_dict() for record in records],
            "count": len(records),
            "message": f"Found {len(records)} task records" if records else "No task records saved yet.",
        }

    def get_task_record(self, task_id: str) -> Dict[str, Any]:
        try:
            content = self.workspace.read_task_record(task_id)
        except HANDLED_ERRORS as e:
            return self._error_response("get_task_record", e, "Pass a task ID returned by stage 2", None)
        return {
            "task_id": task_id,
            "content": content,
            "exists": content is not None,
            "message": "Task record found" if content is not None else f"No record saved for {task_id}",
        }
