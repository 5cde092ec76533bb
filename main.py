"""MCP server exposing the Quality Dimension Generator workflow tools."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from mcp.server.fastmcp import FastMCP

from qdg import Environment, WorkflowManager, discover_projects as _discover_projects, resolve_project_path
from qdg.qdg_logging import setup_logging
from qdg.time_context import get_current_time_context as _time_context

mcp = FastMCP("quality-dimension-generator")

ENABLED_TOOLS_ENV = "QDG_ENABLED_TOOLS"


def _enabled_tools() -> Optional[set[str]]:
    raw = os.getenv(ENABLED_TOOLS_ENV, "")
    names = {name.strip() for name in raw.split(",") if name.strip()}
    return names or None


def _tool(name: str):
    """Register ``fn`` as an MCP tool unless QDG_ENABLED_TOOLS excludes it."""
    enabled = _enabled_tools()

    def decorator(fn):
        if enabled is None or name in enabled:
            return mcp.tool(name=name)(fn)
        return fn

    return decorator


def _workflow(project_path: Optional[str]) -> WorkflowManager:
    root = resolve_project_path(project_path, Environment.from_os())
    return WorkflowManager(root)


def _run(project_path: Optional[str], action: Callable[[WorkflowManager], Dict[str, Any]]) -> Dict[str, Any]:
    try:
        workflow = _workflow(project_path)
    except ValueError as e:
        return {
            "error": str(e),
            "suggestion": "Pass an existing 'project_path' or set QDG_PROJECT_ROOT.",
            "next_suggested_step": None,
            "message": f"Error: {e}",
        }
    return action(workflow)


@_tool("generate_task_analysis_prompt")
def generate_task_analysis_prompt(
    user_message: str,
    conversation_history: Optional[List[Dict[str, Any]]] = None,
    context: Optional[Dict[str, Any]] = None,
    project_path: Optional[str] = None,
) -> Dict[str, Any]:
    """STAGE 1: Generate a prompt that asks the LLM to analyze the core task in the conversation.
    Execute the returned prompt to get task analysis JSON, then call generate_quality_dimensions_prompt.
    conversation_history entries are {"role": "user"|"assistant", "content": str}."""

    return _run(project_path, lambda workflow: workflow.analyze_conversation(
        user_message,
        conversation_history=conversation_history,
        context=context,
    ))


@_tool("generate_quality_dimensions_prompt")
def generate_quality_dimensions_prompt(
    task_analysis_json: str,
    target_score: Optional[float] = None,
    timezone: Optional[str] = None,
    locale: str = "en-US",
    project_path: Optional[str] = None,
) -> Dict[str, Any]:
    """STAGE 2: Validate the task analysis JSON, assign a task ID and generate the quality dimensions prompt.
    target_score (0-10, defaults to the project's expectedScore) sets evaluation strictness:
    higher scores produce stricter professional criteria, lower scores more lenient ones.
    Prerequisites: task analysis JSON from executing the stage 1 prompt."""

    return _run(project_path, lambda workflow: workflow.prepare_dimensions(
        task_analysis_json,
        target_score=target_score,
        timezone=timezone,
        locale=locale,
    ))


@_tool("save_quality_dimensions")
def save_quality_dimensions(
    task_id: str,
    refined_task_description: str,
    dimensions_content: str,
    task_analysis_json: Optional[str] = None,
    task_name: Optional[str] = None,
    project_path: Optional[str] = None,
) -> Dict[str, Any]:
    """STAGE 3 (FINAL): Save the refined task description and evaluation dimensions to .qdg/tasks.
    Use the task_id and task_name returned by generate_quality_dimensions_prompt (its save_arguments)
    so the record lands at the record_path reported there.
    Saving again with the same task_id and name replaces the earlier record."""

    return _run(project_path, lambda workflow: workflow.save_dimensions(
        task_id,
        refined_task_description,
        dimensions_content,
        task_analysis_json=task_analysis_json,
        task_name=task_name,
    ))


@_tool("get_settings")
def get_settings(project_path: Optional[str] = None) -> Dict[str, Any]:
    """Return the project's dimension count, expected score and fixed scoring conventions."""

    return _run(project_path, lambda workflow: workflow.get_settings())


@_tool("update_settings")
def update_settings(
    dimension_count: Optional[int] = None,
    expected_score: Optional[float] = None,
    project_path: Optional[str] = None,
) -> Dict[str, Any]:
    """Update the dimension count (1-10) and/or expected score (0-10) for the project."""

    return _run(project_path, lambda workflow: workflow.update_settings(
        dimension_count=dimension_count,
        expected_score=expected_score,
    ))


@_tool("list_task_records")
def list_task_records(project_path: Optional[str] = None) -> Dict[str, Any]:
    """Enumerate saved task records in the project's .qdg/tasks directory."""

    return _run(project_path, lambda workflow: workflow.list_task_records())


@_tool("get_task_record")
def get_task_record(task_id: str, project_path: Optional[str] = None) -> Dict[str, Any]:
    """Return the saved quality standards document for a task."""

    return _run(project_path, lambda workflow: workflow.get_task_record(task_id))


@_tool("get_current_time_context")
def get_current_time_context(timezone: Optional[str] = None, locale: str = "en-US") -> Dict[str, Any]:
    """Return basic current time information, optionally in an IANA time zone."""

    return _time_context(timezone, locale).to_dict()


@_tool("discover_projects")
def discover_projects() -> Dict[str, Any]:
    """List projects with a .qdg directory in PROJECT_BASE_PATH, ~/Projects, the working directory and its parent."""

    projects = _discover_projects(Environment.from_os())
    return {
        "projects": [project.to_dict() for project in projects],
        "count": len(projects),
    }


@mcp.resource("qdg://tasks")
def resource_tasks() -> str:
    """Resource view listing saved task records of the detected project."""

    try:
        workflow = _workflow(None)
    except ValueError as e:
        return f"No project detected: {e}"

    records = workflow.workspace.list_task_records()
    if not records:
        return "No task records have been saved yet."

    lines = ["Quality Dimension Generator Tasks"]
    for record in records:
        lines.append("")
        lines.append(f"- {record.task_id}: {record.task_name or 'unnamed'}")
        lines.append(f"  Path: {record.path}")
    return "\n".join(lines)


def run() -> None:
    log_file = os.getenv("QDG_LOG_FILE")
    setup_logging(os.getenv("QDG_LOG_LEVEL", "INFO").upper(), Path(log_file) if log_file else None)
    mcp.run(transport="stdio")


if __name__ == "__main__":
    run()
