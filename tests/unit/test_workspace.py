"""Unit tests for the QDG project store.

This module tests store initialization, task record writing and
verification, and record lookup.
"""

import json
import pytest
from datetime import datetime
from pathlib import Path
from unittest.mock import patch

from qdg.errors import StorageError, ValidationError
from qdg.models import TaskAnalysis
from qdg.workspace import Workspace, project_lock, render_task_record

TASK_ID = "task_1700000000000_abc12345"


@pytest.fixture
def workspace(tmp_path):
    return Workspace(tmp_path)


@pytest.fixture
def analysis():
    return TaskAnalysis(
        core_task="Write a blog post",
        task_name="Blog Post",
        task_type="writing",
        complexity=2,
        domain="content",
        key_elements=["tone", "length"],
        objectives=["publish by Friday"],
    )


class TestWorkspacePaths:
    """Test cases for workspace path layout."""

    def test_paths(self, tmp_path):
        """Test the store layout below the project root."""
        workspace = Workspace(tmp_path)

        assert workspace.root == tmp_path.resolve()
        assert workspace.base_dir == tmp_path.resolve() / ".qdg"
        assert workspace.config_dir == workspace.base_dir / "config"
        assert workspace.tasks_dir == workspace.base_dir / "tasks"
        assert workspace.config_path == workspace.config_dir / "qdg.config.json"

    def test_construction_does_not_touch_disk(self, tmp_path):
        """Test creating a Workspace has no side effects."""
        workspace = Workspace(tmp_path)
        assert not workspace.base_dir.exists()
        assert not workspace.is_initialized()

    def test_record_path_is_flat(self, workspace):
        """Test the flat record naming scheme."""
        assert workspace.record_path(TASK_ID, "Write Blog Post") == (
            workspace.tasks_dir / f"{TASK_ID}_Write_Blog_Post.md"
        )

    def test_legacy_record_path(self, workspace):
        """Test the earlier nested layout path."""
        assert workspace.legacy_record_path(TASK_ID) == (
            workspace.tasks_dir / TASK_ID / f"{TASK_ID}_dimension.md"
        )

    @pytest.mark.parametrize("task_id", [
        "", "..", "../escape", "a/b", "a\\b", "task 1", "foo", "task_1700000000000_ABC12345",
    ])
    def test_unsafe_task_ids_rejected(self, workspace, task_id):
        """Test task IDs that could escape the tasks directory."""
        with pytest.raises(ValidationError):
            workspace.record_path(task_id, "Name")


class TestInitialize:
    """Test cases for store initialization."""

    def test_first_initialization(self, workspace):
        """Test the tree and default settings are created."""
        result = workspace.initialize()

        assert result.root == workspace.base_dir
        assert workspace.config_dir.is_dir()
        assert workspace.tasks_dir.is_dir()
        assert result.failed == []
        assert "tasks" in result.created
        # The root is inspected before its children are made.
        assert ".qdg" in result.created
        document = json.loads(workspace.config_path.read_text(encoding="utf-8"))
        assert document == {"settings": {"dimensionCount": 5, "expectedScore": 8}}

    def test_second_initialization_reports_existing(self, workspace):
        """Test directories with content are reported as existing."""
        workspace.initialize()
        result = workspace.initialize()

        assert ".qdg" in result.existed
        assert "config" in result.existed

    def test_idempotent_config(self, workspace):
        """Test re-initialization never rewrites the settings document."""
        workspace.initialize()
        before = workspace.config_path.read_text(encoding="utf-8")
        workspace.initialize()
        assert workspace.config_path.read_text(encoding="utf-8") == before

    def test_existing_config_is_preserved(self, workspace):
        """Test a user's settings are not replaced with defaults."""
        workspace.config_dir.mkdir(parents=True)
        custom = json.dumps({"settings": {"dimensionCount": 9, "expectedScore": 7}})
        workspace.config_path.write_text(custom, encoding="utf-8")

        workspace.initialize()

        assert workspace.config_path.read_text(encoding="utf-8") == custom

    def test_existing_records_are_preserved(self, workspace):
        """Test initialization never deletes task records."""
        workspace.tasks_dir.mkdir(parents=True)
        record = workspace.tasks_dir / f"{TASK_ID}_Name.md"
        record.write_text("keep me", encoding="utf-8")

        result = workspace.initialize()

        assert record.read_text(encoding="utf-8") == "keep me"
        assert "tasks" in result.existed

    def test_failed_subpath_does_not_abort(self, workspace):
        """Test a failure on one directory still attempts the others."""
        original_mkdir = Path.mkdir

        def flaky_mkdir(self, *args, **kwargs):
            if self.name == "config":
                raise PermissionError("denied")
            return original_mkdir(self, *args, **kwargs)

        with patch.object(Path, "mkdir", flaky_mkdir):
            result = workspace.initialize()

        assert result.failed == ["config"]
        assert workspace.tasks_dir.is_dir()
        assert workspace.is_initialized()
        assert not workspace.config_path.exists()


class TestRenderTaskRecord:
    """Test cases for record rendering."""

    def test_contains_both_outputs_verbatim(self):
        """Test both LLM outputs are embedded unchanged."""
        content = render_task_record(TASK_ID, "Blog", "## Task\nWrite", "## Dimensions\n1. Clarity")

        assert "## Task\nWrite" in content
        assert "## Dimensions\n1. Clarity" in content
        assert TASK_ID in content
        assert content.index("## Task\nWrite") < content.index("## Dimensions\n1. Clarity")

    def test_footer_states_scoring_convention(self):
        """Test the fixed scoring legend."""
        content = render_task_record(TASK_ID, "Blog", "a", "b")

        assert "0-10" in content
        assert "6 = acceptable, 8 = excellent, 10 = outstanding" in content
        assert "average" in content

    def test_metadata_section(self, analysis):
        """Test optional task metadata is rendered."""
        content = render_task_record(
            TASK_ID, "Blog", "a", "b", task_metadata=analysis,
            created_at=datetime(2024, 1, 2, 3, 4, 5),
        )

        assert "- **Core Task**: Write a blog post" in content
        assert "- **Complexity**: 2/5" in content
        assert "- publish by Friday" in content
        assert "- **Created**: 2024-01-02 03:04:05" in content


class TestSaveTaskRecord:
    """Test cases for writing task records."""

    def test_save_creates_tasks_dir(self, workspace):
        """Test the tasks directory is created on demand."""
        path = workspace.save_task_record(TASK_ID, "Write Blog Post", None, "desc", "dims")

        assert path == workspace.tasks_dir / f"{TASK_ID}_Write_Blog_Post.md"
        assert path.exists()

    def test_save_overwrites(self, workspace):
        """Test saving twice replaces the previous content."""
        workspace.save_task_record(TASK_ID, "Blog", None, "first description", "first dims")
        path = workspace.save_task_record(TASK_ID, "Blog", None, "second description", "second dims")

        content = path.read_text(encoding="utf-8")
        assert "second dims" in content
        assert "first dims" not in content
        assert len(list(workspace.tasks_dir.iterdir())) == 1

    def test_renamed_save_replaces_previous_record(self, workspace):
        """Test one task ID keeps a single record when its name changes."""
        first = workspace.save_task_record(TASK_ID, None, None, "refined v1", "dims v1")
        second = workspace.save_task_record(TASK_ID, "Blog Post", None, "refined v2", "dims v2")

        assert [p.name for p in workspace.tasks_dir.iterdir()] == [second.name]
        assert not first.exists()
        assert "dims v2" in workspace.read_task_record(TASK_ID)
        assert workspace.record_name(TASK_ID) == "Blog_Post"

    def test_failed_save_keeps_previous_record(self, workspace):
        """Test the earlier record survives when the replacement cannot be written."""
        first = workspace.save_task_record(TASK_ID, "Draft", None, "refined", "dims v1")

        def failing_write(path, content):
            raise PermissionError("read-only filesystem")

        with patch("qdg.workspace._write_text", failing_write):
            with pytest.raises(StorageError):
                workspace.save_task_record(TASK_ID, "Final", None, "refined", "dims v2")

        assert first.exists()

    def test_other_tasks_are_untouched(self, workspace):
        """Test replacement only removes records of the same task ID."""
        other_id = "task_1700000000001_abc12345"
        other = workspace.save_task_record(other_id, "Other", None, "refined", "dims")
        workspace.save_task_record(TASK_ID, "Blog", None, "refined", "dims")
        workspace.save_task_record(TASK_ID, "Renamed", None, "refined", "dims")

        assert other.exists()
        assert len(list(workspace.tasks_dir.iterdir())) == 2

    def test_save_keeps_line_endings(self, workspace):
        """Test CRLF content is stored byte for byte."""
        dims = "## Dimensions\r\n1. Clarity\r\n"
        path = workspace.save_task_record(TASK_ID, "Blog", None, "desc", dims)
        assert dims.encode("utf-8") in path.read_bytes()

    def test_missing_name_uses_default(self, workspace):
        """Test records without a name still get a stable file name."""
        path = workspace.save_task_record(TASK_ID, None, None, "desc", "dims")
        assert path.name == f"{TASK_ID}_UnnamedTask.md"

    def test_zero_byte_write_raises(self, workspace):
        """Test an empty file after writing is treated as a failure."""
        with patch("qdg.workspace._write_text", lambda path, content: path.touch()):
            with pytest.raises(StorageError, match="empty"):
                workspace.save_task_record(TASK_ID, "Blog", None, "desc", "dims")

    def test_incomplete_write_raises(self, workspace):
        """Test a truncated file fails verification."""
        with patch("qdg.workspace._write_text", lambda path, content: path.write_text("partial")):
            with pytest.raises(StorageError, match="incomplete"):
                workspace.save_task_record(TASK_ID, "Blog", None, "desc", "dims")

    def test_os_error_is_wrapped(self, workspace):
        """Test I/O failures are wrapped with their cause."""
        def failing_write(path, content):
            raise PermissionError("read-only filesystem")

        with patch("qdg.workspace._write_text", failing_write):
            with pytest.raises(StorageError) as excinfo:
                workspace.save_task_record(TASK_ID, "Blog", None, "desc", "dims")

        assert isinstance(excinfo.value.cause, PermissionError)
        assert isinstance(excinfo.value.__cause__, PermissionError)
        assert "read-only filesystem" in str(excinfo.value)


class TestLookup:
    """Test cases for record lookup."""

    def test_find_existing_task(self, workspace):
        """Test a saved record is found by its fingerprint."""
        workspace.save_task_record(TASK_ID, "Blog", None, "desc", "dims")

        assert workspace.find_existing_task("abc12345") == TASK_ID
        assert workspace.find_existing_task("ffffffff") is None

    def test_find_ignores_name_matches(self, workspace):
        """Test the fingerprint must appear in the ID, not the task name."""
        workspace.save_task_record(TASK_ID, "deadbeef notes", None, "desc", "dims")
        assert workspace.find_existing_task("deadbeef") is None

    def test_find_without_tasks_dir(self, workspace):
        """Test a missing tasks directory means no match."""
        assert workspace.find_existing_task("abc12345") is None

    def test_find_empty_fingerprint(self, workspace):
        """Test an empty fingerprint never matches."""
        workspace.save_task_record(TASK_ID, "Blog", None, "desc", "dims")
        assert workspace.find_existing_task("") is None

    def test_find_legacy_directory(self, workspace):
        """Test records in the nested layout are still found."""
        (workspace.tasks_dir / TASK_ID).mkdir(parents=True)
        assert workspace.find_existing_task("abc12345") == TASK_ID

    def test_list_task_records(self, workspace):
        """Test listing flat and nested records."""
        workspace.save_task_record(TASK_ID, "Write Blog Post", None, "desc", "dims")
        legacy_id = "task_1600000000000_0badc0de"
        legacy = workspace.legacy_record_path(legacy_id)
        legacy.parent.mkdir(parents=True)
        legacy.write_text("old record", encoding="utf-8")
        (workspace.tasks_dir / "notes.txt").write_text("ignored", encoding="utf-8")

        records = workspace.list_task_records()

        assert [r.task_id for r in records] == [legacy_id, TASK_ID]
        assert records[0].layout == "nested"
        assert records[0].task_name is None
        assert records[1].layout == "flat"
        assert records[1].task_name == "Write_Blog_Post"
        assert records[1].size > 0

    def test_read_task_record(self, workspace):
        """Test reading back a saved record."""
        workspace.save_task_record(TASK_ID, "Blog", None, "desc", "dims")
        assert "dims" in workspace.read_task_record(TASK_ID)

    def test_read_legacy_record(self, workspace):
        """Test reading a record in the nested layout."""
        legacy = workspace.legacy_record_path(TASK_ID)
        legacy.parent.mkdir(parents=True)
        legacy.write_text("old record", encoding="utf-8")
        assert workspace.read_task_record(TASK_ID) == "old record"

    def test_read_rejects_malformed_id(self, workspace):
        """Test a malformed ID cannot match another record by prefix."""
        workspace.tasks_dir.mkdir(parents=True)
        (workspace.tasks_dir / "foo_bar_Name.md").write_text("not yours", encoding="utf-8")

        with pytest.raises(ValidationError):
            workspace.read_task_record("foo")

    def test_read_missing_record(self, workspace):
        """Test a missing record reads as None."""
        assert workspace.read_task_record(TASK_ID) is None


class TestProjectLock:
    """Test cases for the per-project lock."""

    def test_same_project_same_lock(self, tmp_path):
        """Test locks are keyed by resolved project path."""
        assert project_lock(tmp_path) is project_lock(str(tmp_path / "sub" / ".."))

    def test_different_projects(self, tmp_path):
        """Test distinct projects get distinct locks."""
        assert project_lock(tmp_path / "a") is not project_lock(tmp_path / "b")

    def test_lock_is_reentrant(self, tmp_path):
        """Test nested acquisition from one thread does not deadlock."""
        with project_lock(tmp_path):
            with project_lock(tmp_path):
                pass
