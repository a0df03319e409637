"""Tests for the CLI."""

import json
import os
import tempfile
import time
from pathlib import Path
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from agent_inbox.bridge.protocol import encode_frame
from agent_inbox.cli import main
from agent_inbox.core import tasks as tasks_mod
from agent_inbox.db.engine import get_db
from agent_inbox.db.models import TaskStatus


@pytest.fixture
def cli_env():
    """Set up a temp environment for CLI testing."""
    with tempfile.TemporaryDirectory() as tmp:
        db_path = Path(tmp) / "test.db"
        env = {"AGENT_INBOX_DB_PATH": str(db_path)}
        old_env = {}
        for k, v in env.items():
            old_env[k] = os.environ.get(k)
            os.environ[k] = v

        yield CliRunner(), db_path

        for k, v in old_env.items():
            if v is None:
                os.environ.pop(k, None)
            else:
                os.environ[k] = v


def _task(db_path, task_id):
    with get_db(db_path) as db:
        return tasks_mod.get_task(db, task_id)


class TestCLI:
    def test_help(self, cli_env):
        runner, _ = cli_env
        result = runner.invoke(main, ["--help"])
        assert result.exit_code == 0
        assert "report" in result.output
        assert "monitor" in result.output

    def test_default_lists_attention_only(self, cli_env):
        runner, db_path = cli_env
        runner.invoke(main, ["report", "start", "cc-1", "claude_code", "/src", "Quiet task"])
        runner.invoke(main, ["report", "start", "cc-2", "claude_code", "/src", "Blocked task"])
        runner.invoke(main, ["report", "needs-attention", "cc-2", "waiting_for_input"])

        result = runner.invoke(main, [])
        assert result.exit_code == 0
        assert "Blocked task" in result.output
        assert "waiting_for_input" in result.output
        assert "Quiet task" not in result.output

    def test_list_empty(self, cli_env):
        runner, _ = cli_env
        result = runner.invoke(main, ["list"])
        assert result.exit_code == 0
        assert "No tasks found." in result.output

    def test_corrupt_database(self, cli_env):
        runner, db_path = cli_env
        db_path.write_bytes(b"not a sqlite database" * 256)

        result = runner.invoke(main, ["report", "start", "cc-1", "claude_code", "/src", "Task"])
        assert result.exit_code == 0
        assert "Warning: could not report start" in result.output
        assert result.exception is None

        result = runner.invoke(main, ["list", "--all"])
        assert result.exit_code == 1
        assert "Error" in result.output
        assert isinstance(result.exception, SystemExit)


class TestReportCommands:
    def test_start(self, cli_env):
        runner, db_path = cli_env
        result = runner.invoke(
            main,
            ["report", "start", "cc-1", "claude_code", "/work/app", "Fix tests", "--pid", "4321"],
        )
        assert result.exit_code == 0
        assert "Task started: cc-1" in result.output

        task = _task(db_path, "cc-1")
        assert task.status == TaskStatus.RUNNING
        assert task.pid == 4321
        assert task.context == {"project_path": "/work/app"}

    def test_start_rejects_unknown_agent(self, cli_env):
        runner, _ = cli_env
        result = runner.invoke(main, ["report", "start", "x", "vim", "/", "t"])
        assert result.exit_code != 0

    def test_complete(self, cli_env):
        runner, db_path = cli_env
        runner.invoke(main, ["report", "start", "cc-1", "opencode", "/", "Task"])
        result = runner.invoke(main, ["report", "complete", "cc-1"])
        assert result.exit_code == 0
        assert _task(db_path, "cc-1").status == TaskStatus.COMPLETED

    def test_complete_nonzero_is_failure(self, cli_env):
        runner, db_path = cli_env
        runner.invoke(main, ["report", "start", "cc-1", "opencode", "/", "Task"])
        runner.invoke(main, ["report", "complete", "cc-1", "--exit-code", "3"])
        task = _task(db_path, "cc-1")
        assert task.status == TaskStatus.FAILED
        assert task.exit_code == 3

    def test_failed(self, cli_env):
        runner, db_path = cli_env
        runner.invoke(main, ["report", "start", "cc-1", "opencode", "/", "Task"])
        runner.invoke(main, ["report", "failed", "cc-1", "137"])
        assert _task(db_path, "cc-1").exit_code == 137

    def test_exited(self, cli_env):
        runner, db_path = cli_env
        runner.invoke(main, ["report", "start", "cc-1", "opencode", "/", "Task"])
        runner.invoke(main, ["report", "exited", "cc-1", "--exit-code", "0"])
        task = _task(db_path, "cc-1")
        assert task.status == TaskStatus.EXITED
        assert task.exit_code == 0

    def test_running_clears_attention(self, cli_env):
        runner, db_path = cli_env
        runner.invoke(main, ["report", "start", "cc-1", "opencode", "/", "Task"])
        runner.invoke(main, ["report", "needs-attention", "cc-1", "permission_prompt"])
        runner.invoke(main, ["report", "running", "cc-1"])
        assert _task(db_path, "cc-1").status == TaskStatus.RUNNING

    def test_unknown_task_warns_but_succeeds(self, cli_env):
        runner, db_path = cli_env
        result = runner.invoke(main, ["report", "complete", "never-started"])
        assert result.exit_code == 0
        assert "Warning" in result.output
        assert _task(db_path, "never-started") is None


class TestQueryCommands:
    def test_list_json(self, cli_env):
        runner, _ = cli_env
        runner.invoke(main, ["report", "start", "cc-1", "claude_code", "/src", "Task one"])
        result = runner.invoke(main, ["list", "--all", "--json"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert len(data) == 1
        assert data[0]["task_id"] == "cc-1"
        assert data[0]["status"] == "running"

    def test_list_status_filter(self, cli_env):
        runner, _ = cli_env
        runner.invoke(main, ["report", "start", "a", "opencode", "/", "Alpha"])
        runner.invoke(main, ["report", "start", "b", "opencode", "/", "Beta"])
        runner.invoke(main, ["report", "complete", "b"])
        result = runner.invoke(main, ["list", "--status", "completed"])
        assert "Beta" in result.output
        assert "Alpha" not in result.output

    def test_show(self, cli_env):
        runner, _ = cli_env
        runner.invoke(main, ["report", "start", "cc-1", "claude_code", "/src", "Inspect me"])
        result = runner.invoke(main, ["show", "cc-1"])
        assert result.exit_code == 0
        assert "Inspect me" in result.output
        assert "project_path: /src" in result.output

    def test_show_missing(self, cli_env):
        runner, _ = cli_env
        result = runner.invoke(main, ["show", "nope"])
        assert result.exit_code == 1
        assert "Task not found" in result.output

    def test_clear(self, cli_env):
        runner, db_path = cli_env
        runner.invoke(main, ["report", "start", "cc-1", "opencode", "/", "Task"])
        result = runner.invoke(main, ["clear", "cc-1"])
        assert result.exit_code == 0
        assert _task(db_path, "cc-1") is None

    def test_clear_missing(self, cli_env):
        runner, _ = cli_env
        result = runner.invoke(main, ["clear", "nope"])
        assert result.exit_code == 1

    def test_clear_all_finished(self, cli_env):
        runner, db_path = cli_env
        runner.invoke(main, ["report", "start", "a", "opencode", "/", "A"])
        runner.invoke(main, ["report", "start", "b", "opencode", "/", "B"])
        runner.invoke(main, ["report", "complete", "b"])
        result = runner.invoke(main, ["clear-all", "--finished"])
        assert "Cleared 1 tasks" in result.output
        assert _task(db_path, "a") is not None

    def test_clear_all(self, cli_env):
        runner, _ = cli_env
        runner.invoke(main, ["report", "start", "a", "opencode", "/", "A"])
        runner.invoke(main, ["report", "start", "b", "opencode", "/", "B"])
        result = runner.invoke(main, ["clear-all"])
        assert "Cleared 2 tasks" in result.output

    def test_reset_aborts_without_confirmation(self, cli_env):
        runner, db_path = cli_env
        runner.invoke(main, ["report", "start", "a", "opencode", "/", "A"])
        result = runner.invoke(main, ["reset"], input="n\n")
        assert "Aborted" in result.output
        assert _task(db_path, "a") is not None

    def test_reset_force(self, cli_env):
        runner, db_path = cli_env
        runner.invoke(main, ["report", "start", "a", "opencode", "/", "A"])
        result = runner.invoke(main, ["reset", "--force"])
        assert "Cleared all 1 tasks" in result.output
        assert _task(db_path, "a") is None

    def test_cleanup(self, cli_env):
        runner, db_path = cli_env
        with get_db(db_path) as db:
            tasks_mod.upsert_start(db, "old", "opencode", "Old", now=time.time() - 600)
            tasks_mod.set_status(db, "old", TaskStatus.COMPLETED, now=time.time() - 500)
        result = runner.invoke(main, ["cleanup", "--retention-secs", "60"])
        assert result.exit_code == 0
        assert "Cleaned up 1" in result.output

    def test_every_invocation_purges(self, cli_env):
        runner, db_path = cli_env
        with get_db(db_path) as db:
            tasks_mod.upsert_start(db, "old", "opencode", "Old", now=time.time() - 9000)
            tasks_mod.set_status(db, "old", TaskStatus.EXITED, now=time.time() - 7200)
            tasks_mod.upsert_start(db, "live", "opencode", "Live")
        runner.invoke(main, ["list", "--all"])
        assert _task(db_path, "old") is None
        assert _task(db_path, "live") is not None


class TestProducerCommands:
    def test_monitor_records_pid_and_runs(self, cli_env):
        runner, db_path = cli_env
        runner.invoke(main, ["report", "start", "cc-1", "claude_code", "/", "Task", "--pid", "555"])
        with patch("agent_inbox.core.monitor.TaskMonitor") as mock_monitor:
            result = runner.invoke(main, ["monitor", "cc-1", "555"])
        assert result.exit_code == 0
        args = mock_monitor.call_args[0]
        assert args[1:] == ("cc-1", 555)
        mock_monitor.return_value.run.assert_called_once()
        assert _task(db_path, "cc-1").monitor_pid == os.getpid()

    def test_monitor_unknown_task(self, cli_env):
        runner, _ = cli_env
        with patch("agent_inbox.core.monitor.TaskMonitor") as mock_monitor:
            result = runner.invoke(main, ["monitor", "nope", "555"])
        assert result.exit_code == 1
        mock_monitor.assert_not_called()

    def test_bridge_applies_updates(self, cli_env):
        runner, db_path = cli_env
        message = {
            "type": "task_update",
            "task_id": "claude_web-abc",
            "agent_type": "claude_web",
            "status": "running",
            "title": "Plan a trip",
            "context": {"url": "https://claude.ai/chat/abc"},
        }
        result = runner.invoke(
            main, ["bridge", "chrome-extension://abcdef/"], input=encode_frame(message)
        )
        assert result.exit_code == 0
        task = _task(db_path, "claude_web-abc")
        assert task.status == TaskStatus.RUNNING
        assert task.context["url"] == "https://claude.ai/chat/abc"
