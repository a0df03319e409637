"""Tests for the MCP tools, called directly with a stub request context."""

import tempfile
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from agent_inbox.config import Config
from agent_inbox.db.engine import init_db
from agent_inbox.integrations.slack import SlackMessage
from agent_inbox.mcp import server


@pytest.fixture
def ctx():
    with tempfile.TemporaryDirectory() as tmp:
        db_path = Path(tmp) / "test.db"
        db = init_db(db_path)
        config = Config(db_path=db_path, slack_bot_token="xoxb-test", slack_channel="#agents")
        mock_ctx = MagicMock()
        mock_ctx.request_context.lifespan_context = server.AppContext(db=db, config=config)
        yield mock_ctx
        db.close()


class TestMCPTools:
    def test_report_and_list(self, ctx):
        started = server.report_start(ctx, "cc-1", "Write parser", project_path="/src")
        assert started["status"] == "running"
        assert started["context"] == {"project_path": "/src"}

        tasks = server.list_tasks(ctx)
        assert [t["task_id"] for t in tasks] == ["cc-1"]

    def test_list_unknown_status(self, ctx):
        server.report_start(ctx, "cc-1", "Write parser")
        assert server.list_tasks(ctx, status="bogus") == {"error": "Unknown status: bogus"}
        assert len(server.list_tasks(ctx, status="running")) == 1

    def test_report_start_unknown_kind(self, ctx):
        assert "error" in server.report_start(ctx, "x", "t", agent_kind="vim")

    def test_report_status(self, ctx):
        server.report_start(ctx, "cc-1", "Write parser")
        result = server.report_status(ctx, "cc-1", "needs_attention", reason="permission_prompt")
        assert result["status"] == "needs_attention"
        assert result["attention_reason"] == "permission_prompt"
        assert server.list_tasks(ctx, status="needs_attention")[0]["task_id"] == "cc-1"

    def test_report_status_unknown_task(self, ctx):
        result = server.report_status(ctx, "nope", "completed")
        assert result == {"error": "Task not found: nope"}

    def test_report_status_bad_status(self, ctx):
        server.report_start(ctx, "cc-1", "Write parser")
        assert "error" in server.report_status(ctx, "cc-1", "done")

    def test_get_and_clear(self, ctx):
        server.report_start(ctx, "cc-1", "Write parser")
        assert server.get_task(ctx, "cc-1")["title"] == "Write parser"
        assert server.clear_task(ctx, "cc-1") == {"deleted": "cc-1"}
        assert "error" in server.get_task(ctx, "cc-1")
        assert "error" in server.clear_task(ctx, "cc-1")

    @patch("agent_inbox.integrations.slack.send_message")
    def test_notify_task(self, mock_send, ctx):
        mock_send.return_value = SlackMessage(channel="C1", ts="123.456", text="x")
        server.report_start(ctx, "cc-1", "Write parser")
        result = server.notify_task(ctx, "cc-1")
        assert result == {"channel": "C1", "ts": "123.456"}
        assert mock_send.call_args[0][1] == "#agents"

    def test_notify_missing_task(self, ctx):
        assert "error" in server.notify_task(ctx, "nope")
