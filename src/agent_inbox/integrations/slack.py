"""Slack Web API integration."""

from dataclasses import dataclass


class SlackError(Exception):
    """Raised when a Slack operation fails."""


@dataclass
class SlackMessage:
    channel: str
    ts: str
    text: str


def get_client(token: str | None):
    """Get a Slack WebClient. Returns None if no token provided."""
    if not token:
        return None
    from slack_sdk import WebClient
    return WebClient(token=token)


def send_message(
    token: str | None,
    channel: str,
    text: str,
    blocks: list[dict] | None = None,
) -> SlackMessage:
    """Send a message to a Slack channel."""
    client = get_client(token)
    if not client:
        raise SlackError("Slack not configured: SLACK_BOT_TOKEN not set")

    from slack_sdk.errors import SlackApiError

    try:
        response = client.chat_postMessage(
            channel=channel,
            text=text,
            blocks=blocks,
        )
    except SlackApiError as e:
        raise SlackError(f"Slack API error: {e.response['error']}") from e

    return SlackMessage(
        channel=response["channel"],
        ts=response["ts"],
        text=text,
    )


def format_task_notification(
    task_id: str, title: str, status: str, agent_kind: str, reason: str | None = None
) -> list[dict]:
    """Format a task notification as Slack blocks."""
    status_emoji = {
        "running": ":large_blue_circle:",
        "completed": ":white_check_mark:",
        "needs_attention": ":warning:",
        "failed": ":x:",
        "exited": ":black_circle:",
    }
    emoji = status_emoji.get(status, ":grey_question:")
    reason_line = f"\nReason: {reason}" if reason else ""

    return [
        {
            "type": "section",
            "text": {
                "type": "mrkdwn",
                "text": (
                    f"{emoji} *Task Update*\n*{title}* (`{task_id}`)\n"
                    f"Status: *{status}* | Agent: {agent_kind}{reason_line}"
                ),
            },
        }
    ]
