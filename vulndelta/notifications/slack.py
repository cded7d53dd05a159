"""Slack notification provider."""

import requests

from ..errors import CheckError
from ..models import MODIFIED_CVE, ChangeResult, RecordChange
from .base import NotificationProvider

DEFAULT_TIMEOUT = (10, 60)


class SlackProvider(NotificationProvider):
    """Send VulnDelta alerts via Slack webhooks.

    Uses Slack's Block Kit for formatted notifications.

    Args:
        webhook_url: Slack incoming webhook URL.
        max_alerts: Maximum individual alerts per feed per run.
    """

    name = "slack"
    rate_limit_delay = 1.0  # Slack allows ~1 req/sec

    def __init__(self, webhook_url: str, max_alerts: int = 10):
        self.webhook_url = webhook_url
        self.max_alerts = max_alerts

    def _post(self, payload: dict) -> None:
        r = requests.post(self.webhook_url, json=payload, timeout=DEFAULT_TIMEOUT)
        r.raise_for_status()

    def send_alert(self, change: RecordChange, feed_id: str) -> None:
        """Send a Slack message for a single changed record.

        Args:
            change: The new or modified record.
            feed_id: Feed it was detected in.
        """
        record = change.record
        color = "warning" if change.change_type == MODIFIED_CVE else "#3498DB"
        url = self._detail_url(change.cve_id)
        desc = self._description(change)

        fields = [{"type": "mrkdwn", "text": f"*Feed:* {feed_id}"}]
        if record is not None:
            fields.append({"type": "mrkdwn", "text": f"*CVSS:* {self._format_cvss(record.impact.base_score)}"})
            fields.append({"type": "mrkdwn", "text": f"*Severity:* {record.impact.severity or 'N/A'}"})
            if record.problem_types:
                fields.append({"type": "mrkdwn", "text": f"*CWE:* {', '.join(record.problem_types[:5])}"})

        payload = {
            "attachments": [
                {
                    "color": color,
                    "blocks": [
                        {
                            "type": "section",
                            "text": {
                                "type": "mrkdwn",
                                "text": f"{self._change_label(change)}: <{url}|{change.cve_id}>\n{desc}",
                            },
                        },
                        {"type": "section", "fields": fields},
                        {"type": "context", "elements": [{"type": "mrkdwn", "text": "VulnDelta Alert"}]},
                    ],
                }
            ]
        }
        self._post(payload)

    def send_summary(self, result: ChangeResult, skipped: list[RecordChange]) -> None:
        """Send a summary message listing the changes that got no alert."""
        listed = ""
        for c in skipped[:20]:
            listed += f"• <{self._detail_url(c.cve_id)}|{c.cve_id}> ({self._change_label(c)})\n"
        if len(skipped) > 20:
            listed += f"…and {len(skipped) - 20} more\n"

        blocks = [
            {
                "type": "header",
                "text": {"type": "plain_text", "text": f"📊 VulnDelta: {result.feed_id}", "emoji": True},
            },
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*Changed:* {len(result)}"},
                    {"type": "mrkdwn", "text": f"*Records in feed:* {result.total_records}"},
                ],
            },
            {"type": "section", "text": {"type": "mrkdwn", "text": self._changes_summary(result)}},
            {"type": "section", "text": {"type": "mrkdwn", "text": f"*Not alerted individually:*\n{listed or 'None'}"}},
        ]
        self._post({"blocks": blocks})

    def send_failure(self, error: CheckError) -> None:
        """Send a message describing a failed check."""
        text = (
            f"❌ *VulnDelta check failed:* {error.feed_id or '?'}\n"
            f"*Stage:* {error.stage.value} | *Error:* {type(error).__name__} | "
            f"*Transient:* {'yes' if error.transient else 'no'}\n"
            f"{error.message[:1000]}"
        )
        payload = {
            "attachments": [
                {
                    "color": "danger",
                    "blocks": [{"type": "section", "text": {"type": "mrkdwn", "text": text}}],
                }
            ]
        }
        self._post(payload)
