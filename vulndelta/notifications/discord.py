"""Discord notification provider."""

import requests

from ..errors import CheckError
from ..models import MODIFIED_CVE, ChangeResult, RecordChange
from .base import NotificationProvider

DEFAULT_TIMEOUT = (10, 60)


class DiscordProvider(NotificationProvider):
    """Send VulnDelta alerts via Discord webhooks.

    Uses Discord's embed format for color-coded notifications.

    Args:
        webhook_url: Discord webhook URL.
        max_alerts: Maximum individual alerts per feed per run.
    """

    name = "discord"
    rate_limit_delay = 0.5  # Discord allows ~30 req/min

    def __init__(self, webhook_url: str, max_alerts: int = 10):
        self.webhook_url = webhook_url
        self.max_alerts = max_alerts

    def _post(self, payload: dict) -> None:
        r = requests.post(self.webhook_url, json=payload, timeout=DEFAULT_TIMEOUT)
        r.raise_for_status()

    def send_alert(self, change: RecordChange, feed_id: str) -> None:
        """Send a Discord embed for a single changed record.

        Args:
            change: The new or modified record.
            feed_id: Feed it was detected in.
        """
        record = change.record
        color = 0xFFA500 if change.change_type == MODIFIED_CVE else 0x3498DB

        fields = [{"name": "Feed", "value": feed_id, "inline": True}]
        if record is not None:
            fields.append({"name": "CVSS", "value": self._format_cvss(record.impact.base_score), "inline": True})
            fields.append({"name": "Severity", "value": record.impact.severity or "N/A", "inline": True})
            if record.problem_types:
                fields.append({"name": "CWE", "value": ", ".join(record.problem_types[:5]), "inline": True})
            if record.last_modified:
                fields.append({"name": "Last Modified", "value": record.last_modified.isoformat(), "inline": True})

        payload = {
            "embeds": [
                {
                    "title": f"{self._change_label(change)}: {change.cve_id}",
                    "description": self._description(change) or "No description available.",
                    "color": color,
                    "fields": fields,
                    "url": self._detail_url(change.cve_id),
                    "footer": {"text": "VulnDelta Alert"},
                }
            ]
        }
        self._post(payload)

    def send_summary(self, result: ChangeResult, skipped: list[RecordChange]) -> None:
        """Send a summary embed listing the changes that got no alert."""
        listed = ""
        for c in skipped[:20]:
            listed += f"• [{c.cve_id}]({self._detail_url(c.cve_id)}) ({self._change_label(c)})\n"
        if len(skipped) > 20:
            listed += f"…and {len(skipped) - 20} more\n"

        payload = {
            "embeds": [
                {
                    "title": f"📊 VulnDelta: {result.feed_id}",
                    "color": 0x00FF00,
                    "fields": [
                        {"name": "Changed", "value": str(len(result)), "inline": True},
                        {"name": "Records in feed", "value": str(result.total_records), "inline": True},
                        {"name": "Changes", "value": self._changes_summary(result), "inline": False},
                        {"name": "Not alerted individually", "value": listed or "None", "inline": False},
                    ],
                    "footer": {"text": f"Snapshot {result.snapshot_hash[:16]}"},
                }
            ]
        }
        self._post(payload)

    def send_failure(self, error: CheckError) -> None:
        """Send a red embed describing a failed check."""
        payload = {
            "embeds": [
                {
                    "title": f"❌ VulnDelta check failed: {error.feed_id or '?'}",
                    "description": error.message[:1000],
                    "color": 0xFF0000,
                    "fields": [
                        {"name": "Stage", "value": error.stage.value, "inline": True},
                        {"name": "Error", "value": type(error).__name__, "inline": True},
                        {"name": "Transient", "value": "yes" if error.transient else "no", "inline": True},
                    ],
                }
            ]
        }
        self._post(payload)
