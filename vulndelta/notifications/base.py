"""Abstract base class for notification providers."""

import time
from abc import ABC, abstractmethod
from typing import Any

from ..errors import CheckError
from ..models import MODIFIED_CVE, ChangeResult, RecordChange

NVD_DETAIL_URL = "https://nvd.nist.gov/vuln/detail/{cve_id}"


class NotificationProvider(ABC):
    """Base class for all VulnDelta notification providers.

    Each provider implements three methods:

    - ``send_alert``: one changed record.
    - ``send_summary``: counts for a feed, listing what was not alerted.
    - ``send_failure``: a check cycle that ended in error.

    Attributes:
        name: Short identifier for this provider (e.g., ``discord``).
        max_alerts: Maximum individual alerts per feed per run.
        rate_limit_delay: Seconds to wait between requests.
    """

    name: str = "base"
    max_alerts: int = 10
    rate_limit_delay: float = 0.5

    @abstractmethod
    def send_alert(self, change: RecordChange, feed_id: str) -> None:
        """Send an alert for one new or modified record."""
        ...

    @abstractmethod
    def send_summary(self, result: ChangeResult, skipped: list[RecordChange]) -> None:
        """Send a per-feed summary.

        Args:
            result: The feed's check result.
            skipped: Changes beyond ``max_alerts`` that got no alert.
        """
        ...

    @abstractmethod
    def send_failure(self, error: CheckError) -> None:
        """Report a failed check cycle."""
        ...

    def send_changes(self, result: ChangeResult) -> int:
        """Deliver a ``ChangeResult``.

        Sends one alert per change up to ``max_alerts``.  If anything was
        left over, a summary listing it follows.

        Returns:
            Number of requests sent.
        """
        if not result.changes:
            return 0
        alerted = list(result.changes[: self.max_alerts])
        skipped = list(result.changes[self.max_alerts :])
        sent = 0
        for change in alerted:
            if sent:
                time.sleep(self.rate_limit_delay)
            self.send_alert(change, result.feed_id)
            sent += 1
        if skipped:
            if sent:
                time.sleep(self.rate_limit_delay)
            self.send_summary(result, skipped)
            sent += 1
        return sent

    @staticmethod
    def _detail_url(cve_id: str) -> str:
        return NVD_DETAIL_URL.format(cve_id=cve_id)

    @staticmethod
    def _format_cvss(cvss: Any) -> str:
        """Format a CVSS score to 1 decimal place."""
        try:
            return f"{float(cvss):.1f}" if cvss is not None else "N/A"
        except Exception:
            return "N/A"

    @staticmethod
    def _change_label(change: RecordChange) -> str:
        return "✏️ MODIFIED" if change.change_type == MODIFIED_CVE else "🆕 NEW"

    @staticmethod
    def _description(change: RecordChange, limit: int = 500) -> str:
        if change.record is None:
            return ""
        return change.record.description()[:limit]

    @staticmethod
    def _changes_summary(result: ChangeResult) -> str:
        """Summarise a result like ``🆕 3 new | ✏️ 1 modified``."""
        parts = []
        if result.new:
            parts.append(f"🆕 {len(result.new)} new")
        if result.modified:
            parts.append(f"✏️ {len(result.modified)} modified")
        return " | ".join(parts) if parts else "No changes"
