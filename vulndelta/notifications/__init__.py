"""Notification providers for VulnDelta.

Each provider extends ``NotificationProvider`` and receives whole
``ChangeResult`` objects; the change detector never talks to a delivery
channel directly.

Adding a new provider (e.g., Teams, PagerDuty) requires only:
1. Create a new file in this package.
2. Subclass ``NotificationProvider``.
3. Register it in ``load_providers()``.
"""

import logging
import os

import requests

from ..config import NotificationsConfig
from ..errors import CheckError
from ..models import ChangeResult
from .base import NotificationProvider
from .discord import DiscordProvider
from .slack import SlackProvider

__all__ = [
    "NotificationProvider",
    "DiscordProvider",
    "SlackProvider",
    "load_providers",
    "deliver",
]

logger = logging.getLogger(__name__)


def _resolve_env(value: str) -> str | None:
    """Resolve ``$ENV_VAR`` references in a string.

    If the value starts with ``$``, look it up in ``os.environ``.
    Otherwise return as-is.  Returns ``None`` if the env var is unset.
    """
    if value.startswith("$"):
        return os.environ.get(value[1:]) or None
    return value if value else None


def load_providers(config: NotificationsConfig) -> list[NotificationProvider]:
    """Create providers from the notification routes in ``config``.

    Routes whose URL resolves to nothing are skipped.

    Args:
        config: ``NotificationsConfig`` from the settings file.

    Returns:
        List of active notification providers.
    """
    providers: list[NotificationProvider] = []
    for route in config.discord:
        url = _resolve_env(route.url)
        if url:
            providers.append(DiscordProvider(webhook_url=url, max_alerts=route.max_alerts))
    for route in config.slack:
        url = _resolve_env(route.url)
        if url:
            providers.append(SlackProvider(webhook_url=url, max_alerts=route.max_alerts))
    return providers


def deliver(
    providers: list[NotificationProvider],
    results: dict[str, ChangeResult | CheckError],
) -> int:
    """Hand every result to every provider.

    A provider failing to deliver is logged and does not stop the other
    providers or feeds.  Delivery happens after checkpoints are committed,
    so a failed delivery is not retried on the next tick.

    Returns:
        Number of deliveries that failed.
    """
    failures = 0
    for provider in providers:
        for feed_id, outcome in results.items():
            try:
                if isinstance(outcome, CheckError):
                    provider.send_failure(outcome)
                else:
                    provider.send_changes(outcome)
            except requests.RequestException as e:
                failures += 1
                logger.warning("Delivery to %s failed for feed %s: %s", provider.name, feed_id, e)
    return failures
