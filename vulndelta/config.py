"""Configuration models using Pydantic.

Settings are read from a YAML (or JSON) file and validated into
``Settings``.  Every section has defaults, so an empty file (or no file
at all) checks the NVD ``recent`` and ``modified`` feeds with a file
checkpoint store under ``.vulndelta/checkpoints``.
"""

import json
import os
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .checkpoint import CheckpointStore, DynamoCheckpointStore, FileCheckpointStore, MemoryCheckpointStore
from .client import NVD_MODIFIED_URL, NVD_RECENT_URL, USER_AGENT
from .errors import ConfigError


class FeedConfig(BaseModel):
    """A single feed to watch.

    Example YAML::

        feeds:
          - id: recent
            url: https://nvd.nist.gov/feeds/json/cve/2.0/nvdcve-2.0-recent.json.gz
    """

    id: str = Field(pattern=r"^[A-Za-z0-9][A-Za-z0-9._-]*$")
    url: str


def _default_feeds() -> list[FeedConfig]:
    return [
        FeedConfig(id="recent", url=NVD_RECENT_URL),
        FeedConfig(id="modified", url=NVD_MODIFIED_URL),
    ]


class StoreConfig(BaseModel):
    """Checkpoint store selection.

    Attributes:
        backend: ``file``, ``dynamodb`` or ``memory``.
        path: Directory for the file backend.
        table_name: DynamoDB table for the dynamodb backend.
        region: AWS region for the dynamodb backend.
        timeout: Store call timeout in seconds (dynamodb only).
    """

    backend: Literal["file", "dynamodb", "memory"] = "file"
    path: Path = Path(".vulndelta/checkpoints")
    table_name: str | None = None
    region: str | None = None
    timeout: float = Field(default=10.0, gt=0)

    @model_validator(mode="after")
    def _require_table(self) -> "StoreConfig":
        if self.backend == "dynamodb" and not self.table_name:
            raise ValueError("store.table_name is required for the dynamodb backend")
        return self


class HttpConfig(BaseModel):
    connect_timeout: float = Field(default=10.0, gt=0)
    read_timeout: float = Field(default=120.0, gt=0)
    user_agent: str = USER_AGENT

    @property
    def timeout(self) -> tuple[float, float]:
        return (self.connect_timeout, self.read_timeout)


class ScheduleConfig(BaseModel):
    """Bundled scheduler behaviour.

    Attributes:
        interval_seconds: Time between ticks.  The NVD feeds move roughly
            every two hours, so 30 minutes catches every change.
        retry_attempts: Attempts per tick for transient failures.
        retry_max_wait: Upper bound on the backoff between attempts.
    """

    interval_seconds: int = Field(default=1800, ge=1)
    retry_attempts: int = Field(default=3, ge=1, le=10)
    retry_max_wait: float = Field(default=60.0, gt=0)


class NotificationRoute(BaseModel):
    """A single notification destination.

    Example YAML::

        notifications:
          discord:
            - url: $DISCORD_WEBHOOK
              max_alerts: 10
    """

    url: str
    max_alerts: int = Field(default=10, ge=0, le=100)


class NotificationsConfig(BaseModel):
    discord: list[NotificationRoute] = Field(default_factory=list)
    slack: list[NotificationRoute] = Field(default_factory=list)


class Settings(BaseModel):
    """Validated VulnDelta settings.

    Example YAML::

        feeds:
          - id: recent
            url: https://nvd.nist.gov/feeds/json/cve/2.0/nvdcve-2.0-recent.json.gz
        store:
          backend: dynamodb
          table_name: nvdnotifier-prod-lastcheck
          region: eu-west-2
        http:
          read_timeout: 300
        schedule:
          interval_seconds: 1800
    """

    feeds: list[FeedConfig] = Field(default_factory=_default_feeds)
    store: StoreConfig = Field(default_factory=StoreConfig)
    http: HttpConfig = Field(default_factory=HttpConfig)
    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)
    notifications: NotificationsConfig = Field(default_factory=NotificationsConfig)

    @field_validator("feeds")
    @classmethod
    def _unique_ids(cls, v: list[FeedConfig]) -> list[FeedConfig]:
        seen: set[str] = set()
        for feed in v:
            if feed.id in seen:
                raise ValueError(f"duplicate feed id {feed.id!r}")
            seen.add(feed.id)
        return v

    @property
    def feed_urls(self) -> dict[str, str]:
        return {f.id: f.url for f in self.feeds}

    @property
    def feed_ids(self) -> list[str]:
        return [f.id for f in self.feeds]


def _apply_env_overrides(raw: dict[str, Any]) -> dict[str, Any]:
    """Let ``VULNDELTA_STORE_PATH`` / ``VULNDELTA_TABLE_NAME`` override the store."""
    store = dict(raw.get("store") or {})
    path = os.environ.get("VULNDELTA_STORE_PATH")
    table = os.environ.get("VULNDELTA_TABLE_NAME")
    if path:
        store["path"] = path
    if table:
        store["table_name"] = table
        store.setdefault("backend", "dynamodb")
    if store:
        raw = {**raw, "store": store}
    return raw


def load_settings(path: Path | None) -> Settings:
    """Load settings from a YAML or JSON file.

    Args:
        path: Settings file, or ``None`` for defaults.

    Returns:
        Validated ``Settings`` instance.

    Raises:
        ConfigError: if the file is missing, unparsable or invalid.
    """
    raw: Any = {}
    if path is not None:
        try:
            content = path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigError(f"cannot read settings file {path}: {e}") from e
        try:
            if path.suffix.lower() == ".json":
                raw = json.loads(content)
            else:
                raw = yaml.safe_load(content) or {}
        except (yaml.YAMLError, json.JSONDecodeError) as e:
            raise ConfigError(f"cannot parse settings file {path}: {e}") from e
        if not isinstance(raw, dict):
            raise ConfigError(f"settings file {path} must contain a mapping")

    try:
        return Settings.model_validate(_apply_env_overrides(raw))
    except ValidationError as e:
        raise ConfigError(f"invalid settings in {path or '<defaults>'}:\n{e}") from e


def find_settings() -> Path | None:
    """Find a settings file in the working directory, preferring YAML.

    Returns:
        Path of the first existing settings file, or ``None``.
    """
    for name in ("vulndelta.yaml", "vulndelta.yml", "vulndelta.json"):
        if Path(name).exists():
            return Path(name)
    return None


def build_store(config: StoreConfig) -> CheckpointStore:
    """Create the checkpoint store selected by ``config``."""
    if config.backend == "memory":
        return MemoryCheckpointStore()
    if config.backend == "dynamodb":
        return DynamoCheckpointStore(table_name=config.table_name, region=config.region, timeout=config.timeout)
    return FileCheckpointStore(config.path)
