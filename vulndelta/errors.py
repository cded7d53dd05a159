"""Error taxonomy for a check cycle.

Every failure that ends a cycle is a ``CheckError``.  The detector
stamps the feed identifier and the stage it was in before the error
leaves ``run_check``, so an operator can tell a flaky network apart
from an upstream schema change.
"""

from __future__ import annotations

from enum import Enum


class Stage(str, Enum):
    """Stages of a single check cycle."""

    IDLE = "idle"
    FETCHING = "fetching"
    LOADING = "loading"
    FAST_PATH_DONE = "fast_path_done"
    DECODING = "decoding"
    HASHING = "hashing"
    DIFFING = "diffing"
    COMMITTING = "committing"
    DONE = "done"
    FAILED = "failed"


class CheckError(Exception):
    """Base class for cycle-terminal failures.

    Attributes:
        feed_id: Feed the failing cycle was running for, if known.
        stage: Stage the cycle was in when it failed.
        transient: ``True`` if a later attempt may succeed unchanged.
    """

    transient: bool = False
    default_stage: Stage = Stage.FAILED

    def __init__(self, message: str, *, feed_id: str | None = None, stage: Stage | None = None):
        super().__init__(message)
        self.message = message
        self.feed_id = feed_id
        self.stage = stage or self.default_stage

    def __str__(self) -> str:
        feed = self.feed_id or "?"
        return f"[{feed}/{self.stage.value}] {self.message}"


class FetchError(CheckError):
    """Network, HTTP or timeout failure while retrieving a feed."""

    transient = True
    default_stage = Stage.FETCHING


class DecompressError(CheckError):
    """The retrieved payload is not valid gzip."""

    default_stage = Stage.FETCHING


class DecodeError(CheckError):
    """The payload is not a recognised, schema-compatible feed document."""

    default_stage = Stage.DECODING


class StoreUnavailable(CheckError):
    """The checkpoint store could not be read or written."""

    transient = True
    default_stage = Stage.COMMITTING


class ConfigError(Exception):
    """Settings file is missing, unreadable or fails validation."""
