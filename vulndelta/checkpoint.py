"""Checkpoint persistence.

A checkpoint records, per feed, the whole-snapshot hash last observed,
when the check ran, and the content hash of every record in that
snapshot.  ``load`` returns ``None`` for a feed that was never checked;
callers treat that as "everything is new".  ``save`` either commits the
whole checkpoint or leaves the previous one in place.
"""

import datetime as dt
import json
import logging
import re
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import Stage, StoreUnavailable
from .models import parse_timestamp

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

_FEED_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


class Checkpoint(BaseModel):
    """Persisted state of one feed.

    Attributes:
        feed_id: Logical feed name.
        snapshot_hash: Whole-snapshot hash of the last committed check.
        checked_at: When that check ran.
        record_hashes: Record identifier to record content hash.
    """

    feed_id: str
    snapshot_hash: str
    checked_at: dt.datetime
    record_hashes: dict[str, str] = Field(default_factory=dict)

    @field_validator("checked_at", mode="before")
    @classmethod
    def _parse_checked_at(cls, v: Any) -> dt.datetime | None:
        return parse_timestamp(v)

    def to_document(self) -> dict[str, Any]:
        doc = self.model_dump(mode="json")
        doc["schema_version"] = SCHEMA_VERSION
        return doc


class CheckpointStore(ABC):
    """Key-value store of checkpoints keyed by feed identifier.

    Writes for the same feed are serialized in-process; there is no
    cross-process locking.  Last writer wins.
    """

    name: str = "base"

    def __init__(self) -> None:
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, feed_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(feed_id)
            if lock is None:
                lock = self._locks[feed_id] = threading.Lock()
            return lock

    def load(self, feed_id: str) -> Checkpoint | None:
        """Load the checkpoint for ``feed_id``.

        Returns:
            The stored checkpoint, or ``None`` if the feed was never
            checked (or its stored schema is outdated).

        Raises:
            StoreUnavailable: if the persistence layer fails.
        """
        return self._read(feed_id)

    def save(self, checkpoint: Checkpoint) -> None:
        """Commit ``checkpoint``, replacing any previous one atomically.

        Raises:
            StoreUnavailable: if the persistence layer fails; the
                previous checkpoint stays authoritative.
        """
        with self._lock_for(checkpoint.feed_id):
            self._write(checkpoint)
        logger.debug(
            "Saved checkpoint for %s (%d records) to %s store",
            checkpoint.feed_id,
            len(checkpoint.record_hashes),
            self.name,
        )

    def delete(self, feed_id: str) -> bool:
        """Remove a stored checkpoint.  Returns ``True`` if one existed."""
        with self._lock_for(feed_id):
            return self._delete(feed_id)

    @abstractmethod
    def _read(self, feed_id: str) -> Checkpoint | None: ...

    @abstractmethod
    def _write(self, checkpoint: Checkpoint) -> None: ...

    @abstractmethod
    def _delete(self, feed_id: str) -> bool: ...


def _from_document(doc: Any, feed_id: str, where: str) -> Checkpoint | None:
    """Validate a stored document, honouring the schema version."""
    if not isinstance(doc, dict):
        raise StoreUnavailable(f"checkpoint at {where} is not an object", feed_id=feed_id, stage=Stage.LOADING)
    if doc.get("schema_version") != SCHEMA_VERSION:
        logger.warning(
            "Checkpoint schema version mismatch for %s (%r != %r), treating as first run",
            feed_id,
            doc.get("schema_version"),
            SCHEMA_VERSION,
        )
        return None
    try:
        return Checkpoint.model_validate(doc)
    except ValidationError as e:
        raise StoreUnavailable(f"checkpoint at {where} is invalid: {e}", feed_id=feed_id, stage=Stage.LOADING) from e


class MemoryCheckpointStore(CheckpointStore):
    """Dict-backed store for tests and one-shot runs."""

    name = "memory"

    def __init__(self) -> None:
        super().__init__()
        self._data: dict[str, dict[str, Any]] = {}

    def _read(self, feed_id: str) -> Checkpoint | None:
        doc = self._data.get(feed_id)
        if doc is None:
            return None
        return _from_document(doc, feed_id, "memory")

    def _write(self, checkpoint: Checkpoint) -> None:
        self._data[checkpoint.feed_id] = checkpoint.to_document()

    def _delete(self, feed_id: str) -> bool:
        return self._data.pop(feed_id, None) is not None


class FileCheckpointStore(CheckpointStore):
    """One JSON document per feed in a directory.

    Files are written atomically (write-then-rename), so a reader sees
    either the previous checkpoint or the new one, never a mix.

    Args:
        directory: Directory holding ``<feed_id>.json`` files.
    """

    name = "file"

    def __init__(self, directory: Path):
        super().__init__()
        self.directory = Path(directory)

    def path_for(self, feed_id: str) -> Path:
        if not _FEED_ID_RE.match(feed_id):
            raise ValueError(f"invalid feed id for file store: {feed_id!r}")
        return self.directory / f"{feed_id}.json"

    def _read(self, feed_id: str) -> Checkpoint | None:
        path = self.path_for(feed_id)
        if not path.exists():
            return None
        try:
            with path.open("r", encoding="utf-8") as f:
                doc = json.load(f)
        except (OSError, ValueError) as e:
            raise StoreUnavailable(f"cannot read {path}: {e}", feed_id=feed_id, stage=Stage.LOADING) from e
        return _from_document(doc, feed_id, str(path))

    def _write(self, checkpoint: Checkpoint) -> None:
        path = self.path_for(checkpoint.feed_id)
        tmp = path.with_suffix(".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with tmp.open("w", encoding="utf-8") as f:
                json.dump(checkpoint.to_document(), f, indent=2, sort_keys=True)
            tmp.replace(path)
        except OSError as e:
            tmp.unlink(missing_ok=True)
            raise StoreUnavailable(f"cannot write {path}: {e}", feed_id=checkpoint.feed_id) from e

    def _delete(self, feed_id: str) -> bool:
        path = self.path_for(feed_id)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StoreUnavailable(f"cannot delete {path}: {e}", feed_id=feed_id) from e
        return True


class DynamoCheckpointStore(CheckpointStore):
    """One DynamoDB item per feed, keyed by ``id``.

    The table has a single string hash key ``id``.  ``put_item`` replaces
    the whole item, which gives the all-or-nothing write a checkpoint
    needs.  The client is built without botocore retries: a failed call
    ends the cycle and the scheduler decides whether to try again.

    Args:
        table_name: DynamoDB table name.
        region: AWS region.
        timeout: Connect and read timeout in seconds.
        table: Optional pre-built ``Table`` resource (tests inject a mock).
    """

    name = "dynamodb"

    def __init__(
        self,
        table_name: str,
        region: str | None = None,
        timeout: float = 10.0,
        table: Any = None,
    ):
        super().__init__()
        self.table_name = table_name
        if table is None:
            config = Config(connect_timeout=timeout, read_timeout=timeout, retries={"max_attempts": 1})
            table = boto3.resource("dynamodb", region_name=region, config=config).Table(table_name)
        self.table = table

    def _read(self, feed_id: str) -> Checkpoint | None:
        try:
            resp = self.table.get_item(Key={"id": feed_id}, ConsistentRead=True)
        except (BotoCoreError, ClientError) as e:
            raise StoreUnavailable(
                f"get_item on {self.table_name} failed: {e}", feed_id=feed_id, stage=Stage.LOADING
            ) from e
        item = resp.get("Item")
        if item is None:
            return None
        doc = dict(item)
        doc.pop("id", None)
        doc["feed_id"] = feed_id
        if "schema_version" in doc:
            # numbers come back from DynamoDB as Decimal
            try:
                doc["schema_version"] = int(doc["schema_version"])
            except (TypeError, ValueError, ArithmeticError) as e:
                raise StoreUnavailable(
                    f"checkpoint in {self.table_name} has a non-numeric schema_version: {e}",
                    feed_id=feed_id,
                    stage=Stage.LOADING,
                ) from e
        return _from_document(doc, feed_id, f"dynamodb:{self.table_name}")

    def _write(self, checkpoint: Checkpoint) -> None:
        item = checkpoint.to_document()
        item["id"] = item.pop("feed_id")
        try:
            self.table.put_item(Item=item)
        except (BotoCoreError, ClientError) as e:
            raise StoreUnavailable(
                f"put_item on {self.table_name} failed: {e}", feed_id=checkpoint.feed_id
            ) from e

    def _delete(self, feed_id: str) -> bool:
        try:
            resp = self.table.delete_item(Key={"id": feed_id}, ReturnValues="ALL_OLD")
        except (BotoCoreError, ClientError) as e:
            raise StoreUnavailable(f"delete_item on {self.table_name} failed: {e}", feed_id=feed_id) from e
        return bool(resp.get("Attributes"))
