"""Change detection.

Drives one check cycle per feed::

    fetch -> load checkpoint -> (fast path | decode -> hash -> diff -> commit)

The whole-snapshot hash short-circuits the common case where the feed
has not moved since the last tick.  Otherwise every record is hashed
and compared with the per-record hashes stored in the checkpoint, so
only records that are new or were edited upstream are reported.
Nothing is persisted until every record has been hashed, so an
abandoned or failed cycle leaves the previous checkpoint in force.
"""

import datetime as dt
import logging
from typing import Callable

from .async_client import fetch_all_parallel
from .checkpoint import Checkpoint, CheckpointStore
from .client import FeedClient, FetchResult
from .decoder import decode_snapshot
from .errors import CheckError, Stage
from .hashing import record_hashes
from .models import MODIFIED_CVE, NEW_CVE, ChangeResult, FeedSnapshot, RecordChange

logger = logging.getLogger(__name__)


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc).replace(microsecond=0)


def diff_records(
    snapshot: FeedSnapshot,
    current: dict[str, str],
    previous: dict[str, str] | None,
) -> list[RecordChange]:
    """Compare a snapshot's record hashes with the stored ones.

    Args:
        snapshot: Decoded snapshot.
        current: Record id to hash for ``snapshot``.
        previous: Record id to hash from the last checkpoint, or
            ``None`` on first run (every record is then new).

    Returns:
        Changed records in feed order.
    """
    previous = previous or {}
    changes: list[RecordChange] = []
    for record in snapshot.records:
        digest = current[record.cve_id]
        old = previous.get(record.cve_id)
        if old is None:
            changes.append(RecordChange(cve_id=record.cve_id, change_type=NEW_CVE, new_hash=digest, record=record))
        elif old != digest:
            changes.append(
                RecordChange(
                    cve_id=record.cve_id,
                    change_type=MODIFIED_CVE,
                    new_hash=digest,
                    old_hash=old,
                    record=record,
                )
            )
    return changes


class ChangeDetector:
    """Runs check cycles against a feed client and a checkpoint store.

    Args:
        client: Fetches feed snapshots.
        store: Persists checkpoints.
        clock: Returns "now"; injectable for tests.
    """

    def __init__(
        self,
        client: FeedClient,
        store: CheckpointStore,
        clock: Callable[[], dt.datetime] = _utcnow,
    ):
        self.client = client
        self.store = store
        self.clock = clock

    def run_check(self, feed_id: str) -> ChangeResult:
        """Run one check cycle for ``feed_id``.

        Args:
            feed_id: Configured feed name.

        Returns:
            ``ChangeResult`` with the records that are new or modified
            since the last committed checkpoint.

        Raises:
            CheckError: any component failure, with ``feed_id`` and
                ``stage`` set.
        """
        try:
            fetched = self.client.fetch(feed_id)
        except CheckError as e:
            raise self._fail(e, feed_id, Stage.FETCHING)
        return self.process_fetched(fetched)

    def process_fetched(self, fetched: FetchResult) -> ChangeResult:
        """Run the remainder of a cycle on an already-fetched snapshot.

        Raises:
            CheckError: as ``run_check``.
        """
        feed_id = fetched.feed_id
        stage = Stage.LOADING
        try:
            previous = self.store.load(feed_id)

            if previous is not None and previous.snapshot_hash == fetched.content_hash:
                logger.info("Feed %s unchanged (hash %s)", feed_id, fetched.content_hash)
                return ChangeResult(
                    feed_id=feed_id,
                    snapshot_hash=fetched.content_hash,
                    checked_at=self.clock(),
                    fast_path=True,
                )

            stage = Stage.DECODING
            snapshot = decode_snapshot(fetched.payload, fetched.content_hash, feed_id=feed_id)

            stage = Stage.HASHING
            current = record_hashes(snapshot.records)

            stage = Stage.DIFFING
            changes = diff_records(snapshot, current, previous.record_hashes if previous else None)
            result = ChangeResult(
                feed_id=feed_id,
                changes=tuple(changes),
                snapshot_hash=snapshot.content_hash,
                checked_at=self.clock(),
                first_run=previous is None,
                total_records=len(snapshot),
            )

            stage = Stage.COMMITTING
            self.store.save(
                Checkpoint(
                    feed_id=feed_id,
                    snapshot_hash=snapshot.content_hash,
                    checked_at=result.checked_at,
                    record_hashes=current,
                )
            )
        except CheckError as e:
            raise self._fail(e, feed_id, stage)

        logger.info(
            "Feed %s: %d of %d records changed (%d new, %d modified)%s",
            feed_id,
            len(result),
            result.total_records,
            len(result.new),
            len(result.modified),
            " [first run]" if result.first_run else "",
        )
        return result

    @staticmethod
    def _fail(error: CheckError, feed_id: str, stage: Stage) -> CheckError:
        """Label ``error`` with the feed and the stage the cycle died in."""
        error.feed_id = error.feed_id or feed_id
        error.stage = stage
        logger.error("Check failed for feed %s at %s: %s", error.feed_id, stage.value, error.message)
        return error

    def run_all(self, feed_ids: list[str]) -> dict[str, ChangeResult | CheckError]:
        """Run every feed in turn.

        A failing feed does not stop the others; its error is returned
        in place of a result.

        Returns:
            Mapping of feed id to ``ChangeResult`` or ``CheckError``.
        """
        out: dict[str, ChangeResult | CheckError] = {}
        for feed_id in feed_ids:
            try:
                out[feed_id] = self.run_check(feed_id)
            except CheckError as e:
                out[feed_id] = e
        return out

    def run_all_parallel(self, feed_ids: list[str]) -> dict[str, ChangeResult | CheckError]:
        """Fetch every feed concurrently, then process each in turn.

        Returns:
            Mapping of feed id to ``ChangeResult`` or ``CheckError``.
        """
        out: dict[str, ChangeResult | CheckError] = {}
        urls: dict[str, str] = {}
        for feed_id in feed_ids:
            try:
                urls[feed_id] = self.client.url_for(feed_id)
            except CheckError as e:
                out[feed_id] = self._fail(e, feed_id, Stage.FETCHING)

        fetched = fetch_all_parallel(urls, timeout=self.client.timeout) if urls else {}
        for feed_id, item in fetched.items():
            if isinstance(item, CheckError):
                out[feed_id] = self._fail(item, feed_id, Stage.FETCHING)
                continue
            try:
                out[feed_id] = self.process_fetched(item)
            except CheckError as e:
                out[feed_id] = e
        return {feed_id: out[feed_id] for feed_id in feed_ids}
