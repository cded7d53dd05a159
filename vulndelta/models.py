"""CVE feed data model.

Pydantic models for one decoded feed snapshot and the records inside
it, plus the plain dataclasses the detector hands to notification
collaborators.  Models are frozen and collections are tuples so a
snapshot cannot be mutated once the decoder has built it.
"""

import datetime as dt
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

NEW_CVE = "NEW_CVE"
MODIFIED_CVE = "MODIFIED_CVE"


def parse_timestamp(value: Any) -> dt.datetime | None:
    """Parse an NVD timestamp into an aware UTC datetime.

    NVD 1.x writes ``2019-01-01T00:00Z`` while NVD 2.0 writes naive
    ``2024-01-01T00:15:10.123``; naive values are taken as UTC.
    """
    if value is None or value == "":
        return None
    if isinstance(value, dt.datetime):
        parsed = value
    elif isinstance(value, str):
        parsed = dt.datetime.fromisoformat(value.strip())
    else:
        raise ValueError(f"unsupported timestamp value: {value!r}")
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=dt.timezone.utc)
    return parsed.astimezone(dt.timezone.utc)


class _FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


class Description(_FrozenModel):
    lang: str = "en"
    value: str = ""


class CvssMetric(_FrozenModel):
    """A single CVSS scoring block (v2 or v3.x)."""

    version: str | None = None
    vector_string: str | None = None
    base_score: float | None = None
    base_severity: str | None = None
    exploitability_score: float | None = None
    impact_score: float | None = None
    # CVSS v2 only
    obtain_all_privilege: bool | None = None
    obtain_user_privilege: bool | None = None
    obtain_other_privilege: bool | None = None
    user_interaction_required: bool | None = None


class Impact(_FrozenModel):
    """Severity sub-structure of a record.

    Attributes:
        cvss_v2: CVSS v2 metric, if scored.
        cvss_v3: CVSS v3.x metric, if scored.
    """

    cvss_v2: CvssMetric | None = None
    cvss_v3: CvssMetric | None = None

    @property
    def best(self) -> CvssMetric | None:
        """Prefer v3 over v2 when both are present."""
        if self.cvss_v3 is not None and self.cvss_v3.base_score is not None:
            return self.cvss_v3
        return self.cvss_v2

    @property
    def base_score(self) -> float | None:
        best = self.best
        return best.base_score if best else None

    @property
    def severity(self) -> str | None:
        best = self.best
        return best.base_severity if best else None


class VersionRange(_FrozenModel):
    version_value: str = ""
    version_affected: str = ""


class AffectedProduct(_FrozenModel):
    vendor: str = ""
    product: str = ""
    versions: tuple[VersionRange, ...] = ()


class CpeMatch(_FrozenModel):
    """One CPE applicability match inside a configuration node."""

    vulnerable: bool = False
    criteria: str = ""
    version_start_including: str | None = None
    version_start_excluding: str | None = None
    version_end_including: str | None = None
    version_end_excluding: str | None = None


class ConfigurationNode(_FrozenModel):
    operator: str = "OR"
    negate: bool = False
    cpe_match: tuple[CpeMatch, ...] = ()
    children: tuple["ConfigurationNode", ...] = ()

    def iter_matches(self):
        """Yield every CPE match in this node and its children."""
        yield from self.cpe_match
        for child in self.children:
            yield from child.iter_matches()


class Reference(_FrozenModel):
    url: str
    name: str = ""
    refsource: str = ""
    tags: tuple[str, ...] = ()


class Record(_FrozenModel):
    """One vulnerability entry of a feed.

    The identifier is assigned upstream and is unique within a feed.
    Every other attribute contributes to the record's content hash, so
    an in-place edit upstream produces a different hash for the same
    ``cve_id``.
    """

    cve_id: str
    assigner: str | None = None
    status: str | None = None
    descriptions: tuple[Description, ...] = ()
    problem_types: tuple[str, ...] = ()
    impact: Impact = Field(default_factory=Impact)
    affects: tuple[AffectedProduct, ...] = ()
    configurations: tuple[ConfigurationNode, ...] = ()
    references: tuple[Reference, ...] = ()
    published: dt.datetime | None = None
    last_modified: dt.datetime | None = None

    @field_validator("cve_id")
    @classmethod
    def _normalize_id(cls, v: str) -> str:
        v = v.strip().upper()
        if not v:
            raise ValueError("record identifier must not be empty")
        return v

    @field_validator("published", "last_modified", mode="before")
    @classmethod
    def _parse_timestamps(cls, v: Any) -> dt.datetime | None:
        return parse_timestamp(v)

    def description(self, lang: str = "en") -> str:
        """Select the best description for ``lang``.

        Falls back to the first description with a value.

        Args:
            lang: Language prefix to prefer (``en`` matches ``en-US``).

        Returns:
            Description string, or empty string if none found.
        """
        for d in self.descriptions:
            if d.lang.lower().startswith(lang.lower()) and d.value:
                return d.value
        for d in self.descriptions:
            if d.value:
                return d.value
        return ""

    @property
    def cpe_uris(self) -> list[str]:
        """Vulnerable CPE URIs across all configuration nodes, in order."""
        uris: list[str] = []
        for node in self.configurations:
            for m in node.iter_matches():
                if m.vulnerable and m.criteria and m.criteria not in uris:
                    uris.append(m.criteria)
        return uris


class FeedSnapshot(_FrozenModel):
    """One decoded fetch result.

    Attributes:
        data_type: Upstream data type (``CVE`` / ``NVD_CVE``).
        data_format: Upstream format name (``MITRE`` / ``NVD_CVE``).
        data_version: Upstream schema version (``4.0``, ``2.0``).
        timestamp: Publication time of the snapshot.
        declared_count: Record count the feed claims, if it says.
        content_hash: Whole-snapshot hash of the decompressed bytes.
        records: Records in feed order.
    """

    data_type: str = ""
    data_format: str = ""
    data_version: str = ""
    timestamp: dt.datetime | None = None
    declared_count: int | None = None
    content_hash: str
    records: tuple[Record, ...] = ()

    @field_validator("timestamp", mode="before")
    @classmethod
    def _parse_timestamp(cls, v: Any) -> dt.datetime | None:
        return parse_timestamp(v)

    def __len__(self) -> int:
        return len(self.records)

    def ids(self) -> list[str]:
        return [r.cve_id for r in self.records]


ConfigurationNode.model_rebuild()


@dataclass(frozen=True)
class RecordChange:
    """A record judged new or modified since the last checkpoint.

    Attributes:
        cve_id: The CVE identifier.
        change_type: ``NEW_CVE`` or ``MODIFIED_CVE``.
        new_hash: Content hash of the record as fetched now.
        old_hash: Previously stored hash, ``None`` for new records.
        record: The record itself.
    """

    cve_id: str
    change_type: str
    new_hash: str
    old_hash: str | None = None
    record: Record | None = field(default=None, compare=False, repr=False)

    def __str__(self) -> str:
        if self.change_type == NEW_CVE:
            return f"🆕 NEW: {self.cve_id}"
        if self.change_type == MODIFIED_CVE:
            return f"✏️ MODIFIED: {self.cve_id}"
        return f"{self.change_type}: {self.cve_id}"


@dataclass(frozen=True)
class ChangeResult:
    """Outcome of one successful check cycle for one feed.

    Attributes:
        feed_id: Feed the cycle ran for.
        changes: Changed records in feed order.
        snapshot_hash: Whole-snapshot hash observed this cycle.
        checked_at: When the cycle finished.
        fast_path: ``True`` if the snapshot was unchanged and never decoded.
        first_run: ``True`` if no checkpoint existed before this cycle.
        total_records: Records in the snapshot (``0`` on the fast path).
    """

    feed_id: str
    changes: tuple[RecordChange, ...] = ()
    snapshot_hash: str = ""
    checked_at: dt.datetime | None = None
    fast_path: bool = False
    first_run: bool = False
    total_records: int = 0

    def __len__(self) -> int:
        return len(self.changes)

    @property
    def records(self) -> list[Record]:
        return [c.record for c in self.changes if c.record is not None]

    @property
    def cve_ids(self) -> list[str]:
        return [c.cve_id for c in self.changes]

    @property
    def new(self) -> list[RecordChange]:
        return [c for c in self.changes if c.change_type == NEW_CVE]

    @property
    def modified(self) -> list[RecordChange]:
        return [c for c in self.changes if c.change_type == MODIFIED_CVE]
