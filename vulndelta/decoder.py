"""Feed decoding.

Pure functions turning decompressed NVD JSON feed bytes into a
``FeedSnapshot``.  Two upstream layouts are understood:

* NVD 1.x (``CVE_data_type`` / ``CVE_Items``), and
* NVD 2.0 (``format: NVD_CVE`` / ``vulnerabilities[].cve``).

Both normalise into the same ``Record`` model.  Unknown fields are
ignored; known fields of the wrong shape are a ``DecodeError``.  No I/O
happens here.
"""

import json
import logging
from typing import Any

from .errors import DecodeError
from .models import FeedSnapshot, Record

logger = logging.getLogger(__name__)


def _obj(container: dict[str, Any], key: str, path: str) -> dict[str, Any]:
    """Return ``container[key]`` as a dict, ``{}`` when absent or null."""
    value = container.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"{path}.{key}: expected object, got {type(value).__name__}")
    return value


def _list(container: dict[str, Any], key: str, path: str) -> list[Any]:
    """Return ``container[key]`` as a list, ``[]`` when absent or null."""
    value = container.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"{path}.{key}: expected array, got {type(value).__name__}")
    return value


def _objects(container: dict[str, Any], key: str, path: str) -> list[dict[str, Any]]:
    items = _list(container, key, path)
    for i, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValueError(f"{path}.{key}[{i}]: expected object, got {type(item).__name__}")
    return items


def _descriptions(items: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [{"lang": d.get("lang") or "", "value": d.get("value") or ""} for d in items]


def _cwe_ids(descriptions: list[dict[str, Any]]) -> list[str]:
    out: list[str] = []
    for d in descriptions:
        val = str(d.get("value") or "")
        if val and val not in out:
            out.append(val)
    return out


# ─────────────────────────────────────────────────────────────────────────────
# NVD 1.x
# ─────────────────────────────────────────────────────────────────────────────


def _v1_cpe_match(m: dict[str, Any]) -> dict[str, Any]:
    return {
        "vulnerable": m.get("vulnerable") or False,
        "criteria": m.get("cpe23Uri") or m.get("cpe22Uri") or "",
        "version_start_including": m.get("versionStartIncluding"),
        "version_start_excluding": m.get("versionStartExcluding"),
        "version_end_including": m.get("versionEndIncluding"),
        "version_end_excluding": m.get("versionEndExcluding"),
    }


def _v1_node(node: dict[str, Any], path: str) -> dict[str, Any]:
    return {
        "operator": node.get("operator") or "OR",
        "negate": node.get("negate") or False,
        "cpe_match": [_v1_cpe_match(m) for m in _objects(node, "cpe_match", path)],
        "children": [_v1_node(c, f"{path}.children") for c in _objects(node, "children", path)],
    }


def _v1_metric(base: dict[str, Any], key: str, path: str) -> dict[str, Any] | None:
    if not base:
        return None
    cvss = _obj(base, key, path)
    return {
        "version": cvss.get("version"),
        "vector_string": cvss.get("vectorString"),
        "base_score": cvss.get("baseScore"),
        "base_severity": cvss.get("baseSeverity") or base.get("severity"),
        "exploitability_score": base.get("exploitabilityScore"),
        "impact_score": base.get("impactScore"),
        "obtain_all_privilege": base.get("obtainAllPrivilege"),
        "obtain_user_privilege": base.get("obtainUserPrivilege"),
        "obtain_other_privilege": base.get("obtainOtherPrivilege"),
        "user_interaction_required": base.get("userInteractionRequired"),
    }


def parse_v1_item(item: dict[str, Any]) -> dict[str, Any]:
    """Flatten one NVD 1.x ``CVE_Items`` entry into ``Record`` fields.

    Args:
        item: One element of ``CVE_Items``.

    Returns:
        Dict suitable for ``Record.model_validate``.
    """
    cve = _obj(item, "cve", "item")
    meta = _obj(cve, "CVE_data_meta", "cve")

    affects = []
    vendor = _obj(_obj(cve, "affects", "cve"), "vendor", "cve.affects")
    for v in _objects(vendor, "vendor_data", "cve.affects.vendor"):
        product = _obj(v, "product", "vendor_data")
        for p in _objects(product, "product_data", "vendor_data.product"):
            version = _obj(p, "version", "product_data")
            affects.append(
                {
                    "vendor": v.get("vendor_name") or "",
                    "product": p.get("product_name") or "",
                    "versions": [
                        {
                            "version_value": vd.get("version_value") or "",
                            "version_affected": vd.get("version_affected") or "",
                        }
                        for vd in _objects(version, "version_data", "product_data.version")
                    ],
                }
            )

    problem_descs: list[dict[str, Any]] = []
    for pt in _objects(_obj(cve, "problemtype", "cve"), "problemtype_data", "cve.problemtype"):
        problem_descs.extend(_objects(pt, "description", "problemtype_data"))

    references = [
        {
            "url": r.get("url") or "",
            "name": r.get("name") or "",
            "refsource": r.get("refsource") or "",
            "tags": _list(r, "tags", "reference_data"),
        }
        for r in _objects(_obj(cve, "references", "cve"), "reference_data", "cve.references")
    ]

    descriptions = _descriptions(_objects(_obj(cve, "description", "cve"), "description_data", "cve.description"))

    impact = _obj(item, "impact", "item")
    configurations = _obj(item, "configurations", "item")

    return {
        "cve_id": meta.get("ID") or "",
        "assigner": meta.get("ASSIGNER"),
        "descriptions": descriptions,
        "problem_types": _cwe_ids(problem_descs),
        "impact": {
            "cvss_v2": _v1_metric(_obj(impact, "baseMetricV2", "impact"), "cvssV2", "impact.baseMetricV2"),
            "cvss_v3": _v1_metric(_obj(impact, "baseMetricV3", "impact"), "cvssV3", "impact.baseMetricV3"),
        },
        "affects": affects,
        "configurations": [
            _v1_node(n, "configurations.nodes") for n in _objects(configurations, "nodes", "configurations")
        ],
        "references": references,
        "published": item.get("publishedDate"),
        "last_modified": item.get("lastModifiedDate"),
    }


# ─────────────────────────────────────────────────────────────────────────────
# NVD 2.0
# ─────────────────────────────────────────────────────────────────────────────


def _v2_cpe_match(m: dict[str, Any]) -> dict[str, Any]:
    return {
        "vulnerable": m.get("vulnerable") or False,
        "criteria": m.get("criteria") or "",
        "version_start_including": m.get("versionStartIncluding"),
        "version_start_excluding": m.get("versionStartExcluding"),
        "version_end_including": m.get("versionEndIncluding"),
        "version_end_excluding": m.get("versionEndExcluding"),
    }


def _v2_primary_metric(metric_list: list[dict[str, Any]], path: str) -> dict[str, Any] | None:
    """Pick the ``Primary`` metric, else the first one."""
    if not metric_list:
        return None
    chosen = metric_list[0]
    for m in metric_list:
        if m.get("type") == "Primary":
            chosen = m
            break
    cvss = _obj(chosen, "cvssData", path)
    return {
        "version": cvss.get("version"),
        "vector_string": cvss.get("vectorString"),
        "base_score": cvss.get("baseScore"),
        "base_severity": cvss.get("baseSeverity") or chosen.get("baseSeverity"),
        "exploitability_score": chosen.get("exploitabilityScore"),
        "impact_score": chosen.get("impactScore"),
        "obtain_all_privilege": chosen.get("obtainAllPrivilege"),
        "obtain_user_privilege": chosen.get("obtainUserPrivilege"),
        "obtain_other_privilege": chosen.get("obtainOtherPrivilege"),
        "user_interaction_required": chosen.get("userInteractionRequired"),
    }


def parse_v2_item(item: dict[str, Any]) -> dict[str, Any]:
    """Flatten one NVD 2.0 ``vulnerabilities`` entry into ``Record`` fields.

    Args:
        item: One element of ``vulnerabilities``.

    Returns:
        Dict suitable for ``Record.model_validate``.
    """
    cve = _obj(item, "cve", "item")
    metrics = _obj(cve, "metrics", "cve")

    weakness_descs: list[dict[str, Any]] = []
    for w in _objects(cve, "weaknesses", "cve"):
        weakness_descs.extend(_objects(w, "description", "cve.weaknesses"))

    nodes: list[dict[str, Any]] = []
    for config in _objects(cve, "configurations", "cve"):
        for node in _objects(config, "nodes", "cve.configurations"):
            nodes.append(
                {
                    "operator": node.get("operator") or "OR",
                    "negate": node.get("negate") or False,
                    "cpe_match": [_v2_cpe_match(m) for m in _objects(node, "cpeMatch", "configurations.nodes")],
                }
            )

    references = [
        {
            "url": r.get("url") or "",
            "name": r.get("name") or "",
            "refsource": r.get("source") or "",
            "tags": _list(r, "tags", "cve.references"),
        }
        for r in _objects(cve, "references", "cve")
    ]

    cvss_v3 = _v2_primary_metric(_objects(metrics, "cvssMetricV31", "cve.metrics"), "cvssMetricV31") or (
        _v2_primary_metric(_objects(metrics, "cvssMetricV30", "cve.metrics"), "cvssMetricV30")
    )

    return {
        "cve_id": cve.get("id") or "",
        "assigner": cve.get("sourceIdentifier"),
        "status": cve.get("vulnStatus"),
        "descriptions": _descriptions(_objects(cve, "descriptions", "cve")),
        "problem_types": _cwe_ids(weakness_descs),
        "impact": {
            "cvss_v2": _v2_primary_metric(_objects(metrics, "cvssMetricV2", "cve.metrics"), "cvssMetricV2"),
            "cvss_v3": cvss_v3,
        },
        "configurations": nodes,
        "references": references,
        "published": cve.get("published"),
        "last_modified": cve.get("lastModified"),
    }


# ─────────────────────────────────────────────────────────────────────────────
# Snapshot
# ─────────────────────────────────────────────────────────────────────────────


def _declared_count(value: Any) -> int | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise ValueError(f"record count must be a number, got {type(value).__name__}")
    return int(value)


def _build_snapshot(doc: dict[str, Any], content_hash: str) -> FeedSnapshot:
    if "CVE_Items" in doc or "CVE_data_type" in doc:
        items = _objects(doc, "CVE_Items", "feed")
        records = [Record.model_validate(parse_v1_item(i)) for i in items]
        header = {
            "data_type": doc.get("CVE_data_type") or "",
            "data_format": doc.get("CVE_data_format") or "",
            "data_version": doc.get("CVE_data_version") or "",
            "timestamp": doc.get("CVE_data_timestamp"),
            "declared_count": _declared_count(doc.get("CVE_data_numberOfCVEs")),
        }
    elif "vulnerabilities" in doc:
        items = _objects(doc, "vulnerabilities", "feed")
        records = [Record.model_validate(parse_v2_item(i)) for i in items]
        header = {
            "data_type": "CVE",
            "data_format": doc.get("format") or "",
            "data_version": doc.get("version") or "",
            "timestamp": doc.get("timestamp"),
            "declared_count": _declared_count(doc.get("totalResults")),
        }
    else:
        raise ValueError("unrecognised feed layout: neither CVE_Items nor vulnerabilities present")

    seen: set[str] = set()
    for r in records:
        if r.cve_id in seen:
            raise ValueError(f"duplicate record identifier {r.cve_id}")
        seen.add(r.cve_id)

    return FeedSnapshot(content_hash=content_hash, records=tuple(records), **header)


def decode_snapshot(payload: bytes, content_hash: str, *, feed_id: str | None = None) -> FeedSnapshot:
    """Decode decompressed feed bytes into a ``FeedSnapshot``.

    Args:
        payload: Decompressed feed document.
        content_hash: Whole-snapshot hash computed by the client.
        feed_id: Feed name, only used to label errors.

    Returns:
        Fully validated snapshot.

    Raises:
        DecodeError: on malformed JSON or schema-incompatible content.
            Nothing is returned on failure, so callers never observe a
            partially populated snapshot.
    """
    try:
        doc = json.loads(payload.decode("utf-8"))
        if not isinstance(doc, dict):
            raise ValueError(f"feed root must be an object, got {type(doc).__name__}")
        snapshot = _build_snapshot(doc, content_hash)
    except (ValueError, TypeError, RecursionError) as e:
        # json.JSONDecodeError, UnicodeDecodeError and pydantic.ValidationError
        # are all ValueError subclasses; RecursionError comes from deeply
        # nested documents.
        raise DecodeError(f"cannot decode feed: {e}", feed_id=feed_id) from e

    if snapshot.declared_count is not None and snapshot.declared_count != len(snapshot):
        logger.warning(
            "Feed %s declares %d records but contains %d", feed_id or "?", snapshot.declared_count, len(snapshot)
        )
    logger.debug(
        "Decoded feed %s: %d records (%s %s)", feed_id or "?", len(snapshot), snapshot.data_format, snapshot.data_version
    )
    return snapshot
