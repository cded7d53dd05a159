"""Unit tests for vulndelta.decoder — NVD 1.x and 2.0 feed decoding."""

import datetime as dt
import logging

import pytest
from conftest import make_v1_feed, make_v1_item, make_v2_feed, make_v2_item, to_bytes

from vulndelta.decoder import decode_snapshot, parse_v1_item, parse_v2_item
from vulndelta.errors import DecodeError, Stage
from vulndelta.hashing import content_hash


def _decode(doc, feed_id="recent"):
    payload = doc if isinstance(doc, bytes) else to_bytes(doc)
    return decode_snapshot(payload, content_hash(payload), feed_id=feed_id)


# ── NVD 1.x ──────────────────────────────────────────────────────────────────


class TestNvd1:
    def test_header(self):
        snap = _decode(make_v1_feed([make_v1_item("CVE-2019-0001")]))
        assert snap.data_type == "CVE"
        assert snap.data_format == "MITRE"
        assert snap.data_version == "4.0"
        assert snap.declared_count == 1
        assert snap.timestamp == dt.datetime(2019, 1, 3, 7, 0, tzinfo=dt.timezone.utc)
        assert snap.ids() == ["CVE-2019-0001"]

    def test_record_fields(self):
        record = _decode(make_v1_feed([make_v1_item("CVE-2019-0001", description="XSS")])).records[0]
        assert record.assigner == "cve@mitre.org"
        assert record.description() == "XSS"
        assert record.problem_types == ("CWE-79",)
        assert record.impact.cvss_v2.base_score == 7.5
        assert record.impact.cvss_v2.base_severity == "HIGH"
        assert record.impact.cvss_v2.obtain_all_privilege is False
        assert record.impact.cvss_v3 is None
        assert record.affects[0].vendor == "apache"
        assert record.affects[0].versions[0].version_value == "2.5"
        assert record.cpe_uris == ["cpe:2.3:a:apache:struts:*:*:*:*:*:*:*:*"]
        assert record.configurations[0].cpe_match[0].version_end_excluding == "2.5.1"
        assert record.references[0].refsource == "MISC"
        assert record.references[0].tags == ("Patch",)
        assert record.published == dt.datetime(2019, 1, 1, tzinfo=dt.timezone.utc)

    def test_nested_children(self):
        item = make_v1_item("CVE-2019-0001")
        item["configurations"]["nodes"] = [
            {
                "operator": "AND",
                "children": [
                    {"operator": "OR", "cpe_match": [{"vulnerable": True, "cpe23Uri": "cpe:2.3:o:linux:kernel"}]},
                    {"operator": "OR", "cpe_match": [{"vulnerable": False, "cpe23Uri": "cpe:2.3:h:cisco:router"}]},
                ],
            }
        ]
        record = parse_v1_item(item)
        assert record["configurations"][0]["operator"] == "AND"
        assert len(record["configurations"][0]["children"]) == 2

    def test_minimal_item(self):
        snap = _decode(make_v1_feed([{"cve": {"CVE_data_meta": {"ID": "CVE-2019-9999"}}}]))
        record = snap.records[0]
        assert record.cve_id == "CVE-2019-9999"
        assert record.impact.base_score is None
        assert record.references == ()

    def test_v3_metric_severity(self):
        item = make_v1_item("CVE-2019-0001")
        item["impact"]["baseMetricV3"] = {
            "cvssV3": {"version": "3.0", "baseScore": 9.1, "baseSeverity": "CRITICAL"},
            "exploitabilityScore": 3.9,
        }
        record = _decode(make_v1_feed([item])).records[0]
        assert record.impact.base_score == 9.1
        assert record.impact.severity == "CRITICAL"


# ── NVD 2.0 ──────────────────────────────────────────────────────────────────


class TestNvd2:
    def test_header(self):
        snap = _decode(make_v2_feed([make_v2_item("CVE-2024-1000")]))
        assert snap.data_format == "NVD_CVE"
        assert snap.data_version == "2.0"
        assert snap.declared_count == 1

    def test_primary_metric_chosen(self):
        record = _decode(make_v2_feed([make_v2_item("CVE-2024-1000", score=9.8)])).records[0]
        assert record.impact.cvss_v3.base_score == 9.8
        assert record.impact.cvss_v3.base_severity == "CRITICAL"
        assert record.impact.cvss_v3.exploitability_score == 3.9

    def test_v30_fallback(self):
        item = make_v2_item("CVE-2024-1000")
        metrics = item["cve"]["metrics"]
        metrics["cvssMetricV30"] = metrics.pop("cvssMetricV31")
        fields = parse_v2_item(item)
        assert fields["impact"]["cvss_v3"]["base_score"] == 9.8

    def test_record_fields(self):
        record = _decode(make_v2_feed([make_v2_item("CVE-2024-1000", description="Deserialization")])).records[0]
        assert record.status == "Analyzed"
        assert record.assigner == "security@apache.org"
        assert record.description() == "Deserialization"
        assert record.description("es") == "Vulnerabilidad CVE-2024-1000"
        assert record.problem_types == ("CWE-502",)
        assert record.cpe_uris == ["cpe:2.3:a:apache:log4j:*:*:*:*:*:*:*:*"]
        assert record.references[0].refsource == "nvd@nist.gov"
        assert record.last_modified == dt.datetime(2024, 6, 2, 12, 0, tzinfo=dt.timezone.utc)

    def test_unknown_fields_ignored(self):
        item = make_v2_item("CVE-2024-1000")
        item["cve"]["cveTags"] = [{"tags": ["disputed"]}]
        item["cve"]["metrics"]["cvssMetricV40"] = [{"cvssData": {"baseScore": 10.0}}]
        doc = make_v2_feed([item])
        doc["somethingNew"] = True
        assert len(_decode(doc)) == 1


# ── failures ─────────────────────────────────────────────────────────────────


class TestDecodeErrors:
    @pytest.mark.parametrize(
        "payload",
        [
            b"not json",
            b"\xff\xfe\x00",
            b"[]",
            b'{"hello": "world"}',
            b'{"CVE_Items": {"not": "a list"}}',
            b'{"CVE_Items": ["string item"]}',
            b'{"vulnerabilities": [{"cve": {"id": "CVE-1", "descriptions": "oops"}}]}',
        ],
    )
    def test_malformed(self, payload):
        with pytest.raises(DecodeError) as exc:
            _decode(payload)
        assert exc.value.feed_id == "recent"
        assert exc.value.stage == Stage.DECODING

    @pytest.mark.parametrize("count", [[], {"n": 1}, True, 1.5, "many"])
    def test_bad_declared_count(self, count):
        v2 = make_v2_feed([make_v2_item("CVE-2024-1000")])
        v2["totalResults"] = count
        with pytest.raises(DecodeError, match="cannot decode feed"):
            _decode(v2)

        v1 = make_v1_feed([make_v1_item("CVE-2019-0001")])
        v1["CVE_data_numberOfCVEs"] = count
        with pytest.raises(DecodeError):
            _decode(v1)

    def test_deeply_nested(self):
        payload = b'{"vulnerabilities": ' + b"[" * 100_000 + b"]" * 100_000 + b"}"
        with pytest.raises(DecodeError):
            _decode(payload)

    def test_missing_id(self):
        with pytest.raises(DecodeError):
            _decode(make_v1_feed([{"cve": {"CVE_data_meta": {}}}]))

    def test_bad_timestamp(self):
        with pytest.raises(DecodeError):
            _decode(make_v1_feed([make_v1_item("CVE-2019-0001", modified="last tuesday")]))

    def test_duplicate_ids(self):
        with pytest.raises(DecodeError, match="duplicate"):
            _decode(make_v1_feed([make_v1_item("CVE-2019-0001"), make_v1_item("cve-2019-0001")]))

    def test_declared_count_mismatch_warns(self, caplog):
        doc = make_v1_feed([make_v1_item("CVE-2019-0001")])
        doc["CVE_data_numberOfCVEs"] = "5"
        with caplog.at_level(logging.WARNING, logger="vulndelta.decoder"):
            snap = _decode(doc)
        assert len(snap) == 1
        assert "declares 5 records" in caplog.text
