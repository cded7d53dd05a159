"""Shared feed builders and fakes for the VulnDelta tests."""

import gzip
import json
from typing import Any

import pytest

from vulndelta.client import FetchResult
from vulndelta.errors import FetchError
from vulndelta.hashing import content_hash


def make_v1_item(
    cve_id: str,
    description: str = "",
    score: float = 7.5,
    modified: str = "2019-01-02T10:00Z",
) -> dict[str, Any]:
    """Build one NVD 1.x ``CVE_Items`` entry."""
    return {
        "cve": {
            "data_type": "CVE",
            "data_format": "MITRE",
            "data_version": "4.0",
            "CVE_data_meta": {"ID": cve_id, "ASSIGNER": "cve@mitre.org"},
            "affects": {
                "vendor": {
                    "vendor_data": [
                        {
                            "vendor_name": "apache",
                            "product": {
                                "product_data": [
                                    {
                                        "product_name": "struts",
                                        "version": {"version_data": [{"version_value": "2.5", "version_affected": "="}]},
                                    }
                                ]
                            },
                        }
                    ]
                }
            },
            "problemtype": {"problemtype_data": [{"description": [{"lang": "en", "value": "CWE-79"}]}]},
            "references": {
                "reference_data": [
                    {"url": f"https://example.com/{cve_id}", "name": cve_id, "refsource": "MISC", "tags": ["Patch"]}
                ]
            },
            "description": {"description_data": [{"lang": "en", "value": description or f"Vuln {cve_id}"}]},
        },
        "configurations": {
            "CVE_data_version": "4.0",
            "nodes": [
                {
                    "operator": "OR",
                    "cpe_match": [
                        {
                            "vulnerable": True,
                            "cpe23Uri": "cpe:2.3:a:apache:struts:*:*:*:*:*:*:*:*",
                            "versionEndExcluding": "2.5.1",
                        }
                    ],
                }
            ],
        },
        "impact": {
            "baseMetricV2": {
                "cvssV2": {
                    "version": "2.0",
                    "vectorString": "AV:N/AC:L/Au:N/C:P/I:P/A:P",
                    "accessVector": "NETWORK",
                    "baseScore": score,
                },
                "severity": "HIGH",
                "exploitabilityScore": 10.0,
                "impactScore": 6.4,
                "obtainAllPrivilege": False,
                "obtainUserPrivilege": False,
                "obtainOtherPrivilege": False,
                "userInteractionRequired": False,
            }
        },
        "publishedDate": "2019-01-01T00:00Z",
        "lastModifiedDate": modified,
    }


def make_v1_feed(items: list[dict[str, Any]], timestamp: str = "2019-01-03T07:00Z") -> dict[str, Any]:
    return {
        "CVE_data_type": "CVE",
        "CVE_data_format": "MITRE",
        "CVE_data_version": "4.0",
        "CVE_data_numberOfCVEs": str(len(items)),
        "CVE_data_timestamp": timestamp,
        "CVE_Items": items,
    }


def make_v2_item(cve_id: str, description: str = "", score: float = 9.8) -> dict[str, Any]:
    """Build one NVD 2.0 ``vulnerabilities`` entry."""
    return {
        "cve": {
            "id": cve_id,
            "sourceIdentifier": "security@apache.org",
            "published": "2024-06-01T10:15:09.123",
            "lastModified": "2024-06-02T12:00:00.000",
            "vulnStatus": "Analyzed",
            "descriptions": [
                {"lang": "en", "value": description or f"Vuln {cve_id}"},
                {"lang": "es", "value": f"Vulnerabilidad {cve_id}"},
            ],
            "metrics": {
                "cvssMetricV31": [
                    {
                        "source": "secondary@example.com",
                        "type": "Secondary",
                        "cvssData": {"version": "3.1", "vectorString": "CVSS:3.1/AV:L", "baseScore": 5.0},
                    },
                    {
                        "source": "nvd@nist.gov",
                        "type": "Primary",
                        "cvssData": {
                            "version": "3.1",
                            "vectorString": "CVSS:3.1/AV:N/AC:L/PR:N/UI:N/S:U/C:H/I:H/A:H",
                            "baseScore": score,
                            "baseSeverity": "CRITICAL",
                        },
                        "exploitabilityScore": 3.9,
                        "impactScore": 5.9,
                    },
                ]
            },
            "weaknesses": [{"source": "nvd@nist.gov", "type": "Primary", "description": [{"lang": "en", "value": "CWE-502"}]}],
            "configurations": [
                {
                    "nodes": [
                        {
                            "operator": "OR",
                            "negate": False,
                            "cpeMatch": [
                                {
                                    "vulnerable": True,
                                    "criteria": "cpe:2.3:a:apache:log4j:*:*:*:*:*:*:*:*",
                                    "versionEndExcluding": "2.17.0",
                                    "matchCriteriaId": "ABC",
                                }
                            ],
                        }
                    ]
                }
            ],
            "references": [{"url": f"https://example.com/{cve_id}", "source": "nvd@nist.gov", "tags": ["Vendor Advisory"]}],
        }
    }


def make_v2_feed(items: list[dict[str, Any]]) -> dict[str, Any]:
    return {
        "resultsPerPage": len(items),
        "startIndex": 0,
        "totalResults": len(items),
        "format": "NVD_CVE",
        "version": "2.0",
        "timestamp": "2024-06-03T00:00:00.000",
        "vulnerabilities": items,
    }


def to_bytes(doc: Any) -> bytes:
    return json.dumps(doc).encode("utf-8")


def to_gzip(doc: Any) -> bytes:
    return gzip.compress(to_bytes(doc))


class FakeFeedClient:
    """Serves queued payloads per feed instead of going to the network.

    ``payloads[feed_id]`` is a list consumed one per fetch; the last
    entry is reused once the list is exhausted.  An ``Exception``
    instance in the list is raised instead of returned.
    """

    def __init__(self, payloads: dict[str, list[Any]] | None = None):
        self.payloads = payloads or {}
        self.timeout = (1, 1)
        self.calls: list[str] = []

    def url_for(self, feed_id: str) -> str:
        if feed_id not in self.payloads:
            raise FetchError(f"no URL configured for feed {feed_id!r}", feed_id=feed_id)
        return f"https://feeds.test/{feed_id}.json.gz"

    def queue(self, feed_id: str, payload: Any) -> None:
        self.payloads.setdefault(feed_id, []).append(payload)

    def fetch(self, feed_id: str) -> FetchResult:
        self.calls.append(feed_id)
        url = self.url_for(feed_id)
        queue = self.payloads[feed_id]
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        payload = item if isinstance(item, bytes) else to_bytes(item)
        return FetchResult(feed_id=feed_id, url=url, payload=payload, content_hash=content_hash(payload))


@pytest.fixture
def fake_client() -> FakeFeedClient:
    return FakeFeedClient()
