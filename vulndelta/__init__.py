"""VulnDelta — change detection for CVE disclosure feeds.

This package fetches NVD JSON feed snapshots, hashes them by content,
and reports only the CVE records that are new or modified since the
last successful check.
"""

__version__ = "0.1.0"
