"""
Pydantic schemas for data validation and serialization.

Schemas:
    nvd: Raw NVD CVE API 2.0 items, one optional field per CVSS version
    normalized: Canonical threat-intel record handed to the sinks
    api: Fetch summaries, health check and error payloads

Usage:
    from schemas.normalized import IntelRecordCreate
    from schemas.api import CycleSummary, HealthCheckResponse

Example:
    record = IntelRecordCreate(
        natural_id="CVE-2024-0001",
        feed_type=FeedType.NVD,
        source_name="nvd",
        reference_urls=["https://example.com/advisory", ""]
    )

    # Empty and duplicate URLs are dropped during validation
    assert record.reference_urls == ["https://example.com/advisory"]
"""

__all__ = [
    "IntelRecordCreate",
    "NvdVulnerability",
    "CycleSummary",
    "CheckpointInfo",
    "HealthCheckResponse",
    "ErrorResponse",
]
