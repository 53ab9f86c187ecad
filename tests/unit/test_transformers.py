"""
Unit tests for record normalizers
"""

import pytest
from datetime import datetime

from ingestion.transformers.normalizer import (
    InvalidRecord,
    MispNormalizer,
    NvdNormalizer,
    RssNormalizer,
)
from schemas.normalized import IntelRecordCreate


def metric(version, score, severity=None, kind="Primary", v2_severity=None):
    data = {"version": version, "baseScore": score, "vectorString": f"V{version}/vector"}
    if severity:
        data["baseSeverity"] = severity
    entry = {"source": "nvd@nist.gov", "type": kind, "cvssData": data}
    if v2_severity:
        entry["baseSeverity"] = v2_severity
    return entry


class TestNvdNormalizer:
    """Test NVD item mapping"""

    def test_normalize_complete_item(self, nvd_item):
        record = NvdNormalizer().normalize(nvd_item("CVE-2024-1234", score=9.8, severity="critical"))

        assert isinstance(record, IntelRecordCreate)
        assert record.natural_id == "CVE-2024-1234"
        assert record.feed_type == "nvd"
        assert record.description == "Example vulnerability"
        assert record.severity_score == 9.8
        assert record.severity_label == "CRITICAL"
        assert record.vector.startswith("CVSS:3.1/")
        assert record.weakness_class == "CWE-79"
        assert record.reference_urls == ["https://example.com/advisory"]
        assert record.url == "https://nvd.nist.gov/vuln/detail/CVE-2024-1234"
        assert record.published_at == datetime(2024, 5, 1, 10, 0)
        assert record.ingested_at is not None

    def test_missing_id_is_invalid_not_raised(self, nvd_item):
        outcome = NvdNormalizer().normalize(nvd_item(cve_id=None))

        assert isinstance(outcome, InvalidRecord)
        assert "id" in outcome.reason

    @pytest.mark.parametrize("raw", [
        {},
        {"cve": None},
        {"cve": "CVE-2024-0001"},
        {"cve": {"id": "   "}},
        {"cve": {"id": "CVE-2024-0001", "descriptions": "not-a-list"}},
        ["not", "an", "object"],
        None,
    ])
    def test_implausible_shapes_become_invalid(self, raw):
        assert isinstance(NvdNormalizer().normalize(raw), InvalidRecord)

    def test_newest_metric_version_wins(self, nvd_item):
        raw = nvd_item(score=None)
        raw["cve"]["metrics"] = {
            "cvssMetricV2": [metric("2.0", 5.0, v2_severity="MEDIUM")],
            "cvssMetricV31": [metric("3.1", 8.1, "HIGH")],
            "cvssMetricV40": [metric("4.0", 9.3, "CRITICAL")],
        }

        record = NvdNormalizer().normalize(raw)

        assert record.severity_score == 9.3
        assert record.severity_label == "CRITICAL"
        assert record.vector == "V4.0/vector"

    def test_falls_back_to_v2_with_outer_severity(self, nvd_item):
        raw = nvd_item(score=None)
        raw["cve"]["metrics"] = {"cvssMetricV2": [metric("2.0", 4.3, v2_severity="MEDIUM")]}

        record = NvdNormalizer().normalize(raw)

        assert record.severity_score == 4.3
        assert record.severity_label == "MEDIUM"

    def test_primary_assessment_preferred_within_version(self, nvd_item):
        raw = nvd_item(score=None)
        raw["cve"]["metrics"] = {"cvssMetricV31": [
            metric("3.1", 6.1, "MEDIUM", kind="Secondary"),
            metric("3.1", 7.2, "HIGH", kind="Primary"),
        ]}

        assert NvdNormalizer().normalize(raw).severity_score == 7.2

    def test_absent_metrics_yield_null_severity(self, nvd_item):
        raw = nvd_item(score=None)
        raw["cve"]["metrics"] = None

        record = NvdNormalizer().normalize(raw)

        assert isinstance(record, IntelRecordCreate)
        assert record.severity_score is None
        assert record.severity_label is None
        assert record.vector is None

    def test_description_uses_configured_locale(self, nvd_item):
        raw = nvd_item()

        assert NvdNormalizer(locale="es").normalize(raw).description == "Vulnerabilidad de ejemplo"
        assert NvdNormalizer(locale="fr").normalize(raw).description == ""

    def test_missing_descriptions_give_empty_string(self, nvd_item):
        raw = nvd_item()
        del raw["cve"]["descriptions"]

        assert NvdNormalizer().normalize(raw).description == ""

    def test_unparseable_dates_become_none(self, nvd_item):
        record = NvdNormalizer().normalize(nvd_item(last_modified="yesterday-ish"))

        assert record.modified_at is None

    def test_normalize_page_partitions(self, nvd_item):
        items = [nvd_item(f"CVE-2024-{i:04d}") for i in range(3)] + [nvd_item(cve_id=None)]

        valid, invalid = NvdNormalizer().normalize_page(items)

        assert [r.natural_id for r in valid] == ["CVE-2024-0000", "CVE-2024-0001", "CVE-2024-0002"]
        assert len(invalid) == 1


class TestMispNormalizer:
    """Test MISP event mapping"""

    def test_wrapped_event(self):
        raw = {"Event": {
            "uuid": "5f1c-4a2b",
            "info": "Ransomware campaign",
            "date": "2024-05-10",
            "timestamp": "1717243200",
            "threat_level_id": "1",
            "Orgc": {"name": "CIRCL"},
            "Attribute": [
                {"type": "url", "value": "https://bad.example/payload"},
                {"type": "ip-dst", "value": "203.0.113.7"},
                {"type": "link", "value": "https://blog.example/report"},
            ],
        }}

        record = MispNormalizer(source_name="misp").normalize(raw)

        assert record.natural_id == "5f1c-4a2b"
        assert record.description == "Ransomware campaign"
        assert record.source_identifier == "CIRCL"
        assert record.severity_label == "HIGH"
        assert record.published_at == datetime(2024, 5, 10)
        assert record.modified_at == datetime(2024, 6, 1, 12, 0)
        assert record.reference_urls == ["https://bad.example/payload", "https://blog.example/report"]

    def test_bare_event_without_uuid_is_invalid(self):
        outcome = MispNormalizer(source_name="misp").normalize({"info": "no id"})

        assert isinstance(outcome, InvalidRecord)


class TestRssNormalizer:
    """Test feed entry mapping"""

    def test_entry_falls_back_to_link_as_id(self):
        raw = {
            "id": "",
            "title": "Patch now",
            "summary": "Vendor released fixes",
            "link": "https://example.com/patch",
            "published": "2024-05-20T09:00:00",
            "enclosures": ["https://example.com/patch.pdf", ""],
        }

        record = RssNormalizer(source_name="advisories").normalize(raw)

        assert record.natural_id == "https://example.com/patch"
        assert record.description == "Vendor released fixes"
        assert record.url == "https://example.com/patch"
        assert record.reference_urls == ["https://example.com/patch", "https://example.com/patch.pdf"]

    def test_entry_without_id_or_link_is_invalid(self):
        assert isinstance(RssNormalizer(source_name="x").normalize({"title": "orphan"}), InvalidRecord)

    def test_long_link_id_is_hashed_to_a_stable_key(self):
        link = "https://example.com/advisory?" + "utm_campaign=x&" * 40
        raw = {"title": "Tracked", "link": link}

        first = RssNormalizer(source_name="advisories").normalize(raw)
        second = RssNormalizer(source_name="advisories").normalize(dict(raw))

        assert isinstance(first, IntelRecordCreate)
        assert first.natural_id.startswith("sha256:")
        assert len(first.natural_id) <= 255
        assert first.natural_id == second.natural_id
        assert first.url == link
