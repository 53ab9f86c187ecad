"""
Transform raw feed items into canonical records with Pydantic validation
"""

import hashlib
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import ValidationError

from core.exceptions import RecordInvalid
from models.base import FeedType
from schemas.normalized import IntelRecordCreate
from schemas.nvd import CveItem, CvssMetric, NvdVulnerability
import logging

logger = logging.getLogger(__name__)

NVD_DETAIL_URL = "https://nvd.nist.gov/vuln/detail/{}"

MISP_THREAT_LEVELS = {
    "1": "HIGH",
    "2": "MEDIUM",
    "3": "LOW",
    "4": "UNDEFINED",
}

MISP_URL_ATTRIBUTE_TYPES = ("url", "link", "uri")

# Column width of intel_records.natural_id
NATURAL_ID_MAX_LENGTH = 255


@dataclass
class InvalidRecord:
    """A raw item the normalizer could not map"""
    reason: str
    natural_id: Optional[str] = None


NormalizeOutcome = Union[IntelRecordCreate, InvalidRecord]


class RecordNormalizer(ABC):
    """
    Map raw feed items to ``IntelRecordCreate``.

    ``normalize`` is total: any item that cannot be mapped comes back as an
    ``InvalidRecord``, never as an exception.
    """

    feed_type: FeedType

    def __init__(self, source_name: str):
        self.source_name = source_name

    @abstractmethod
    def build(self, raw: Dict[str, Any]) -> Dict[str, Any]:
        """
        Map one raw item to ``IntelRecordCreate`` fields.

        Raises:
            RecordInvalid: Item lacks a natural id or has an unusable shape
        """
        pass

    def normalize(self, raw: Any) -> NormalizeOutcome:
        natural_id = None
        try:
            if not isinstance(raw, dict):
                raise RecordInvalid(f"Expected an object, got {type(raw).__name__}")
            fields = self.build(raw)
            natural_id = fields.get("natural_id")
            return IntelRecordCreate(
                feed_type=self.feed_type,
                source_name=self.source_name,
                **fields
            )
        except RecordInvalid as e:
            return InvalidRecord(reason=e.reason, natural_id=e.natural_id)
        except ValidationError as e:
            return InvalidRecord(
                reason=f"Validation failed: {e.error_count()} error(s): {e.errors()[0]['msg']}",
                natural_id=natural_id
            )
        except (TypeError, ValueError, AttributeError, KeyError, IndexError) as e:
            return InvalidRecord(reason=f"{type(e).__name__}: {e}", natural_id=natural_id)

    def normalize_page(self, items: List[Any]) -> Tuple[List[IntelRecordCreate], List[InvalidRecord]]:
        """Partition a page into valid records and rejects"""
        valid: List[IntelRecordCreate] = []
        invalid: List[InvalidRecord] = []

        for item in items:
            outcome = self.normalize(item)
            if isinstance(outcome, InvalidRecord):
                invalid.append(outcome)
            else:
                valid.append(outcome)

        return valid, invalid

    @staticmethod
    def _parse_datetime(value: Any) -> Optional[datetime]:
        """Safely parse datetime value into naive UTC"""
        if value is None or value == "":
            return None
        if isinstance(value, datetime):
            parsed = value
        else:
            try:
                parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
            except ValueError:
                return None
        if parsed.tzinfo is not None:
            parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
        return parsed


class NvdNormalizer(RecordNormalizer):
    """
    NVD CVE API 2.0 items.

    Severity comes from the newest CVSS version present
    (4.0, then 3.1, 3.0, 2.0); within one version the NVD's own
    ``Primary`` assessment wins over secondary sources.
    """

    feed_type = FeedType.NVD

    def __init__(self, source_name: str = "nvd", locale: str = "en"):
        super().__init__(source_name)
        self.locale = locale

    @staticmethod
    def select_metric(cve: CveItem) -> Optional[Tuple[str, CvssMetric]]:
        for version, metrics in cve.metrics.by_preference():
            usable = [m for m in metrics if m.cvss_data is not None]
            if not usable:
                continue
            primary = [m for m in usable if (m.type or "").lower() == "primary"]
            return version, (primary or usable)[0]
        return None

    def select_description(self, cve: CveItem) -> str:
        for description in cve.descriptions:
            if description.lang == self.locale and description.value:
                return description.value
        return ""

    @staticmethod
    def select_weakness(cve: CveItem) -> Optional[str]:
        for weakness in cve.weaknesses:
            for description in weakness.description:
                if description.value:
                    return description.value
        return None

    def build(self, raw: Dict[str, Any]) -> Dict[str, Any]:
        try:
            cve = NvdVulnerability.model_validate(raw).cve
        except ValidationError as e:
            raise RecordInvalid(f"Unrecognized NVD item shape: {e.errors()[0]['msg']}")

        if not cve.id or not cve.id.strip():
            raise RecordInvalid("Missing CVE id")

        score = label = vector = None
        selected = self.select_metric(cve)
        if selected is not None:
            _, metric = selected
            score = metric.cvss_data.base_score
            label = metric.cvss_data.base_severity or metric.base_severity
            vector = metric.cvss_data.vector_string

        return {
            "natural_id": cve.id,
            "description": self.select_description(cve),
            "source_identifier": cve.source_identifier,
            "published_at": self._parse_datetime(cve.published),
            "modified_at": self._parse_datetime(cve.last_modified),
            "severity_score": score,
            "severity_label": label,
            "vector": vector,
            "weakness_class": self.select_weakness(cve),
            "reference_urls": [ref.url for ref in cve.references],
            "url": NVD_DETAIL_URL.format(cve.id.strip()),
        }


class MispNormalizer(RecordNormalizer):
    """MISP events, either wrapped as ``{"Event": {...}}`` or bare"""

    feed_type = FeedType.MISP

    def build(self, raw: Dict[str, Any]) -> Dict[str, Any]:
        event = raw.get("Event", raw)
        if not isinstance(event, dict):
            raise RecordInvalid("Event is not an object")

        uuid = event.get("uuid")
        if not uuid:
            raise RecordInvalid("Missing event uuid")

        modified_at = None
        timestamp = event.get("timestamp")
        if timestamp not in (None, ""):
            try:
                modified_at = datetime.fromtimestamp(int(timestamp), timezone.utc).replace(tzinfo=None)
            except (TypeError, ValueError, OverflowError):
                modified_at = None

        orgc = event.get("Orgc") or {}
        attributes = event.get("Attribute") or []

        return {
            "natural_id": str(uuid),
            "description": event.get("info") or "",
            "source_identifier": orgc.get("name") if isinstance(orgc, dict) else None,
            "published_at": self._parse_datetime(event.get("date")),
            "modified_at": modified_at,
            "severity_label": MISP_THREAT_LEVELS.get(str(event.get("threat_level_id", ""))),
            "reference_urls": [
                attribute.get("value")
                for attribute in attributes
                if isinstance(attribute, dict) and attribute.get("type") in MISP_URL_ATTRIBUTE_TYPES
            ],
        }


class RssNormalizer(RecordNormalizer):
    """Feed entries as produced by ``RSSExtractor.to_record``"""

    feed_type = FeedType.RSS

    @staticmethod
    def natural_key(entry_id: str) -> str:
        """
        Entry id, or ``sha256:<hex>`` of it when it exceeds the key column.
        """
        if len(entry_id) <= NATURAL_ID_MAX_LENGTH:
            return entry_id
        return "sha256:" + hashlib.sha256(entry_id.encode("utf-8")).hexdigest()

    def build(self, raw: Dict[str, Any]) -> Dict[str, Any]:
        natural_id = raw.get("id") or raw.get("link")
        if not natural_id:
            raise RecordInvalid("Entry has neither id nor link")

        link = raw.get("link") or None

        return {
            "natural_id": self.natural_key(str(natural_id).strip()),
            "description": raw.get("summary") or raw.get("title") or "",
            "source_identifier": raw.get("author") or None,
            "published_at": self._parse_datetime(raw.get("published")),
            "modified_at": self._parse_datetime(raw.get("updated") or raw.get("published")),
            "reference_urls": [link] + list(raw.get("enclosures") or []),
            "url": link,
        }
