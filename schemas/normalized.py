"""
Pydantic schema for the canonical threat-intel record with validation
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, List
from datetime import datetime
from models.base import FeedType, utcnow


class IntelRecordCreate(BaseModel):
    """
    Canonical record handed from the normalizers to the sinks.

    Ensures:
    - natural_id is present and non-blank (it is the upsert key)
    - severity score stays on the CVSS scale
    - reference URLs are a de-duplicated list without empty entries
    """

    # Upsert key
    natural_id: str = Field(..., min_length=1, max_length=255)

    # Source tracking
    feed_type: FeedType
    source_name: str = Field(..., min_length=1, max_length=100)

    # Scalar metadata
    description: Optional[str] = None
    source_identifier: Optional[str] = Field(None, max_length=255)
    published_at: Optional[datetime] = None
    modified_at: Optional[datetime] = None

    # Severity
    severity_score: Optional[float] = Field(None, ge=0, le=10)
    severity_label: Optional[str] = Field(None, max_length=32)
    vector: Optional[str] = Field(None, max_length=255)

    # Auxiliary
    weakness_class: Optional[str] = Field(None, max_length=255)
    reference_urls: List[str] = Field(default_factory=list)
    url: Optional[str] = Field(None, max_length=2048)

    ingested_at: datetime = Field(default_factory=utcnow)

    model_config = ConfigDict(use_enum_values=True)

    @field_validator("natural_id")
    @classmethod
    def clean_natural_id(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("natural_id cannot be empty after stripping")
        return v

    @field_validator("severity_label")
    @classmethod
    def upper_severity(cls, v):
        return v.strip().upper() if v else None

    @field_validator("reference_urls", mode="before")
    @classmethod
    def clean_reference_urls(cls, v):
        """Drop falsy entries and duplicates, keep first-seen order"""
        if v is None:
            return []
        if isinstance(v, str):
            v = v.split(",")
        cleaned = []
        for url in v:
            url = str(url).strip() if url else ""
            if url and url not in cleaned:
                cleaned.append(url)
        return cleaned
