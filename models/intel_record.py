from sqlalchemy import Column, String, BigInteger, Integer, Text, Float, DateTime, Index
from models.base import Base, FeedType, JSONType, enum_type, utcnow


class IntelRecord(Base):
    """
    Canonical threat-intel record, one row per natural upstream identifier.

    Field Mapping Strategy:

    NVD (vulnerability feed):
    - cve.id -> natural_id
    - descriptions[lang] -> description
    - sourceIdentifier -> source_identifier
    - published / lastModified -> published_at / modified_at
    - best CVSS metric -> severity_score, severity_label, vector
    - weaknesses[0] -> weakness_class
    - references[].url -> reference_urls

    MISP (threat-sharing platform):
    - Event.uuid -> natural_id
    - Event.info -> description
    - Event.Orgc.name -> source_identifier
    - Event.date / Event.timestamp -> published_at / modified_at
    - Event.threat_level_id -> severity_label
    - url/link attributes -> reference_urls

    RSS:
    - id or link -> natural_id
    - summary -> description
    - published / updated -> published_at / modified_at
    - link + enclosures -> reference_urls
    """
    __tablename__ = "intel_records"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)

    # Upsert key
    natural_id = Column(String(255), nullable=False, unique=True)

    # Source tracking
    feed_type = Column(enum_type(FeedType), nullable=False, index=True)
    source_name = Column(String(100), nullable=False, index=True)

    # Scalar metadata
    description = Column(Text, nullable=True)
    source_identifier = Column(String(255), nullable=True)
    published_at = Column(DateTime, nullable=True, index=True)
    modified_at = Column(DateTime, nullable=True, index=True)

    # Severity
    severity_score = Column(Float, nullable=True)
    severity_label = Column(String(32), nullable=True, index=True)
    vector = Column(String(255), nullable=True)

    # Auxiliary
    weakness_class = Column(String(255), nullable=True)
    reference_urls = Column(JSONType, nullable=True)
    url = Column(String(2048), nullable=True)

    # Timestamps
    ingested_at = Column(DateTime, nullable=False, default=utcnow)
    first_seen_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_intel_feed_modified", "feed_type", "modified_at"),
    )
