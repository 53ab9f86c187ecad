"""
Pydantic models for raw NVD CVE API 2.0 items.

Each known CVSS schema version is an explicit optional field, so picking the
best available metric is an ordered lookup instead of probing nested dicts.
Unknown keys are ignored; missing collections default to empty lists.
"""

from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


class NvdModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class LangString(NvdModel):
    lang: Optional[str] = None
    value: Optional[str] = None


class CvssData(NvdModel):
    version: Optional[str] = None
    base_score: Optional[float] = Field(None, alias="baseScore")
    base_severity: Optional[str] = Field(None, alias="baseSeverity")
    vector_string: Optional[str] = Field(None, alias="vectorString")


class CvssMetric(NvdModel):
    source: Optional[str] = None
    type: Optional[str] = None
    cvss_data: Optional[CvssData] = Field(None, alias="cvssData")
    # CVSS v2 keeps the severity next to cvssData rather than inside it
    base_severity: Optional[str] = Field(None, alias="baseSeverity")


class CveMetrics(NvdModel):
    cvss_v40: List[CvssMetric] = Field(default_factory=list, alias="cvssMetricV40")
    cvss_v31: List[CvssMetric] = Field(default_factory=list, alias="cvssMetricV31")
    cvss_v30: List[CvssMetric] = Field(default_factory=list, alias="cvssMetricV30")
    cvss_v2: List[CvssMetric] = Field(default_factory=list, alias="cvssMetricV2")

    @field_validator("cvss_v40", "cvss_v31", "cvss_v30", "cvss_v2", mode="before")
    @classmethod
    def null_as_empty(cls, v):
        return [] if v is None else v

    def by_preference(self) -> Tuple[Tuple[str, List[CvssMetric]], ...]:
        """Metric lists ordered newest schema version first"""
        return (
            ("4.0", self.cvss_v40),
            ("3.1", self.cvss_v31),
            ("3.0", self.cvss_v30),
            ("2.0", self.cvss_v2),
        )


class Weakness(NvdModel):
    source: Optional[str] = None
    type: Optional[str] = None
    description: List[LangString] = Field(default_factory=list)

    @field_validator("description", mode="before")
    @classmethod
    def null_as_empty(cls, v):
        return [] if v is None else v


class Reference(NvdModel):
    url: Optional[str] = None
    source: Optional[str] = None


class CveItem(NvdModel):
    id: Optional[str] = None
    source_identifier: Optional[str] = Field(None, alias="sourceIdentifier")
    published: Optional[str] = None
    last_modified: Optional[str] = Field(None, alias="lastModified")
    vuln_status: Optional[str] = Field(None, alias="vulnStatus")
    descriptions: List[LangString] = Field(default_factory=list)
    metrics: CveMetrics = Field(default_factory=CveMetrics)
    weaknesses: List[Weakness] = Field(default_factory=list)
    references: List[Reference] = Field(default_factory=list)

    @field_validator("descriptions", "weaknesses", "references", mode="before")
    @classmethod
    def null_as_empty(cls, v):
        return [] if v is None else v

    @field_validator("metrics", mode="before")
    @classmethod
    def null_as_no_metrics(cls, v):
        return {} if v is None else v


class NvdVulnerability(NvdModel):
    """One element of the ``vulnerabilities`` array"""
    cve: CveItem
