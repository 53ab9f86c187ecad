"""
Pydantic schemas for API request/response models
"""

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel
from typing import Optional, List
from datetime import datetime
from models.base import CycleState, FeedType, utcnow


# ============================================================================
# Fetch Trigger Schemas
# ============================================================================

class CycleSummary(BaseModel):
    """Result of one fetch invocation, serialized with camelCase keys"""

    source_id: str
    run_id: str
    state: CycleState
    total_entries: Optional[int] = Field(None, description="Upstream total for the window, if reported")
    processed_entries: int = Field(0, description="Records stored during this invocation")
    new_offset: int = Field(0, description="Offset the next invocation resumes from")
    has_more: bool = Field(False, description="True unless the window was fully consumed")
    pages_fetched: int = 0
    requests_made: int = 0
    invalid_entries: int = 0
    failed_entries: int = 0
    window_start: Optional[datetime] = None
    window_end: Optional[datetime] = None
    error: Optional[str] = None

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
        json_schema_extra={
            "example": {
                "sourceId": "nvd",
                "runId": "550e8400-e29b-41d4-a716-446655440000",
                "state": "budget_stopped",
                "totalEntries": 5000,
                "processedEntries": 3000,
                "newOffset": 3000,
                "hasMore": True,
                "pagesFetched": 3,
                "requestsMade": 3,
                "invalidEntries": 0,
                "failedEntries": 0,
                "windowStart": "2024-01-01T00:00:00",
                "windowEnd": "2024-01-15T10:30:00",
                "error": None
            }
        }
    )


# ============================================================================
# Health Check Schemas
# ============================================================================

class CheckpointInfo(BaseModel):
    """Checkpoint information for health check"""
    source_id: str
    feed_type: FeedType
    last_status: Optional[CycleState] = None
    last_fetch_time: Optional[datetime] = None
    last_success_time: Optional[datetime] = None
    last_run_at: Optional[datetime] = None
    next_offset: int = 0
    items_fetched: int = 0
    in_progress: bool = False
    last_error: Optional[str] = None

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class HealthCheckResponse(BaseModel):
    """Health check response model"""
    status: str = Field("healthy", description="Overall system status: healthy, degraded, unhealthy")
    timestamp: datetime = Field(default_factory=utcnow)
    database_connected: bool
    checkpoints: List[CheckpointInfo] = Field(default_factory=list)
    total_sources: int = 0
    successful_sources: int = 0
    failed_sources: int = 0

    @model_validator(mode="after")
    def determine_status(self):
        """Determine overall health status"""
        if not self.database_connected:
            self.status = "unhealthy"
        elif self.total_sources == 0 or self.failed_sources == 0:
            self.status = "healthy"
        elif self.failed_sources < self.total_sources:
            self.status = "degraded"
        else:
            self.status = "unhealthy"
        return self

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "status": "healthy",
                "timestamp": "2024-01-15T10:30:00Z",
                "database_connected": True,
                "total_sources": 2,
                "successful_sources": 2,
                "failed_sources": 0,
                "checkpoints": [
                    {
                        "source_id": "nvd",
                        "feed_type": "nvd",
                        "last_status": "done",
                        "last_fetch_time": "2024-01-15T10:00:00",
                        "last_success_time": "2024-01-15T10:00:00",
                        "next_offset": 0,
                        "items_fetched": 15230,
                        "in_progress": False
                    }
                ]
            }
        }
    )


# ============================================================================
# Error Response Schema
# ============================================================================

class ErrorResponse(BaseModel):
    """Standard error response"""
    error: str
    detail: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "error": "Unknown source",
                "detail": "No feed source is registered as 'foo'",
                "timestamp": "2024-01-15T10:30:00Z"
            }
        }
    )
