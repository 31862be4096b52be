"""
Pydantic schemas for API request/response models
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from core.time import utcnow

# ============================================================================
# Health Check Schemas
# ============================================================================

class CheckpointInfo(BaseModel):
    """Ingestion checkpoint information for health check"""

    model_config = ConfigDict(from_attributes=True)

    cursor: Optional[str] = None
    total_ingested: int = 0
    updated_at: Optional[datetime] = None


class HealthCheckResponse(BaseModel):
    """Health check response model"""
    status: str = Field("healthy", description="Overall system status: healthy, degraded, unhealthy")
    timestamp: datetime = Field(default_factory=utcnow)
    database_connected: bool
    checkpoint: Optional[CheckpointInfo] = None

    @model_validator(mode="after")
    def determine_status(self):
        """A missing checkpoint row means migrations have not been applied"""
        if not self.database_connected:
            self.status = "unhealthy"
        elif self.checkpoint is None:
            self.status = "degraded"
        else:
            self.status = "healthy"
        return self

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "status": "healthy",
                "timestamp": "2024-01-15T10:30:00Z",
                "database_connected": True,
                "checkpoint": {
                    "cursor": "c_000123",
                    "total_ingested": 123000,
                    "updated_at": "2024-01-15T10:29:58Z"
                }
            }
        }
    )


# ============================================================================
# Statistics Schemas
# ============================================================================

class StatsResponse(BaseModel):
    """Statistics response model"""
    timestamp: datetime = Field(default_factory=utcnow)

    total_ingested: int = Field(..., ge=0, description="Rows inserted according to the checkpoint")
    stored_events: int = Field(..., ge=0, description="Rows currently in ingested_events")
    cursor: Optional[str] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "timestamp": "2024-01-15T10:30:00Z",
                "total_ingested": 123000,
                "stored_events": 123000,
                "cursor": "c_000123",
                "updated_at": "2024-01-15T10:29:58Z"
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
