"""
Pydantic schemas for request/response validation.

This module contains:
- Request models for incoming data validation
- Response models for API responses
- Item models the sync orchestrator accumulates into its report
"""

from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from meshsync.utils import TIMESTAMP_FORMAT_HINT, is_valid_timestamp


# =============================================================================
# Sync Request Models
# =============================================================================

class SyncRequest(BaseModel):
    """
    Envelope of a POST /sync batch.

    Only the envelope is validated here. Entries of ``messages`` are kept raw
    and validated one by one by the orchestrator, so a bad entry becomes an
    error item instead of rejecting the batch.
    """
    messages: list[Any] = Field(
        ...,
        description="Messages buffered on the device while offline"
    )
    conflict_strategy: Any = Field(
        default="skip",
        description="One of skip, latest, overwrite, version"
    )

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "messages": [
                        {
                            "id": "m1",
                            "device_id": "dev-a",
                            "content": "Need water at the north shelter",
                            "lat": 12.97,
                            "lon": 77.59,
                            "timestamp": "2024-01-01T00:00:00Z"
                        }
                    ],
                    "conflict_strategy": "latest"
                }
            ]
        }
    }


# =============================================================================
# Sync Report Items
# =============================================================================

class SavedItem(BaseModel):
    """A message inserted as new."""
    id: str
    timestamp: str


class UpdatedItem(BaseModel):
    """A message that overwrote a stored one with the same id."""
    id: str
    version: int = Field(..., ge=2)
    timestamp: str


class SkippedItem(BaseModel):
    """A message left unapplied: duplicate content or a losing conflict."""
    id: str
    reason: str


class ErrorItem(BaseModel):
    """A message that failed validation or storage."""
    message_id: str
    reason: str


class ConflictItem(BaseModel):
    """Ledger entry for a same-id collision, whatever its outcome."""
    message_id: str
    strategy_used: Any
    existing_timestamp: str
    new_timestamp: str


class SyncSummary(BaseModel):
    saved: int = Field(..., ge=0)
    updated: int = Field(..., ge=0)
    skipped: int = Field(..., ge=0)
    errors: int = Field(..., ge=0)
    conflicts: int = Field(..., ge=0)


class SyncDetails(BaseModel):
    saved: list[SavedItem] = Field(default_factory=list)
    updated: list[UpdatedItem] = Field(default_factory=list)
    skipped: list[SkippedItem] = Field(default_factory=list)
    errors: list[ErrorItem] = Field(default_factory=list)
    conflicts: list[ConflictItem] = Field(default_factory=list)


class SyncResponse(BaseModel):
    """Response model for POST /sync."""
    status: str = Field(default="completed", description="Batch processing status")
    summary: SyncSummary
    details: SyncDetails


# =============================================================================
# Message Response Models
# =============================================================================

class ErrorResponse(BaseModel):
    """Response model for error responses."""
    detail: str = Field(..., description="Error description")


class MessageResponse(BaseModel):
    """Response model for a stored message."""
    id: str = Field(..., description="Client generated message id")
    device_id: str = Field(..., description="Originating device")
    content: str = Field(..., description="Message payload")
    lat: Optional[float] = Field(None, description="Latitude")
    lon: Optional[float] = Field(None, description="Longitude")
    timestamp: str = Field(..., description="Device timestamp as submitted")
    created_at: str = Field(..., description="Server insert time")
    updated_at: str = Field(..., description="Server time of last accepted update")
    version: int = Field(..., ge=1, description="Incremented on each accepted update")

    model_config = {"from_attributes": True}


class FiltersApplied(BaseModel):
    device_id: str = "all"
    limit: Any = "none"
    since: str = "none"
    until: str = "none"
    min_version: Any = "none"


class MessagesListResponse(BaseModel):
    """
    Response model for GET /sync.

    Contains:
    - messages: messages matching filters, newest event first
    - count: number of messages returned
    - filters_applied: echo of the filters, "all"/"none" when unset
    """
    messages: list[MessageResponse] = Field(default_factory=list)
    count: int = Field(..., ge=0)
    filters_applied: FiltersApplied


class ConflictHistoryItem(BaseModel):
    """A message that has been overwritten at least once."""
    id: str
    device_id: str
    content: str
    version: int = Field(..., ge=2)
    updated_at: str

    model_config = {"from_attributes": True}


class ConflictHistoryResponse(BaseModel):
    """Response model for GET /conflicts."""
    conflicts: list[ConflictHistoryItem] = Field(default_factory=list)
    count: int = Field(..., ge=0)


class DeleteResponse(BaseModel):
    success: bool = True
    deleted_id: str


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    database: Optional[str] = Field(None, description="Database connectivity")
    total_messages: Optional[int] = Field(None, ge=0, description="Stored message count")
    reason: Optional[str] = Field(None, description="Reason if not ready")


# =============================================================================
# Alert and Contact Models
# =============================================================================

class AlertStatus(str, Enum):
    ACTIVE = "active"
    RESOLVED = "resolved"


class AlertCreate(BaseModel):
    """Request model for raising an emergency alert."""
    id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    device_id: Optional[str] = None
    alert_type: Literal["SOS", "SAFE"]
    message: Optional[str] = Field(None, max_length=4096)
    lat: float = Field(..., ge=-90, le=90)
    lon: float = Field(..., ge=-180, le=180)
    timestamp: str

    @field_validator("timestamp")
    @classmethod
    def validate_timestamp(cls, v: str) -> str:
        """Accept the same two timestamp shapes as synced messages."""
        if not is_valid_timestamp(v):
            raise ValueError(f"Invalid timestamp format. {TIMESTAMP_FORMAT_HINT}")
        return v


class AlertUpdate(BaseModel):
    """Request model for PUT /alerts/{id}."""
    status: AlertStatus
    resolved_by: Optional[str] = Field(
        None,
        description="Who resolved the alert; only kept when status is resolved"
    )


class AlertResponse(BaseModel):
    id: str
    user_id: str
    device_id: Optional[str] = None
    alert_type: str
    message: Optional[str] = None
    lat: float
    lon: float
    status: AlertStatus
    timestamp: str
    resolved: bool
    resolved_by: Optional[str] = None
    resolved_at: Optional[str] = None
    created_at: str
    updated_at: str

    model_config = {"from_attributes": True}


class ContactCreate(BaseModel):
    """Request model for adding an emergency contact."""
    id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)


class ContactResponse(BaseModel):
    id: str
    user_id: str
    name: str
    phone: str
    created_at: str

    model_config = {"from_attributes": True}
