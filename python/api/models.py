"""
Pydantic request/response schemas for the Judicial Consultation API

Mirrors the case views produced by database.consultation_service for API validation.
"""

import re
from typing import List, Optional, Dict, Any

from pydantic import BaseModel, Field, field_validator


def _clean_case_number(value: str) -> str:
    cleaned = re.sub(r'\s+', '', value or '')
    if not cleaned:
        raise ValueError("case_number must not be empty")
    return cleaned


class ConsultRequest(BaseModel):
    """Request schema for a case consultation."""
    case_number: str = Field(
        ...,
        min_length=1,
        max_length=50,
        description="Case number (numero de radicacion) issued by the portal"
    )

    @field_validator('case_number')
    @classmethod
    def validate_case_number(cls, v: str) -> str:
        return _clean_case_number(v)


class MonitorRequest(BaseModel):
    """Request schema for adding a case to the caller's monitoring list."""
    case_number: str = Field(..., min_length=1, max_length=50, description="Case number to monitor")
    role: str = Field(default="observer", max_length=50, description="Caller's role in the case")
    alias: Optional[str] = Field(default=None, max_length=200, description="Caller's label for the case")

    @field_validator('case_number')
    @classmethod
    def validate_case_number(cls, v: str) -> str:
        return _clean_case_number(v)


class ActivityItem(BaseModel):
    """Procedural activity of a case."""
    portal_activity_id: Optional[int] = None
    sequence_number: Optional[int] = None
    activity_date: Optional[str] = Field(default=None, description="ISO 8601 date")
    activity_type: str = Field(..., description="hearing, resolution, notification, document, appeal or other")
    description: str
    annotation: Optional[str] = None
    term_start_date: Optional[str] = None
    term_end_date: Optional[str] = None
    rule_code: Optional[str] = None
    has_documents: bool = False
    folio_count: int = 0


class SubjectItem(BaseModel):
    """Party of a case."""
    portal_subject_id: Optional[int] = None
    name: str
    role: str = Field(..., description="plaintiff, defendant or other")
    raw_role: Optional[str] = None
    id_number: Optional[str] = None
    id_type: Optional[str] = None
    representative: Optional[str] = None
    has_representative: bool = False


class CaseViewResponse(BaseModel):
    """Response schema for a consultation."""
    success: bool = True
    source: str = Field(..., description="cache or portal")
    degraded: bool = Field(default=False, description="True when placeholder data is returned")
    sync_status: Optional[str] = Field(default=None, description="full or partial, for fresh scrapes")
    sync_failures: Dict[str, str] = Field(default_factory=dict, description="Child collections that failed to sync")
    data: Dict[str, Any] = Field(..., description="Case fields with activities, subjects and documents")


class SearchResponse(BaseModel):
    """Response schema for local case search."""
    success: bool = True
    results: List[Dict[str, Any]] = Field(default_factory=list)
    total: int = Field(..., ge=0)
    page: int = Field(..., ge=1)
    limit: int = Field(..., ge=1)
    pages: int = Field(..., ge=0)


class ActivityListResponse(BaseModel):
    """Stored activities of a case, newest first."""
    success: bool = True
    case_number: str
    activities: List[ActivityItem] = Field(default_factory=list)


class SubjectListResponse(BaseModel):
    """Stored parties of a case."""
    success: bool = True
    case_number: str
    subjects: List[SubjectItem] = Field(default_factory=list)


class MonitorResponse(BaseModel):
    """Response schema for monitoring changes."""
    success: bool = True
    message: str
    data: Optional[Dict[str, Any]] = None


class MonitoredListResponse(BaseModel):
    """Cases monitored by the caller."""
    success: bool = True
    results: List[Dict[str, Any]] = Field(default_factory=list)
    total: int = Field(..., ge=0)


class HealthResponse(BaseModel):
    """Response schema for health check endpoint."""
    status: str = Field(default="healthy", description="Service status")
    database: Dict[str, Any] = Field(default_factory=dict, description="Store health details")
    version: str = Field(..., description="API version")
    uptime_seconds: Optional[int] = Field(default=None, description="Server uptime in seconds")
    error_message: Optional[str] = Field(default=None, description="Error detail when unhealthy")


class ErrorDetail(BaseModel):
    """Detailed error information."""
    code: str = Field(..., description="Error code for programmatic handling")
    message: str = Field(..., description="Human-readable error message")
    field: Optional[str] = Field(default=None, description="Field that caused error")
    suggestion: Optional[str] = Field(default=None, description="How to fix the error")
    timestamp: str = Field(..., description="Error timestamp (ISO 8601)")


class ErrorResponse(BaseModel):
    """Standardized error response format."""
    success: bool = False
    error: ErrorDetail
