"""
SLA Application DTOs
=====================

Data Transfer Objects for the ticket lifecycle API.

These Pydantic models handle serialization/deserialization and validation
for requests and responses. Following YAGNI - only what's needed.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from supportdesk.config import Priority, TicketStatus, BulkOperationKind


# ========== Request DTOs ==========

class TicketCreateDTO(BaseModel):
    """DTO for creating a single ticket."""
    user_id: str = Field(..., min_length=1, description="Requester user ID")
    subject: str = Field(..., min_length=1, max_length=500, description="Ticket subject")
    description: Optional[str] = Field(None, description="Ticket body")
    customer_id: Optional[str] = Field(None, description="Customer the ticket belongs to")
    priority: Optional[Priority] = Field(None, description="Defaults to the configured priority")
    category: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    source: str = Field(default="MANUAL", description="Channel the ticket arrived from")


class TicketUpdateDTO(BaseModel):
    """Partial update. Only fields that were explicitly set are applied."""
    subject: Optional[str] = Field(None, min_length=1, max_length=500)
    description: Optional[str] = None
    status: Optional[TicketStatus] = None
    priority: Optional[Priority] = None
    assigned_agent_id: Optional[str] = None
    category: Optional[str] = None
    tags: Optional[List[str]] = None

    def to_changes(self) -> Dict[str, Any]:
        changes = self.model_dump(exclude_unset=True)
        # Non-nullable columns ignore an explicit null
        for key in ("subject", "status", "priority", "tags"):
            if key in changes and changes[key] is None:
                del changes[key]
        return changes


class CommentCreateDTO(BaseModel):
    """DTO for posting a comment on a ticket."""
    author_id: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1)
    is_internal: bool = Field(default=False, description="Internal notes do not count as a response")


class AssignTicketDTO(BaseModel):
    agent_id: str = Field(..., min_length=1)


class BulkOperationPayload(BaseModel):
    """Operation-specific data for a bulk request."""
    assigned_to: Optional[str] = Field(None, description="Agent ID for 'assign'")
    priority: Optional[Priority] = Field(None, description="New priority for 'update_priority'")
    tag: Optional[str] = Field(None, min_length=1, description="Tag for 'add_tag'")


class BulkOperationRequest(BaseModel):
    """One operation applied independently to a set of tickets."""
    ticket_ids: List[str] = Field(..., min_length=1)
    operation: BulkOperationKind
    data: BulkOperationPayload = Field(default_factory=BulkOperationPayload)

    @field_validator("ticket_ids")
    @classmethod
    def dedupe_ids(cls, v: List[str]) -> List[str]:
        return list(dict.fromkeys(v))

    @model_validator(mode="after")
    def check_payload(self) -> "BulkOperationRequest":
        required = {
            BulkOperationKind.ASSIGN: "assigned_to",
            BulkOperationKind.UPDATE_PRIORITY: "priority",
            BulkOperationKind.ADD_TAG: "tag",
        }.get(self.operation)
        if required and getattr(self.data, required) is None:
            raise ValueError(f"operation '{self.operation.value}' requires data.{required}")
        return self


class TicketFilterDTO(BaseModel):
    """Query parameters for listing tickets."""
    status: Optional[TicketStatus] = None
    priority: Optional[Priority] = None
    assigned_agent_id: Optional[str] = None
    user_id: Optional[str] = None
    customer_id: Optional[str] = None
    category: Optional[str] = None
    sla_breach: Optional[bool] = None
    created_after: Optional[datetime] = None
    created_before: Optional[datetime] = None
    search: Optional[str] = None

    def to_filters(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


# ========== Response DTOs ==========

class TicketResponse(BaseModel):
    """Ticket as returned to callers."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    customer_id: Optional[str] = None
    subject: str
    description: Optional[str] = None
    category: Optional[str] = None
    source: str
    tags: List[str]
    priority: Priority
    status: TicketStatus
    assigned_agent_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    first_response_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    sla_response_time: Optional[int] = None
    sla_resolve_time: Optional[int] = None
    sla_breach: bool
    response_deadline: Optional[datetime] = None
    resolve_deadline: Optional[datetime] = None


class CommentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    ticket_id: str
    author_id: str
    content: str
    is_internal: bool
    created_at: datetime


class TicketListResponse(BaseModel):
    tickets: List[TicketResponse]
    total: int = Field(..., description="Total number of tickets matching the filter")
    page: int
    limit: int


class TicketStatsResponse(BaseModel):
    total: int
    by_status: Dict[str, int]
    sla_breach: int = Field(..., description="Tickets currently flagged as breached")
    avg_response_time: int = Field(..., description="Average minutes to first response")


class BulkOperationResult(BaseModel):
    success: int = Field(..., description="Tickets the operation was applied to")
    failed: int = Field(..., description="Tickets the operation failed for")
    errors: List[str] = Field(default_factory=list, description="Per-ticket error messages")


class SLACheckSummary(BaseModel):
    tickets_evaluated: int = 0
    breaches_detected: int = 0
    breaches_cleared: int = 0
    failed: int = 0
