"""
Pydantic schemas for ticket endpoints.

WHAT: Request/response schemas for ticket management API.

WHY: Schemas define API contracts for ticket operations:
1. Validate incoming request data (transitions carry expected_version
   for optimistic concurrency)
2. Document API for OpenAPI/Swagger
3. Control which fields are exposed

HOW: Pydantic v2 with Field validators; responses read straight from the
SQLAlchemy models via from_attributes.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from helpdesk.models.ticket import TicketHistoryAction, TicketPriority, TicketStatus
from helpdesk.schemas.escalation import ExecutionResultResponse


# ============================================================================
# Ticket Schemas
# ============================================================================


class TicketCreate(BaseModel):
    """
    Ticket creation request.

    WHAT: Data for creating a new support ticket.

    WHY: team_id may be omitted by employees (their own team is used) and
    by team leaders who lead exactly one team.
    """

    subject: str = Field(
        ...,
        min_length=1,
        max_length=500,
        description="Ticket subject/title",
    )
    description: str = Field(
        ...,
        min_length=1,
        max_length=50000,
        description="Detailed description of the issue",
    )
    priority: TicketPriority = Field(
        default=TicketPriority.MEDIUM,
        description="Ticket priority",
    )
    team_id: Optional[int] = Field(default=None, gt=0, description="Owning team")
    assigned_to_user_id: Optional[int] = Field(default=None, gt=0, description="Initial assignee")
    custom_sla_due_at: Optional[datetime] = Field(
        default=None,
        description="Deadline overriding the priority policy",
    )

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "subject": "VPN drops every few minutes",
                "description": "Since this morning the VPN disconnects roughly every five minutes.",
                "priority": "high",
                "team_id": 3,
            }
        }
    )


class _VersionedChange(BaseModel):
    expected_version: Optional[int] = Field(
        default=None,
        ge=1,
        description="Version the client last read; a mismatch returns 409",
    )


class TicketStatusChange(_VersionedChange):
    """Status transition request."""

    status: TicketStatus = Field(..., description="New status")


class TicketPriorityChange(_VersionedChange):
    """Priority change request. Restarts the SLA clock under the new policy."""

    priority: TicketPriority = Field(..., description="New priority")


class TicketAssign(_VersionedChange):
    """
    Ticket assignment request.

    WHY: Assignment may move the ticket to another team in the same call so
    the assignee check runs against the destination team.
    """

    assigned_to_user_id: Optional[int] = Field(
        default=None,
        description="User ID to assign to (None to unassign)",
    )
    team_id: Optional[int] = Field(default=None, gt=0, description="Move to this team")


class CustomSLARequest(_VersionedChange):
    """Custom deadline for a single ticket."""

    due_at: datetime = Field(..., description="Overriding deadline (UTC)")


class TicketResponse(BaseModel):
    """
    Ticket response schema.

    WHAT: Ticket data for API responses.

    WHY: Includes version so clients can send expected_version back.
    """

    id: int = Field(..., description="Ticket ID")
    org_id: int = Field(..., description="Organization ID")
    ticket_number: int = Field(..., description="Sequential number within the organization")
    subject: str = Field(..., description="Ticket subject")
    description: str = Field(..., description="Ticket description")
    status: TicketStatus = Field(..., description="Current status")
    priority: TicketPriority = Field(..., description="Priority level")
    created_by_user_id: int = Field(..., description="Creator")
    assigned_to_user_id: Optional[int] = Field(None, description="Assignee")
    team_id: Optional[int] = Field(None, description="Owning team")

    sla_due_at: Optional[datetime] = Field(None, description="Effective SLA deadline")
    custom_sla_due_at: Optional[datetime] = Field(None, description="Custom deadline, if set")

    status_changed_at: Optional[datetime] = Field(None, description="When the status last changed")
    resolved_at: Optional[datetime] = Field(None, description="When resolved")
    closed_at: Optional[datetime] = Field(None, description="When closed")
    created_at: datetime = Field(..., description="Creation timestamp")
    updated_at: Optional[datetime] = Field(None, description="Last update timestamp")
    version: int = Field(..., description="Optimistic concurrency version")

    model_config = ConfigDict(from_attributes=True)


class TicketListResponse(BaseModel):
    """Paginated ticket list."""

    items: List[TicketResponse] = Field(..., description="Tickets on this page")
    total: int = Field(..., description="Total tickets matching the filters")
    skip: int = Field(..., description="Offset")
    limit: int = Field(..., description="Page size")


class TicketTransitionResponse(BaseModel):
    """
    Result of a ticket transition.

    WHAT: The updated ticket plus the escalation rules evaluated after it.
    """

    ticket: TicketResponse
    escalations: List[ExecutionResultResponse] = Field(default_factory=list)


# ============================================================================
# SLA
# ============================================================================


class TicketSLAResponse(BaseModel):
    """
    Live SLA state of one ticket.

    WHAT: Deadline, remaining time and classification at the time of the
    request. Never read from a stored flag.
    """

    ticket_id: int = Field(..., description="Ticket ID")
    priority: TicketPriority = Field(..., description="Ticket priority")
    status: TicketStatus = Field(..., description="Ticket status")
    due_at: datetime = Field(..., description="Effective deadline")
    remaining_seconds: int = Field(..., description="Seconds until the deadline (negative once breached)")
    formatted: str = Field(..., description="Human-readable remaining time (e.g. '2h 30m')")
    classification: str = Field(..., description="on_track, near_breach or breached")
    is_breached: bool = Field(..., description="True if the deadline has passed")
    is_custom: bool = Field(..., description="True if a custom deadline applies")


# ============================================================================
# Followers
# ============================================================================


class FollowersAdd(BaseModel):
    """Users to add as followers."""

    user_ids: List[int] = Field(..., min_length=1, description="User IDs to add")


class FollowersResponse(BaseModel):
    ticket_id: int
    user_ids: List[int]


class FollowersAddedResponse(BaseModel):
    ticket_id: int
    added: List[int] = Field(..., description="User IDs actually added")


# ============================================================================
# Comments
# ============================================================================


class CommentCreate(BaseModel):
    """
    Comment creation request.

    WHY: Internal notes are hidden from employees and require ticket
    update permission to write.
    """

    content: str = Field(
        ...,
        min_length=1,
        max_length=50000,
        description="Comment content",
    )
    is_internal: bool = Field(
        default=False,
        description="True for internal notes",
    )

    @field_validator("content")
    @classmethod
    def content_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Comment content cannot be blank")
        return v


class CommentResponse(BaseModel):
    id: int = Field(..., description="Comment ID")
    ticket_id: int = Field(..., description="Parent ticket ID")
    user_id: int = Field(..., description="Author")
    content: str = Field(..., description="Comment content")
    is_internal: bool = Field(..., description="True if internal note")
    created_at: datetime = Field(..., description="Creation timestamp")

    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# Feedback
# ============================================================================


class FeedbackCreate(BaseModel):
    """Customer rating for a resolved or closed ticket."""

    rating: int = Field(..., ge=1, le=5, description="Rating from 1 (poor) to 5 (excellent)")
    comment: Optional[str] = Field(default=None, max_length=5000)


class FeedbackResponse(BaseModel):
    id: int
    ticket_id: int
    user_id: int
    rating: int
    comment: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class FeedbackSubmittedResponse(BaseModel):
    feedback: FeedbackResponse
    escalations: List[ExecutionResultResponse] = Field(default_factory=list)


# ============================================================================
# History
# ============================================================================


class TicketHistoryResponse(BaseModel):
    id: int
    ticket_id: int
    user_id: Optional[int] = Field(None, description="Actor (None for system actions)")
    action: TicketHistoryAction
    field_name: Optional[str] = None
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
