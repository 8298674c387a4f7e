"""
Pydantic schemas for SLA policy endpoints.

WHAT: Request/response schemas for per-priority SLA policies.

WHY: Hours are whole positive numbers, and a response budget longer than
the resolution budget is rejected before it reaches the service.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from helpdesk.models.ticket import TicketPriority


class SLAPolicyCreate(BaseModel):
    """
    SLA policy creation request.

    WHY: Creating a policy for a priority deactivates any other active
    policy for that priority, so exactly one applies.
    """

    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=5000)
    priority: TicketPriority
    response_time_hours: int = Field(..., gt=0, description="First response budget")
    resolution_time_hours: int = Field(..., gt=0, description="Resolution budget")
    is_active: bool = True

    @model_validator(mode="after")
    def response_within_resolution(self) -> "SLAPolicyCreate":
        if self.response_time_hours > self.resolution_time_hours:
            raise ValueError("response_time_hours cannot exceed resolution_time_hours")
        return self

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "name": "Urgent",
                "priority": "urgent",
                "response_time_hours": 1,
                "resolution_time_hours": 4,
            }
        }
    )


class SLAPolicyUpdate(BaseModel):
    """Partial update. Priority is fixed once created."""

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=5000)
    response_time_hours: Optional[int] = Field(default=None, gt=0)
    resolution_time_hours: Optional[int] = Field(default=None, gt=0)
    is_active: Optional[bool] = None


class SLAPolicyResponse(BaseModel):
    id: int
    org_id: int
    name: str
    description: Optional[str] = None
    priority: TicketPriority
    response_time_hours: int
    resolution_time_hours: int
    is_active: bool
    created_by_user_id: Optional[int] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
