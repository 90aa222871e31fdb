"""Appointment domain schemas - Pydantic models for validation"""

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict

AppointmentStatus = Literal["booked", "canceled", "rescheduled"]


class AppointmentCandidate(BaseModel):
    """Canonical appointment record handed to the reconciler"""

    user_id: str
    event_uri: str
    event_type: Optional[str] = None
    invitee_email: Optional[str] = None
    invitee_name: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    status: AppointmentStatus = "booked"
    # Only webhooks carry a body; sweeps leave the stored one untouched
    raw_payload: Optional[dict[str, Any]] = None


class AppointmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    event_uri: str
    event_type: Optional[str] = None
    invitee_email: Optional[str] = None
    invitee_name: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    status: AppointmentStatus
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class AppointmentListResponse(BaseModel):
    appointments: list[AppointmentResponse]
    count: int
