import uuid

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    DateTime,
    String,
    Text,
)
from sqlalchemy.sql import func

from .database import Base

APPOINTMENT_STATUSES = ("booked", "canceled", "rescheduled")


def generate_public_id():
    """Generate a unique local ID for an appointment row"""
    return str(uuid.uuid4())


class CalendlyCredential(Base):
    """One OAuth credential per local user. Row presence means "connected"."""

    __tablename__ = "calendly_credentials"

    user_id = Column(String(64), primary_key=True)

    # OAuth tokens (encrypted)
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text, nullable=False)
    token_type = Column(String(32), nullable=False, default="Bearer")
    expires_at = Column(DateTime, nullable=False)

    # Calendly identity, resolved lazily after OAuth
    calendly_user_uri = Column(String(500), nullable=True)
    calendly_organization_uri = Column(String(500), nullable=True)
    scheduling_url = Column(String(500), nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class Appointment(Base):
    """One Calendly scheduled event as seen by one local user"""

    __tablename__ = "appointments"
    __table_args__ = (
        CheckConstraint(
            "status IN ('booked', 'canceled', 'rescheduled')", name="ck_appointments_status"
        ),
    )

    id = Column(String(36), primary_key=True, default=generate_public_id)
    user_id = Column(String(64), nullable=False, index=True)
    # Unique across the whole table, not per user
    event_uri = Column(String(500), nullable=False, unique=True)
    event_type = Column(String(500), nullable=True)
    invitee_email = Column(String(255), nullable=True)
    invitee_name = Column(String(255), nullable=True)
    start_time = Column(DateTime, nullable=True, index=True)
    end_time = Column(DateTime, nullable=True)
    status = Column(String(20), nullable=False, default="booked")
    raw_payload = Column(JSON, nullable=True)  # Last webhook body, kept verbatim

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
