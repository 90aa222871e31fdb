"""
Appointment repository - the single write path for Calendly appointments

Every write is one INSERT ... ON CONFLICT (event_uri) DO UPDATE statement.
There is no read-then-write, so concurrent reconciles of the same event from
a webhook and a sweep both succeed and the last applied write wins.
"""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ...database import dialect_insert
from ...models import Appointment, generate_public_id
from ...shared.validators import utcnow
from .schemas import AppointmentCandidate

logger = logging.getLogger(__name__)

# Session.info key holding user ids whose appointments changed in the open transaction
CHANGED_USERS_KEY = "appointment_sync.changed_users"

OVERWRITTEN_FIELDS = (
    "user_id",
    "event_type",
    "invitee_email",
    "invitee_name",
    "start_time",
    "end_time",
    "status",
)


def mark_changed(db: Session, user_id: str) -> None:
    db.info.setdefault(CHANGED_USERS_KEY, set()).add(user_id)


class AppointmentRepository:
    """Repository for appointment database operations"""

    @staticmethod
    def reconcile(db: Session, candidate: AppointmentCandidate) -> None:
        """
        Apply one observed appointment with an atomic upsert on event_uri.

        Status, times and invitee fields are overwritten; created_at and id
        keep their first-insert values; raw_payload is only replaced when
        the candidate carries one.
        """
        now = utcnow()
        values = candidate.model_dump()
        if values["raw_payload"] is None:
            values.pop("raw_payload")

        stmt = dialect_insert(db, Appointment.__table__).values(
            id=generate_public_id(),
            created_at=now,
            updated_at=now,
            **values,
        )
        set_ = {field: stmt.excluded[field] for field in OVERWRITTEN_FIELDS}
        if "raw_payload" in values:
            set_["raw_payload"] = stmt.excluded.raw_payload
        set_["updated_at"] = stmt.excluded.updated_at
        stmt = stmt.on_conflict_do_update(index_elements=[Appointment.event_uri], set_=set_)

        try:
            db.execute(stmt)
            mark_changed(db, candidate.user_id)
            db.commit()
        except Exception:
            db.rollback()
            raise

        logger.debug(f"Reconciled {candidate.event_uri} as {candidate.status} for user {candidate.user_id}")

    @staticmethod
    def list_for_user(db: Session, user_id: str) -> list[Appointment]:
        """All appointments for a user, latest start first"""
        return list(
            db.scalars(
                select(Appointment)
                .where(Appointment.user_id == user_id)
                .order_by(Appointment.start_time.desc(), Appointment.created_at.desc())
            )
        )

    @staticmethod
    def get_by_event_uri(db: Session, event_uri: str) -> Optional[Appointment]:
        return db.scalars(select(Appointment).where(Appointment.event_uri == event_uri)).first()
