"""Credential repository - Database operations for Calendly OAuth credentials"""

from typing import Any, Optional

from sqlalchemy import delete, update
from sqlalchemy.orm import Session

from ...database import dialect_insert
from ...models import CalendlyCredential
from ...security_utils import decrypt_token, encrypt_token
from ...shared.validators import utcnow
from .schemas import Credential

ENCRYPTED_FIELDS = ("access_token", "refresh_token")
REQUIRED_FIELDS = ("access_token", "refresh_token", "expires_at")


class CredentialRepository:
    """Repository for credential database operations. Storage errors propagate."""

    @staticmethod
    def get(db: Session, user_id: str) -> Optional[Credential]:
        """Get the decrypted credential for a user, or None when not connected"""
        row = db.get(CalendlyCredential, user_id)
        if row is None:
            return None
        return Credential(
            user_id=row.user_id,
            access_token=decrypt_token(row.access_token),
            refresh_token=decrypt_token(row.refresh_token),
            token_type=row.token_type or "Bearer",
            expires_at=row.expires_at,
            calendly_user_uri=row.calendly_user_uri,
            calendly_organization_uri=row.calendly_organization_uri,
            scheduling_url=row.scheduling_url,
        )

    @staticmethod
    def upsert(db: Session, user_id: str, create: bool = False, **fields: Any) -> bool:
        """
        Write credential fields for a user.

        With create=True (the OAuth connect path) this is a single atomic
        insert-or-update on user_id and all token fields are required. Every
        other write (identity resolution, refreshed tokens) only updates an
        existing row, so a concurrent disconnect is not undone. Returns False
        when there was no row to write.
        """
        values = dict(fields)
        for key in ENCRYPTED_FIELDS:
            if values.get(key) is not None:
                values[key] = encrypt_token(values[key])
        values["updated_at"] = utcnow()

        if create:
            missing = [key for key in REQUIRED_FIELDS if values.get(key) is None]
            if missing:
                raise ValueError(f"Cannot create credential without {', '.join(missing)}")
            stmt = dialect_insert(db, CalendlyCredential.__table__).values(user_id=user_id, **values)
            stmt = stmt.on_conflict_do_update(
                index_elements=[CalendlyCredential.user_id],
                set_={key: stmt.excluded[key] for key in values},
            )
        else:
            stmt = (
                update(CalendlyCredential)
                .where(CalendlyCredential.user_id == user_id)
                .values(**values)
            )

        try:
            result = db.execute(stmt)
            db.commit()
        except Exception:
            db.rollback()
            raise
        return result.rowcount > 0

    @staticmethod
    def delete(db: Session, user_id: str) -> bool:
        """Delete the credential row. Returns False if there was none."""
        try:
            result = db.execute(
                delete(CalendlyCredential).where(CalendlyCredential.user_id == user_id)
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        return result.rowcount > 0
