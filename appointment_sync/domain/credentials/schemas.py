"""Credential domain schemas"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class Credential(BaseModel):
    """Decrypted view of a calendly_credentials row"""

    user_id: str
    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_at: datetime
    calendly_user_uri: Optional[str] = None
    calendly_organization_uri: Optional[str] = None
    scheduling_url: Optional[str] = None

    @property
    def has_identity(self) -> bool:
        return bool(self.calendly_user_uri or self.calendly_organization_uri)


class ConnectionStatus(BaseModel):
    connected: bool
    scheduling_url: Optional[str] = None
    calendly_user_uri: Optional[str] = None
    calendly_organization_uri: Optional[str] = None
    expires_at: Optional[datetime] = None
