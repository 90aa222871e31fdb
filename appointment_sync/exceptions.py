"""
Calendly sync error taxonomy

Routers translate these into HTTP responses; nothing here is fatal to the process.
"""

from typing import Optional


class CalendlySyncError(Exception):
    """Base class for appointment sync failures"""


class AuthExchangeFailed(CalendlySyncError):
    """OAuth code (or refresh token) exchange was rejected by Calendly"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class NotConnected(CalendlySyncError):
    """No Calendly credential row exists for the user"""

    def __init__(self, user_id: str):
        super().__init__(f"Calendly not connected for user {user_id}")
        self.user_id = user_id


class MissingProviderIdentity(CalendlySyncError):
    """Neither a Calendly user URI nor an organization URI could be resolved"""


class ProviderRequestFailed(CalendlySyncError):
    """Calendly answered with a non-2xx status, or could not be reached at all"""

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class SignatureInvalid(CalendlySyncError):
    """Inbound webhook failed signature verification"""


class ResolutionFailed(CalendlySyncError):
    """A webhook was accepted but could not be resolved into a full appointment"""


class SyncCancelled(CalendlySyncError):
    """A sweep was aborted through its cancellation signal"""

    def __init__(self, processed: int):
        super().__init__(f"Sync cancelled after {processed} events")
        self.processed = processed
