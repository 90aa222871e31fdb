"""
Token encryption helpers

OAuth tokens are stored encrypted with Fernet and only decrypted when a
provider call needs them.
"""

import base64
import hashlib
import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from .config import SECRET_KEY, TOKEN_ENCRYPTION_KEY

logger = logging.getLogger(__name__)


def derive_fernet_key(secret: str) -> bytes:
    """Derive a valid 32-byte urlsafe Fernet key from an arbitrary secret"""
    digest = hashlib.sha256(secret.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest)


def build_cipher(key: Optional[str] = None) -> Fernet:
    if key:
        return Fernet(key.encode())
    return Fernet(derive_fernet_key(SECRET_KEY))


cipher_suite = build_cipher(TOKEN_ENCRYPTION_KEY)


def encrypt_token(token: str) -> str:
    """Encrypt token for storage"""
    return cipher_suite.encrypt(token.encode()).decode()


def decrypt_token(encrypted_token: str) -> str:
    """Decrypt stored token"""
    try:
        return cipher_suite.decrypt(encrypted_token.encode()).decode()
    except InvalidToken:
        logger.error("❌ Stored Calendly token could not be decrypted - key rotated?")
        raise
