"""
Symmetric encryption for provider credentials stored at rest.

Access and refresh tokens are encrypted with Fernet before they reach the
``integration`` table and decrypted only for the duration of a sync pass.

Key Derivation:
- HKDF with SHA256 derives a stable 32-byte Fernet key from SECRET_KEY
- The same SECRET_KEY always yields the same key, so tokens stay readable
  across restarts; rotating SECRET_KEY forces users to reconnect

Usage:
    from app.core.encryption import encrypt_token, decrypt_token

    encrypted = encrypt_token(grant.access_token)
    access_token = decrypt_token(integration.access_token_encrypted)
"""
import base64
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from app.core.config import settings
from app.core.logging_config import log_error

_fernet_key_cache: Optional[bytes] = None


def _get_fernet_key() -> bytes:
    """Derive (once) the Fernet key from the application's SECRET_KEY."""
    global _fernet_key_cache

    if _fernet_key_cache is not None:
        return _fernet_key_cache

    if not settings.secret_key:
        raise ValueError(
            "SECRET_KEY must be set for encryption. "
            "Set it in your .env file or environment variables."
        )

    kdf = HKDF(
        algorithm=hashes.SHA256(),
        length=32,  # Fernet requires exactly 32 bytes
        salt=None,
        info=b'taskfuse-provider-token-encryption'
    )
    derived_key = kdf.derive(settings.secret_key.encode('utf-8'))

    # Fernet expects a URL-safe base64-encoded 32-byte key
    _fernet_key_cache = base64.urlsafe_b64encode(derived_key)
    return _fernet_key_cache


def _get_fernet() -> Fernet:
    return Fernet(_get_fernet_key())


def encrypt_token(token: str) -> str:
    """
    Encrypt a provider credential.

    Args:
        token: The plaintext access or refresh token
    """
    if not token or not token.strip():
        raise ValueError("Cannot encrypt empty token")

    try:
        return _get_fernet().encrypt(token.encode('utf-8')).decode('utf-8')
    except Exception as e:
        log_error(e, action="token_encryption")
        raise


def decrypt_token(encrypted_token: str) -> str:
    """
    Decrypt a credential produced by ``encrypt_token``.

    Raises:
        ValueError: if the value is empty, corrupted or was encrypted with another key
    """
    if not encrypted_token or not encrypted_token.strip():
        raise ValueError("Cannot decrypt empty token")

    try:
        return _get_fernet().decrypt(encrypted_token.encode('utf-8')).decode('utf-8')
    except InvalidToken as e:
        log_error(e, action="token_decryption")
        raise ValueError(
            "Failed to decrypt token. The stored credential is corrupted "
            "or SECRET_KEY has changed; the integration must be reconnected."
        ) from e


def decrypt_optional_token(encrypted_token: Optional[str]) -> Optional[str]:
    """Decrypt a nullable column, mapping empty values to ``None``."""
    if not encrypted_token:
        return None
    return decrypt_token(encrypted_token)


def is_encrypted(value: str) -> bool:
    """Heuristic check for the Fernet token prefix."""
    if not value:
        return False
    return value.startswith("gAAAAA")


def reset_key_cache():
    """Reset the cached Fernet key. Tests only."""
    global _fernet_key_cache
    _fernet_key_cache = None
