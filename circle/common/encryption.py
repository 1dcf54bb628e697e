"""Session tokens and password hashing.

Session tokens are Fernet tokens (AES-128-CBC + HMAC-SHA256) whose
plaintext is the user id. Fernet embeds the issue timestamp, so expiry
is enforced at decrypt time with a TTL and no token table is needed.

Passwords are hashed with scrypt and a per-user random salt.

Usage:
    from circle.common.encryption import issue_session_token, verify_session_token

    token = issue_session_token(user.id)
    user_id = verify_session_token(token)  # raises AuthenticationError
"""

from __future__ import annotations

import base64
import os

from cryptography.exceptions import InvalidKey
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from circle.common.config import get_settings
from circle.common.exceptions import AuthenticationError

# scrypt cost parameters (n=2**14 keeps a hash around 50ms)
_SCRYPT_N = 2**14
_SCRYPT_R = 8
_SCRYPT_P = 1
_SALT_BYTES = 16
_KEY_BYTES = 32


def _get_fernet() -> Fernet:
    """Create a Fernet instance from the app encryption key."""
    settings = get_settings()
    return Fernet(settings.encryption_key.encode())


def issue_session_token(user_id: str) -> str:
    """Issue a session token for a user.

    Args:
        user_id: The authenticated user's id.

    Returns:
        URL-safe token string for the Authorization header or ?token= query.
    """
    return _get_fernet().encrypt(user_id.encode()).decode()


def verify_session_token(token: str, ttl: int | None = None) -> str:
    """Validate a session token and return the user id it carries.

    Args:
        token: Token previously returned by issue_session_token().
        ttl: Maximum age in seconds (defaults to settings.session_ttl_seconds).

    Raises:
        AuthenticationError: If the token is malformed, tampered, or expired.
    """
    if ttl is None:
        ttl = get_settings().session_ttl_seconds
    try:
        return _get_fernet().decrypt(token.encode(), ttl=ttl).decode()
    except (InvalidToken, ValueError) as exc:
        raise AuthenticationError("Invalid or expired token") from exc


def _scrypt(salt: bytes) -> Scrypt:
    return Scrypt(salt=salt, length=_KEY_BYTES, n=_SCRYPT_N, r=_SCRYPT_R, p=_SCRYPT_P)


def hash_password(password: str) -> str:
    """Hash a password for storage as ``scrypt$<salt b64>$<hash b64>``."""
    salt = os.urandom(_SALT_BYTES)
    derived = _scrypt(salt).derive(password.encode())
    return "$".join(
        [
            "scrypt",
            base64.urlsafe_b64encode(salt).decode(),
            base64.urlsafe_b64encode(derived).decode(),
        ]
    )


def check_password(password: str, stored: str) -> bool:
    """Return True if the password matches a hash from hash_password()."""
    try:
        scheme, salt_b64, hash_b64 = stored.split("$")
        salt = base64.urlsafe_b64decode(salt_b64.encode())
        expected = base64.urlsafe_b64decode(hash_b64.encode())
    except ValueError:
        return False
    if scheme != "scrypt":
        return False

    try:
        _scrypt(salt).verify(password.encode(), expected)
    except InvalidKey:
        return False
    return True
