"""Bearer tokens and password hashes.

Tokens are Fernet tokens (AES + HMAC, timestamped) wrapping the JSON
principal ``{id, username, email}``; the key comes from TASKS_TOKEN_KEY and
the lifetime is enforced on decrypt with TOKEN_TTL_SECONDS. Passwords are
stored as PBKDF2-HMAC-SHA256 hashes with a per-user salt.
"""

from __future__ import annotations

import base64
import json
import os

from cryptography.exceptions import InvalidKey
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from errors import Unauthorized
from schemas import Principal

_TOKEN_KEY_ENV = "TASKS_TOKEN_KEY"
TOKEN_TTL_SECONDS = int(os.environ.get("TOKEN_TTL_SECONDS", str(7 * 24 * 3600)))
PASSWORD_ITERATIONS = int(os.environ.get("PASSWORD_HASH_ITERATIONS", "390000"))
_HASH_SCHEME = "pbkdf2_sha256"

_fernet: Fernet | None = None


def _get_fernet() -> Fernet:
    """Return a cached Fernet instance using TASKS_TOKEN_KEY.

    The key must be a 32-byte urlsafe base64 value (Fernet.generate_key()).
    """
    global _fernet
    if _fernet is not None:
        return _fernet
    raw = os.environ.get(_TOKEN_KEY_ENV, "").strip()
    if not raw:
        raise RuntimeError(
            f"{_TOKEN_KEY_ENV} is not set. Generate a key with:\n"
            "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())\n"
            "and set it in your environment to enable sign-in."
        )
    try:
        _fernet = Fernet(raw.encode("utf-8"))
        return _fernet
    except Exception as e:  # pragma: no cover
        raise RuntimeError(
            f"{_TOKEN_KEY_ENV} must be a valid Fernet key "
            "(32 url-safe base64-encoded bytes)."
        ) from e


# ---------------------------------------------------------------------------
# Passwords
# ---------------------------------------------------------------------------


def _kdf(salt: bytes, iterations: int) -> PBKDF2HMAC:
    return PBKDF2HMAC(algorithm=hashes.SHA256(), length=32, salt=salt, iterations=iterations)


def hash_password(password: str) -> str:
    """Return ``pbkdf2_sha256$<iterations>$<salt>$<hash>`` for *password*."""
    salt = os.urandom(16)
    digest = _kdf(salt, PASSWORD_ITERATIONS).derive(password.encode("utf-8"))
    return "$".join(
        [
            _HASH_SCHEME,
            str(PASSWORD_ITERATIONS),
            base64.urlsafe_b64encode(salt).decode("ascii"),
            base64.urlsafe_b64encode(digest).decode("ascii"),
        ]
    )


def verify_password(password: str, stored: str) -> bool:
    try:
        scheme, iterations, salt_b64, digest_b64 = stored.split("$")
        if scheme != _HASH_SCHEME:
            return False
        salt = base64.urlsafe_b64decode(salt_b64)
        digest = base64.urlsafe_b64decode(digest_b64)
        _kdf(salt, int(iterations)).verify(password.encode("utf-8"), digest)
        return True
    except (ValueError, InvalidKey):
        return False


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------


def issue_token(principal: Principal) -> str:
    payload = json.dumps(principal.model_dump()).encode("utf-8")
    return _get_fernet().encrypt(payload).decode("utf-8")


def verify_token(token: str | None) -> Principal:
    """Return the principal inside *token*. Raises Unauthorized if missing, invalid or expired."""
    if not token or not token.strip():
        raise Unauthorized("Authorization token missing")
    try:
        raw = _get_fernet().decrypt(token.strip().encode("utf-8"), ttl=TOKEN_TTL_SECONDS)
        return Principal.model_validate(json.loads(raw))
    except (InvalidToken, ValueError) as e:
        raise Unauthorized("Invalid or expired token") from e


def bearer_token(header: str | None) -> str | None:
    """Extract the token from an ``Authorization: Bearer <token>`` header value."""
    if not header:
        return None
    scheme, _, token = header.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()
