"""
Crypto utilities — bcrypt password hashing and share-key generation.

Password hashing:
  Share links in PASSWORD_PROTECTED mode store a bcrypt ($2b$) hash;
  legacy werkzeug (scrypt/pbkdf2) hashes are still verified so links
  created before the switch keep working.
"""

import secrets

import bcrypt
from werkzeug.security import check_password_hash

SHARE_KEY_BYTES = 24


def hash_password(plain_password: str) -> str:
    """Hash a plain-text password with bcrypt (12 rounds)."""
    salt = bcrypt.gensalt(rounds=12)
    return bcrypt.hashpw(plain_password.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain_password: str, password_hash: str) -> bool:
    """Verify a plain-text password against its hash.

    Handles both bcrypt ($2b$/$2a$) and legacy werkzeug (scrypt/pbkdf2) formats.
    """
    if not password_hash or plain_password is None:
        return False

    if password_hash.startswith(("$2b$", "$2a$")):
        return bcrypt.checkpw(
            plain_password.encode("utf-8"),
            password_hash.encode("utf-8"),
        )

    return check_password_hash(password_hash, plain_password)


def generate_share_key() -> str:
    """URL-safe random token identifying a share link."""
    return secrets.token_urlsafe(SHARE_KEY_BYTES)
