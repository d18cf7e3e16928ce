"""
Password hashing with bcrypt.

Verification also accepts legacy werkzeug (scrypt/pbkdf2) hashes so
accounts imported from older onboarding exports keep working.
"""

import bcrypt
from flask import current_app, has_app_context
from werkzeug.security import check_password_hash

DEFAULT_ROUNDS = 12


def _rounds() -> int:
    if has_app_context():
        return current_app.config.get("BCRYPT_ROUNDS", DEFAULT_ROUNDS)
    return DEFAULT_ROUNDS


def hash_password(plain_password: str) -> str:
    """Hash a plain-text password with bcrypt."""
    salt = bcrypt.gensalt(rounds=_rounds())
    return bcrypt.hashpw(plain_password.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain_password: str, password_hash: str) -> bool:
    """Verify a plain-text password against its hash."""
    if not password_hash:
        return False

    if password_hash.startswith(("$2b$", "$2a$")):
        return bcrypt.checkpw(
            plain_password.encode("utf-8"),
            password_hash.encode("utf-8"),
        )

    return check_password_hash(password_hash, plain_password)
