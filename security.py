#!/usr/bin/env python3
"""security.py

Password hashing and credential issuance.

  - Password hashes: Argon2id (argon2-cffi); verify_password_and_upgrade()
    returns a fresh hash when the stored parameters are outdated.
  - Credentials: Flask-JWT-Extended access tokens whose identity is the user
    id. Expiry comes from JWT_ACCESS_TOKEN_EXPIRES (7 days by default).
"""

from __future__ import annotations

from typing import Optional, Tuple

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError
from flask_jwt_extended import create_access_token

from models import User

_PWH = PasswordHasher(
    time_cost=3,
    memory_cost=65536,  # KiB (64 MiB)
    parallelism=1,
    hash_len=32,
    salt_len=16,
)


def hash_password(password: str) -> str:
    """Hash plaintext password using Argon2id."""
    return _PWH.hash(password)


def verify_password_and_upgrade(password: str, stored_hash: str) -> Tuple[bool, Optional[str]]:
    """Verify password; if the stored hash needs rehashing return the new hash.

    Returns: (ok, upgraded_hash_or_None)
    """
    if not stored_hash or not stored_hash.startswith("$argon2"):
        return False, None
    try:
        _PWH.verify(stored_hash, password)
    except (VerifyMismatchError, VerificationError, InvalidHash):
        return False, None
    if _PWH.check_needs_rehash(stored_hash):
        return True, _PWH.hash(password)
    return True, None


def issue_access_token(user: User) -> str:
    """Mint the credential a client presents on the Socket.IO `authenticate` event.

    Must be called inside a Flask app context.
    """
    return create_access_token(identity=str(user.id), additional_claims={"role": user.role})
