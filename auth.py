from fastapi import Header
from passlib.hash import bcrypt
from dotenv import load_dotenv
from typing import Optional
import os

from errors import UnauthenticatedError

load_dotenv()

# bcrypt cost; 10 rounds is roughly 100ms per hash on commodity hardware
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "10"))

# Login hands out a fixed token; callers identify themselves with X-User-ID.
PLACEHOLDER_TOKEN = "mock-jwt-token"

hasher = bcrypt.using(rounds=BCRYPT_ROUNDS)


def hash_password(password: str) -> str:
    """Salted one-way hash of a password."""
    return hasher.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return hasher.verify(password, password_hash)


def parse_user_id(raw: Optional[str]) -> int:
    """Numeric identity from the header value, 0 when absent or unusable."""
    try:
        user_id = int(raw) if raw else 0
    except ValueError:
        return 0
    return user_id if user_id > 0 else 0


def get_current_user_id(x_user_id: Optional[str] = Header(default=None)) -> int:
    """Identity of the caller; requests without a usable X-User-ID are rejected."""
    user_id = parse_user_id(x_user_id)
    if not user_id:
        raise UnauthenticatedError("unauthorized")
    return user_id
