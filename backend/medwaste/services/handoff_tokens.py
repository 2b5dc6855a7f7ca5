"""One-time confirmation tokens for receivers who confirm by link."""

from __future__ import annotations

import hashlib
import hmac
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

DEFAULT_TOKEN_TTL_HOURS = 24


@dataclass(frozen=True)
class IssuedToken:
    secret: str
    token_hash: str
    expires_at: datetime


def hash_confirmation_token(secret: str) -> str:
    return hashlib.sha256(secret.encode("utf-8")).hexdigest()


def issue_confirmation_token(
    *,
    ttl_hours: int | float = DEFAULT_TOKEN_TTL_HOURS,
    at: datetime | None = None,
) -> IssuedToken:
    """Mint a fresh secret; only its sha256 is meant to be persisted."""
    issued_at = at or datetime.now(timezone.utc)
    secret = secrets.token_urlsafe(32)  # 43 chars base64url
    return IssuedToken(
        secret=secret,
        token_hash=hash_confirmation_token(secret),
        expires_at=issued_at + timedelta(hours=ttl_hours),
    )


def token_matches(secret: str | None, token_hash: str | None) -> bool:
    if not secret or not token_hash:
        return False
    return hmac.compare_digest(hash_confirmation_token(secret), token_hash)


def is_token_live(*, token_hash: str | None, expires_at: datetime | None, at: datetime) -> bool:
    if not token_hash or expires_at is None:
        return False
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    return expires_at >= at
