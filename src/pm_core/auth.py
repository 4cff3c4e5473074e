"""Personal access token issuing and lookup.

Raw tokens are returned once at creation time; only their SHA-256 hash is
stored.
"""
import hashlib
import logging
import secrets
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from . import models

logger = logging.getLogger("pm-core.auth")

TOKEN_PREFIX = "pm_"


def hash_token(raw_token: str) -> str:
    """SHA-256 hex digest of a raw token."""
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


def issue_token(
    db: Session,
    user: models.User,
    name: str = "API token",
    ttl_days: Optional[int] = None,
) -> tuple[str, models.PersonalAccessToken]:
    """
    Create a personal access token for a user.

    Args:
        db: Database session
        user: Token owner
        name: Human-readable label
        ttl_days: Lifetime in days (None or 0 for no expiry)

    Returns:
        Tuple of (raw token, stored token row)
    """
    raw_token = TOKEN_PREFIX + secrets.token_urlsafe(32)
    expires_at = datetime.utcnow() + timedelta(days=ttl_days) if ttl_days else None

    token = models.PersonalAccessToken(
        user_id=user.id,
        name=name,
        token_hash=hash_token(raw_token),
        expires_at=expires_at,
    )
    db.add(token)
    db.commit()
    db.refresh(token)
    logger.info(f"Issued access token '{name}' for {user.email}")
    return raw_token, token


def resolve_token(db: Session, raw_token: str) -> Optional[models.User]:
    """
    Look up the active user owning a raw token.

    Returns:
        The user, or None if the token is unknown, revoked, expired, or
        belongs to a deactivated user
    """
    if not raw_token:
        return None

    token = (
        db.query(models.PersonalAccessToken)
        .filter(models.PersonalAccessToken.token_hash == hash_token(raw_token))
        .first()
    )
    if token is None or not token.is_active:
        return None

    user = token.user
    if user is None or not user.is_active:
        return None

    token.last_used_at = datetime.utcnow()
    db.commit()
    return user


def revoke_token(db: Session, token: models.PersonalAccessToken) -> None:
    """Revoke a token. Revoked tokens stay in the table."""
    if token.revoked_at is None:
        token.revoked_at = datetime.utcnow()
        db.commit()
        logger.info(f"Revoked access token {token.id}")
