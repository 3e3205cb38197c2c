"""Caller identity and user profiles.

The identity provider is trusted: whoever calls the engine hands over an
``Identity`` and its role is taken as given. Profiles only mirror it so that
reports can show names next to user ids.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy.orm import Session

from docflow import audit
from docflow.database import atomic
from docflow.errors import NotFoundError
from docflow.models import AuditAction, Profile, Role

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    user_id: str
    role: Role = Role.CLIENT
    email: Optional[str] = None


def get_profile(db: Session, user_id: str) -> Profile:
    profile = db.get(Profile, user_id)
    if profile is None:
        raise NotFoundError(f"Profile '{user_id}' not found")
    return profile


def list_profiles(db: Session) -> List[Profile]:
    return db.query(Profile).order_by(Profile.created_at, Profile.user_id).all()


def _upsert(
    db: Session,
    identity: Identity,
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
) -> Profile:
    profile = db.get(Profile, identity.user_id)
    if profile is None:
        profile = Profile(user_id=identity.user_id)
        db.add(profile)
    profile.role = identity.role
    if identity.email is not None:
        profile.email = identity.email
    if first_name is not None:
        profile.first_name = first_name.strip()
    if last_name is not None:
        profile.last_name = last_name.strip()
    return profile


def upsert_profile(
    db: Session,
    identity: Identity,
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
) -> Profile:
    with atomic(db):
        profile = _upsert(db, identity, first_name, last_name)
    db.refresh(profile)
    return profile


def record_login(db: Session, identity: Identity) -> Profile:
    """Sync the caller's profile and log the sign-in."""
    with atomic(db):
        profile = _upsert(db, identity)
        audit.record(
            db,
            AuditAction.LOGIN,
            actor_id=identity.user_id,
            detail=f"{identity.email or identity.user_id} signed in as {identity.role.value}",
        )
    logger.info("User %s signed in", identity.user_id)
    db.refresh(profile)
    return profile
