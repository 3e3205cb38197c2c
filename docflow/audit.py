"""Append-only audit recorder.

Entries are written inside the caller's transaction: ``record`` adds and
flushes the row but never commits, so the triggering mutation and its audit
entry are committed together by ``database.atomic`` or not at all.
"""

from typing import List, Optional

from sqlalchemy.orm import Session

from docflow.errors import ValidationError
from docflow.models import AuditAction, AuditEntry


def record(
    db: Session,
    action: AuditAction,
    *,
    actor_id: Optional[str] = None,
    target_document_id: Optional[str] = None,
    detail: str = "",
) -> AuditEntry:
    entry = AuditEntry(
        actor_id=actor_id,
        action=action,
        target_document_id=target_document_id,
        detail=detail,
    )
    db.add(entry)
    db.flush()
    return entry


def _ordered(db: Session):
    return db.query(AuditEntry).order_by(
        AuditEntry.created_at.desc(), AuditEntry.id.desc()
    )


def list_recent(db: Session, limit: int) -> List[AuditEntry]:
    """Most recent entries first, at most ``limit`` of them."""
    if limit < 1:
        raise ValidationError("limit must be a positive integer")
    return _ordered(db).limit(limit).all()


def list_for_document(db: Session, document_id: str) -> List[AuditEntry]:
    return _ordered(db).filter(AuditEntry.target_document_id == document_id).all()
