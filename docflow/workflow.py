"""Approval state machine.

The transition table below is the only place that decides which status
changes are legal and who may request them::

    draft    --submit-->  pending    owner
    pending  --approve--> approved   approver, admin
    pending  --reject-->  rejected   approver, admin
    approved --revise-->  pending    owner
    rejected --revise-->  pending    owner

Authorization is checked before the table, so a caller without the right
role gets ``ForbiddenError`` even for an edge that does not exist. Writes go
through ``database.atomic`` and are conditional on the document's
``row_version``: of two callers racing on the same document, the second one
to commit gets ``ConflictError`` and nothing of its attempt is kept.
"""

import enum
import logging
from datetime import datetime, timezone
from typing import Dict, FrozenSet, List, Optional, Tuple

from sqlalchemy.orm import Session

from docflow import audit, store
from docflow.database import atomic
from docflow.errors import (
    ConflictError,
    ForbiddenError,
    IllegalTransitionError,
    ValidationError,
    WorkflowError,
)
from docflow.identity import Identity
from docflow.models import AuditAction, Document, DocumentStatus, Role
from docflow.storage import FileRef

logger = logging.getLogger(__name__)


class WorkflowAction(str, enum.Enum):
    SUBMIT = "submit"
    APPROVE = "approve"
    REJECT = "reject"
    REVISE = "revise"


TRANSITIONS: Dict[Tuple[DocumentStatus, WorkflowAction], DocumentStatus] = {
    (DocumentStatus.DRAFT, WorkflowAction.SUBMIT): DocumentStatus.PENDING,
    (DocumentStatus.PENDING, WorkflowAction.APPROVE): DocumentStatus.APPROVED,
    (DocumentStatus.PENDING, WorkflowAction.REJECT): DocumentStatus.REJECTED,
    (DocumentStatus.APPROVED, WorkflowAction.REVISE): DocumentStatus.PENDING,
    (DocumentStatus.REJECTED, WorkflowAction.REVISE): DocumentStatus.PENDING,
}

# None means "the document owner"
ALLOWED_ROLES: Dict[WorkflowAction, Optional[FrozenSet[Role]]] = {
    WorkflowAction.SUBMIT: None,
    WorkflowAction.APPROVE: frozenset({Role.APPROVER, Role.ADMIN}),
    WorkflowAction.REJECT: frozenset({Role.APPROVER, Role.ADMIN}),
    WorkflowAction.REVISE: None,
}

AUDIT_ACTIONS: Dict[WorkflowAction, AuditAction] = {
    WorkflowAction.SUBMIT: AuditAction.UPDATE,
    WorkflowAction.APPROVE: AuditAction.APPROVE,
    WorkflowAction.REJECT: AuditAction.REJECT,
    WorkflowAction.REVISE: AuditAction.UPLOAD,
}


def is_authorized(doc: Document, identity: Identity, action: WorkflowAction) -> bool:
    roles = ALLOWED_ROLES[action]
    if roles is None:
        return identity.user_id == doc.owner_id
    return identity.role in roles


def authorize(doc: Document, identity: Identity, action: WorkflowAction) -> None:
    if is_authorized(doc, identity, action):
        return
    if ALLOWED_ROLES[action] is None:
        raise ForbiddenError(
            f"Only the document owner can {action.value} this document",
            meta={"action": action.value},
        )
    raise ForbiddenError(
        f"Role '{identity.role.value}' is not permitted to {action.value} documents",
        meta={"action": action.value, "role": identity.role.value},
    )


def target_status(current: DocumentStatus, action: WorkflowAction) -> DocumentStatus:
    target = TRANSITIONS.get((current, action))
    if target is None:
        raise IllegalTransitionError(current.value, action.value)
    return target


def allowed_actions(doc: Document, identity: Identity) -> List[WorkflowAction]:
    """Actions this caller may perform on the document right now."""
    return [
        action
        for (source, action) in TRANSITIONS
        if source == doc.status and is_authorized(doc, identity, action)
    ]


def _verdict_detail(doc: Document, action: WorkflowAction, reason: Optional[str]) -> str:
    verb = "Approved" if action is WorkflowAction.APPROVE else "Rejected"
    detail = f"{verb} '{doc.title}' ({doc.version})"
    if reason:
        detail += f": {reason}"
    return detail


def _apply(
    db: Session,
    doc: Document,
    identity: Identity,
    action: WorkflowAction,
    target: DocumentStatus,
    file_ref: Optional[FileRef],
    notes: Optional[str],
    reason: Optional[str],
) -> Document:
    if action is WorkflowAction.REVISE:
        if file_ref is None:
            raise ValidationError("A new file is required to revise a document")
        return store.revise_document(db, doc.id, file_ref, notes, actor_id=identity.user_id)

    if action is WorkflowAction.SUBMIT:
        if file_ref is None and not doc.has_file:
            raise ValidationError("A document with no file cannot be submitted")

    with atomic(db):
        if action is WorkflowAction.SUBMIT:
            if file_ref is not None:
                store.attach_file(doc, file_ref)
            if notes is not None:
                doc.version_notes = notes
            store.record_version(db, doc, identity.user_id)
            detail = f"Submitted '{doc.title}' ({doc.version}) for approval"
        else:
            detail = _verdict_detail(doc, action, reason)
        doc.status = target
        doc.updated_at = datetime.now(timezone.utc)
        audit.record(
            db,
            AUDIT_ACTIONS[action],
            actor_id=identity.user_id,
            target_document_id=doc.id,
            detail=detail,
        )
    db.refresh(doc)
    return doc


def transition(
    db: Session,
    document_id: str,
    identity: Identity,
    action: WorkflowAction,
    *,
    file_ref: Optional[FileRef] = None,
    notes: Optional[str] = None,
    reason: Optional[str] = None,
    expected_version: Optional[int] = None,
) -> Document:
    """Apply one workflow action to a document, all or nothing."""
    doc = store.get_document(db, document_id)
    source = doc.status
    try:
        authorize(doc, identity, action)
        target = target_status(source, action)
        if expected_version is not None and expected_version != doc.row_version:
            raise ConflictError(
                "Document has changed since it was read; reload and retry",
                meta={"expected_version": expected_version, "actual_version": doc.row_version},
            )
        doc = _apply(db, doc, identity, action, target, file_ref, notes, reason)
    except WorkflowError as exc:
        logger.warning(
            "Refused %s on document %s by %s: %s",
            action.value,
            document_id,
            identity.user_id,
            exc.message,
        )
        raise

    logger.info(
        "Document %s: %s -> %s by %s",
        doc.id,
        source.value,
        doc.status.value,
        identity.user_id,
    )
    return doc


def submit(
    db: Session,
    document_id: str,
    identity: Identity,
    file_ref: Optional[FileRef] = None,
    notes: Optional[str] = None,
    expected_version: Optional[int] = None,
) -> Document:
    return transition(
        db,
        document_id,
        identity,
        WorkflowAction.SUBMIT,
        file_ref=file_ref,
        notes=notes,
        expected_version=expected_version,
    )


def approve(
    db: Session,
    document_id: str,
    identity: Identity,
    expected_version: Optional[int] = None,
) -> Document:
    return transition(
        db,
        document_id,
        identity,
        WorkflowAction.APPROVE,
        expected_version=expected_version,
    )


def reject(
    db: Session,
    document_id: str,
    identity: Identity,
    reason: Optional[str] = None,
    expected_version: Optional[int] = None,
) -> Document:
    return transition(
        db,
        document_id,
        identity,
        WorkflowAction.REJECT,
        reason=reason,
        expected_version=expected_version,
    )


def revise(
    db: Session,
    document_id: str,
    identity: Identity,
    file_ref: FileRef,
    notes: Optional[str] = None,
    expected_version: Optional[int] = None,
) -> Document:
    return transition(
        db,
        document_id,
        identity,
        WorkflowAction.REVISE,
        file_ref=file_ref,
        notes=notes,
        expected_version=expected_version,
    )
