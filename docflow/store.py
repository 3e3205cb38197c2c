"""Document store: documents, their version history and comments.

Every mutating call commits the change together with exactly one audit entry
through ``database.atomic``; if either write fails neither is kept.
"""

import logging
import re
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.orm import Session

from docflow import audit
from docflow.database import atomic
from docflow.errors import ForbiddenError, IllegalStateError, NotFoundError, ValidationError
from docflow.models import (
    AuditAction,
    Comment,
    Document,
    DocumentStatus,
    DocumentVersion,
)
from docflow.schemas import DocumentMeta, DocumentUpdate
from docflow.storage import FileRef

logger = logging.getLogger(__name__)

INITIAL_VERSION = "v1.0"

REVISABLE = (DocumentStatus.DRAFT, DocumentStatus.APPROVED, DocumentStatus.REJECTED)

_VERSION_RE = re.compile(r"v(\d+)\.(\d+)")


def next_version(current: str) -> str:
    """
    Bump the minor component of a version label.

    "v1.0" -> "v1.1", "v1.9" -> "v1.10", "v2.3" -> "v2.4"
    """
    m = _VERSION_RE.fullmatch((current or "").strip())
    if not m:
        raise ValueError(f"Unsupported version label: {current!r}")
    return f"v{m.group(1)}.{int(m.group(2)) + 1}"


def clean_title(title: Optional[str]) -> str:
    title = (title or "").strip()
    if not title:
        raise ValidationError("Document title is required")
    return title


def attach_file(doc: Document, file_ref: FileRef) -> None:
    doc.filename = file_ref.filename
    doc.file_path = file_ref.path
    doc.file_size = file_ref.size
    doc.file_type = file_ref.content_type


def record_version(db: Session, doc: Document, actor_id: str) -> DocumentVersion:
    row = DocumentVersion(
        document_id=doc.id,
        version=doc.version,
        filename=doc.filename,
        file_path=doc.file_path,
        file_size=doc.file_size,
        file_type=doc.file_type,
        notes=doc.version_notes,
        created_by=actor_id,
    )
    db.add(row)
    return row


def _new_document(meta: DocumentMeta, owner_id: str, status: DocumentStatus) -> Document:
    return Document(
        title=clean_title(meta.title),
        category=(meta.category or "general").strip() or "general",
        priority=meta.priority,
        version=INITIAL_VERSION,
        version_notes=meta.version_notes,
        status=status,
        owner_id=owner_id,
    )


# --- Documents ---


def create_document(
    db: Session, meta: DocumentMeta, file_ref: Optional[FileRef], owner_id: str
) -> Document:
    """Create a document and put it straight into the approval queue."""
    if file_ref is None:
        raise ValidationError("A file is required to create a document")
    doc = _new_document(meta, owner_id, DocumentStatus.PENDING)
    attach_file(doc, file_ref)

    with atomic(db):
        db.add(doc)
        db.flush()
        record_version(db, doc, owner_id)
        audit.record(
            db,
            AuditAction.UPLOAD,
            actor_id=owner_id,
            target_document_id=doc.id,
            detail=f"Uploaded '{doc.title}' ({doc.filename}, {doc.version})",
        )
    db.refresh(doc)
    logger.info("Document %s created by %s", doc.id, owner_id)
    return doc


def create_draft(
    db: Session, meta: DocumentMeta, owner_id: str, file_ref: Optional[FileRef] = None
) -> Document:
    """Save a document without submitting it; the file may come later."""
    doc = _new_document(meta, owner_id, DocumentStatus.DRAFT)
    if file_ref is not None:
        attach_file(doc, file_ref)

    with atomic(db):
        db.add(doc)
        db.flush()
        audit.record(
            db,
            AuditAction.UPLOAD,
            actor_id=owner_id,
            target_document_id=doc.id,
            detail=f"Saved draft '{doc.title}'",
        )
    db.refresh(doc)
    logger.info("Draft %s created by %s", doc.id, owner_id)
    return doc


def get_document(db: Session, document_id: str) -> Document:
    """Retrieve a document by ID or raise NotFoundError."""
    doc = db.get(Document, document_id)
    if doc is None:
        raise NotFoundError(f"Document {document_id} not found")
    return doc


def update_metadata(
    db: Session, document_id: str, actor_id: str, changes: DocumentUpdate
) -> Document:
    """Edit descriptive fields. Only the owner, only before submission."""
    doc = get_document(db, document_id)

    if doc.owner_id != actor_id:
        raise ForbiddenError("Only the owner can edit this document")
    if doc.status != DocumentStatus.DRAFT:
        raise IllegalStateError(
            doc.status.value,
            "update",
            f"Cannot edit document: metadata is locked once submitted (status '{doc.status.value}')",
        )

    fields = changes.model_dump(exclude_unset=True)
    if not fields:
        raise ValidationError("No changes supplied")
    if "title" in fields:
        fields["title"] = clean_title(fields["title"])
    if "category" in fields:
        fields["category"] = (fields["category"] or "").strip() or "general"
    if fields.get("priority") is None:
        fields.pop("priority", None)

    with atomic(db):
        for name, value in fields.items():
            setattr(doc, name, value)
        doc.updated_at = datetime.now(timezone.utc)
        audit.record(
            db,
            AuditAction.UPDATE,
            actor_id=actor_id,
            target_document_id=doc.id,
            detail=f"Edited {', '.join(sorted(fields))} of '{doc.title}'",
        )
    db.refresh(doc)
    return doc


def revise_document(
    db: Session,
    document_id: str,
    new_file_ref: FileRef,
    notes: Optional[str] = None,
    *,
    actor_id: Optional[str] = None,
) -> Document:
    """Upload new content: bump the version and send it back for approval."""
    doc = get_document(db, document_id)

    if doc.status not in REVISABLE:
        raise IllegalStateError(
            doc.status.value,
            "revise",
            "Cannot revise document: a review is in progress",
        )
    if new_file_ref is None:
        raise ValidationError("A new file is required to revise a document")

    actor_id = actor_id or doc.owner_id
    previous = doc.version

    with atomic(db):
        attach_file(doc, new_file_ref)
        doc.version = next_version(previous)
        doc.version_notes = notes
        doc.status = DocumentStatus.PENDING
        doc.updated_at = datetime.now(timezone.utc)
        record_version(db, doc, actor_id)
        audit.record(
            db,
            AuditAction.UPLOAD,
            actor_id=actor_id,
            target_document_id=doc.id,
            detail=f"Uploaded {doc.version} of '{doc.title}' (was {previous})",
        )
    db.refresh(doc)
    logger.info("Document %s revised to %s", doc.id, doc.version)
    return doc


def list_documents(
    db: Session,
    status: Optional[DocumentStatus] = None,
    owner_id: Optional[str] = None,
    limit: Optional[int] = None,
) -> List[Document]:
    """Newest first; documents created in the same instant are ordered by id."""
    query = db.query(Document)
    if status is not None:
        query = query.filter(Document.status == status)
    if owner_id is not None:
        query = query.filter(Document.owner_id == owner_id)
    query = query.order_by(Document.created_at.desc(), Document.id.desc())
    if limit is not None:
        if limit < 1:
            raise ValidationError("limit must be a positive integer")
        query = query.limit(limit)
    return query.all()


def list_versions(db: Session, document_id: str) -> List[DocumentVersion]:
    get_document(db, document_id)
    return (
        db.query(DocumentVersion)
        .filter(DocumentVersion.document_id == document_id)
        .order_by(DocumentVersion.id.desc())
        .all()
    )


# --- Comments ---


def add_comment(db: Session, document_id: str, author_id: str, content: str) -> Comment:
    content = (content or "").strip()
    if not content:
        raise ValidationError("Comment cannot be empty")
    doc = get_document(db, document_id)

    comment = Comment(document_id=doc.id, author_id=author_id, content=content)
    with atomic(db):
        db.add(comment)
        audit.record(
            db,
            AuditAction.COMMENT,
            actor_id=author_id,
            target_document_id=doc.id,
            detail=f"Commented on '{doc.title}'",
        )
    db.refresh(comment)
    return comment


def list_comments(db: Session, document_id: str) -> List[Comment]:
    get_document(db, document_id)
    return (
        db.query(Comment)
        .filter(Comment.document_id == document_id)
        .order_by(Comment.created_at.asc(), Comment.id.asc())
        .all()
    )
