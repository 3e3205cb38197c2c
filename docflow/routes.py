"""API routes for the document workflow."""

from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Header, HTTPException, Query, UploadFile
from pydantic import ValidationError as SchemaError
from sqlalchemy.orm import Session

from docflow import audit, identity, reporting, store, workflow
from docflow.config import get_settings
from docflow.database import get_db
from docflow.errors import ValidationError
from docflow.identity import Identity
from docflow.models import Document, DocumentStatus, Priority, Role
from docflow.schemas import (
    AuditEntryResponse,
    CommentCreate,
    CommentResponse,
    DashboardResponse,
    DocumentMeta,
    DocumentResponse,
    DocumentUpdate,
    DocumentVersionResponse,
    DraftCreate,
    ErrorResponse,
    FileRefIn,
    ProfileResponse,
    ProfileUpdate,
    RejectRequest,
    ReportResponse,
    SubmitRequest,
    TransitionRequest,
    UserBreakdownItem,
)
from docflow.storage import BlobStorage, FileRef, storage_from_settings

router = APIRouter(
    responses={
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    }
)


def get_storage() -> BlobStorage:
    return storage_from_settings(get_settings())


def current_identity(
    x_user_id: Optional[str] = Header(None),
    x_user_email: Optional[str] = Header(None),
    x_user_role: str = Header("client"),
) -> Identity:
    """Caller identity as asserted by the identity provider's headers."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="X-User-Id header is required")
    try:
        role = Role(x_user_role.strip().lower())
    except ValueError:
        raise HTTPException(status_code=422, detail=f"Unknown role '{x_user_role}'")
    return Identity(user_id=x_user_id, role=role, email=x_user_email)


def _to_file_ref(payload: Optional[FileRefIn]) -> Optional[FileRef]:
    if payload is None:
        return None
    return FileRef(**payload.model_dump())


def _store_upload(storage: BlobStorage, owner_id: str, upload: UploadFile) -> FileRef:
    # One byte past the limit is enough for put() to refuse the upload
    size = -1 if storage.max_bytes is None else storage.max_bytes + 1
    data = upload.file.read(size)
    return storage.put(owner_id, data, upload.filename or "", upload.content_type)


def _document_response(doc: Document, caller: Identity) -> DocumentResponse:
    response = DocumentResponse.model_validate(doc)
    response.allowed_actions = [a.value for a in workflow.allowed_actions(doc, caller)]
    return response


# --- Session & Profiles ---


@router.post("/session", response_model=ProfileResponse)
def sign_in(caller: Identity = Depends(current_identity), db: Session = Depends(get_db)):
    """Record a sign-in and sync the caller's profile."""
    return identity.record_login(db, caller)


@router.get("/profiles", response_model=List[ProfileResponse])
def list_profiles(db: Session = Depends(get_db)):
    return identity.list_profiles(db)


@router.put("/profiles/me", response_model=ProfileResponse)
def update_my_profile(
    payload: ProfileUpdate,
    caller: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
):
    return identity.upsert_profile(db, caller, payload.first_name, payload.last_name)


# --- Document Endpoints ---


@router.post("/documents", response_model=DocumentResponse, status_code=201)
def upload_document(
    file: UploadFile = File(...),
    title: str = Form(...),
    category: str = Form("general"),
    priority: Priority = Form(Priority.NORMAL),
    version_notes: Optional[str] = Form(None),
    caller: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
    storage: BlobStorage = Depends(get_storage),
):
    """Upload a file and submit it for approval."""
    try:
        meta = DocumentMeta(
            title=title, category=category, priority=priority, version_notes=version_notes
        )
    except SchemaError as exc:
        fields = sorted({str(err["loc"][0]) for err in exc.errors() if err["loc"]})
        raise ValidationError(
            f"Invalid document metadata: {', '.join(fields)}", meta={"fields": fields}
        ) from exc
    store.clean_title(meta.title)
    file_ref = _store_upload(storage, caller.user_id, file)
    doc = store.create_document(db, meta, file_ref, caller.user_id)
    return _document_response(doc, caller)


@router.post("/documents/drafts", response_model=DocumentResponse, status_code=201)
def create_draft(
    payload: DraftCreate,
    caller: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
):
    """Save a draft; the file reference is optional until submission."""
    meta = DocumentMeta(**payload.model_dump(exclude={"file"}))
    doc = store.create_draft(db, meta, caller.user_id, _to_file_ref(payload.file))
    return _document_response(doc, caller)


@router.get("/documents", response_model=List[DocumentResponse])
def list_documents(
    status: Optional[DocumentStatus] = Query(None),
    owner_id: Optional[str] = Query(None),
    limit: Optional[int] = Query(None, ge=1, le=500),
    caller: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
):
    docs = store.list_documents(db, status=status, owner_id=owner_id, limit=limit)
    return [_document_response(doc, caller) for doc in docs]


@router.get("/documents/{document_id}", response_model=DocumentResponse)
def get_document(
    document_id: str,
    caller: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
):
    return _document_response(store.get_document(db, document_id), caller)


@router.patch("/documents/{document_id}", response_model=DocumentResponse)
def update_document(
    document_id: str,
    payload: DocumentUpdate,
    caller: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
):
    """Edit metadata (owner only, drafts only)."""
    doc = store.update_metadata(db, document_id, caller.user_id, payload)
    return _document_response(doc, caller)


@router.get("/documents/{document_id}/versions", response_model=List[DocumentVersionResponse])
def list_versions(document_id: str, db: Session = Depends(get_db)):
    return store.list_versions(db, document_id)


@router.get("/documents/{document_id}/audit", response_model=List[AuditEntryResponse])
def document_audit(document_id: str, db: Session = Depends(get_db)):
    store.get_document(db, document_id)
    return audit.list_for_document(db, document_id)


# --- Workflow Endpoints ---


@router.post("/documents/{document_id}/submit", response_model=DocumentResponse)
def submit_document(
    document_id: str,
    payload: SubmitRequest,
    caller: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
):
    doc = workflow.submit(
        db,
        document_id,
        caller,
        file_ref=_to_file_ref(payload.file),
        notes=payload.notes,
        expected_version=payload.expected_version,
    )
    return _document_response(doc, caller)


@router.post("/documents/{document_id}/approve", response_model=DocumentResponse)
def approve_document(
    document_id: str,
    payload: TransitionRequest,
    caller: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
):
    doc = workflow.approve(db, document_id, caller, expected_version=payload.expected_version)
    return _document_response(doc, caller)


@router.post("/documents/{document_id}/reject", response_model=DocumentResponse)
def reject_document(
    document_id: str,
    payload: RejectRequest,
    caller: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
):
    doc = workflow.reject(
        db,
        document_id,
        caller,
        reason=payload.reason,
        expected_version=payload.expected_version,
    )
    return _document_response(doc, caller)


@router.post("/documents/{document_id}/revise", response_model=DocumentResponse)
def revise_document(
    document_id: str,
    file: UploadFile = File(...),
    notes: Optional[str] = Form(None),
    expected_version: Optional[int] = Form(None),
    caller: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
    storage: BlobStorage = Depends(get_storage),
):
    """Upload a new version of an approved or rejected document."""
    doc = store.get_document(db, document_id)
    # Check the edge before writing any bytes to storage
    workflow.authorize(doc, caller, workflow.WorkflowAction.REVISE)
    workflow.target_status(doc.status, workflow.WorkflowAction.REVISE)
    file_ref = _store_upload(storage, caller.user_id, file)
    doc = workflow.revise(
        db, document_id, caller, file_ref, notes=notes, expected_version=expected_version
    )
    return _document_response(doc, caller)


# --- Comment Endpoints ---


@router.post(
    "/documents/{document_id}/comments", response_model=CommentResponse, status_code=201
)
def add_comment(
    document_id: str,
    payload: CommentCreate,
    caller: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
):
    return store.add_comment(db, document_id, caller.user_id, payload.content)


@router.get("/documents/{document_id}/comments", response_model=List[CommentResponse])
def list_comments(document_id: str, db: Session = Depends(get_db)):
    return store.list_comments(db, document_id)


# --- Audit & Report Endpoints ---


@router.get("/audit", response_model=List[AuditEntryResponse])
def list_audit(
    limit: Optional[int] = Query(None, ge=1, le=500),
    db: Session = Depends(get_db),
):
    """Most recent audit entries first."""
    return audit.list_recent(db, limit or get_settings().audit_page_limit)


@router.get("/reports/stats", response_model=ReportResponse)
def report_stats(db: Session = Depends(get_db)):
    stats = reporting.document_stats(db)
    return {"stats": stats, "breakdown": reporting.breakdown(stats)}


@router.get("/reports/users", response_model=List[UserBreakdownItem])
def report_users(db: Session = Depends(get_db)):
    return reporting.user_breakdown(db)


@router.get("/reports/dashboard", response_model=DashboardResponse)
def report_dashboard(
    limit: Optional[int] = Query(None, ge=1, le=50),
    caller: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
):
    data = reporting.dashboard(db, limit or get_settings().recent_limit)
    data["recent_documents"] = [
        _document_response(doc, caller) for doc in data["recent_documents"]
    ]
    return data
