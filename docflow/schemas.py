"""Pydantic schemas for request/response validation."""

from datetime import datetime
from typing import Optional, List

from pydantic import BaseModel, Field

from docflow.models import AuditAction, DocumentStatus, Priority, Role


# --- Document Schemas ---


class DocumentMeta(BaseModel):
    title: str = Field(..., max_length=500)
    category: str = Field(default="general", max_length=100)
    priority: Priority = Priority.NORMAL
    version_notes: Optional[str] = None


class FileRefIn(BaseModel):
    path: str = Field(..., min_length=1, max_length=1024)
    size: int = Field(..., ge=0)
    content_type: str = "application/octet-stream"
    filename: str = Field(..., min_length=1, max_length=255)


class DraftCreate(DocumentMeta):
    file: Optional[FileRefIn] = None


class DocumentUpdate(BaseModel):
    title: Optional[str] = Field(None, max_length=500)
    category: Optional[str] = Field(None, max_length=100)
    priority: Optional[Priority] = None
    version_notes: Optional[str] = None


class DocumentResponse(BaseModel):
    id: str
    title: str
    filename: Optional[str] = None
    category: str
    priority: Priority
    file_path: Optional[str] = None
    file_size: Optional[int] = None
    file_type: Optional[str] = None
    version: str
    version_notes: Optional[str] = None
    status: DocumentStatus
    owner_id: str
    row_version: int
    created_at: datetime
    updated_at: datetime
    allowed_actions: List[str] = []

    model_config = {"from_attributes": True}


class DocumentVersionResponse(BaseModel):
    id: int
    version: str
    filename: Optional[str] = None
    file_size: Optional[int] = None
    file_type: Optional[str] = None
    notes: Optional[str] = None
    created_by: str
    created_at: datetime

    model_config = {"from_attributes": True}


# --- Workflow Schemas ---


class TransitionRequest(BaseModel):
    expected_version: Optional[int] = Field(None, ge=1)


class SubmitRequest(TransitionRequest):
    file: Optional[FileRefIn] = None
    notes: Optional[str] = None


class RejectRequest(TransitionRequest):
    reason: Optional[str] = Field(None, max_length=2000)


# --- Comment Schemas ---


class CommentCreate(BaseModel):
    content: str = Field(..., max_length=10000)


class CommentResponse(BaseModel):
    id: str
    document_id: str
    author_id: str
    content: str
    created_at: datetime

    model_config = {"from_attributes": True}


# --- Audit Schemas ---


class AuditEntryResponse(BaseModel):
    id: int
    actor_id: Optional[str] = None
    action: AuditAction
    target_document_id: Optional[str] = None
    detail: str
    created_at: datetime

    model_config = {"from_attributes": True}


# --- Profile Schemas ---


class ProfileUpdate(BaseModel):
    first_name: Optional[str] = Field(None, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)


class ProfileResponse(BaseModel):
    user_id: str
    email: Optional[str] = None
    first_name: str
    last_name: str
    role: Role
    created_at: datetime

    model_config = {"from_attributes": True}


# --- Report Schemas ---


class StatsResponse(BaseModel):
    total: int
    draft: int
    pending: int
    approved: int
    rejected: int


class BreakdownItem(BaseModel):
    label: str
    status: DocumentStatus
    value: int
    pct: int


class ReportResponse(BaseModel):
    stats: StatsResponse
    breakdown: List[BreakdownItem]


class UserBreakdownItem(BaseModel):
    user_id: str
    name: str
    role: Optional[Role] = None
    total: int
    draft: int
    pending: int
    approved: int
    rejected: int


class DashboardResponse(BaseModel):
    stats: StatsResponse
    breakdown: List[BreakdownItem]
    users: int
    recent_documents: List[DocumentResponse]
    recent_activity: List[AuditEntryResponse]


# --- Error Schema ---


class ErrorBody(BaseModel):
    code: str
    message: str
    retryable: bool = False
    meta: Optional[dict] = None


class ErrorResponse(BaseModel):
    error: ErrorBody
