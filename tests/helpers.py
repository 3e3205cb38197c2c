from __future__ import annotations

from typing import Any

from sqlalchemy.orm import Session

from docflow.models import AuditAction, AuditEntry
from docflow.schemas import DocumentMeta
from docflow.storage import FileRef


def make_meta(title: str = "Quality Manual", **kwargs: Any) -> DocumentMeta:
    return DocumentMeta(title=title, **kwargs)


def make_file_ref(filename: str = "manual.pdf", size: int = 2048) -> FileRef:
    return FileRef(
        path=f"owner-1/1700000000000_{filename}",
        size=size,
        content_type="application/pdf",
        filename=filename,
    )


def audit_actions(db: Session, document_id: str | None = None) -> list[AuditAction]:
    query = db.query(AuditEntry).order_by(AuditEntry.id.asc())
    if document_id is not None:
        query = query.filter(AuditEntry.target_document_id == document_id)
    return [entry.action for entry in query.all()]


def headers(user_id: str, role: str = "client", email: str | None = None) -> dict[str, str]:
    result = {"X-User-Id": user_id, "X-User-Role": role}
    if email:
        result["X-User-Email"] = email
    return result


def assert_error(response, status_code: int, code: str, message_contains: str | None = None) -> None:
    assert response.status_code == status_code
    payload = response.json()
    assert "error" in payload
    assert payload["error"]["code"] == code
    if message_contains is not None:
        assert message_contains in payload["error"]["message"]


def upload(client, user_id: str, title: str = "Quality Manual", content: bytes = b"%PDF-1.4 body", **form: str):
    return client.post(
        "/api/v1/documents",
        headers=headers(user_id),
        data={"title": title, **form},
        files={"file": ("manual.pdf", content, "application/pdf")},
    )
