"""Tests for the approval state machine.

Covers the transition table, role checks, optimistic concurrency and the
all-or-nothing commit of a transition with its audit entry.
"""

import pytest
from sqlalchemy.exc import OperationalError

from docflow import audit, store, workflow
from docflow.errors import (
    ConflictError,
    ForbiddenError,
    IllegalTransitionError,
    StorageError,
    ValidationError,
)
from docflow.models import AuditAction, AuditEntry, Document, DocumentStatus
from docflow.workflow import WorkflowAction

from tests.helpers import audit_actions, make_file_ref, make_meta


def _set_status(db, doc, status):
    doc.status = status
    db.commit()
    db.refresh(doc)


class TestApprove:
    def test_approver_approves_pending_document(self, db_session, approver, pending_document):
        doc = workflow.approve(db_session, pending_document.id, approver)

        assert doc.status == DocumentStatus.APPROVED
        assert audit_actions(db_session, doc.id) == [AuditAction.UPLOAD, AuditAction.APPROVE]

    def test_admin_may_approve(self, db_session, admin, pending_document):
        doc = workflow.approve(db_session, pending_document.id, admin)
        assert doc.status == DocumentStatus.APPROVED

    def test_audit_entry_names_actor_and_document(self, db_session, approver, pending_document):
        workflow.approve(db_session, pending_document.id, approver)

        entry = audit.list_recent(db_session, 1)[0]
        assert entry.action == AuditAction.APPROVE
        assert entry.actor_id == approver.user_id
        assert entry.target_document_id == pending_document.id
        assert "v1.0" in entry.detail

    def test_client_cannot_approve(self, db_session, other_client, pending_document):
        with pytest.raises(ForbiddenError):
            workflow.approve(db_session, pending_document.id, other_client)

        db_session.refresh(pending_document)
        assert pending_document.status == DocumentStatus.PENDING
        assert audit_actions(db_session, pending_document.id) == [AuditAction.UPLOAD]

    def test_owner_without_approver_role_cannot_approve(self, db_session, owner, pending_document):
        with pytest.raises(ForbiddenError):
            workflow.approve(db_session, pending_document.id, owner)

    def test_reapproving_is_illegal_not_a_noop(self, db_session, approver, admin, pending_document):
        workflow.approve(db_session, pending_document.id, approver)

        with pytest.raises(IllegalTransitionError) as exc_info:
            workflow.approve(db_session, pending_document.id, admin)

        assert exc_info.value.meta == {"from": "approved", "action": "approve"}
        assert audit_actions(db_session, pending_document.id).count(AuditAction.APPROVE) == 1

    def test_forbidden_is_checked_before_the_table(self, db_session, other_client, draft_document):
        # draft --approve--> does not exist, but the role check comes first
        with pytest.raises(ForbiddenError):
            workflow.approve(db_session, draft_document.id, other_client)


class TestReject:
    def test_reject_records_reason(self, db_session, approver, pending_document):
        doc = workflow.reject(db_session, pending_document.id, approver, reason="Missing signature")

        assert doc.status == DocumentStatus.REJECTED
        entry = audit.list_recent(db_session, 1)[0]
        assert entry.action == AuditAction.REJECT
        assert "Missing signature" in entry.detail

    def test_cannot_reject_after_approval(self, db_session, approver, pending_document):
        workflow.approve(db_session, pending_document.id, approver)

        with pytest.raises(IllegalTransitionError):
            workflow.reject(db_session, pending_document.id, approver)

        db_session.refresh(pending_document)
        assert pending_document.status == DocumentStatus.APPROVED


class TestSubmit:
    def test_owner_submits_draft_with_file(self, db_session, owner, draft_document):
        doc = workflow.submit(db_session, draft_document.id, owner, file_ref=make_file_ref())

        assert doc.status == DocumentStatus.PENDING
        assert doc.version == "v1.0"
        assert doc.filename == "manual.pdf"
        assert [v.version for v in store.list_versions(db_session, doc.id)] == ["v1.0"]
        assert audit_actions(db_session, doc.id) == [AuditAction.UPLOAD, AuditAction.UPDATE]

    def test_draft_without_file_cannot_leave_draft(self, db_session, owner, draft_document):
        with pytest.raises(ValidationError):
            workflow.submit(db_session, draft_document.id, owner)

        db_session.refresh(draft_document)
        assert draft_document.status == DocumentStatus.DRAFT
        assert audit_actions(db_session, draft_document.id) == [AuditAction.UPLOAD]

    def test_only_owner_may_submit(self, db_session, admin, draft_document):
        with pytest.raises(ForbiddenError):
            workflow.submit(db_session, draft_document.id, admin, file_ref=make_file_ref())

    def test_cannot_submit_pending_document(self, db_session, owner, pending_document):
        with pytest.raises(IllegalTransitionError):
            workflow.submit(db_session, pending_document.id, owner)


class TestRevise:
    def test_owner_revises_approved_document(self, db_session, owner, approver, pending_document):
        workflow.approve(db_session, pending_document.id, approver)

        doc = workflow.revise(
            db_session, pending_document.id, owner, make_file_ref("v2.pdf"), notes="Updated"
        )

        assert doc.status == DocumentStatus.PENDING
        assert doc.version == "v1.1"
        assert audit_actions(db_session, doc.id) == [
            AuditAction.UPLOAD,
            AuditAction.APPROVE,
            AuditAction.UPLOAD,
        ]

    def test_owner_revises_rejected_document(self, db_session, owner, approver, pending_document):
        workflow.reject(db_session, pending_document.id, approver, reason="Wrong template")

        doc = workflow.revise(db_session, pending_document.id, owner, make_file_ref("v2.pdf"))
        assert doc.status == DocumentStatus.PENDING
        assert doc.version == "v1.1"

    def test_revising_pending_document_is_illegal(self, db_session, owner, pending_document):
        with pytest.raises(IllegalTransitionError):
            workflow.revise(db_session, pending_document.id, owner, make_file_ref("v2.pdf"))

        db_session.refresh(pending_document)
        assert pending_document.version == "v1.0"

    def test_non_owner_cannot_revise(self, db_session, approver, pending_document):
        workflow.approve(db_session, pending_document.id, approver)

        with pytest.raises(ForbiddenError):
            workflow.revise(db_session, pending_document.id, approver, make_file_ref("v2.pdf"))

    def test_revise_without_file(self, db_session, owner, approver, pending_document):
        workflow.approve(db_session, pending_document.id, approver)

        with pytest.raises(ValidationError):
            workflow.transition(db_session, pending_document.id, owner, WorkflowAction.REVISE)


class TestTransitionTable:
    @pytest.mark.parametrize(
        "status, action",
        [
            (DocumentStatus.DRAFT, WorkflowAction.REVISE),
            (DocumentStatus.APPROVED, WorkflowAction.APPROVE),
            (DocumentStatus.APPROVED, WorkflowAction.SUBMIT),
            (DocumentStatus.REJECTED, WorkflowAction.REJECT),
            (DocumentStatus.REJECTED, WorkflowAction.SUBMIT),
            (DocumentStatus.PENDING, WorkflowAction.SUBMIT),
        ],
    )
    def test_edges_outside_the_table_change_nothing(
        self, db_session, owner, admin, pending_document, status, action
    ):
        _set_status(db_session, pending_document, status)
        caller = admin if action in (WorkflowAction.APPROVE, WorkflowAction.REJECT) else owner
        before = audit_actions(db_session, pending_document.id)

        with pytest.raises(IllegalTransitionError):
            workflow.transition(
                db_session, pending_document.id, caller, action, file_ref=make_file_ref()
            )

        db_session.refresh(pending_document)
        assert pending_document.status == status
        assert audit_actions(db_session, pending_document.id) == before

    def test_allowed_actions(self, db_session, owner, approver, pending_document):
        assert workflow.allowed_actions(pending_document, owner) == []
        assert set(workflow.allowed_actions(pending_document, approver)) == {
            WorkflowAction.APPROVE,
            WorkflowAction.REJECT,
        }

        workflow.approve(db_session, pending_document.id, approver)
        assert workflow.allowed_actions(pending_document, owner) == [WorkflowAction.REVISE]
        assert workflow.allowed_actions(pending_document, approver) == []


class TestConcurrency:
    def test_stale_expected_version_is_a_conflict(self, db_session, approver, pending_document):
        stale = pending_document.row_version
        store.add_comment(db_session, pending_document.id, approver.user_id, "noted")
        pending_document.category = "sop"
        db_session.commit()

        with pytest.raises(ConflictError) as exc_info:
            workflow.approve(db_session, pending_document.id, approver, expected_version=stale)

        assert exc_info.value.retryable is True
        db_session.refresh(pending_document)
        assert pending_document.status == DocumentStatus.PENDING

    def test_matching_expected_version_is_applied(self, db_session, approver, pending_document):
        doc = workflow.approve(
            db_session,
            pending_document.id,
            approver,
            expected_version=pending_document.row_version,
        )
        assert doc.status == DocumentStatus.APPROVED

    def test_concurrent_approvals_let_exactly_one_win(
        self, session_factory, owner, approver, admin
    ):
        setup = session_factory()
        doc_id = store.create_document(setup, make_meta(), make_file_ref(), owner.user_id).id
        setup.close()

        first = session_factory()
        second = session_factory()
        try:
            # Both reviewers load the pending document before either acts
            store.get_document(first, doc_id)
            store.get_document(second, doc_id)

            workflow.approve(first, doc_id, approver)
            with pytest.raises((ConflictError, IllegalTransitionError)):
                workflow.approve(second, doc_id, admin)
        finally:
            first.close()
            second.close()

        check = session_factory()
        try:
            assert check.get(Document, doc_id).status == DocumentStatus.APPROVED
            approvals = (
                check.query(AuditEntry)
                .filter(
                    AuditEntry.action == AuditAction.APPROVE,
                    AuditEntry.target_document_id == doc_id,
                )
                .all()
            )
            assert len(approvals) == 1
            assert approvals[0].actor_id == approver.user_id
        finally:
            check.close()


class TestAtomicity:
    def test_audit_failure_rolls_back_the_transition(
        self, db_session, approver, pending_document, monkeypatch
    ):
        def broken_record(*args, **kwargs):
            raise StorageError("audit log unavailable")

        monkeypatch.setattr(audit, "record", broken_record)

        with pytest.raises(StorageError):
            workflow.approve(db_session, pending_document.id, approver)

        monkeypatch.undo()
        doc = store.get_document(db_session, pending_document.id)
        assert doc.status == DocumentStatus.PENDING
        assert audit_actions(db_session, doc.id) == [AuditAction.UPLOAD]

    def test_database_error_surfaces_as_storage_error(
        self, db_session, approver, pending_document, monkeypatch
    ):
        def failing_record(*args, **kwargs):
            raise OperationalError("INSERT INTO audit_entries", {}, Exception("disk I/O error"))

        monkeypatch.setattr(audit, "record", failing_record)

        with pytest.raises(StorageError) as exc_info:
            workflow.reject(db_session, pending_document.id, approver)

        assert exc_info.value.retryable is True
        monkeypatch.undo()
        assert store.get_document(db_session, pending_document.id).status == DocumentStatus.PENDING
