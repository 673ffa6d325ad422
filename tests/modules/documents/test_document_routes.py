"""
Tests for document upload, listing, status, cancellation and deletion.
"""
import io
import json
from uuid import UUID, uuid4

import pytest
from fastapi import HTTPException

from app.core.config import settings
from app.core.exceptions import StorageError
from app.modules.auth.models import User
from app.modules.documents.models import Document, DocumentStatus, LessonDocument
from app.modules.documents.service import read_upload_body


def upload(client, headers, name="notes.pdf", body=b"%PDF-1.4 lecture notes",
           content_type="application/pdf", data=None):
    return client.post(
        "/api/v1/documents",
        files={"file": (name, body, content_type)},
        data=data or {},
        headers=headers,
    )


def make_document(db, user, status=DocumentStatus.queued, metadata=None, **fields):
    document = Document(
        id=uuid4(),
        organisation_id=user.organisation_id,
        file_name=fields.pop("file_name", "slides.pdf"),
        storage_path=fields.pop("storage_path", f"{user.id}-1-{uuid4().hex}.pdf"),
        file_type="application/pdf",
        size_bytes=128,
        uploaded_by=user.id,
        status=status,
        doc_metadata=metadata or {},
        **fields,
    )
    db.add(document)
    db.commit()
    db.refresh(document)
    return document


def stored_objects(storage_root):
    return [
        p for p in storage_root.rglob("*")
        if p.is_file() and p.name != ".bucket.json"
    ]


class TestUpload:
    """POST /documents"""

    def test_upload_accepted_and_dispatched(
        self, client, auth_headers, db, student_user, edge_stub, storage_root
    ):
        response = upload(client, auth_headers, name="week 1 notes.pdf")

        assert response.status_code == 202
        data = response.json()
        assert data["status"] == "queued"
        document_id = data["documentId"]

        document = db.get(Document, UUID(document_id))
        assert document.status == DocumentStatus.queued
        assert document.file_name == "week 1 notes.pdf"
        assert document.storage_path.startswith(f"{student_user.id}-")
        assert document.storage_path.endswith("-week_1_notes.pdf")
        assert document.size_bytes == len(b"%PDF-1.4 lecture notes")

        assert edge_stub.called_with("process-document") == [{"documentId": document_id}]
        assert len(stored_objects(storage_root)) == 1

    def test_first_upload_creates_private_bucket(
        self, client, auth_headers, organisation, storage_root
    ):
        response = upload(client, auth_headers)

        assert response.status_code == 202
        bucket_dir = storage_root / f"org-{organisation.id}-uploads"
        config = json.loads((bucket_dir / ".bucket.json").read_text())
        assert config["public"] is False
        assert config["file_size_limit"] == settings.MAX_DOCUMENT_SIZE_BYTES
        assert "application/pdf" in config["allowed_mime_types"]

    def test_upload_with_base_class_prefixes_path(
        self, client, auth_headers, db, course
    ):
        response = upload(
            client, auth_headers, data={"base_class_id": str(course.base_class.id)}
        )

        assert response.status_code == 202
        document = db.query(Document).one()
        assert document.base_class_id == course.base_class.id
        assert document.storage_path.startswith(f"{course.base_class.id}/")

    def test_upload_without_file_fails(self, client, auth_headers, db):
        response = client.post("/api/v1/documents", headers=auth_headers)

        assert response.status_code == 400
        assert response.json()["error"] == "No file provided"
        assert db.query(Document).count() == 0

    @pytest.mark.parametrize(
        "name,body,content_type",
        [
            ("tool.exe", b"MZ\x90\x00", "application/x-msdownload"),
            ("empty.pdf", b"", "application/pdf"),
        ],
    )
    def test_rejected_upload_leaves_nothing_behind(
        self, client, auth_headers, db, edge_stub, storage_root, name, body, content_type
    ):
        response = upload(client, auth_headers, name=name, body=body, content_type=content_type)

        assert response.status_code == 400
        assert db.query(Document).count() == 0
        assert stored_objects(storage_root) == []
        assert edge_stub.calls == []

    def test_oversized_upload_fails(
        self, client, auth_headers, db, storage_root, monkeypatch
    ):
        monkeypatch.setattr(settings, "MAX_DOCUMENT_SIZE_BYTES", 8)

        response = upload(client, auth_headers, body=b"0123456789")

        assert response.status_code == 400
        assert "maximum size" in response.json()["error"]
        assert db.query(Document).count() == 0
        assert stored_objects(storage_root) == []

    def test_upload_without_organisation_forbidden(
        self, client, db, make_headers
    ):
        loner = User(
            id=uuid4(),
            email="loner@test.com",
            password_hash="x",
            organisation_id=None,
        )
        db.add(loner)
        db.commit()

        response = upload(client, make_headers(loner))

        assert response.status_code == 403
        assert db.query(Document).count() == 0

    def test_upload_to_foreign_base_class_forbidden(
        self, client, db, outsider_user, course, make_headers
    ):
        response = upload(
            client,
            make_headers(outsider_user),
            data={"base_class_id": str(course.base_class.id)},
        )

        assert response.status_code == 403
        assert db.query(Document).count() == 0

    def test_storage_failure_removes_row(
        self, client, auth_headers, db, storage, edge_stub, monkeypatch
    ):
        def broken_put(*args, **kwargs):
            raise StorageError("disk full")

        monkeypatch.setattr(storage, "put_object", broken_put)

        response = upload(client, auth_headers)

        assert response.status_code == 500
        assert response.json()["error"] == "Failed to upload file: disk full"
        db.expire_all()
        assert db.query(Document).count() == 0
        assert edge_stub.calls == []

    def test_invocation_failure_marks_document_failed(
        self, client, auth_headers, db, edge_stub
    ):
        edge_stub.fail_all_with = 503

        response = upload(client, auth_headers)

        # the upload itself still succeeded
        assert response.status_code == 202
        db.expire_all()
        document = db.query(Document).one()
        assert document.status == DocumentStatus.error
        error = document.doc_metadata["processing_error"]
        assert error["code"] == "INVOCATION_FAILED"
        assert error["retryable"] is True
        assert "503" in error["message"]
        assert "error_timestamp" in document.doc_metadata


class CountingStream(io.BytesIO):
    def __init__(self, data):
        super().__init__(data)
        self.bytes_read = 0

    def read(self, size=-1):
        chunk = super().read(size)
        self.bytes_read += len(chunk)
        return chunk


class TestUploadBody:
    """Size enforcement while the upload is read."""

    def test_oversized_stream_is_not_read_to_the_end(self, monkeypatch):
        monkeypatch.setattr(settings, "MAX_DOCUMENT_SIZE_BYTES", 8)
        stream = CountingStream(b"x" * (1024 * 1024))

        with pytest.raises(HTTPException) as exc:
            read_upload_body(stream)

        assert exc.value.status_code == 400
        assert "maximum size" in exc.value.detail
        assert stream.bytes_read == 9

    def test_declared_size_over_limit_reads_nothing(self, monkeypatch):
        monkeypatch.setattr(settings, "MAX_DOCUMENT_SIZE_BYTES", 8)
        stream = CountingStream(b"x" * 64)

        with pytest.raises(HTTPException):
            read_upload_body(stream, declared_size=64)

        assert stream.bytes_read == 0

    def test_body_at_the_limit_is_returned_whole(self, monkeypatch):
        monkeypatch.setattr(settings, "MAX_DOCUMENT_SIZE_BYTES", 8)

        assert read_upload_body(CountingStream(b"01234567"), declared_size=8) == b"01234567"


class TestListAndStatus:
    """GET /documents and GET /documents/{id}/status"""

    def test_list_only_own_organisation(
        self, client, auth_headers, db, student_user, outsider_user
    ):
        mine = make_document(db, student_user)
        make_document(db, outsider_user)

        response = client.get("/api/v1/documents", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert [d["id"] for d in data] == [str(mine.id)]
        assert data[0]["status"] == "queued"

    def test_status_of_failed_document(self, client, auth_headers, db, student_user):
        document = make_document(
            db,
            student_user,
            status=DocumentStatus.error,
            metadata={
                "processing_error": {
                    "code": "TIMEOUT",
                    "message": "Request timeout after 150s",
                    "retryable": True,
                },
                "retry_count": 2,
            },
        )

        response = client.get(
            f"/api/v1/documents/{document.id}/status", headers=auth_headers
        )

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "error"
        assert data["retryable"] is True
        assert data["retryCount"] == 2
        assert data["errorMessage"].startswith("Processing took too long")
        assert data["suggestedActions"][0] == "Try splitting the document into smaller parts"

    def test_status_reports_progress(self, client, auth_headers, db, student_user):
        document = make_document(
            db,
            student_user,
            status=DocumentStatus.processing,
            metadata={"processing_progress": {"stage": "embedding", "percentage": 60}},
        )

        response = client.get(
            f"/api/v1/documents/{document.id}/status", headers=auth_headers
        )

        data = response.json()
        assert data["progress"]["stage"] == "embedding"
        assert data["errorMessage"] is None
        assert data["retryable"] is False

    def test_status_of_foreign_document_forbidden(
        self, client, auth_headers, db, outsider_user
    ):
        document = make_document(db, outsider_user)

        response = client.get(
            f"/api/v1/documents/{document.id}/status", headers=auth_headers
        )

        assert response.status_code == 403

    def test_status_of_missing_document(self, client, auth_headers):
        response = client.get(
            f"/api/v1/documents/{uuid4()}/status", headers=auth_headers
        )

        assert response.status_code == 404


class TestCancelAndDelete:
    """POST /documents/{id}/cancel and DELETE /documents/{id}"""

    def test_cancel_queued_document(self, client, auth_headers, db, student_user):
        document = make_document(db, student_user)

        response = client.post(
            f"/api/v1/documents/{document.id}/cancel", headers=auth_headers
        )

        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"

    def test_cancel_completed_document_conflicts(
        self, client, auth_headers, db, student_user
    ):
        document = make_document(db, student_user, status=DocumentStatus.completed)

        response = client.post(
            f"/api/v1/documents/{document.id}/cancel", headers=auth_headers
        )

        assert response.status_code == 409
        db.refresh(document)
        assert document.status == DocumentStatus.completed

    def test_delete_removes_row_and_object(
        self, client, auth_headers, db, storage_root
    ):
        document_id = upload(client, auth_headers).json()["documentId"]
        assert len(stored_objects(storage_root)) == 1

        response = client.delete(f"/api/v1/documents/{document_id}", headers=auth_headers)

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "Document deleted successfully"}
        db.expire_all()
        assert db.query(Document).count() == 0
        assert stored_objects(storage_root) == []

    def test_delete_survives_storage_failure(
        self, client, auth_headers, db, student_user, storage, monkeypatch
    ):
        document = make_document(db, student_user)

        def broken_delete(*args, **kwargs):
            raise StorageError("bucket gone")

        monkeypatch.setattr(storage, "delete_objects", broken_delete)

        response = client.delete(f"/api/v1/documents/{document.id}", headers=auth_headers)

        assert response.status_code == 200
        db.expire_all()
        assert db.query(Document).count() == 0

    def test_delete_referenced_document_conflicts(
        self, client, auth_headers, db, student_user, course
    ):
        document = make_document(db, student_user)
        db.add(LessonDocument(lesson_id=course.lessons_a[0].id, document_id=document.id))
        db.commit()

        response = client.delete(f"/api/v1/documents/{document.id}", headers=auth_headers)

        assert response.status_code == 409
        assert db.query(Document).count() == 1

    def test_delete_with_wrong_base_class_forbidden(
        self, client, auth_headers, db, student_user, course
    ):
        document = make_document(db, student_user)

        response = client.delete(
            f"/api/v1/documents/{document.id}",
            params={"base_class_id": str(course.base_class.id)},
            headers=auth_headers,
        )

        assert response.status_code == 403

    def test_delete_foreign_document_forbidden(
        self, client, auth_headers, db, outsider_user
    ):
        document = make_document(db, outsider_user)

        response = client.delete(f"/api/v1/documents/{document.id}", headers=auth_headers)

        assert response.status_code == 403
        assert db.query(Document).count() == 1
