"""
Tests for the realtime WebSocket endpoints.
"""
from uuid import uuid4

import pytest
from starlette.websockets import WebSocketDisconnect

from app.modules.generation.service import GenerationJobService
from app.realtime.events import ChangeEvent, ChangeEventType


def receive_states(ws, count):
    return [ws.receive_json() for _ in range(count)]


@pytest.fixture
def job(db, teacher_user):
    return GenerationJobService(db).create_job(
        teacher_user, "course_outline", [{"task_type": "lesson_sections"}]
    )


class TestJobSocket:
    """/realtime/jobs/{job_id}"""

    def test_owner_receives_job_and_task_changes(
        self, client, teacher_user, job, channel_factory, make_token
    ):
        url = f"/api/v1/realtime/jobs/{job.id}?token={make_token(teacher_user)}"
        with client.websocket_connect(url) as ws:
            states = receive_states(ws, 2)
            assert [s["state"] for s in states] == ["connecting", "connected"]

            channel = channel_factory.latest
            channel.emit(
                ChangeEvent(
                    event_type=ChangeEventType.UPDATE,
                    table="course_generation_tasks",
                    new={"id": str(uuid4()), "job_id": str(job.id), "status": "completed"},
                )
            )
            message = ws.receive_json()

        assert message["type"] == "change"
        assert message["table"] == "course_generation_tasks"
        assert message["eventType"] == "UPDATE"
        assert message["new"]["status"] == "completed"

    def test_reconnect_message_reopens_channel(
        self, client, teacher_user, job, channel_factory, make_token
    ):
        url = f"/api/v1/realtime/jobs/{job.id}?token={make_token(teacher_user)}"
        with client.websocket_connect(url) as ws:
            receive_states(ws, 2)
            ws.send_text("reconnect")
            states = receive_states(ws, 2)

        assert [s["state"] for s in states] == ["connecting", "connected"]
        assert len(channel_factory.channels) == 2
        assert channel_factory.channels[0].closed is True

    def test_other_user_is_rejected(
        self, client, outsider_user, job, channel_factory, make_token
    ):
        url = f"/api/v1/realtime/jobs/{job.id}?token={make_token(outsider_user)}"

        with pytest.raises(WebSocketDisconnect) as exc:
            with client.websocket_connect(url) as ws:
                ws.receive_json()

        assert exc.value.code == 1008
        assert channel_factory.channels == []

    def test_invalid_token_is_rejected(self, client, job):
        with pytest.raises(WebSocketDisconnect) as exc:
            with client.websocket_connect(f"/api/v1/realtime/jobs/{job.id}?token=junk") as ws:
                ws.receive_json()

        assert exc.value.code == 1008


class TestDocumentSocket:
    """/realtime/documents/{document_id}"""

    def test_foreign_document_is_rejected(self, client, db, outsider_user, student_user, make_token):
        from app.modules.documents.models import Document

        document = Document(
            organisation_id=outsider_user.organisation_id,
            file_name="theirs.pdf",
            storage_path="theirs.pdf",
            file_type="application/pdf",
            size_bytes=10,
            uploaded_by=outsider_user.id,
            doc_metadata={},
        )
        db.add(document)
        db.commit()

        url = f"/api/v1/realtime/documents/{document.id}?token={make_token(student_user)}"
        with pytest.raises(WebSocketDisconnect) as exc:
            with client.websocket_connect(url) as ws:
                ws.receive_json()

        assert exc.value.code == 1008


class TestUserJobsSocket:
    """/realtime/users/me/jobs"""

    def test_only_own_jobs_are_relayed(
        self, client, teacher_user, channel_factory, make_token
    ):
        url = f"/api/v1/realtime/users/me/jobs?token={make_token(teacher_user)}"
        with client.websocket_connect(url) as ws:
            receive_states(ws, 2)
            channel = channel_factory.latest
            channel.emit(
                ChangeEvent(
                    event_type=ChangeEventType.INSERT,
                    table="course_generation_jobs",
                    new={"id": str(uuid4()), "user_id": str(uuid4())},
                )
            )
            mine = str(uuid4())
            channel.emit(
                ChangeEvent(
                    event_type=ChangeEventType.INSERT,
                    table="course_generation_jobs",
                    new={"id": mine, "user_id": str(teacher_user.id)},
                )
            )
            message = ws.receive_json()

        assert message["new"]["id"] == mine
