"""API tests for file uploads and downloads."""
import pytest

from pm_core.models import Notification, NotificationType, StoredFile


@pytest.fixture
def task(manager, member, make_project, make_task):
    project = make_project(manager)
    return make_task(project, manager, title="Fix login", assigned_to=member.id)


def upload(client, headers, content=b"hello", name="notes.txt", **form):
    return client.post(
        "/api/v1/files/",
        files={"file": (name, content, "text/plain")},
        data={key: str(value) for key, value in form.items()},
        headers=headers,
    )


class TestUpload:
    """Test uploading files."""

    def test_upload_to_task(self, client, db_session, manager, member, task, blob_store, auth_headers):
        response = upload(client, auth_headers(member), task_id=task.id)
        assert response.status_code == 201

        stored = response.json()["file"]
        assert stored["name"] == "notes.txt"
        assert stored["size"] == 5
        assert stored["task_id"] == str(task.id)
        assert stored["project_id"] == str(task.project_id)
        assert stored["user_id"] == str(member.id)

        notification = db_session.query(Notification).filter(Notification.user_id == manager.id).one()
        assert notification.type == NotificationType.FILE
        assert notification.message == "Tom Member uploaded a file: notes.txt"

    def test_too_large(self, client, member, task, auth_headers):
        response = upload(client, auth_headers(member), content=b"x" * 2048, task_id=task.id)
        assert response.status_code == 422
        assert response.json()["error"] == "validation_failed"

    def test_hidden_task(self, client, other_member, task, auth_headers):
        response = upload(client, auth_headers(other_member), task_id=task.id)
        assert response.status_code == 403

    def test_filename_is_sanitized_in_storage(self, client, member, task, blob_store, auth_headers, db_session):
        response = upload(client, auth_headers(member), name="../../etc/passwd", task_id=task.id)
        assert response.status_code == 201

        stored = db_session.query(StoredFile).one()
        assert ".." not in stored.path
        assert blob_store.exists(stored.path)


class TestReadAndDelete:
    """Test listing, downloading and deleting files."""

    def test_download(self, client, member, task, auth_headers):
        headers = auth_headers(member)
        file_id = upload(client, headers, content=b"report body", task_id=task.id).json()["file"]["id"]

        response = client.get(f"/api/v1/files/{file_id}/download", headers=headers)
        assert response.status_code == 200
        assert response.content == b"report body"

    def test_listing_is_scoped(self, client, manager, member, other_member, task, auth_headers):
        upload(client, auth_headers(member), task_id=task.id)

        assert len(client.get("/api/v1/files/", headers=auth_headers(manager)).json()["files"]) == 1
        assert client.get("/api/v1/files/", headers=auth_headers(other_member)).json()["files"] == []

    def test_uploader_deletes(self, client, member, task, blob_store, auth_headers, db_session):
        headers = auth_headers(member)
        file_id = upload(client, headers, task_id=task.id).json()["file"]["id"]

        key = db_session.query(StoredFile).one().path

        assert client.delete(f"/api/v1/files/{file_id}", headers=headers).status_code == 204
        assert client.get(f"/api/v1/files/{file_id}", headers=headers).status_code == 404
        assert not blob_store.exists(key)

    def test_other_member_cannot_delete(self, client, member, other_member, task, auth_headers):
        file_id = upload(client, auth_headers(member), task_id=task.id).json()["file"]["id"]
        assert client.delete(f"/api/v1/files/{file_id}", headers=auth_headers(other_member)).status_code == 403

    def test_file_survives_task_deletion(self, client, manager, member, task, auth_headers):
        """Deleting the task keeps the file with the task reference cleared."""
        file_id = upload(client, auth_headers(member), task_id=task.id).json()["file"]["id"]
        assert client.delete(f"/api/v1/tasks/{task.id}", headers=auth_headers(manager)).status_code == 204

        response = client.get(f"/api/v1/files/{file_id}", headers=auth_headers(member))
        assert response.status_code == 200
        assert response.json()["file"]["task_id"] is None
