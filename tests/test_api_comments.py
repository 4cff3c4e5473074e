"""API tests for task comments."""
import pytest

from pm_core.models import Notification, NotificationType


@pytest.fixture
def task(manager, member, make_project, make_task):
    project = make_project(manager)
    return make_task(project, manager, title="Fix login", assigned_to=member.id)


class TestComments:
    """Test posting and reading comments."""

    def test_comment_does_not_notify_author(self, client, db_session, admin, manager, member, task, auth_headers):
        response = client.post(
            f"/api/v1/tasks/{task.id}/comments",
            json={"content": "Working on it"},
            headers=auth_headers(member),
        )
        assert response.status_code == 201
        assert response.json()["comment"]["user"]["name"] == "Tom Member"

        recipients = {
            n.user_id
            for n in db_session.query(Notification).filter(Notification.type == NotificationType.COMMENT)
        }
        assert recipients == {admin.id, manager.id}
        assert member.id not in recipients

        notification = db_session.query(Notification).filter(Notification.user_id == manager.id).one()
        assert notification.message == "Tom Member commented on task: Fix login"

    def test_replies_are_nested(self, client, manager, member, task, auth_headers):
        parent = client.post(
            f"/api/v1/tasks/{task.id}/comments",
            json={"content": "Is this blocked?"},
            headers=auth_headers(manager),
        ).json()["comment"]
        reply = client.post(
            f"/api/v1/tasks/{task.id}/comments",
            json={"content": "No", "parent_id": parent["id"]},
            headers=auth_headers(member),
        )
        assert reply.status_code == 201

        comments = client.get(f"/api/v1/tasks/{task.id}/comments", headers=auth_headers(manager)).json()["comments"]
        assert len(comments) == 1
        assert [r["content"] for r in comments[0]["replies"]] == ["No"]

    def test_reply_to_reply_rejected(self, client, manager, task, auth_headers):
        headers = auth_headers(manager)
        parent = client.post(f"/api/v1/tasks/{task.id}/comments", json={"content": "a"}, headers=headers).json()["comment"]
        reply = client.post(
            f"/api/v1/tasks/{task.id}/comments",
            json={"content": "b", "parent_id": parent["id"]},
            headers=headers,
        ).json()["comment"]

        response = client.post(
            f"/api/v1/tasks/{task.id}/comments",
            json={"content": "c", "parent_id": reply["id"]},
            headers=headers,
        )
        assert response.status_code == 422

    def test_parent_from_other_task_rejected(self, client, manager, task, make_task, auth_headers):
        other = make_task(task.project, manager, title="Other")
        headers = auth_headers(manager)
        parent = client.post(f"/api/v1/tasks/{other.id}/comments", json={"content": "a"}, headers=headers).json()["comment"]

        response = client.post(
            f"/api/v1/tasks/{task.id}/comments",
            json={"content": "b", "parent_id": parent["id"]},
            headers=headers,
        )
        assert response.status_code == 422

    def test_hidden_task(self, client, other_member, task, auth_headers):
        response = client.get(f"/api/v1/tasks/{task.id}/comments", headers=auth_headers(other_member))
        assert response.status_code == 403

    def test_empty_content(self, client, member, task, auth_headers):
        response = client.post(f"/api/v1/tasks/{task.id}/comments", json={"content": ""}, headers=auth_headers(member))
        assert response.status_code == 422


class TestCommentMutation:
    """Test editing and deleting comments."""

    def _post(self, client, task, headers, content="Working on it"):
        return client.post(f"/api/v1/tasks/{task.id}/comments", json={"content": content}, headers=headers).json()["comment"]

    def test_author_edits(self, client, member, task, auth_headers):
        headers = auth_headers(member)
        comment = self._post(client, task, headers)

        response = client.put(f"/api/v1/comments/{comment['id']}", json={"content": "Done"}, headers=headers)
        assert response.status_code == 200
        assert response.json()["comment"]["content"] == "Done"

    def test_project_owner_deletes(self, client, manager, member, task, auth_headers):
        comment = self._post(client, task, auth_headers(member))

        response = client.delete(f"/api/v1/comments/{comment['id']}", headers=auth_headers(manager))
        assert response.status_code == 204
        assert client.get(f"/api/v1/comments/{comment['id']}", headers=auth_headers(manager)).status_code == 404

    def test_other_user_cannot_edit(self, client, admin, member, other_member, task, auth_headers):
        comment = self._post(client, task, auth_headers(member))

        response = client.put(
            f"/api/v1/comments/{comment['id']}",
            json={"content": "Vandalized"},
            headers=auth_headers(other_member),
        )
        assert response.status_code == 403

        stored = client.get(f"/api/v1/comments/{comment['id']}", headers=auth_headers(admin)).json()["comment"]
        assert stored["content"] == "Working on it"
