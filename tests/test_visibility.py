"""Tests for role-scoped read visibility."""
import pytest

from pm_core import crud, schemas
from pm_core.models import StoredFile
from pm_core.permissions import AccessContext, PermissionDeniedError
from pm_core.visibility import (
    can_view_file,
    can_view_project,
    can_view_task,
    read_scope,
    visible_files,
    visible_projects,
    visible_risks,
    visible_tasks,
)


def ids(rows):
    return {row.id for row in rows}


@pytest.fixture
def world(db_session, manager, other_manager, member, other_member, client_user, make_project, make_task):
    """
    Two projects:

    - alpha: created by the client, managed by ``manager``; one task
      assigned to ``member``, one unassigned
    - beta: created by ``other_manager``; one task assigned to ``other_member``
    """
    alpha = make_project(client_user, name="Alpha", manager_id=manager.id)
    beta = make_project(other_manager, name="Beta")
    alpha_assigned = make_task(alpha, manager, title="Alpha assigned", assigned_to=member.id)
    alpha_open = make_task(alpha, manager, title="Alpha open")
    beta_task = make_task(beta, other_manager, title="Beta task", assigned_to=other_member.id)
    alpha_risk = crud.create_risk(
        db_session, schemas.RiskCreate(project_id=alpha.id, title="Scope creep", description="Too many asks"), manager.id
    )
    beta_risk = crud.create_risk(
        db_session, schemas.RiskCreate(project_id=beta.id, title="Vendor", description="Late delivery"), other_manager.id
    )
    return {
        "alpha": alpha,
        "beta": beta,
        "alpha_assigned": alpha_assigned,
        "alpha_open": alpha_open,
        "beta_task": beta_task,
        "alpha_risk": alpha_risk,
        "beta_risk": beta_risk,
    }


class TestProjectVisibility:
    """Test which projects each role sees."""

    def test_admin_sees_everything(self, db_session, admin, world):
        ctx = AccessContext.from_user(admin)
        assert ids(visible_projects(db_session, ctx)) == {world["alpha"].id, world["beta"].id}

    def test_manager_sees_managed_and_created(self, db_session, manager, other_manager, world):
        assert ids(visible_projects(db_session, AccessContext.from_user(manager))) == {world["alpha"].id}
        assert ids(visible_projects(db_session, AccessContext.from_user(other_manager))) == {world["beta"].id}

    def test_member_sees_projects_with_assigned_tasks(self, db_session, member, world):
        ctx = AccessContext.from_user(member)
        assert ids(visible_projects(db_session, ctx)) == {world["alpha"].id}
        assert can_view_project(ctx, world["alpha"])
        assert not can_view_project(ctx, world["beta"])

    def test_client_sees_own_projects(self, db_session, client_user, world):
        ctx = AccessContext.from_user(client_user)
        assert ids(visible_projects(db_session, ctx)) == {world["alpha"].id}
        assert not can_view_project(ctx, world["beta"])

    def test_unrecognized_role_is_forbidden(self, db_session, member):
        ctx = AccessContext(user_id=member.id, name=member.name, role=None)
        with pytest.raises(PermissionDeniedError):
            read_scope(ctx)
        with pytest.raises(PermissionDeniedError):
            visible_projects(db_session, ctx)


class TestTaskVisibility:
    """Test which tasks each role sees."""

    def test_member_sees_only_assigned(self, db_session, member, world):
        """A team member sees a task if and only if it is assigned to them."""
        ctx = AccessContext.from_user(member)
        assert ids(visible_tasks(db_session, ctx)) == {world["alpha_assigned"].id}
        assert can_view_task(ctx, world["alpha_assigned"])
        assert not can_view_task(ctx, world["alpha_open"])

    def test_manager_sees_all_tasks_of_managed_projects(self, db_session, manager, world):
        ctx = AccessContext.from_user(manager)
        assert ids(visible_tasks(db_session, ctx)) == {world["alpha_assigned"].id, world["alpha_open"].id}

    def test_project_filter_keeps_role_scope(self, db_session, manager, world):
        """Filtering by a project the user cannot see yields nothing."""
        ctx = AccessContext.from_user(manager)
        assert visible_tasks(db_session, ctx, project_id=world["beta"].id).all() == []

    def test_client_sees_tasks_of_own_projects(self, db_session, client_user, world):
        ctx = AccessContext.from_user(client_user)
        assert ids(visible_tasks(db_session, ctx)) == {world["alpha_assigned"].id, world["alpha_open"].id}
        assert not can_view_task(ctx, world["beta_task"])


class TestRiskVisibility:
    """Test risk visibility follows the project."""

    def test_member_sees_risks_of_projects_with_assigned_tasks(self, db_session, member, world):
        ctx = AccessContext.from_user(member)
        assert ids(visible_risks(db_session, ctx)) == {world["alpha_risk"].id}

    def test_admin_filtered_by_project(self, db_session, admin, world):
        ctx = AccessContext.from_user(admin)
        assert ids(visible_risks(db_session, ctx, project_id=world["beta"].id)) == {world["beta_risk"].id}


class TestFileVisibility:
    """Test file visibility rules."""

    def _file(self, db_session, owner, name, task=None, project=None):
        return crud.create_file_record(
            db_session,
            name=name,
            path=f"2024/01/{name}",
            mime_type="text/plain",
            size=3,
            user_id=owner.id,
            task_id=task.id if task else None,
            project_id=project.id if project else None,
        )

    def test_follows_task_then_project(self, db_session, manager, member, other_member, world):
        on_task = self._file(db_session, manager, "task.txt", task=world["alpha_assigned"], project=world["alpha"])
        on_open_task = self._file(db_session, manager, "open.txt", task=world["alpha_open"], project=world["alpha"])
        on_project = self._file(db_session, manager, "project.txt", project=world["alpha"])
        loose = self._file(db_session, manager, "loose.txt")

        ctx = AccessContext.from_user(member)
        assert ids(visible_files(db_session, ctx)) == {on_task.id, on_project.id}
        assert can_view_file(ctx, on_task)
        assert not can_view_file(ctx, on_open_task)
        assert not can_view_file(ctx, loose)

        # The uploader and admins see the loose file
        assert can_view_file(AccessContext.from_user(manager), loose)
        assert not can_view_file(AccessContext.from_user(other_member), on_project)

    def test_uploader_always_sees_own_files(self, db_session, other_member, world):
        own = self._file(db_session, other_member, "mine.txt", project=world["alpha"])
        ctx = AccessContext.from_user(other_member)
        assert own.id in ids(visible_files(db_session, ctx))
        assert db_session.query(StoredFile).count() == 1
