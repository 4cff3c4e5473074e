"""Write-side authorization: who may update or delete which resource.

All decisions go through ``POLICY``, a single table keyed by
(resource kind, action) that maps each role to the access scopes granting
the action. A role missing from an entry is denied. Call sites never
compare role strings themselves.

The acting user is carried in an explicit, request-scoped
``AccessContext`` rather than looked up from ambient session state.
"""
import enum
import logging
from typing import Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from . import models
from .models import UserRole

logger = logging.getLogger("pm-core.permissions")


class PermissionDeniedError(Exception):
    """Raised when the acting user is not allowed to perform an action."""

    def __init__(self, message: str, action: Optional[str] = None, resource: Optional[str] = None):
        super().__init__(message)
        self.action = action
        self.resource = resource


class AccessContext(BaseModel):
    """Identity of the acting user for one request.

    ``role`` is None when the stored role is not one of the known roles;
    such a context is denied everything.
    """

    user_id: UUID
    name: str
    role: Optional[UserRole] = None

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_user(cls, user: models.User) -> "AccessContext":
        try:
            role = UserRole(user.role) if user.role is not None else None
        except ValueError:
            logger.warning(f"User {user.id} has unrecognized role {user.role!r}")
            role = None
        return cls(user_id=user.id, name=user.name, role=role)


class Action(str, enum.Enum):
    """Mutating actions checked by the guard."""

    UPDATE = "update"
    DELETE = "delete"


class ResourceKind(str, enum.Enum):
    """Resource kinds covered by the policy table."""

    PROJECT = "project"
    TASK = "task"
    RISK = "risk"
    COMMENT = "comment"
    FILE = "file"
    NOTIFICATION = "notification"


class AccessScope(str, enum.Enum):
    """Relationship between a user and a resource that can grant access."""

    ALL = "all"                        # any resource of the kind
    MANAGED_PROJECT = "managed_project"  # owner_id or manager_id of the resource's project
    OWNED_PROJECT = "owned_project"      # owner_id of the resource's project
    ASSIGNED = "assigned"              # task assigned to the user
    OWN = "own"                        # author, uploader, creator or recipient
    PROJECT_MEMBER = "project_member"  # assignee of some task in the resource's project


_ADMIN_ONLY_OR_MANAGER = {
    UserRole.ADMIN: (AccessScope.ALL,),
    UserRole.PROJECT_MANAGER: (AccessScope.MANAGED_PROJECT,),
}

_AUTHOR_OR_PROJECT_OWNER = {
    UserRole.ADMIN: (AccessScope.ALL,),
    UserRole.PROJECT_MANAGER: (AccessScope.OWN, AccessScope.OWNED_PROJECT),
    UserRole.TEAM_MEMBER: (AccessScope.OWN, AccessScope.OWNED_PROJECT),
    UserRole.CLIENT: (AccessScope.OWN, AccessScope.OWNED_PROJECT),
}

# Recipient only, admins included
_RECIPIENT_ONLY = {role: (AccessScope.OWN,) for role in UserRole}


POLICY: dict[tuple[ResourceKind, Action], dict[UserRole, tuple[AccessScope, ...]]] = {
    (ResourceKind.PROJECT, Action.UPDATE): _ADMIN_ONLY_OR_MANAGER,
    (ResourceKind.PROJECT, Action.DELETE): _ADMIN_ONLY_OR_MANAGER,
    (ResourceKind.TASK, Action.UPDATE): {
        UserRole.ADMIN: (AccessScope.ALL,),
        UserRole.PROJECT_MANAGER: (AccessScope.MANAGED_PROJECT,),
        UserRole.TEAM_MEMBER: (AccessScope.ASSIGNED,),
    },
    (ResourceKind.TASK, Action.DELETE): {
        UserRole.ADMIN: (AccessScope.ALL,),
        UserRole.PROJECT_MANAGER: (AccessScope.MANAGED_PROJECT,),
        UserRole.TEAM_MEMBER: (AccessScope.OWN,),
    },
    (ResourceKind.RISK, Action.UPDATE): _ADMIN_ONLY_OR_MANAGER,
    (ResourceKind.RISK, Action.DELETE): _ADMIN_ONLY_OR_MANAGER,
    (ResourceKind.COMMENT, Action.UPDATE): _AUTHOR_OR_PROJECT_OWNER,
    (ResourceKind.COMMENT, Action.DELETE): _AUTHOR_OR_PROJECT_OWNER,
    (ResourceKind.FILE, Action.UPDATE): _AUTHOR_OR_PROJECT_OWNER,
    (ResourceKind.FILE, Action.DELETE): _AUTHOR_OR_PROJECT_OWNER,
    (ResourceKind.NOTIFICATION, Action.UPDATE): _RECIPIENT_ONLY,
    (ResourceKind.NOTIFICATION, Action.DELETE): _RECIPIENT_ONLY,
}

# Who may add a task or risk to a project
CREATE_POLICY: dict[ResourceKind, dict[UserRole, tuple[AccessScope, ...]]] = {
    ResourceKind.TASK: {
        UserRole.ADMIN: (AccessScope.ALL,),
        UserRole.PROJECT_MANAGER: (AccessScope.MANAGED_PROJECT,),
        UserRole.TEAM_MEMBER: (AccessScope.PROJECT_MEMBER,),
    },
    ResourceKind.RISK: _ADMIN_ONLY_OR_MANAGER,
}

# Roles allowed to create projects
PROJECT_CREATORS: frozenset[UserRole] = frozenset({UserRole.ADMIN, UserRole.PROJECT_MANAGER})


Resource = Union[
    models.Project,
    models.Task,
    models.Risk,
    models.Comment,
    models.StoredFile,
    models.Notification,
]

_RESOURCE_KINDS: dict[type, ResourceKind] = {
    models.Project: ResourceKind.PROJECT,
    models.Task: ResourceKind.TASK,
    models.Risk: ResourceKind.RISK,
    models.Comment: ResourceKind.COMMENT,
    models.StoredFile: ResourceKind.FILE,
    models.Notification: ResourceKind.NOTIFICATION,
}


def resource_kind(resource: Resource) -> ResourceKind:
    """Map a model instance to its policy resource kind."""
    try:
        return _RESOURCE_KINDS[type(resource)]
    except KeyError:
        raise TypeError(f"No access policy for {type(resource).__name__}")


def _project_of(resource: Resource) -> Optional[models.Project]:
    """Project a resource is scoped to for project-based rules.

    Files only count their direct project, not the project of their task.
    """
    if isinstance(resource, models.Project):
        return resource
    if isinstance(resource, (models.Task, models.Risk, models.StoredFile)):
        return resource.project
    if isinstance(resource, models.Comment):
        return resource.task.project if resource.task else None
    return None


def _principal_id(resource: Resource) -> Optional[UUID]:
    """User the resource belongs to personally."""
    if isinstance(resource, (models.Task, models.Risk)):
        return resource.created_by
    if isinstance(resource, (models.Comment, models.StoredFile, models.Notification)):
        return resource.user_id
    if isinstance(resource, models.Project):
        return resource.owner_id
    return None


def manages_project(ctx: AccessContext, project: Optional[models.Project]) -> bool:
    """True if the user created the project or is its designated manager."""
    if project is None:
        return False
    return ctx.user_id in (project.owner_id, project.manager_id)


def owns_project(ctx: AccessContext, project: Optional[models.Project]) -> bool:
    """True if the user created the project."""
    return project is not None and project.owner_id == ctx.user_id


def is_project_member(ctx: AccessContext, project: Optional[models.Project]) -> bool:
    """True if the user is assigned to at least one task of the project."""
    if project is None:
        return False
    return any(task.assigned_to == ctx.user_id for task in project.tasks)


def scope_matches(ctx: AccessContext, scope: AccessScope, resource: Resource) -> bool:
    """Evaluate one access scope against a resource."""
    if scope == AccessScope.ALL:
        return True
    if scope == AccessScope.MANAGED_PROJECT:
        return manages_project(ctx, _project_of(resource))
    if scope == AccessScope.OWNED_PROJECT:
        return owns_project(ctx, _project_of(resource))
    if scope == AccessScope.ASSIGNED:
        return isinstance(resource, models.Task) and resource.assigned_to == ctx.user_id
    if scope == AccessScope.OWN:
        return _principal_id(resource) == ctx.user_id
    if scope == AccessScope.PROJECT_MEMBER:
        return is_project_member(ctx, _project_of(resource))
    return False


def can_mutate(ctx: AccessContext, resource: Resource, action: Action) -> bool:
    """
    Decide whether the acting user may update or delete a resource.

    Args:
        ctx: Acting user
        resource: Model instance to act on
        action: Action.UPDATE or Action.DELETE

    Returns:
        True if any scope granted to the user's role matches the resource
    """
    if ctx.role is None:
        return False
    rules = POLICY.get((resource_kind(resource), Action(action)), {})
    scopes = rules.get(ctx.role, ())
    return any(scope_matches(ctx, scope, resource) for scope in scopes)


def ensure_can_mutate(ctx: AccessContext, resource: Resource, action: Action) -> None:
    """
    Validate a mutation and raise if it is not allowed.

    Raises:
        PermissionDeniedError: If the policy denies the action
    """
    if can_mutate(ctx, resource, action):
        return

    kind = resource_kind(resource)
    action = Action(action)
    logger.warning(
        f"Denied {action.value} on {kind.value} {resource.id} for user {ctx.user_id} "
        f"(role={ctx.role.value if ctx.role else None})"
    )
    raise PermissionDeniedError(
        f"You do not have permission to {action.value} this {kind.value}",
        action=action.value,
        resource=kind.value,
    )


def ensure_can_create_project(ctx: AccessContext) -> None:
    """Only admins and project managers may create projects."""
    if ctx.role not in PROJECT_CREATORS:
        logger.warning(f"Denied project creation for user {ctx.user_id}")
        raise PermissionDeniedError(
            "You do not have permission to create projects",
            action="create",
            resource=ResourceKind.PROJECT.value,
        )


def ensure_can_add_to_project(ctx: AccessContext, project: models.Project, kind: ResourceKind) -> None:
    """
    Check that the user may add a task or risk to a project.

    Managers of the project may add both. Team members may add tasks to
    projects they already work on.

    Raises:
        PermissionDeniedError: If ``CREATE_POLICY`` grants no matching scope
    """
    scopes = CREATE_POLICY.get(kind, {}).get(ctx.role, ()) if ctx.role is not None else ()
    if not any(scope_matches(ctx, scope, project) for scope in scopes):
        logger.warning(f"Denied {kind.value} creation in project {project.id} for user {ctx.user_id}")
        raise PermissionDeniedError(
            f"You do not have permission to add a {kind.value} to this project",
            action="create",
            resource=kind.value,
        )


# Roles allowed to create user accounts
USER_ADMINS: frozenset[UserRole] = frozenset({UserRole.ADMIN})


def ensure_can_manage_users(ctx: AccessContext) -> None:
    """Only admins may create user accounts."""
    if ctx.role not in USER_ADMINS:
        logger.warning(f"Denied user management for user {ctx.user_id}")
        raise PermissionDeniedError("You do not have permission to manage users", action="create", resource="user")
