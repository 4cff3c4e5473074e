"""SQLAlchemy database models."""
from datetime import datetime
from uuid import uuid4
import enum

from sqlalchemy import (
    Column,
    String,
    Text,
    Integer,
    Float,
    Date,
    DateTime,
    ForeignKey,
    Enum,
    CheckConstraint,
    Boolean,
    JSON,
    Uuid,
)
from sqlalchemy.orm import declarative_base, relationship

# Base class for all models
Base = declarative_base()


class UserRole(str, enum.Enum):
    """Application role enum.

    Roles are fixed; every authorization decision is derived from the
    policy tables in ``permissions`` and ``visibility``.
    """

    ADMIN = "admin"
    PROJECT_MANAGER = "project_manager"
    TEAM_MEMBER = "team_member"
    CLIENT = "client"


class ProjectStatus(str, enum.Enum):
    """Project status enum."""

    PLANNING = "planning"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ON_HOLD = "on_hold"


class TaskStatus(str, enum.Enum):
    """Task lifecycle status enum."""

    TODO = "todo"
    IN_PROGRESS = "in_progress"
    REVIEW = "review"
    COMPLETED = "completed"


class TaskPriority(str, enum.Enum):
    """Task priority enum."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class RiskSeverity(str, enum.Enum):
    """Risk severity enum."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RiskStatus(str, enum.Enum):
    """Risk status enum."""

    OPEN = "open"
    IN_PROGRESS = "in_progress"
    MITIGATED = "mitigated"


class NotificationType(str, enum.Enum):
    """Event tags carried by notifications."""

    PROJECT_CREATED = "project_created"
    TASK_CREATED = "task_created"
    TASK_ASSIGNED = "task_assigned"
    TASK_STATUS = "task_status"
    TASK_UPDATED = "task_updated"
    TASK_DELETED = "task_deleted"
    COMMENT = "comment"
    FILE = "file"
    RISK_CREATED = "risk_created"
    RISK_MITIGATED = "risk_mitigated"


class User(Base):
    """
    User model.

    Users authenticate with personal access tokens. The role is fixed for
    the lifetime of a request.
    """

    __tablename__ = "users"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False, unique=True, index=True)
    role = Column(
        Enum(UserRole, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=UserRole.TEAM_MEMBER,
        index=True
    )
    is_active = Column(Boolean, nullable=False, default=True, index=True)

    # Audit fields
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self) -> str:
        return f"<User {self.email} ({self.role.value if self.role else None})>"


class PersonalAccessToken(Base):
    """
    Personal Access Token for API authentication.

    Tokens are hashed before storage (like passwords); only the hash is
    ever compared.
    """

    __tablename__ = "personal_access_tokens"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)  # e.g. "SPA - Laptop"
    token_hash = Column(String(255), nullable=False, unique=True, index=True)  # SHA-256 hash of token
    last_used_at = Column(DateTime, nullable=True)
    expires_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    revoked_at = Column(DateTime, nullable=True)  # Soft delete via revocation

    # Relationships
    user = relationship("User", backref="access_tokens")

    @property
    def is_active(self) -> bool:
        """Check if token is active (not revoked and not expired)."""
        if self.revoked_at:
            return False
        if self.expires_at and self.expires_at < datetime.utcnow():
            return False
        return True

    def __repr__(self) -> str:
        return f"<PersonalAccessToken {self.name} for user_id={self.user_id}>"


class Project(Base):
    """
    Project model.

    ``owner_id`` is the creator. ``manager_id`` optionally names the
    project manager responsible for it. ``budget`` is an ordered list of
    ``{"item": str, "amount": number}`` lines.
    """

    __tablename__ = "projects"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)

    # Core fields
    name = Column(String(255), nullable=False)
    description = Column(Text)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=True)
    status = Column(
        Enum(ProjectStatus, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=ProjectStatus.PLANNING,
        index=True
    )

    # Budget
    budget = Column(JSON, nullable=True)
    actual_expenditure = Column(Float, nullable=True)

    # Ownership
    owner_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    manager_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)

    # Audit fields
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    owner = relationship("User", foreign_keys=[owner_id])
    manager = relationship("User", foreign_keys=[manager_id])
    tasks = relationship("Task", back_populates="project", cascade="all, delete-orphan")
    risks = relationship("Risk", back_populates="project", cascade="all, delete-orphan")

    # Constraints
    __table_args__ = (
        CheckConstraint("actual_expenditure IS NULL OR actual_expenditure >= 0", name="non_negative_expenditure"),
        CheckConstraint("end_date IS NULL OR end_date >= start_date", name="valid_project_dates"),
    )

    def __repr__(self) -> str:
        return f"<Project {self.id}: {self.name}>"


class Task(Base):
    """Task belonging to a project.

    ``completed_at`` is maintained by the CRUD layer: it is stamped when the
    status moves into ``completed`` and cleared when it moves out.
    """

    __tablename__ = "tasks"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    project_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    # Core task fields
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(Enum(TaskStatus, values_callable=lambda obj: [e.value for e in obj]), nullable=False, default=TaskStatus.TODO, index=True)
    priority = Column(Enum(TaskPriority, values_callable=lambda obj: [e.value for e in obj]), nullable=False, default=TaskPriority.MEDIUM, index=True)
    start_date = Column(Date, nullable=True)
    due_date = Column(Date, nullable=True, index=True)
    time_estimated = Column(Float, nullable=True)  # hours
    time_spent = Column(Float, nullable=True)  # hours

    # People
    assigned_to = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    created_by = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    # Audit fields
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True)

    # Relationships
    project = relationship("Project", back_populates="tasks")
    assignee = relationship("User", foreign_keys=[assigned_to])
    creator = relationship("User", foreign_keys=[created_by])
    comments = relationship("Comment", back_populates="task", cascade="all, delete-orphan")

    def __repr__(self) -> str:
        return f"<Task {self.id}: {self.title[:30]}>"


class Comment(Base):
    """Comment on a task. Replies reference a top-level comment of the same task."""

    __tablename__ = "comments"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    task_id = Column(Uuid(as_uuid=True), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    parent_id = Column(Uuid(as_uuid=True), ForeignKey("comments.id", ondelete="CASCADE"), nullable=True, index=True)
    content = Column(Text, nullable=False)

    # Audit fields
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    task = relationship("Task", back_populates="comments")
    user = relationship("User")
    parent = relationship("Comment", remote_side=[id], back_populates="replies")
    replies = relationship(
        "Comment",
        back_populates="parent",
        cascade="all, delete-orphan",
        order_by="Comment.created_at",
    )

    def __repr__(self) -> str:
        return f"<Comment {self.id} on task {self.task_id}>"


class StoredFile(Base):
    """Uploaded file metadata. The bytes live in the blob store under ``path``."""

    __tablename__ = "files"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String(255), nullable=False)  # original client filename
    path = Column(String(512), nullable=False, unique=True)
    mime_type = Column(String(255), nullable=True)
    size = Column(Integer, nullable=False, default=0)

    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    task_id = Column(Uuid(as_uuid=True), ForeignKey("tasks.id", ondelete="SET NULL"), nullable=True, index=True)
    project_id = Column(Uuid(as_uuid=True), ForeignKey("projects.id", ondelete="SET NULL"), nullable=True, index=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)

    # Relationships
    user = relationship("User")
    task = relationship("Task")
    project = relationship("Project")

    def __repr__(self) -> str:
        return f"<StoredFile {self.name} ({self.size} bytes)>"


class Risk(Base):
    """Project risk with severity, status and mitigation plan."""

    __tablename__ = "risks"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    project_id = Column(Uuid(as_uuid=True), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    severity = Column(Enum(RiskSeverity, values_callable=lambda x: [e.value for e in x]), nullable=False, default=RiskSeverity.MEDIUM, index=True)
    status = Column(Enum(RiskStatus, values_callable=lambda x: [e.value for e in x]), nullable=False, default=RiskStatus.OPEN, index=True)
    mitigation = Column(Text, nullable=True)

    created_by = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    project = relationship("Project", back_populates="risks")
    creator = relationship("User")

    def __repr__(self) -> str:
        return f"<Risk {self.severity.value}: {self.title[:30]}>"


class Notification(Base):
    """Notification addressed to a single recipient."""

    __tablename__ = "notifications"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    type = Column(Enum(NotificationType, values_callable=lambda x: [e.value for e in x]), nullable=False, index=True)
    message = Column(Text, nullable=False)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    project_id = Column(Uuid(as_uuid=True), ForeignKey("projects.id", ondelete="SET NULL"), nullable=True)
    task_id = Column(Uuid(as_uuid=True), ForeignKey("tasks.id", ondelete="SET NULL"), nullable=True)
    read = Column(Boolean, nullable=False, default=False, index=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)

    # Relationships
    user = relationship("User")

    def __repr__(self) -> str:
        return f"<Notification {self.type.value} -> {self.user_id}>"
