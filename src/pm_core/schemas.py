"""Pydantic schemas for request/response validation."""
from datetime import date, datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field, ConfigDict, model_validator

from .models import (
    UserRole,
    ProjectStatus,
    TaskStatus,
    TaskPriority,
    RiskSeverity,
    RiskStatus,
    NotificationType,
)


# ============================================================================
# User / Auth Schemas
# ============================================================================

class UserSummary(BaseModel):
    """Compact user reference embedded in other responses."""

    id: UUID
    name: str

    model_config = ConfigDict(from_attributes=True)


class UserResponse(BaseModel):
    """Schema for user responses."""

    id: UUID
    name: str
    email: str
    role: UserRole
    is_active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class UserCreate(BaseModel):
    """Schema for creating a user (admin only)."""

    name: str = Field(..., min_length=1, max_length=255)
    email: str = Field(..., min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$")
    role: UserRole = UserRole.TEAM_MEMBER


class UserEnvelope(BaseModel):
    user: UserResponse


class UserListEnvelope(BaseModel):
    users: list[UserResponse]


class TokenCreate(BaseModel):
    """Schema for issuing a personal access token."""

    email: str = Field(..., min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$")
    name: str = Field("API token", min_length=1, max_length=255, description="Label shown in token listings")


class TokenResponse(BaseModel):
    """Newly issued token. The raw token is only ever returned once."""

    token: str
    token_type: str = "bearer"
    expires_at: Optional[datetime] = None
    user: UserResponse


# ============================================================================
# Project Schemas
# ============================================================================

class BudgetLine(BaseModel):
    """One budget line item."""

    item: str = Field(..., min_length=1, max_length=255)
    amount: float = Field(..., ge=0, allow_inf_nan=False)


class ProjectBase(BaseModel):
    """Base schema for project fields."""

    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    start_date: date
    end_date: Optional[date] = None
    status: ProjectStatus = ProjectStatus.PLANNING
    manager_id: Optional[UUID] = None
    budget: Optional[list[BudgetLine]] = None
    actual_expenditure: Optional[float] = Field(None, ge=0, allow_inf_nan=False)

    @model_validator(mode="after")
    def check_dates(self):
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("end_date must be on or after start_date")
        return self


class ProjectCreate(ProjectBase):
    """Schema for creating a new project."""

    pass


class ProjectUpdate(BaseModel):
    """Schema for updating a project. Only provided fields are changed."""

    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    status: Optional[ProjectStatus] = None
    manager_id: Optional[UUID] = None
    budget: Optional[list[BudgetLine]] = None
    actual_expenditure: Optional[float] = Field(None, ge=0, allow_inf_nan=False)


class ProjectSummary(BaseModel):
    """Compact project reference embedded in task responses."""

    id: UUID
    name: str

    model_config = ConfigDict(from_attributes=True)


class ProjectResponse(BaseModel):
    """Schema for project responses."""

    id: UUID
    name: str
    description: Optional[str] = None
    start_date: date
    end_date: Optional[date] = None
    status: ProjectStatus
    budget: Optional[list[BudgetLine]] = None
    actual_expenditure: Optional[float] = None
    total_budget: float = Field(description="Sum of budget line amounts")
    owner_id: Optional[UUID] = None
    manager_id: Optional[UUID] = None
    owner: Optional[UserSummary] = None
    manager: Optional[UserSummary] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class ProjectEnvelope(BaseModel):
    project: ProjectResponse


class ProjectListEnvelope(BaseModel):
    projects: list[ProjectResponse]
    user_role: Optional[UserRole] = None

    model_config = ConfigDict(use_enum_values=True)


# ============================================================================
# Task Schemas
# ============================================================================

class TaskCreate(BaseModel):
    """Schema for creating a new task."""

    project_id: UUID = Field(..., description="Owning project UUID")
    title: str = Field(..., min_length=1, max_length=255, description="Task title")
    description: Optional[str] = Field(None, description="Task description")
    assigned_to: Optional[UUID] = Field(None, description="Assignee user UUID")
    status: TaskStatus = Field(TaskStatus.TODO, description="Task status")
    priority: TaskPriority = Field(TaskPriority.MEDIUM, description="Task priority")
    start_date: Optional[date] = None
    due_date: Optional[date] = None
    time_estimated: Optional[float] = Field(None, ge=0, description="Estimated hours")
    time_spent: Optional[float] = Field(None, ge=0, description="Hours spent")


class TaskUpdate(BaseModel):
    """Schema for updating an existing task. Only provided fields are changed."""

    project_id: Optional[UUID] = None
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    assigned_to: Optional[UUID] = None
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    start_date: Optional[date] = None
    due_date: Optional[date] = None
    time_estimated: Optional[float] = Field(None, ge=0)
    time_spent: Optional[float] = Field(None, ge=0)


class TaskResponse(BaseModel):
    """Schema for task responses."""

    id: UUID
    project_id: UUID
    title: str
    description: Optional[str] = None
    status: TaskStatus
    priority: TaskPriority
    start_date: Optional[date] = None
    due_date: Optional[date] = None
    time_estimated: Optional[float] = None
    time_spent: Optional[float] = None
    assigned_to: Optional[UUID] = None
    assigned_user: Optional[UserSummary] = None
    project: Optional[ProjectSummary] = None
    created_by: Optional[UUID] = None
    is_overdue: bool = Field(False, description="True if due_date is in the past and the task is not completed")
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class TaskEnvelope(BaseModel):
    task: TaskResponse


class TaskListEnvelope(BaseModel):
    tasks: list[TaskResponse]


# ============================================================================
# Comment Schemas
# ============================================================================

class CommentCreate(BaseModel):
    """Schema for posting a comment or a reply."""

    content: str = Field(..., min_length=1)
    parent_id: Optional[UUID] = Field(None, description="Top-level comment being replied to")


class CommentUpdate(BaseModel):
    content: str = Field(..., min_length=1)


class CommentResponse(BaseModel):
    """Schema for comment responses. Top-level comments carry their replies."""

    id: UUID
    task_id: UUID
    user_id: UUID
    parent_id: Optional[UUID] = None
    content: str
    user: Optional[UserSummary] = None
    replies: list["CommentResponse"] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CommentEnvelope(BaseModel):
    comment: CommentResponse


class CommentListEnvelope(BaseModel):
    comments: list[CommentResponse]


# ============================================================================
# File Schemas
# ============================================================================

class StoredFileResponse(BaseModel):
    """Schema for file metadata responses."""

    id: UUID
    name: str
    mime_type: Optional[str] = None
    size: int
    user_id: Optional[UUID] = None
    task_id: Optional[UUID] = None
    project_id: Optional[UUID] = None
    user: Optional[UserSummary] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class StoredFileEnvelope(BaseModel):
    file: StoredFileResponse


class StoredFileListEnvelope(BaseModel):
    files: list[StoredFileResponse]


# ============================================================================
# Risk Schemas
# ============================================================================

class RiskCreate(BaseModel):
    """Schema for recording a new risk."""

    project_id: UUID
    title: str = Field(..., min_length=1, max_length=255)
    description: str = Field(..., min_length=1)
    severity: RiskSeverity = RiskSeverity.MEDIUM
    status: RiskStatus = RiskStatus.OPEN
    mitigation: Optional[str] = None


class RiskUpdate(BaseModel):
    """Schema for updating a risk. Only provided fields are changed."""

    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = Field(None, min_length=1)
    severity: Optional[RiskSeverity] = None
    status: Optional[RiskStatus] = None
    mitigation: Optional[str] = None


class RiskResponse(BaseModel):
    """Schema for risk responses."""

    id: UUID
    project_id: UUID
    title: str
    description: str
    severity: RiskSeverity
    status: RiskStatus
    mitigation: Optional[str] = None
    created_by: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class RiskEnvelope(BaseModel):
    risk: RiskResponse


class RiskListEnvelope(BaseModel):
    risks: list[RiskResponse]


# ============================================================================
# Notification Schemas
# ============================================================================

class NotificationIntent(BaseModel):
    """A notification that should be delivered to one recipient.

    Produced by the fan-out and persisted later by the dispatcher.
    """

    type: NotificationType
    message: str
    user_id: UUID
    project_id: Optional[UUID] = None
    task_id: Optional[UUID] = None

    model_config = ConfigDict(frozen=True)


class NotificationResponse(BaseModel):
    """Schema for notification responses."""

    id: UUID
    type: NotificationType
    message: str
    user_id: UUID
    project_id: Optional[UUID] = None
    task_id: Optional[UUID] = None
    read: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class NotificationEnvelope(BaseModel):
    notification: NotificationResponse


class NotificationListEnvelope(BaseModel):
    notifications: list[NotificationResponse]


class UnreadCountResponse(BaseModel):
    count: int


class MessageResponse(BaseModel):
    message: str


# ============================================================================
# Report Schemas
# ============================================================================

class BudgetSummary(BaseModel):
    allocated: float
    spent: float
    remaining: float


class TaskCounts(BaseModel):
    total: int
    completed: int
    in_progress: int
    review: int
    todo: int


class ProjectReport(BaseModel):
    """Aggregate figures for one project."""

    project_id: UUID
    name: str
    status: ProjectStatus
    progress: float = Field(description="Weighted completion percentage")
    budget: BudgetSummary
    tasks: TaskCounts

    model_config = ConfigDict(use_enum_values=True)


class ProjectReportEnvelope(BaseModel):
    report: ProjectReport


class ProjectReportListEnvelope(BaseModel):
    reports: list[ProjectReport]


class RiskMetrics(BaseModel):
    total: int
    critical: int
    high: int
    medium: int
    low: int
    mitigated: int
    active: int


class RiskMetricsResponse(BaseModel):
    project_id: UUID
    metrics: RiskMetrics


class TrendPoint(BaseModel):
    date: str
    count: int


class TaskTrendsResponse(BaseModel):
    project_id: UUID
    trends: list[TrendPoint]


# ============================================================================
# Errors
# ============================================================================

class ErrorResponse(BaseModel):
    """Error envelope returned for every failed request."""

    error: str
    message: str
