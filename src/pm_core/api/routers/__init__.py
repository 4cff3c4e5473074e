"""API routers for PM Core."""

from . import auth, comments, files, notifications, projects, reports, risks, tasks, users

__all__ = ["auth", "comments", "files", "notifications", "projects", "reports", "risks", "tasks", "users"]
