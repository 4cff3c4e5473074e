"""Shared fixtures: in-memory database, API client and users for every role."""
import os

# Configure before the application modules read settings
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["LOG_LEVEL"] = "WARNING"

from datetime import date

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from pm_core import crud, schemas
from pm_core.api.dependencies import get_blob_store, get_notification_dispatcher
from pm_core.api.main import app
from pm_core.auth import issue_token
from pm_core.database import enable_sqlite_foreign_keys, get_db
from pm_core.models import Base, UserRole
from pm_core.notifications import NotificationDispatcher
from pm_core.storage import BlobStore

# One shared in-memory connection so the app, the dispatcher and the tests see the same data
engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
enable_sqlite_foreign_keys(engine)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

UPLOAD_LIMIT = 1024


@pytest.fixture
def db_session():
    """Fresh schema and session per test."""
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def dispatcher():
    return NotificationDispatcher(TestingSessionLocal, max_attempts=2)


@pytest.fixture
def blob_store(tmp_path):
    return BlobStore(str(tmp_path / "blobs"), max_bytes=UPLOAD_LIMIT)


@pytest.fixture
def client(db_session, dispatcher, blob_store):
    """API client bound to the test session, dispatcher and blob store."""
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notification_dispatcher] = lambda: dispatcher
    app.dependency_overrides[get_blob_store] = lambda: blob_store
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


# ============================================================================
# Users
# ============================================================================

@pytest.fixture
def admin(db_session):
    return crud.create_user(db_session, "Ada Admin", "admin@example.com", UserRole.ADMIN)


@pytest.fixture
def manager(db_session):
    return crud.create_user(db_session, "Paula Manager", "pm@example.com", UserRole.PROJECT_MANAGER)


@pytest.fixture
def other_manager(db_session):
    return crud.create_user(db_session, "Omar Manager", "pm2@example.com", UserRole.PROJECT_MANAGER)


@pytest.fixture
def member(db_session):
    return crud.create_user(db_session, "Tom Member", "tom@example.com", UserRole.TEAM_MEMBER)


@pytest.fixture
def other_member(db_session):
    return crud.create_user(db_session, "Tina Member", "tina@example.com", UserRole.TEAM_MEMBER)


@pytest.fixture
def client_user(db_session):
    return crud.create_user(db_session, "Carl Client", "carl@example.com", UserRole.CLIENT)


@pytest.fixture
def auth_headers(db_session):
    """Return a function producing bearer headers for a user."""
    def _headers(user):
        raw_token, _ = issue_token(db_session, user, name="test")
        return {"Authorization": f"Bearer {raw_token}"}
    return _headers


# ============================================================================
# Domain objects
# ============================================================================

@pytest.fixture
def make_project(db_session):
    """Create a project directly through the CRUD layer."""
    def _make(owner, name="Website Relaunch", **fields):
        data = schemas.ProjectCreate(name=name, start_date=fields.pop("start_date", date(2024, 1, 1)), **fields)
        return crud.create_project(db_session, data, owner_id=owner.id)
    return _make


@pytest.fixture
def make_task(db_session):
    """Create a task directly through the CRUD layer."""
    def _make(project, creator, title="Fix login", **fields):
        data = schemas.TaskCreate(project_id=project.id, title=title, **fields)
        return crud.create_task(db_session, data, creator.id)
    return _make
