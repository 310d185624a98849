"""
Test configuration and fixtures for Errando tests.

Provides:
- Test database with SQLite in-memory for speed (foreign keys enforced)
- FastAPI test client with database dependency override
- Authentication helpers (JWT tokens issued by the app's TokenService)
- Common fixtures for users of every role, tasks, task items and status logs
"""

import os
import sys
import logging
from datetime import datetime
from typing import Generator, Dict

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Settings are read once when main is imported
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-not-for-production")
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["SEED_ADMIN"] = "false"
os.environ["ENVIRONMENT"] = "test"

# Add backend directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from database import Base, get_db
from main import app
import models
from auth.security import hash_password

# Configure logging for tests
logging.basicConfig(level=logging.WARNING)
logger = logging.getLogger(__name__)

# SQLite in-memory database for fast testing
SQLALCHEMY_TEST_DATABASE_URL = "sqlite:///:memory:"

SCHEDULED = datetime(2030, 5, 1, 9, 0, 0)


@pytest.fixture(scope="function")
def test_db() -> Generator[Session, None, None]:
    """
    Create a fresh in-memory SQLite database for each test.

    This ensures test isolation and fast execution.
    """
    logger.debug("Creating test database")

    engine = create_engine(
        SQLALCHEMY_TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    Base.metadata.create_all(bind=engine)

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    db = TestingSessionLocal()

    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()
        logger.debug("Test database cleaned up")


@pytest.fixture(scope="function")
def client(test_db: Session) -> TestClient:
    """
    Create FastAPI test client with database dependency override.
    """
    def override_get_db():
        try:
            yield test_db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


def _create_user(db: Session, username: str, role: models.UserRole, password: str) -> models.User:
    user = models.User(
        username=username,
        email=f"{username}@example.com",
        password_hash=hash_password(password),
        role=role,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info(f"Created {role.value} user {username} with ID: {user.id}")
    return user


@pytest.fixture(scope="function")
def admin_user(test_db: Session) -> models.User:
    return _create_user(test_db, "admin", models.UserRole.admin, "admin-pass-123")


@pytest.fixture(scope="function")
def client_a(test_db: Session) -> models.User:
    """The client owning most fixture tasks."""
    return _create_user(test_db, "client_a", models.UserRole.client, "client-a-pass")


@pytest.fixture(scope="function")
def client_b(test_db: Session) -> models.User:
    return _create_user(test_db, "client_b", models.UserRole.client, "client-b-pass")


@pytest.fixture(scope="function")
def runner_r(test_db: Session) -> models.User:
    """The runner assigned to assigned_task."""
    return _create_user(test_db, "runner_r", models.UserRole.runner, "runner-r-pass")


@pytest.fixture(scope="function")
def runner_s(test_db: Session) -> models.User:
    return _create_user(test_db, "runner_s", models.UserRole.runner, "runner-s-pass")


def create_auth_token(user: models.User, expire_days: int = None) -> str:
    """
    Helper to create a JWT access token for a user.

    Args:
        user: User to create token for
        expire_days: Optional lifetime override in days

    Returns:
        JWT access token string
    """
    logger.debug(f"Creating auth token for user {user.id}")
    return app.state.token_service.create_access_token(user.id, user.username, user.role, expire_days)


def auth_headers_for(user: models.User) -> Dict[str, str]:
    return {"Authorization": f"Bearer {create_auth_token(user)}"}


@pytest.fixture(scope="function")
def admin_headers(admin_user: models.User) -> Dict[str, str]:
    return auth_headers_for(admin_user)


@pytest.fixture(scope="function")
def client_a_headers(client_a: models.User) -> Dict[str, str]:
    return auth_headers_for(client_a)


@pytest.fixture(scope="function")
def client_b_headers(client_b: models.User) -> Dict[str, str]:
    return auth_headers_for(client_b)


@pytest.fixture(scope="function")
def runner_r_headers(runner_r: models.User) -> Dict[str, str]:
    return auth_headers_for(runner_r)


@pytest.fixture(scope="function")
def runner_s_headers(runner_s: models.User) -> Dict[str, str]:
    return auth_headers_for(runner_s)


@pytest.fixture(scope="function")
def open_task(test_db: Session, client_a: models.User) -> models.Task:
    """An unassigned task owned by client_a."""
    task = models.Task(
        title="Pick up dry cleaning",
        description="Two shirts, one coat",
        scheduled_time=SCHEDULED,
        client_id=client_a.id,
    )
    test_db.add(task)
    test_db.commit()
    test_db.refresh(task)
    logger.info(f"Created open task with ID: {task.id}")
    return task


@pytest.fixture(scope="function")
def assigned_task(test_db: Session, client_a: models.User, runner_r: models.User) -> models.Task:
    """A task owned by client_a and claimed by runner_r."""
    task = models.Task(
        title="Walk the dog",
        description="Thirty minutes around the park",
        scheduled_time=SCHEDULED,
        client_id=client_a.id,
        runner_id=runner_r.id,
    )
    test_db.add(task)
    test_db.commit()
    test_db.refresh(task)
    logger.info(f"Created assigned task with ID: {task.id}")
    return task


@pytest.fixture(scope="function")
def open_item(test_db: Session, open_task: models.Task) -> models.TaskItem:
    item = models.TaskItem(task_id=open_task.id, description="Collect the coat")
    test_db.add(item)
    test_db.commit()
    test_db.refresh(item)
    return item


@pytest.fixture(scope="function")
def assigned_item(test_db: Session, assigned_task: models.Task) -> models.TaskItem:
    item = models.TaskItem(task_id=assigned_task.id, description="Bring the leash")
    test_db.add(item)
    test_db.commit()
    test_db.refresh(item)
    return item


@pytest.fixture(scope="function")
def runner_r_log(test_db: Session, assigned_item: models.TaskItem, runner_r: models.User) -> models.StatusLog:
    """A status log runner_r wrote on assigned_item."""
    log = models.StatusLog(
        task_item_id=assigned_item.id,
        runner_id=runner_r.id,
        status="In Progress",
        comment="On my way",
    )
    test_db.add(log)
    test_db.commit()
    test_db.refresh(log)
    return log
