"""
Tests for optimistic concurrency handling (services/base.commit_with_retry).

Tests cover:
- A stale version is retried once and then succeeds
- A version that keeps moving surfaces as ConcurrencyConflict
- Two runners racing for the same task: the loser is re-authorized and
  gets not-found, the winner keeps the task
"""

import logging
import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.orm import Session, sessionmaker

import models
from auth.permissions import Actor
from database import Base
from errors import ConcurrencyConflict, NotFound
from services import tasks as task_service
from services.base import commit_with_retry
from tests.conftest import SCHEDULED

logger = logging.getLogger(__name__)


def _bump_version(db: Session, task_id: int) -> None:
    db.execute(text("UPDATE tasks SET version = version + 1 WHERE id = :id"), {"id": task_id})


def test_stale_version_retried_once(test_db: Session, open_task: models.Task):
    """Test that one stale write is retried against fresh state and succeeds."""
    logger.debug("Testing retry after a single stale version")
    calls = []

    def apply(task: models.Task) -> None:
        calls.append(task.version)
        if len(calls) == 1:
            _bump_version(test_db, task.id)
        task.title = "Renamed"

    task = commit_with_retry(test_db, lambda: test_db.get(models.Task, open_task.id), apply)

    assert len(calls) == 2, f"Expected 2 attempts, got {len(calls)}"
    assert task.title == "Renamed"
    logger.info("✓ Stale write retried once and committed")


def test_persistent_staleness_raises(test_db: Session, open_task: models.Task):
    calls = []

    def apply(task: models.Task) -> None:
        calls.append(task.id)
        _bump_version(test_db, task.id)
        task.title = "Never saved"

    with pytest.raises(ConcurrencyConflict):
        commit_with_retry(test_db, lambda: test_db.get(models.Task, open_task.id), apply)

    assert len(calls) == 2
    test_db.expire_all()
    assert test_db.get(models.Task, open_task.id).title == "Pick up dry cleaning"


@pytest.fixture
def file_sessions(tmp_path):
    """Two sessions on separate connections to one SQLite file."""
    engine = create_engine(f"sqlite:///{tmp_path / 'race.db'}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    first, second = factory(), factory()
    try:
        yield first, second
    finally:
        first.close()
        second.close()
        engine.dispose()


def test_racing_assign_loser_gets_not_found(file_sessions, monkeypatch):
    """Runner S claims the task between runner R's read and write."""
    db_r, db_s = file_sessions

    client = models.User(username="c", email="c@example.com", password_hash="x", role=models.UserRole.client)
    runner_r = models.User(username="r", email="r@example.com", password_hash="x", role=models.UserRole.runner)
    runner_s = models.User(username="s", email="s@example.com", password_hash="x", role=models.UserRole.runner)
    db_s.add_all([client, runner_r, runner_s])
    db_s.commit()
    task = models.Task(title="Race", scheduled_time=SCHEDULED, client_id=client.id)
    db_s.add(task)
    db_s.commit()
    task_id, r_id, s_id = task.id, runner_r.id, runner_s.id

    original_load = task_service._load_task
    interleaved = []

    def load_then_interleave(db, tid):
        loaded = original_load(db, tid)
        if not interleaved:
            interleaved.append(True)
            rival = db_s.get(models.Task, tid)
            rival.runner_id = s_id
            db_s.commit()
        return loaded

    monkeypatch.setattr(task_service, "_load_task", load_then_interleave)

    with pytest.raises(NotFound):
        task_service.assign_task(db_r, Actor(id=r_id, role=models.UserRole.runner), task_id)

    db_r.expire_all()
    assert db_r.get(models.Task, task_id).runner_id == s_id
    logger.info("✓ Losing runner re-authorized after the stale write and got 404")
