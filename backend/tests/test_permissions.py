"""
Tests for the access control evaluator (auth/permissions.py).

Tests cover:
- The rule table for every resource kind and role
- Not-found vs forbidden selection in require_access
- Admin-only user fields
"""

import logging
import pytest

from auth.permissions import (
    Action,
    Actor,
    Resource,
    ResourceKind,
    is_allowed,
    require_access,
    writable_user_fields,
)
from errors import AccessDenied, NotFound
from models import UserRole

logger = logging.getLogger(__name__)

ADMIN = Actor(id=1, role=UserRole.admin)
CLIENT_A = Actor(id=2, role=UserRole.client)
CLIENT_B = Actor(id=3, role=UserRole.client)
RUNNER_R = Actor(id=4, role=UserRole.runner)
RUNNER_S = Actor(id=5, role=UserRole.runner)

OPEN_TASK = Resource(ResourceKind.task, client_id=CLIENT_A.id)
CLAIMED_TASK = Resource(ResourceKind.task, client_id=CLIENT_A.id, assignee_id=RUNNER_R.id)


# ============== Tasks ==============


@pytest.mark.parametrize("actor,expected", [
    (ADMIN, True),
    (CLIENT_A, True),
    (CLIENT_B, False),
    (RUNNER_R, True),
    (RUNNER_S, False),
])
def test_read_claimed_task(actor, expected):
    """Only admin, the owning client and the assignee can read a claimed task."""
    assert is_allowed(actor, Action.read, CLAIMED_TASK) is expected


def test_runners_read_unclaimed_tasks():
    assert is_allowed(RUNNER_R, Action.read, OPEN_TASK)
    assert is_allowed(RUNNER_S, Action.read, OPEN_TASK)
    logger.info("✓ Unclaimed tasks are visible to every runner")


@pytest.mark.parametrize("action", [Action.create, Action.update, Action.delete])
def test_task_writes_limited_to_owner_and_admin(action):
    assert is_allowed(ADMIN, action, OPEN_TASK)
    assert is_allowed(CLIENT_A, action, OPEN_TASK)
    assert not is_allowed(CLIENT_B, action, OPEN_TASK)
    assert not is_allowed(RUNNER_R, action, CLAIMED_TASK)


def test_assign_only_by_runner_on_unclaimed_task():
    assert is_allowed(RUNNER_R, Action.assign, OPEN_TASK)
    assert not is_allowed(RUNNER_S, Action.assign, CLAIMED_TASK)
    assert not is_allowed(RUNNER_R, Action.assign, CLAIMED_TASK)
    assert not is_allowed(ADMIN, Action.assign, OPEN_TASK)
    assert not is_allowed(CLIENT_A, Action.assign, OPEN_TASK)
    logger.info("✓ Only runners can claim, and only unclaimed tasks")


def test_unassign_by_assignee_or_admin():
    assert is_allowed(RUNNER_R, Action.unassign, CLAIMED_TASK)
    assert is_allowed(ADMIN, Action.unassign, CLAIMED_TASK)
    assert not is_allowed(RUNNER_S, Action.unassign, CLAIMED_TASK)
    assert not is_allowed(RUNNER_R, Action.unassign, OPEN_TASK)
    assert not is_allowed(CLIENT_A, Action.unassign, CLAIMED_TASK)


# ============== Task Items ==============


def test_task_item_read_follows_task():
    item = Resource(ResourceKind.task_item, client_id=CLIENT_A.id, assignee_id=RUNNER_R.id)
    assert is_allowed(CLIENT_A, Action.read, item)
    assert is_allowed(RUNNER_R, Action.read, item)
    assert not is_allowed(RUNNER_S, Action.read, item)
    assert not is_allowed(CLIENT_B, Action.read, item)


def test_runner_cannot_modify_task_items():
    item = Resource(ResourceKind.task_item, client_id=CLIENT_A.id, assignee_id=RUNNER_R.id)
    for action in (Action.create, Action.update, Action.delete):
        assert not is_allowed(RUNNER_R, action, item)
        assert is_allowed(CLIENT_A, action, item)
    logger.info("✓ Runners have read-only access to task items")


# ============== Status Logs ==============


def test_status_log_create_requires_own_assignment():
    own = Resource(ResourceKind.status_log, client_id=CLIENT_A.id, assignee_id=RUNNER_R.id, author_id=RUNNER_R.id)
    as_other = Resource(ResourceKind.status_log, client_id=CLIENT_A.id, assignee_id=RUNNER_R.id, author_id=RUNNER_S.id)
    not_mine = Resource(ResourceKind.status_log, client_id=CLIENT_A.id, assignee_id=RUNNER_S.id, author_id=RUNNER_R.id)

    assert is_allowed(RUNNER_R, Action.create, own)
    assert not is_allowed(RUNNER_R, Action.create, as_other)
    assert not is_allowed(RUNNER_R, Action.create, not_mine)
    assert not is_allowed(CLIENT_A, Action.create, own)
    assert is_allowed(ADMIN, Action.create, as_other)


def test_status_log_read_and_write():
    log = Resource(ResourceKind.status_log, client_id=CLIENT_A.id, assignee_id=None, author_id=RUNNER_R.id)

    # Authorship survives unassignment
    assert is_allowed(RUNNER_R, Action.read, log)
    assert is_allowed(RUNNER_R, Action.update, log)
    assert is_allowed(RUNNER_R, Action.delete, log)
    assert not is_allowed(RUNNER_S, Action.read, log)

    assert is_allowed(CLIENT_A, Action.read, log)
    assert not is_allowed(CLIENT_A, Action.update, log)
    assert not is_allowed(CLIENT_B, Action.read, log)


# ============== Users ==============


def test_user_rules():
    assert is_allowed(CLIENT_A, Action.read, Resource.for_user(CLIENT_A.id))
    assert not is_allowed(CLIENT_A, Action.read, Resource.for_user(CLIENT_B.id))
    assert is_allowed(RUNNER_R, Action.update, Resource.for_user(RUNNER_R.id))
    assert not is_allowed(RUNNER_R, Action.delete, Resource.for_user(RUNNER_R.id))
    assert not is_allowed(CLIENT_A, Action.create, Resource.for_user(None))
    assert is_allowed(ADMIN, Action.delete, Resource.for_user(CLIENT_B.id))


def test_unknown_key_is_denied():
    """Pairs missing from the table deny everybody, admins included."""
    assert not is_allowed(ADMIN, Action.assign, Resource.for_user(CLIENT_A.id))
    assert not is_allowed(ADMIN, Action.unassign, Resource(ResourceKind.status_log))


# ============== require_access ==============


def test_require_access_hides_unreadable_target():
    with pytest.raises(NotFound) as exc_info:
        require_access(CLIENT_B, Action.update, OPEN_TASK, not_found="Task not found")
    assert exc_info.value.detail == "Task not found"


def test_require_access_forbids_visible_target():
    # Runner S can see the unclaimed task but cannot edit it
    with pytest.raises(AccessDenied):
        require_access(RUNNER_S, Action.update, OPEN_TASK)


def test_require_access_claimed_task_is_hidden_from_other_runner():
    with pytest.raises(NotFound):
        require_access(RUNNER_S, Action.assign, CLAIMED_TASK)


def test_require_access_create_uses_visibility():
    item = Resource(ResourceKind.task_item, client_id=CLIENT_A.id)

    with pytest.raises(NotFound):
        require_access(CLIENT_B, Action.create, item, visibility=OPEN_TASK)

    with pytest.raises(AccessDenied):
        require_access(RUNNER_R, Action.create, item, visibility=OPEN_TASK)

    # Without a visibility resource a denied create is a plain 403
    with pytest.raises(AccessDenied):
        require_access(CLIENT_B, Action.create, OPEN_TASK)

    require_access(CLIENT_A, Action.create, item, visibility=OPEN_TASK)
    logger.info("✓ Denied creates are 404 only when the parent is hidden")


def test_writable_user_fields_drops_role_for_non_admin():
    data = {"email": "new@example.com", "role": UserRole.admin}
    assert writable_user_fields(CLIENT_A, data) == {"email": "new@example.com"}
    assert writable_user_fields(ADMIN, data) == data
