"""
Task service: CRUD plus assign/unassign, scoped by role and ownership.
"""

import logging
from typing import List, Optional

from sqlalchemy.orm import Session, joinedload

import models
import schemas
from auth.permissions import Action, Actor, Resource, ResourceKind, require_access, scope_tasks
from errors import Conflict, ValidationFailed
from services.base import commit_new, commit_with_retry, get_or_404, require_reference

logger = logging.getLogger(__name__)

TASK_NOT_FOUND = "Task not found"

_TASK_OPTIONS = (joinedload(models.Task.client), joinedload(models.Task.runner))


def _load_task(db: Session, task_id: int) -> models.Task:
    return get_or_404(db, models.Task, task_id, TASK_NOT_FOUND, options=_TASK_OPTIONS)


def list_tasks(
    db: Session,
    actor: Actor,
    status: Optional[str] = None,
    skip: int = 0,
    limit: int = 100,
) -> List[models.Task]:
    """
    List the tasks the actor may see.

    Admins see every task, clients only their own, runners unassigned tasks
    plus the ones assigned to them.
    """
    logger.debug(f"User {actor.id} listing tasks (status={status}, skip={skip}, limit={limit})")
    query = scope_tasks(db.query(models.Task).options(*_TASK_OPTIONS), actor)
    if status is not None:
        query = query.filter(models.Task.status == status)
    return query.order_by(models.Task.scheduled_time, models.Task.id).offset(skip).limit(limit).all()


def get_task(db: Session, actor: Actor, task_id: int) -> models.Task:
    logger.debug(f"User {actor.id} requesting task {task_id}")
    task = _load_task(db, task_id)
    require_access(actor, Action.read, Resource.for_task(task), not_found=TASK_NOT_FOUND)
    return task


def create_task(db: Session, actor: Actor, data: schemas.TaskCreate) -> models.Task:
    """
    Create a task.

    Clients always own what they create: a client_id in the request is
    replaced by the actor's id. Admins must name an existing user as client.
    """
    logger.info(f"User {actor.id} creating task: {data.title}")

    # SECURITY: non-admins can only create tasks they own
    client_id = data.client_id if actor.is_admin else actor.id
    if client_id is None:
        raise ValidationFailed("client_id is required")
    require_reference(db, models.User, client_id, "client_id")

    require_access(actor, Action.create, Resource(ResourceKind.task, client_id=client_id))

    task_data = data.model_dump(exclude_none=True)
    task_data["client_id"] = client_id
    task = commit_new(db, models.Task(**task_data))

    logger.info(f"Task created successfully: id={task.id}")
    # Read back through the store so the response reflects what was written
    return _load_task(db, task.id)


def update_task(db: Session, actor: Actor, task_id: int, data: schemas.TaskUpdate) -> models.Task:
    """Update task fields (admin, or the owning client)."""
    logger.debug(f"User {actor.id} updating task {task_id}")

    update_data = data.model_dump(exclude_unset=True)
    if "client_id" in update_data and not actor.is_admin:
        logger.info(f"User {actor.id} attempted to change client_id of task {task_id}, ignoring")
        update_data.pop("client_id")

    for field in ("title", "scheduled_time", "status", "client_id"):
        if field in update_data and update_data[field] is None:
            raise ValidationFailed(f"{field} cannot be null")
    if "description" in update_data and update_data["description"] is None:
        update_data["description"] = ""

    require_reference(db, models.User, update_data.get("client_id"), "client_id")

    def apply(task: models.Task) -> None:
        require_access(actor, Action.update, Resource.for_task(task), not_found=TASK_NOT_FOUND)
        for key, value in update_data.items():
            setattr(task, key, value)

    commit_with_retry(db, lambda: _load_task(db, task_id), apply)
    logger.info(f"Task {task_id} updated by user {actor.id}")
    return _load_task(db, task_id)


def delete_task(db: Session, actor: Actor, task_id: int) -> None:
    """Delete a task together with its items and their status logs."""
    logger.debug(f"User {actor.id} deleting task {task_id}")

    def apply(task: models.Task) -> None:
        require_access(actor, Action.delete, Resource.for_task(task), not_found=TASK_NOT_FOUND)
        db.delete(task)

    commit_with_retry(db, lambda: _load_task(db, task_id), apply)
    logger.info(f"Task {task_id} deleted by user {actor.id}")


def assign_task(db: Session, actor: Actor, task_id: int) -> models.Task:
    """
    Claim an unassigned task for the calling runner.

    A task claimed by another runner is invisible to the caller (404); a
    task the caller already holds is a conflict. On a concurrent claim the
    retry re-reads the task, so the losing runner ends up with a 404.
    """
    logger.debug(f"User {actor.id} assigning task {task_id} to themselves")

    def apply(task: models.Task) -> None:
        if actor.role is models.UserRole.runner and task.runner_id == actor.id:
            raise Conflict("Task is already assigned to you")
        require_access(actor, Action.assign, Resource.for_task(task), not_found=TASK_NOT_FOUND)
        # SECURITY: always assign to the authenticated runner
        task.runner_id = actor.id

    commit_with_retry(db, lambda: _load_task(db, task_id), apply)
    logger.info(f"Task {task_id} assigned to runner {actor.id}")
    return _load_task(db, task_id)


def unassign_task(db: Session, actor: Actor, task_id: int) -> models.Task:
    """Release a claimed task (the assigned runner, or an admin)."""
    logger.debug(f"User {actor.id} unassigning task {task_id}")

    def apply(task: models.Task) -> None:
        require_access(actor, Action.unassign, Resource.for_task(task), not_found=TASK_NOT_FOUND)
        task.runner_id = None

    commit_with_retry(db, lambda: _load_task(db, task_id), apply)
    logger.info(f"Task {task_id} unassigned by user {actor.id}")
    return _load_task(db, task_id)
