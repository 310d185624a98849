"""
Task item service.

Task items inherit their ownership from the parent task: the owning client
(or an admin) manages them, runners can only read them.
"""

import logging
from typing import List, Optional

from sqlalchemy.orm import Session, joinedload

import models
import schemas
from auth.permissions import Action, Actor, Resource, require_access, scope_task_items
from errors import ValidationFailed
from services.base import commit_new, commit_with_retry, get_or_404, require_reference
from services.tasks import TASK_NOT_FOUND, get_task

logger = logging.getLogger(__name__)

TASK_ITEM_NOT_FOUND = "Task item not found"

_ITEM_OPTIONS = (joinedload(models.TaskItem.task),)


def _load_item(db: Session, item_id: int) -> models.TaskItem:
    return get_or_404(db, models.TaskItem, item_id, TASK_ITEM_NOT_FOUND, options=_ITEM_OPTIONS)


def _require_item_write(actor: Actor, task: models.Task) -> None:
    """Require the right to add items to (or move items into) a task."""
    require_access(
        actor,
        Action.create,
        Resource.for_item_of(task),
        not_found=TASK_NOT_FOUND,
        visibility=Resource.for_task(task),
    )


def list_task_items(
    db: Session,
    actor: Actor,
    task_id: Optional[int] = None,
    skip: int = 0,
    limit: int = 100,
) -> List[models.TaskItem]:
    """List visible task items, optionally only those of one task."""
    logger.debug(f"User {actor.id} listing task items (task_id={task_id}, skip={skip}, limit={limit})")
    query = db.query(models.TaskItem)
    if task_id is not None:
        # 404 for a missing task or one the actor cannot see
        get_task(db, actor, task_id)
        query = query.filter(models.TaskItem.task_id == task_id)
    else:
        query = scope_task_items(query, actor)
    return query.order_by(models.TaskItem.id).offset(skip).limit(limit).all()


def get_task_item(db: Session, actor: Actor, item_id: int) -> models.TaskItem:
    logger.debug(f"User {actor.id} requesting task item {item_id}")
    item = _load_item(db, item_id)
    require_access(actor, Action.read, Resource.for_task_item(item), not_found=TASK_ITEM_NOT_FOUND)
    return item


def create_task_item(db: Session, actor: Actor, data: schemas.TaskItemCreate) -> models.TaskItem:
    """Add an item to a task (admin, or the client owning the task)."""
    logger.info(f"User {actor.id} creating task item in task {data.task_id}")

    task = require_reference(db, models.Task, data.task_id, "task_id")
    _require_item_write(actor, task)

    item = commit_new(db, models.TaskItem(**data.model_dump(exclude_none=True)))
    logger.info(f"Task item created successfully: id={item.id}")
    return _load_item(db, item.id)


def update_task_item(db: Session, actor: Actor, item_id: int, data: schemas.TaskItemUpdate) -> models.TaskItem:
    """
    Update a task item.

    Moving an item to another task (task_id) requires the same rights on the
    destination task as creating an item there.
    """
    logger.debug(f"User {actor.id} updating task item {item_id}")

    update_data = data.model_dump(exclude_unset=True)
    for field in ("description", "is_completed", "status", "task_id"):
        if field in update_data and update_data[field] is None:
            raise ValidationFailed(f"{field} cannot be null")

    target_task = require_reference(db, models.Task, update_data.get("task_id"), "task_id")

    def apply(item: models.TaskItem) -> None:
        require_access(actor, Action.update, Resource.for_task_item(item), not_found=TASK_ITEM_NOT_FOUND)
        if target_task is not None and target_task.id != item.task_id:
            _require_item_write(actor, target_task)
        for key, value in update_data.items():
            setattr(item, key, value)

    commit_with_retry(db, lambda: _load_item(db, item_id), apply)
    logger.info(f"Task item {item_id} updated by user {actor.id}")
    return _load_item(db, item_id)


def set_task_item_completion(db: Session, actor: Actor, item_id: int, completed: bool) -> models.TaskItem:
    """
    Mark a task item completed or reopen it.

    Completing sets is_completed and status "Completed"; reopening resets
    them to false and "Pending".
    """
    logger.debug(f"User {actor.id} setting task item {item_id} completed={completed}")

    def apply(item: models.TaskItem) -> None:
        require_access(actor, Action.update, Resource.for_task_item(item), not_found=TASK_ITEM_NOT_FOUND)
        item.is_completed = completed
        item.status = models.COMPLETED_STATUS if completed else models.DEFAULT_STATUS

    commit_with_retry(db, lambda: _load_item(db, item_id), apply)
    logger.info(f"Task item {item_id} {'completed' if completed else 'reopened'} by user {actor.id}")
    return _load_item(db, item_id)


def complete_task_item(db: Session, actor: Actor, item_id: int) -> models.TaskItem:
    return set_task_item_completion(db, actor, item_id, True)


def reopen_task_item(db: Session, actor: Actor, item_id: int) -> models.TaskItem:
    return set_task_item_completion(db, actor, item_id, False)


def delete_task_item(db: Session, actor: Actor, item_id: int) -> None:
    """Delete a task item together with its status logs."""
    logger.debug(f"User {actor.id} deleting task item {item_id}")

    def apply(item: models.TaskItem) -> None:
        require_access(actor, Action.delete, Resource.for_task_item(item), not_found=TASK_ITEM_NOT_FOUND)
        db.delete(item)

    commit_with_retry(db, lambda: _load_item(db, item_id), apply)
    logger.info(f"Task item {item_id} deleted by user {actor.id}")
