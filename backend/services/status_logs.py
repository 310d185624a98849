"""
Status log service.

Status logs are the audit trail runners write while working on a task. A
runner may log only against items of tasks assigned to them and only in
their own name; the owning client can read the logs of their tasks.
"""

import logging
from typing import List, Optional

from sqlalchemy.orm import Session, joinedload

import models
import schemas
from auth.permissions import Action, Actor, Resource, require_access, scope_status_logs
from errors import AccessDenied, ValidationFailed
from services.base import commit_with_retry, get_or_404, require_reference
from services.task_items import TASK_ITEM_NOT_FOUND

logger = logging.getLogger(__name__)

STATUS_LOG_NOT_FOUND = "Status log not found"

_LOG_OPTIONS = (
    joinedload(models.StatusLog.runner),
    joinedload(models.StatusLog.task_item).joinedload(models.TaskItem.task),
)


def _load_log(db: Session, log_id: int) -> models.StatusLog:
    return get_or_404(db, models.StatusLog, log_id, STATUS_LOG_NOT_FOUND, options=_LOG_OPTIONS)


def _load_item_with_task(db: Session, item_id: int) -> models.TaskItem:
    return get_or_404(
        db, models.TaskItem, item_id, TASK_ITEM_NOT_FOUND, options=(joinedload(models.TaskItem.task),)
    )


def _resolve_author(db: Session, actor: Actor, runner_id: Optional[int]) -> int:
    """
    Work out whose name a log is written in.

    Omitted means the actor. Runners may only name themselves; admins may
    name any existing user.
    """
    if runner_id is None:
        return actor.id
    if not actor.is_admin and runner_id != actor.id:
        logger.info(f"User {actor.id} attempted to write a status log as user {runner_id}")
        raise AccessDenied("Runners can only record status logs under their own id")
    require_reference(db, models.User, runner_id, "runner_id")
    return runner_id


def _require_log_create(actor: Actor, item: models.TaskItem, runner_id: Optional[int]) -> None:
    require_access(
        actor,
        Action.create,
        Resource.for_new_status_log(item, runner_id),
        not_found=TASK_ITEM_NOT_FOUND,
        visibility=Resource.for_task_item(item),
    )


def list_status_logs(
    db: Session,
    actor: Actor,
    task_item_id: Optional[int] = None,
    skip: int = 0,
    limit: int = 100,
) -> List[models.StatusLog]:
    """
    List visible status logs, newest first, optionally for one task item.

    Visibility is decided per log, the same way as for a single read: a
    runner keeps seeing the logs they wrote after the task moves on to
    somebody else. A missing or hidden task item yields an empty list.
    """
    logger.debug(f"User {actor.id} listing status logs (task_item_id={task_item_id}, skip={skip}, limit={limit})")
    query = db.query(models.StatusLog).options(joinedload(models.StatusLog.runner))
    if task_item_id is not None:
        query = query.filter(models.StatusLog.task_item_id == task_item_id)
    query = scope_status_logs(query, actor)
    return (
        query.order_by(models.StatusLog.created_at.desc(), models.StatusLog.id.desc())
        .offset(skip)
        .limit(limit)
        .all()
    )


def get_status_log(db: Session, actor: Actor, log_id: int) -> models.StatusLog:
    logger.debug(f"User {actor.id} requesting status log {log_id}")
    log = _load_log(db, log_id)
    require_access(actor, Action.read, Resource.for_status_log(log), not_found=STATUS_LOG_NOT_FOUND)
    return log


def create_status_log(db: Session, actor: Actor, data: schemas.StatusLogCreate) -> models.StatusLog:
    """
    Record a status update on a task item.

    When the log carries a status, the parent task item's status is set to it
    in the same transaction.
    """
    logger.info(f"User {actor.id} creating status log on task item {data.task_item_id}")

    require_reference(db, models.TaskItem, data.task_item_id, "task_item_id")
    runner_id = _resolve_author(db, actor, data.runner_id)

    created = []

    def apply(item: models.TaskItem) -> None:
        _require_log_create(actor, item, runner_id)
        if data.status is not None:
            item.status = data.status
        # A retry rolled back the first attempt's insert
        del created[:]
        log = models.StatusLog(
            task_item_id=item.id,
            runner_id=runner_id,
            status=data.status,
            comment=data.comment,
        )
        db.add(log)
        created.append(log)

    commit_with_retry(db, lambda: _load_item_with_task(db, data.task_item_id), apply)
    log_id = created[0].id
    logger.info(f"Status log created successfully: id={log_id}")
    return _load_log(db, log_id)


def update_status_log(db: Session, actor: Actor, log_id: int, data: schemas.StatusLogUpdate) -> models.StatusLog:
    """
    Update a status log (admin, or the runner who wrote it).

    Moving a log to another task item requires the right to create a log
    there; runners cannot hand their log to somebody else.
    """
    logger.debug(f"User {actor.id} updating status log {log_id}")

    update_data = data.model_dump(exclude_unset=True)
    if "task_item_id" in update_data and update_data["task_item_id"] is None:
        raise ValidationFailed("task_item_id cannot be null")
    if "comment" in update_data and update_data["comment"] is None:
        update_data["comment"] = ""

    target_item = None
    if "task_item_id" in update_data:
        target_item = require_reference(db, models.TaskItem, update_data["task_item_id"], "task_item_id")
    if update_data.get("runner_id") is not None:
        _resolve_author(db, actor, update_data["runner_id"])
    elif "runner_id" in update_data and not actor.is_admin:
        raise AccessDenied("Runners can only record status logs under their own id")

    def apply(log: models.StatusLog) -> None:
        require_access(actor, Action.update, Resource.for_status_log(log), not_found=STATUS_LOG_NOT_FOUND)
        if target_item is not None and target_item.id != log.task_item_id:
            _require_log_create(actor, target_item, update_data.get("runner_id", log.runner_id))
        for key, value in update_data.items():
            setattr(log, key, value)

    commit_with_retry(db, lambda: _load_log(db, log_id), apply)
    logger.info(f"Status log {log_id} updated by user {actor.id}")
    return _load_log(db, log_id)


def delete_status_log(db: Session, actor: Actor, log_id: int) -> None:
    logger.debug(f"User {actor.id} deleting status log {log_id}")

    def apply(log: models.StatusLog) -> None:
        require_access(actor, Action.delete, Resource.for_status_log(log), not_found=STATUS_LOG_NOT_FOUND)
        db.delete(log)

    commit_with_retry(db, lambda: _load_log(db, log_id), apply)
    logger.info(f"Status log {log_id} deleted by user {actor.id}")
