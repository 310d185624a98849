"""
Role- and ownership-based access control.

This module decides whether an actor may perform an action on a resource.
Decisions depend only on the actor's role and id and on the resource's
resolved ownership chain:

    StatusLog -> TaskItem -> Task -> client_id   (owner)
                             Task -> runner_id   (assignee)
    StatusLog -> runner_id                       (author)

Rules live in a single table keyed by (resource kind, action), with one
predicate per role. A role with no entry for a key is denied. Entity services
resolve the ownership chain, call require_access(), and only then write.
"""

import enum
import logging
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.orm import Query

from errors import AccessDenied, NotFound
from models import StatusLog, Task, TaskItem, User, UserRole

logger = logging.getLogger(__name__)


class Action(str, enum.Enum):
    read = "read"
    create = "create"
    update = "update"
    delete = "delete"
    assign = "assign"
    unassign = "unassign"


class ResourceKind(str, enum.Enum):
    task = "task"
    task_item = "task_item"
    status_log = "status_log"
    user = "user"


@dataclass(frozen=True)
class Actor:
    """The authenticated identity making a request."""
    id: int
    role: UserRole
    username: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role is UserRole.admin


@dataclass(frozen=True)
class Resource:
    """
    A target entity reduced to the attributes that matter for authorization.

    Attributes:
        kind: Which entity type this is
        client_id: Owning client of the task chain (task, task item, status log)
        assignee_id: Runner assigned to the task chain, None if unclaimed
        author_id: Runner recorded on a status log
        user_id: Target user id (user resources)
    """
    kind: ResourceKind
    client_id: Optional[int] = None
    assignee_id: Optional[int] = None
    author_id: Optional[int] = None
    user_id: Optional[int] = None

    @classmethod
    def for_task(cls, task: Task) -> "Resource":
        return cls(ResourceKind.task, client_id=task.client_id, assignee_id=task.runner_id)

    @classmethod
    def for_task_item(cls, item: TaskItem) -> "Resource":
        return cls.for_item_of(item.task)

    @classmethod
    def for_item_of(cls, task: Task) -> "Resource":
        """A task item (existing or about to be created) under the given task."""
        return cls(ResourceKind.task_item, client_id=task.client_id, assignee_id=task.runner_id)

    @classmethod
    def for_status_log(cls, log: StatusLog) -> "Resource":
        task = log.task_item.task
        return cls(
            ResourceKind.status_log,
            client_id=task.client_id,
            assignee_id=task.runner_id,
            author_id=log.runner_id,
        )

    @classmethod
    def for_new_status_log(cls, item: TaskItem, runner_id: Optional[int]) -> "Resource":
        return cls(
            ResourceKind.status_log,
            client_id=item.task.client_id,
            assignee_id=item.task.runner_id,
            author_id=runner_id,
        )

    @classmethod
    def for_user(cls, user_id: Optional[int]) -> "Resource":
        return cls(ResourceKind.user, user_id=user_id)


Predicate = Callable[[Actor, Resource], bool]


def _always(actor: Actor, resource: Resource) -> bool:
    return True


def _owns_task(actor: Actor, resource: Resource) -> bool:
    return resource.client_id == actor.id


def _unclaimed_or_assigned(actor: Actor, resource: Resource) -> bool:
    return resource.assignee_id is None or resource.assignee_id == actor.id


def _unclaimed(actor: Actor, resource: Resource) -> bool:
    return resource.assignee_id is None


def _is_assignee(actor: Actor, resource: Resource) -> bool:
    return resource.assignee_id == actor.id


def _is_author(actor: Actor, resource: Resource) -> bool:
    return resource.author_id == actor.id


def _logs_own_assignment(actor: Actor, resource: Resource) -> bool:
    return resource.assignee_id == actor.id and resource.author_id == actor.id


def _is_self(actor: Actor, resource: Resource) -> bool:
    return resource.user_id == actor.id


ADMIN, CLIENT, RUNNER = UserRole.admin, UserRole.client, UserRole.runner

RULES: Dict[Tuple[ResourceKind, Action], Dict[UserRole, Predicate]] = {
    (ResourceKind.task, Action.create): {ADMIN: _always, CLIENT: _owns_task},
    (ResourceKind.task, Action.read): {ADMIN: _always, CLIENT: _owns_task, RUNNER: _unclaimed_or_assigned},
    (ResourceKind.task, Action.update): {ADMIN: _always, CLIENT: _owns_task},
    (ResourceKind.task, Action.delete): {ADMIN: _always, CLIENT: _owns_task},
    (ResourceKind.task, Action.assign): {RUNNER: _unclaimed},
    (ResourceKind.task, Action.unassign): {ADMIN: _always, RUNNER: _is_assignee},

    (ResourceKind.task_item, Action.read): {ADMIN: _always, CLIENT: _owns_task, RUNNER: _unclaimed_or_assigned},
    (ResourceKind.task_item, Action.create): {ADMIN: _always, CLIENT: _owns_task},
    (ResourceKind.task_item, Action.update): {ADMIN: _always, CLIENT: _owns_task},
    (ResourceKind.task_item, Action.delete): {ADMIN: _always, CLIENT: _owns_task},

    (ResourceKind.status_log, Action.create): {ADMIN: _always, RUNNER: _logs_own_assignment},
    (ResourceKind.status_log, Action.read): {ADMIN: _always, CLIENT: _owns_task, RUNNER: _is_author},
    (ResourceKind.status_log, Action.update): {ADMIN: _always, RUNNER: _is_author},
    (ResourceKind.status_log, Action.delete): {ADMIN: _always, RUNNER: _is_author},

    (ResourceKind.user, Action.read): {ADMIN: _always, CLIENT: _is_self, RUNNER: _is_self},
    (ResourceKind.user, Action.create): {ADMIN: _always},
    (ResourceKind.user, Action.update): {ADMIN: _always, CLIENT: _is_self, RUNNER: _is_self},
    (ResourceKind.user, Action.delete): {ADMIN: _always},
}

# Fields only an admin may change on a user record
ADMIN_ONLY_USER_FIELDS = frozenset({"role"})


def is_allowed(actor: Actor, action: Action, resource: Resource) -> bool:
    """
    Decide whether an actor may perform an action on a resource.

    Args:
        actor: Authenticated actor
        action: Requested action
        resource: Target with its resolved ownership attributes

    Returns:
        True if a rule for the actor's role matches, False otherwise

    Example:
        >>> is_allowed(Actor(5, UserRole.runner), Action.assign, Resource(ResourceKind.task, client_id=1))
        True
    """
    role_rules = RULES.get((resource.kind, action), {})
    predicate = role_rules.get(UserRole(actor.role))
    allowed = predicate is not None and predicate(actor, resource)
    logger.debug(
        f"Access check: {actor.role.value} {actor.id} {action.value} {resource.kind.value} -> "
        f"{'allow' if allowed else 'deny'}"
    )
    return allowed


def require_access(
    actor: Actor,
    action: Action,
    resource: Resource,
    not_found: str = "Not found",
    visibility: Optional[Resource] = None,
) -> None:
    """
    Require permission for an action, or raise.

    A denied actor who may not even read the target (or, for creates, the
    parent given as `visibility`) gets NotFound, so probing foreign ids never
    confirms that they exist. An actor who can see the target but may not
    perform the action gets AccessDenied.

    Args:
        actor: Authenticated actor
        action: Requested action
        resource: Target resource
        not_found: Detail message used when the target is hidden
        visibility: Resource whose readability decides NotFound vs AccessDenied;
            defaults to the target itself for non-create actions

    Raises:
        NotFound: if the actor cannot see the target
        AccessDenied: if the actor can see the target but the action is denied
    """
    if is_allowed(actor, action, resource):
        return

    if visibility is None and action is not Action.create:
        visibility = resource

    if action is Action.read or (visibility is not None and not is_allowed(actor, Action.read, visibility)):
        logger.info(
            f"{actor.role.value} {actor.id} cannot see {resource.kind.value} for {action.value}, returning 404"
        )
        raise NotFound(not_found)

    logger.info(f"{actor.role.value} {actor.id} denied {action.value} on {resource.kind.value}")
    raise AccessDenied(f"Access denied: {actor.role.value} cannot {action.value} this {resource.kind.value.replace('_', ' ')}")


def writable_user_fields(actor: Actor, update_data: dict) -> dict:
    """
    Strip fields the actor may not change on a user record.

    Non-admins can never change a role, including their own.
    """
    if actor.is_admin:
        return update_data
    dropped = [key for key in update_data if key in ADMIN_ONLY_USER_FIELDS]
    if dropped:
        logger.info(f"User {actor.id} attempted to change admin-only fields {dropped}, ignoring")
    return {key: value for key, value in update_data.items() if key not in ADMIN_ONLY_USER_FIELDS}


# ============== Role-scoped list queries ==============


def scope_tasks(query: Query, actor: Actor) -> Query:
    """Restrict a Task query to the tasks the actor may read."""
    if actor.role is UserRole.admin:
        return query
    if actor.role is UserRole.client:
        return query.filter(Task.client_id == actor.id)
    if actor.role is UserRole.runner:
        return query.filter(or_(Task.runner_id.is_(None), Task.runner_id == actor.id))
    raise ValueError(f"Unhandled role: {actor.role}")


def scope_task_items(query: Query, actor: Actor) -> Query:
    """Restrict a TaskItem query to items of tasks the actor may read."""
    if actor.role is UserRole.admin:
        return query
    return scope_tasks(query.join(TaskItem.task), actor)


def scope_status_logs(query: Query, actor: Actor) -> Query:
    """Restrict a StatusLog query to the logs the actor may read."""
    if actor.role is UserRole.admin:
        return query
    if actor.role is UserRole.client:
        return query.join(StatusLog.task_item).join(TaskItem.task).filter(Task.client_id == actor.id)
    if actor.role is UserRole.runner:
        return query.filter(StatusLog.runner_id == actor.id)
    raise ValueError(f"Unhandled role: {actor.role}")


def scope_users(query: Query, actor: Actor) -> Query:
    """Restrict a User query to the users the actor may read."""
    if actor.role is UserRole.admin:
        return query
    return query.filter(User.id == actor.id)
