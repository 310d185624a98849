"""
Shared helpers for the entity services.

Every mutation goes through commit_with_retry(), which commits the change as
one unit and handles the two store-level failure modes:

- StaleDataError (optimistic version mismatch): roll back, re-fetch the row,
  re-run the authorization + mutation callback against the fresh state, and
  commit once more. A second mismatch surfaces as ConcurrencyConflict.
- IntegrityError (unique key or restrict-on-delete): roll back and surface
  as Conflict.
"""

import logging
from typing import Callable, Optional, Type, TypeVar

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from errors import ConcurrencyConflict, Conflict, NotFound, ValidationFailed

logger = logging.getLogger(__name__)

T = TypeVar("T")


def get_or_404(db: Session, model: Type[T], entity_id: int, detail: str, options=()) -> T:
    """Load a row by primary key or raise NotFound."""
    entity = db.query(model).options(*options).filter(model.id == entity_id).first()
    if entity is None:
        logger.info(f"{model.__name__} {entity_id} not found")
        raise NotFound(detail)
    return entity


def require_reference(db: Session, model: Type[T], entity_id: Optional[int], field: str) -> Optional[T]:
    """
    Resolve a foreign key supplied in a request body.

    Raises:
        ValidationFailed: if the referenced row does not exist
    """
    if entity_id is None:
        return None
    entity = db.query(model).filter(model.id == entity_id).first()
    if entity is None:
        logger.info(f"Invalid {field}: {model.__name__} {entity_id} does not exist")
        raise ValidationFailed(f"Invalid {field}. {model.__name__} {entity_id} does not exist.")
    return entity


def commit_with_retry(
    db: Session,
    load: Callable[[], T],
    apply: Callable[[T], None],
    conflict_detail: str = "Operation conflicts with existing data",
) -> T:
    """
    Load a row, apply a mutation to it, and commit, retrying once on a stale version.

    Args:
        db: Database session
        load: Fetches the target row; raises NotFound when it no longer exists
        apply: Checks authorization against the loaded row and mutates it
            (or marks it for deletion); called again on retry
        conflict_detail: Detail message for integrity violations

    Returns:
        The mutated row

    Raises:
        NotFound: if the row disappeared before the retry
        ConcurrencyConflict: if the retry also hit a stale version
        Conflict: on a unique-key or referential-integrity violation
    """
    for attempt in (1, 2):
        entity = load()
        apply(entity)
        try:
            db.commit()
            return entity
        except StaleDataError as e:
            db.rollback()
            if attempt == 2:
                logger.warning(f"Concurrent modification persisted after retry: {e}")
                raise ConcurrencyConflict()
            logger.warning(f"Stale version detected, retrying once: {e}")
        except IntegrityError as e:
            db.rollback()
            logger.info(f"Integrity violation: {e.orig}")
            raise Conflict(conflict_detail)


def commit_new(db: Session, entity: T, conflict_detail: str = "Operation conflicts with existing data") -> T:
    """Insert a new row and commit, turning integrity violations into Conflict."""
    db.add(entity)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        logger.info(f"Integrity violation: {e.orig}")
        raise Conflict(conflict_detail)
    return entity
