"""
User service: account management, registration and credential checks.
"""

import logging
from typing import List

from sqlalchemy.orm import Session

import models
import schemas
from auth.permissions import Action, Actor, Resource, require_access, scope_users, writable_user_fields
from auth.security import hash_password, verify_password
from errors import AccessDenied, NotAuthenticated, ValidationFailed, Conflict
from services.base import commit_new, commit_with_retry, get_or_404

logger = logging.getLogger(__name__)

USER_NOT_FOUND = "User not found"
USERNAME_TAKEN = "Username is already taken"
USER_IN_USE = "Cannot delete user because they still own tasks"


def _load_user(db: Session, user_id: int) -> models.User:
    return get_or_404(db, models.User, user_id, USER_NOT_FOUND)


def _ensure_username_free(db: Session, username: str, exclude_id: int = None) -> None:
    query = db.query(models.User).filter(models.User.username == username)
    if exclude_id is not None:
        query = query.filter(models.User.id != exclude_id)
    if query.first() is not None:
        logger.info(f"Username already taken: {username}")
        raise Conflict(USERNAME_TAKEN)


def list_users(db: Session, actor: Actor) -> List[models.User]:
    """List users (all for admins, only themselves for everybody else)."""
    logger.debug(f"User {actor.id} listing users")
    return scope_users(db.query(models.User), actor).order_by(models.User.id).all()


def get_user(db: Session, actor: Actor, user_id: int) -> models.User:
    logger.debug(f"User {actor.id} requesting user {user_id}")
    require_access(actor, Action.read, Resource.for_user(user_id), not_found=USER_NOT_FOUND)
    return _load_user(db, user_id)


def _new_user(data) -> models.User:
    return models.User(
        username=data.username,
        email=data.email,
        password_hash=hash_password(data.password),
        role=data.role,
    )


def create_user(db: Session, actor: Actor, data: schemas.UserCreate) -> models.User:
    """Create a user with any role (admin only)."""
    logger.debug(f"User {actor.id} creating user: {data.username}")
    require_access(actor, Action.create, Resource.for_user(None))
    _ensure_username_free(db, data.username)

    user = commit_new(db, _new_user(data), conflict_detail=USERNAME_TAKEN)
    logger.info(f"User created: {user.username} (ID: {user.id})")
    return user


def register_user(db: Session, data: schemas.RegisterRequest) -> models.User:
    """
    Self-service registration.

    New accounts may be clients or runners; admin accounts are only created
    by other admins.
    """
    logger.info(f"Registration attempt for username: {data.username}")
    if data.role is models.UserRole.admin:
        logger.info(f"Registration rejected: {data.username} requested the Admin role")
        raise AccessDenied("Cannot self-register as Admin")
    _ensure_username_free(db, data.username)

    user = commit_new(db, _new_user(data), conflict_detail=USERNAME_TAKEN)
    logger.critical(f"User registered successfully: {user.username} (ID: {user.id})")
    return user


def authenticate_user(db: Session, username: str, password: str) -> models.User:
    """
    Check a username/password pair.

    Raises:
        NotAuthenticated: for an unknown username or a wrong password
    """
    user = db.query(models.User).filter(models.User.username == username).first()
    if user is None:
        logger.info(f"Login failed: user not found: {username}")
        raise NotAuthenticated("Invalid username or password")
    if not verify_password(password, user.password_hash):
        logger.info(f"Login failed: invalid password: {username}")
        raise NotAuthenticated("Invalid username or password")
    return user


def update_user(db: Session, actor: Actor, user_id: int, data: schemas.UserUpdate) -> models.User:
    """Update a user (admin: any field incl. role; others: themselves, role excluded)."""
    logger.debug(f"User {actor.id} updating user {user_id}")

    update_data = writable_user_fields(actor, data.model_dump(exclude_unset=True))
    for field in ("username", "email", "password", "role"):
        if field in update_data and update_data[field] is None:
            raise ValidationFailed(f"{field} cannot be null")

    if "password" in update_data:
        update_data["password_hash"] = hash_password(update_data.pop("password"))

    def apply(user: models.User) -> None:
        require_access(actor, Action.update, Resource.for_user(user.id), not_found=USER_NOT_FOUND)
        if "username" in update_data and update_data["username"] != user.username:
            _ensure_username_free(db, update_data["username"], exclude_id=user.id)
        if update_data.get("role", user.role) is not models.UserRole.admin and user.role is models.UserRole.admin:
            _ensure_not_last_admin(db, user)
        for key, value in update_data.items():
            setattr(user, key, value)

    # Foreign ids are reported as not found before any lookup
    require_access(actor, Action.read, Resource.for_user(user_id), not_found=USER_NOT_FOUND)
    user = commit_with_retry(db, lambda: _load_user(db, user_id), apply, conflict_detail=USERNAME_TAKEN)
    logger.info(f"User updated: {user.username} (ID: {user.id})")
    return user


def _ensure_not_last_admin(db: Session, user: models.User) -> None:
    admin_count = db.query(models.User).filter(models.User.role == models.UserRole.admin).count()
    if admin_count <= 1:
        logger.warning(f"Attempt to remove the last admin user {user.id}")
        raise ValidationFailed("Cannot remove the last admin user. Promote another user to admin first.")


def delete_user(db: Session, actor: Actor, user_id: int) -> None:
    """
    Delete a user (admin only).

    Tasks assigned to the user and status logs they wrote keep existing with
    their runner reference cleared. A user who still owns tasks as client
    cannot be deleted.
    """
    logger.debug(f"User {actor.id} deleting user {user_id}")
    require_access(actor, Action.delete, Resource.for_user(user_id), not_found=USER_NOT_FOUND)

    # Guard 1: Prevent self-deletion (admin locking themselves out)
    if user_id == actor.id:
        logger.warning(f"Admin {actor.id} attempted to delete their own account")
        raise ValidationFailed("Cannot delete your own account. Ask another admin to remove your account.")

    def apply(user: models.User) -> None:
        # Guard 2: Prevent deleting the last admin (system lockout)
        if user.role is models.UserRole.admin:
            _ensure_not_last_admin(db, user)
        db.delete(user)

    commit_with_retry(db, lambda: _load_user(db, user_id), apply, conflict_detail=USER_IN_USE)
    logger.info(f"User deleted: ID {user_id}")
