"""
Authentication API endpoints.

This module provides REST API endpoints for:
- User registration (clients and runners)
- Login with username and password
- Fetching the current user's profile
"""

import logging

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session

import schemas
from auth.dependencies import get_current_actor, get_token_service
from auth.permissions import Actor
from auth.security import TokenService
from database import get_db
from services import users as user_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


def _auth_response(user, tokens: TokenService) -> schemas.AuthResponse:
    access_token = tokens.create_access_token(user.id, user.username, user.role)
    return schemas.AuthResponse(
        access_token=access_token,
        expires_in_days=tokens.expire_days,
        user=schemas.User.model_validate(user),
    )


@router.post("/register", response_model=schemas.AuthResponse, status_code=status.HTTP_201_CREATED)
async def register(
    request: schemas.RegisterRequest,
    response: Response,
    db: Session = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
):
    """
    Register a new client or runner account and log it in.

    Raises:
        403 if the Admin role is requested
        409 if the username is already taken
    """
    user = user_service.register_user(db, request)
    response.headers["Location"] = f"/api/users/{user.id}"
    return _auth_response(user, tokens)


@router.post("/login", response_model=schemas.AuthResponse)
async def login(
    request: schemas.LoginRequest,
    db: Session = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
):
    """
    Login with username and password.

    Returns:
        Access token (valid for ACCESS_TOKEN_EXPIRE_DAYS) and the user profile

    Raises:
        401 if the credentials are invalid
    """
    logger.info(f"Login attempt for username: {request.username}")
    user = user_service.authenticate_user(db, request.username, request.password)
    logger.critical(f"User logged in successfully: {user.username} (ID: {user.id})")
    return _auth_response(user, tokens)


@router.get("/me", response_model=schemas.User)
async def get_current_user_info(
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    """Get the current authenticated user's profile."""
    logger.debug(f"Fetching user info for: {actor.id}")
    return user_service.get_user(db, actor, actor.id)
