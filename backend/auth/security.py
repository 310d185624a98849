"""
Security utilities for password hashing and JWT token management.

This module provides:
- Password hashing using Argon2id (memory-hard, GPU-resistant)
- TokenService, which issues and verifies access tokens carrying the
  actor's id, username and role
"""

import logging
from typing import Any, Dict, Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

from auth.permissions import Actor
from config import Settings
from errors import NotAuthenticated
from models import UserRole
from time_utils import expires_at, utc_now

logger = logging.getLogger(__name__)

# Password hashing configuration using Argon2id
pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")


def hash_password(password: str) -> str:
    """
    Hash a password using Argon2id.

    Args:
        password: Plain text password to hash

    Returns:
        Hashed password string

    Example:
        >>> hashed = hash_password("my_secure_password")
        >>> verify_password("my_secure_password", hashed)
        True
    """
    logger.debug("Hashing password")
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a password against its hash.

    Args:
        plain_password: Plain text password to verify
        hashed_password: Hashed password to compare against

    Returns:
        True if password matches, False otherwise
    """
    logger.debug("Verifying password")
    is_valid = pwd_context.verify(plain_password, hashed_password)
    logger.debug(f"Password verification result: {is_valid}")
    return is_valid


class TokenService:
    """
    Issues and verifies signed access tokens.

    Built once at startup from the immutable Settings; the signing secret is
    never looked up again at request time.
    """

    def __init__(self, settings: Settings):
        self._secret = settings.jwt_secret_key
        self._algorithm = settings.jwt_algorithm
        self._expire_days = settings.access_token_expire_days

    @property
    def expire_days(self) -> int:
        return self._expire_days

    def create_access_token(self, user_id: int, username: str, role: UserRole,
                            expire_days: Optional[int] = None) -> str:
        """
        Create a JWT access token.

        Args:
            user_id: Subject user id
            username: Subject username
            role: Subject role
            expire_days: Optional lifetime override in days

        Returns:
            Encoded JWT token string

        Example:
            >>> token = tokens.create_access_token(1, "alice", UserRole.client)
        """
        expire = expires_at(expire_days if expire_days is not None else self._expire_days)
        to_encode: Dict[str, Any] = {
            "sub": str(user_id),
            "username": username,
            "role": UserRole(role).value,
            "type": "access",
            "iat": utc_now(),
            "exp": expire,
        }
        encoded_jwt = jwt.encode(to_encode, self._secret, algorithm=self._algorithm)
        logger.debug(f"Access token created for user {user_id}, expires at: {expire}")
        return encoded_jwt

    def decode(self, token: str) -> Dict[str, Any]:
        """
        Verify signature and expiry and return the raw claims.

        Raises:
            NotAuthenticated: if the token is invalid or expired
        """
        try:
            payload = jwt.decode(token, self._secret, algorithms=[self._algorithm])
        except JWTError as e:
            logger.info(f"JWT verification failed: {str(e)}")
            raise NotAuthenticated("Invalid or expired token")
        return payload

    def actor_from_token(self, token: str) -> Actor:
        """
        Build the Actor from a verified token.

        The subject id, username and role claims are trusted verbatim once
        the signature validates.

        Raises:
            NotAuthenticated: on a bad signature, wrong token type, or a
                missing/unparseable subject or role claim
        """
        payload = self.decode(token)

        if payload.get("type") != "access":
            logger.info(f"Invalid token type: {payload.get('type')}")
            raise NotAuthenticated("Invalid token type")

        try:
            user_id = int(payload.get("sub"))
        except (TypeError, ValueError):
            logger.info(f"Invalid user_id format in token: {payload.get('sub')}")
            raise NotAuthenticated("Invalid token payload")

        try:
            role = UserRole(payload.get("role"))
        except ValueError:
            logger.info(f"Unknown role claim in token: {payload.get('role')}")
            raise NotAuthenticated("Invalid token payload")

        return Actor(id=user_id, role=role, username=payload.get("username"))
