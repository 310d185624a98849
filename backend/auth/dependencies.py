"""
FastAPI dependencies for authentication.

Route handlers depend on get_current_actor() to obtain the verified Actor;
per-resource authorization happens afterwards in the entity services.
"""

import logging
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from auth.permissions import Actor
from auth.security import TokenService
from errors import NotAuthenticated

logger = logging.getLogger(__name__)

# HTTP Bearer token scheme for JWT authentication
security = HTTPBearer(auto_error=False)


def get_token_service(request: Request) -> TokenService:
    """Return the TokenService built at application startup."""
    return request.app.state.token_service


async def get_current_actor(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    tokens: TokenService = Depends(get_token_service),
) -> Actor:
    """
    Extract and validate the current actor from a JWT bearer token.

    The token's subject id, username and role are trusted verbatim once the
    signature is valid; no database lookup happens here.

    Raises:
        NotAuthenticated: if no token is given or it cannot be verified

    Example:
        @app.get("/api/protected")
        async def protected_route(actor: Actor = Depends(get_current_actor)):
            return {"user_id": actor.id}
    """
    if credentials is None or not credentials.credentials:
        logger.info("No authentication credentials provided")
        raise NotAuthenticated("Not authenticated")

    actor = tokens.actor_from_token(credentials.credentials)
    logger.debug(f"Authenticated {actor.role.value} {actor.id} via JWT")
    return actor
