"""Request dependencies: caller identity and service lookup."""

from __future__ import annotations

from fastapi import HTTPException, Request

from scienceai.citations.search import SourceSearchClient
from scienceai.errors import NotFoundError, ScienceAIError, ValidationError
from scienceai.subscription.limiter import UsageLimiter


def get_current_user_id(request: Request) -> str:
    """Extract the user ID from request headers.

    Reads `X-User-Id`, falling back to the `sub` claim of a Bearer token.
    The token signature is checked upstream by the auth gateway.
    """
    user_id = request.headers.get("X-User-Id")

    if not user_id:
        auth_header = request.headers.get("Authorization")
        if auth_header and auth_header.startswith("Bearer "):
            import jwt

            token = auth_header.replace("Bearer ", "", 1)
            try:
                payload = jwt.decode(token, options={"verify_signature": False})
            except jwt.PyJWTError:
                raise HTTPException(status_code=401, detail="Invalid token")
            user_id = payload.get("sub") or payload.get("userId")

    if not user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")

    return user_id


def get_limiter(request: Request) -> UsageLimiter:
    return request.app.state.limiter


def get_search_client(request: Request) -> SourceSearchClient:
    return request.app.state.search_client


def http_error(error: ScienceAIError) -> HTTPException:
    """Translate a service error into the matching HTTP error."""
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, ValidationError):
        return HTTPException(status_code=400, detail=str(error))
    return HTTPException(status_code=502, detail=str(error))
