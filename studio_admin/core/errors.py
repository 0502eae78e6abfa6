"""
Translation of domain exceptions into HTTP errors for routers.
"""
from fastapi import HTTPException, status

from studio_admin.core.exceptions import ChatLimitError, ConflictError, StudioAdminError


def to_http_exception(exc: Exception) -> HTTPException:
    """Maps a service-layer exception onto its HTTP status."""
    if isinstance(exc, HTTPException):
        return exc
    if isinstance(exc, ChatLimitError):
        return HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail=str(exc))
    if isinstance(exc, ConflictError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, LookupError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, PermissionError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))
    if isinstance(exc, ValueError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal Server Error")


# Exceptions routers translate with to_http_exception; anything else reaches the global 500 handler
DOMAIN_ERRORS = (ValueError, LookupError, PermissionError, StudioAdminError)
