"""
Custom exceptions for the application
"""
from typing import Optional
from fastapi import HTTPException, status


class SignpostingException(Exception):
    """Base exception for the Signposting Toolkit"""
    def __init__(self, message: str, detail: Optional[str] = None):
        self.message = message
        self.detail = detail
        super().__init__(self.message)


class AuthenticationException(SignpostingException):
    """Raised when authentication fails"""
    pass


class AuthorizationException(SignpostingException):
    """Raised when user lacks the role required for an operation"""
    pass


class NotFoundException(SignpostingException):
    """Raised when resource is not found"""
    pass


class ConflictException(SignpostingException):
    """
    Raised when a write lost a race or would leave a dangling reference

    Callers are expected to refetch and retry once.
    """
    pass


class ValidationException(SignpostingException):
    """Raised when input is malformed (empty field, bad enum, cross-template reference)"""
    pass


class ConfigurationException(SignpostingException):
    """Raised when a workflow graph itself is malformed (start nodes, dead ends)"""
    pass


class InvalidTransitionException(SignpostingException):
    """Raised when an operation targets an instance or template in the wrong state"""
    pass


# HTTP Exception helpers
def http_401_unauthorized(detail: str = "Could not validate credentials") -> HTTPException:
    """Return 401 Unauthorized exception"""
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def http_403_forbidden(detail: str = "Forbidden") -> HTTPException:
    """Return 403 Forbidden exception"""
    return HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail=detail,
    )


def http_404_not_found(detail: str = "Resource not found") -> HTTPException:
    """Return 404 Not Found exception"""
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=detail,
    )


def http_409_conflict(detail: str = "Resource already exists") -> HTTPException:
    """Return 409 Conflict exception"""
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail=detail,
    )


def http_422_validation_error(detail: str = "Validation error") -> HTTPException:
    """Return 422 Unprocessable Entity exception"""
    return HTTPException(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail=detail,
    )


def to_http_exception(exc: SignpostingException) -> HTTPException:
    """
    Translate a service exception into the matching HTTP error

    Args:
        exc: Exception raised by a service

    Returns:
        HTTPException carrying the most specific message available
    """
    detail = exc.detail or exc.message

    if isinstance(exc, NotFoundException):
        return http_404_not_found(detail=detail)
    if isinstance(exc, AuthenticationException):
        return http_401_unauthorized(detail=detail)
    if isinstance(exc, AuthorizationException):
        return http_403_forbidden(detail=detail)
    if isinstance(exc, (ConflictException, InvalidTransitionException)):
        return http_409_conflict(detail=detail)
    return http_422_validation_error(detail=detail)
