"""
Domain errors and the DRF exception handler.

Services raise the typed errors below; the handler turns them (and anything
else that escapes a view) into a consistent ``{'error': ...}`` response.
"""
from rest_framework.views import exception_handler
from rest_framework.response import Response
from rest_framework import status
from django.db import IntegrityError
import logging

logger = logging.getLogger(__name__)


class BoardError(Exception):
    """Base class for errors returned to the caller as typed results."""
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Request could not be processed.'

    def __init__(self, detail=None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class InvalidInput(BoardError):
    """Malformed, missing or contradictory fields. Caller error, not retried."""
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Invalid input.'


class NotFound(BoardError):
    """Referenced post, comment or vote target is absent."""
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = 'Not found.'


class Unauthorized(BoardError):
    """Missing or invalid identity."""
    status_code = status.HTTP_401_UNAUTHORIZED
    default_detail = 'Authentication required.'


class Conflict(BoardError):
    """Uniqueness violation, e.g. a duplicate ledger row detected on insert."""
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'Conflicting update.'


def custom_exception_handler(exc, context):
    """
    Custom exception handler that:
    1. Maps BoardError subclasses to their status codes
    2. Converts Django exceptions to DRF responses
    3. Logs anything unexpected
    """
    if isinstance(exc, BoardError):
        logger.debug("%s: %s", type(exc).__name__, exc.detail)
        return Response({'error': exc.detail}, status=exc.status_code)

    # Call DRF's default exception handler first
    response = exception_handler(exc, context)

    # If DRF handled it, enhance the response
    if response is not None:
        if not isinstance(response.data, dict) or 'error' not in response.data:
            response.data = {
                'error': str(exc),
                'details': response.data
            }
        return response

    if isinstance(exc, IntegrityError):
        logger.warning("IntegrityError: %s", exc)
        return Response(
            {'error': 'Data integrity error. This may be a duplicate entry.'},
            status=status.HTTP_409_CONFLICT
        )

    logger.exception("Unhandled exception: %s", exc)

    return Response(
        {'error': 'An unexpected error occurred.'},
        status=status.HTTP_500_INTERNAL_SERVER_ERROR
    )
