"""
Error classifications and the custom exception handler for DRF.

Every callable failure reaches the client as:

    {"error": "<human readable>", "code": "<classification>", "details": ...}

The classification strings are stable and meant for clients to branch on:

    invalid-argument   malformed or out-of-range input
    already-exists     duplicate username at registration
    not-found          unknown username at login
    internal           anything unexpected (original message in details)

Event handlers never reach this module; see mirror.best_effort.
"""
from rest_framework.views import exception_handler
from rest_framework.response import Response
from rest_framework.exceptions import APIException, ParseError, ValidationError
from rest_framework import status
from django.db import IntegrityError
import logging

logger = logging.getLogger(__name__)


class FeedError(APIException):
    """Base for failures that carry their own classification in default_code."""


class InvalidArgument(FeedError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Request data is missing or malformed.'
    default_code = 'invalid-argument'


class UsernameTaken(FeedError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'Username is already taken.'
    default_code = 'already-exists'


class PrincipalNotFound(FeedError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = 'Username not found.'
    default_code = 'not-found'


class InternalFailure(FeedError):
    """
    Opaque server-side failure. diagnostic holds the message of the
    exception that caused it.
    """
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = 'An unexpected error occurred.'
    default_code = 'internal'

    def __init__(self, detail=None, diagnostic=None):
        super().__init__(detail)
        self.diagnostic = diagnostic


# Classification for DRF's own exceptions, keyed by HTTP status
STATUS_CLASSIFICATIONS = {
    status.HTTP_400_BAD_REQUEST: 'invalid-argument',
    status.HTTP_401_UNAUTHORIZED: 'unauthenticated',
    status.HTTP_403_FORBIDDEN: 'permission-denied',
    status.HTTP_404_NOT_FOUND: 'not-found',
    status.HTTP_405_METHOD_NOT_ALLOWED: 'unimplemented',
    status.HTTP_409_CONFLICT: 'already-exists',
    status.HTTP_415_UNSUPPORTED_MEDIA_TYPE: 'invalid-argument',
    status.HTTP_429_TOO_MANY_REQUESTS: 'resource-exhausted',
}


def classify(exc, status_code):
    if isinstance(exc, FeedError):
        return exc.default_code
    if isinstance(exc, (ValidationError, ParseError)):
        return 'invalid-argument'
    return STATUS_CLASSIFICATIONS.get(status_code, 'internal')


def custom_exception_handler(exc, context):
    """
    Custom exception handler that:
    1. Logs all exceptions
    2. Converts Django exceptions to DRF responses
    3. Attaches a stable classification to every error body
    """

    # Call DRF's default exception handler first
    response = exception_handler(exc, context)

    if response is not None:
        code = classify(exc, response.status_code)
        if isinstance(exc, ValidationError):
            body = {
                'error': InvalidArgument.default_detail,
                'code': code,
                'details': response.data
            }
        else:
            # Http404 / Django PermissionDenied arrive unconverted; use the
            # message DRF rendered for them
            message = response.data.get('detail', str(exc)) if isinstance(response.data, dict) else str(exc)
            body = {'error': str(message), 'code': code}
            if isinstance(exc, InternalFailure) and exc.diagnostic:
                body['details'] = exc.diagnostic
        if isinstance(exc, InternalFailure):
            logger.error(f"Internal failure: {exc.detail} ({exc.diagnostic})")
        response.data = body
        return response

    # Handle exceptions that DRF doesn't handle
    if isinstance(exc, IntegrityError):
        logger.warning(f"IntegrityError: {exc}")
        return Response(
            {
                'error': 'Data integrity error. This may be a duplicate entry.',
                'code': 'already-exists'
            },
            status=status.HTTP_409_CONFLICT
        )

    # Log unexpected exceptions
    logger.exception(f"Unhandled exception: {exc}")

    # Return generic error for unexpected exceptions
    return Response(
        {'error': 'An unexpected error occurred.', 'code': 'internal'},
        status=status.HTTP_500_INTERNAL_SERVER_ERROR
    )
