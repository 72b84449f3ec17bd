import logging
import math

from rest_framework import exceptions, status
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


class AlertServiceError(Exception):
    """Base class for errors raised by the alert lifecycle and dispatch core."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Alert service error."

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidDispatchRequest(AlertServiceError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid dispatch request."


class AuthenticationRequired(AlertServiceError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Authentication credentials were not provided."


class NotAlertOwner(AlertServiceError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Unauthorized to send notifications for this alert."


class AlertNotFound(AlertServiceError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Alert not found."


class RateLimitExceeded(AlertServiceError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_message = "Rate limit exceeded. Please try again later."

    def __init__(self, retry_after, message=None):
        self.retry_after = retry_after
        super().__init__(message)


class StoreUnavailable(AlertServiceError):
    """The alert, contact or ledger store could not be reached. Safe to retry."""
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "Alert storage is temporarily unavailable."
    retry_after = 30


class ChannelError(AlertServiceError):
    """A single provider call failed. Folded into the dispatch result, never propagated."""
    status_code = status.HTTP_502_BAD_GATEWAY
    default_message = "Notification provider error."


def alert_exception_handler(exc, context):
    """
    DRF exception handler: maps AlertServiceError subclasses to responses and
    defers everything else to the stock DRF handler.
    """
    if isinstance(exc, exceptions.Throttled):
        exc = RateLimitExceeded(retry_after=exc.wait or 1)
    if not isinstance(exc, AlertServiceError):
        return exception_handler(exc, context)

    headers = {}
    retry_after = getattr(exc, 'retry_after', None)
    if retry_after is not None:
        headers['Retry-After'] = str(max(1, math.ceil(retry_after)))

    if exc.status_code >= 500:
        logger.error(f"{type(exc).__name__} while handling {context.get('view').__class__.__name__}: {exc.message}")

    body = {'error': exc.message}
    if isinstance(exc, RateLimitExceeded):
        body['retry_after'] = int(headers['Retry-After'])
    return Response(body, status=exc.status_code, headers=headers)
