"""Typed business errors and the API exception handler.

Services raise these; the DRF exception handler below maps them to response
codes. Anything that is not a CommerceError (or a DRF APIException) is logged
in full and reported to the client as a generic 500.
"""
import structlog
from rest_framework import status
from rest_framework.exceptions import APIException
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

logger = structlog.get_logger(__name__)


class CommerceError(APIException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Request could not be processed.'
    default_code = 'commerce_error'

    def __init__(self, detail=None, code=None):
        super().__init__(detail=detail, code=code)
        self.message = str(self.detail)

    def __str__(self):
        return self.message


class NotFound(CommerceError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = 'Resource not found.'
    default_code = 'not_found'


class ValidationFailed(CommerceError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Invalid request.'
    default_code = 'validation'


class InsufficientStock(CommerceError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'Insufficient stock.'
    default_code = 'insufficient_stock'


class Forbidden(CommerceError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = 'You do not have access to this resource.'
    default_code = 'forbidden'


class InvalidTransition(CommerceError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'Invalid status transition.'
    default_code = 'invalid_transition'


class Unauthorized(CommerceError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_detail = 'Invalid signature.'
    default_code = 'unauthorized'


class MalformedPayload(CommerceError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Malformed payload.'
    default_code = 'malformed_payload'


class PaymentNotCorrelated(NotFound):
    """A gateway event referenced a session with no local payment row."""
    default_detail = 'No payment matches this gateway session.'
    default_code = 'payment_not_correlated'


class GatewayError(CommerceError):
    status_code = status.HTTP_502_BAD_GATEWAY
    default_detail = 'Payment gateway request failed.'
    default_code = 'gateway_error'


UNEXPECTED_MESSAGE = 'An unexpected error occurred.'


def exception_handler(exc, context):
    response = drf_exception_handler(exc, context)

    if response is None:
        view = context.get('view')
        logger.exception(
            'unhandled_exception',
            view=type(view).__name__ if view is not None else None,
            error=str(exc),
        )
        return Response(
            {'error': UNEXPECTED_MESSAGE, 'code': 'unexpected'},
            status=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    if isinstance(exc, CommerceError):
        response.data = {'error': exc.message, 'code': getattr(exc.detail, 'code', exc.default_code)}
    elif isinstance(response.data, dict) and 'detail' in response.data:
        response.data = {'error': response.data['detail'], 'code': getattr(exc, 'default_code', 'error')}
    else:
        # serializer validation errors keep their field map
        response.data = {'error': 'Invalid request.', 'code': 'validation', 'fields': response.data}
    return response
