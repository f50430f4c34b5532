"""API key authorization via the X-API-KEY header.

Administrative endpoints (status changes, refunds, deletes) are called by
back-office services that present the shared key instead of a user session.
"""
import hmac

from rest_framework.permissions import BasePermission

from .config import load_settings


def has_valid_api_key(request):
    expected = load_settings().api_key
    api_key = request.META.get('HTTP_X_API_KEY')
    if not api_key or not expected:
        return False
    return hmac.compare_digest(api_key.encode(), expected.encode())


class HasApiKey(BasePermission):
    message = 'Authentication failed'

    def has_permission(self, request, view):
        return has_valid_api_key(request)
