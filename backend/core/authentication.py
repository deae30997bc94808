"""
JWT authentication and role checks.

Tokens are simplejwt access tokens carrying userId, email and role claims.
The Authorization header may hold either "Bearer <token>" or the bare token.
Account status is always read from the database, the role from the token.
"""
from rest_framework.exceptions import AuthenticationFailed, NotAuthenticated, PermissionDenied
from rest_framework.permissions import BasePermission, SAFE_METHODS
from rest_framework_simplejwt.authentication import JWTAuthentication
from rest_framework_simplejwt.exceptions import InvalidToken, TokenError
from rest_framework_simplejwt.tokens import AccessToken

from .models import User

TOKEN_MISSING_MESSAGE = 'Authorization token missing or Access denied.'
INVALID_TOKEN_MESSAGE = 'Invalid or expired token'
INACTIVE_ACCOUNT_MESSAGE = 'Account pending approval or suspended.'
ADMIN_ONLY_MESSAGE = 'Access denied: Admins only.'


class DonationAccessToken(AccessToken):
    """Access token with the email and role claims the client reads"""

    @classmethod
    def for_user(cls, user):
        token = super().for_user(user)
        token['userId'] = user.id
        token['email'] = user.email
        token['role'] = user.role
        return token


def issue_token(user):
    """Return a signed access token string for user"""
    return str(DonationAccessToken.for_user(user))


class DonationJWTAuthentication(JWTAuthentication):
    def get_raw_token(self, header):
        parts = header.split()
        if len(parts) == 1:
            return parts[0]
        return super().get_raw_token(header)

    def authenticate(self, request):
        try:
            return super().authenticate(request)
        except (InvalidToken, TokenError, AuthenticationFailed):
            raise AuthenticationFailed(INVALID_TOKEN_MESSAGE)


def is_admin_request(request):
    """True when the request carries an ADMIN token"""
    token = getattr(request, 'auth', None)
    return token is not None and token.get('role') == User.ROLE_ADMIN


def _require_token(request):
    user = request.user
    if not user or not user.is_authenticated:
        raise NotAuthenticated(TOKEN_MISSING_MESSAGE)
    return user


class IsActiveAccount(BasePermission):
    """Authenticated caller whose account status is ACTIVE"""

    def has_permission(self, request, view):
        user = _require_token(request)
        # request.user is loaded from the database on every request
        if not user.is_account_active:
            raise PermissionDenied(INACTIVE_ACCOUNT_MESSAGE)
        return True


class IsAdminRole(IsActiveAccount):
    """Active account whose token carries the ADMIN role"""

    def has_permission(self, request, view):
        _require_token(request)
        if not is_admin_request(request):
            raise PermissionDenied(ADMIN_ONLY_MESSAGE)
        return super().has_permission(request, view)


class IsAdminRoleOrReadOnly(IsActiveAccount):
    """Reads need an active account, writes need an admin"""

    def has_permission(self, request, view):
        if request.method in SAFE_METHODS:
            return super().has_permission(request, view)
        return IsAdminRole().has_permission(request, view)
