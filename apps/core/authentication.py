"""
JWT bearer authentication for DRF views.
"""
import logging
from datetime import datetime, timedelta, timezone as dt_timezone
from typing import Optional, Dict, Any

import jwt
from django.conf import settings
from django.contrib.auth import get_user_model
from rest_framework import exceptions
from rest_framework.authentication import BaseAuthentication, get_authorization_header

logger = logging.getLogger(__name__)


def generate_token(user) -> str:
    """
    Generate a JWT for a user.

    Args:
        user: User instance

    Returns:
        JWT token string
    """
    now = datetime.now(dt_timezone.utc)
    payload = {
        'user_id': str(user.id),
        'company_id': str(user.company_id) if user.company_id else None,
        'exp': now + timedelta(hours=settings.JWT_EXPIRATION_HOURS),
        'iat': now,
    }
    return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> Optional[Dict[str, Any]]:
    """
    Validate a JWT and return its payload, or None when invalid or expired.
    """
    try:
        return jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        logger.info("Expired JWT presented")
        return None
    except jwt.InvalidTokenError:
        return None


class JWTAuthentication(BaseAuthentication):
    """
    Authenticate requests carrying `Authorization: Bearer <token>`.

    Returns None when no bearer token is present so other authentication
    classes (or anonymous access) can apply.
    """
    keyword = 'Bearer'

    def authenticate(self, request):
        auth = get_authorization_header(request).split()
        if not auth or auth[0].lower() != self.keyword.lower().encode():
            return None
        if len(auth) != 2:
            raise exceptions.AuthenticationFailed('Invalid authorization header')

        payload = decode_token(auth[1].decode())
        if not payload or not payload.get('user_id'):
            raise exceptions.AuthenticationFailed('Invalid or expired token')

        User = get_user_model()
        try:
            user = User.objects.select_related('role', 'company').get(id=payload['user_id'])
        except (User.DoesNotExist, ValueError):
            raise exceptions.AuthenticationFailed('User not found')

        if not user.is_active:
            raise exceptions.AuthenticationFailed('User account is inactive')

        return (user, payload)

    def authenticate_header(self, request):
        return self.keyword
