"""
Core API views.
"""
import logging

from django.contrib.auth import get_user_model
from django.core.cache import cache
from django.db import connection, DatabaseError
from drf_spectacular.utils import extend_schema
from rest_framework import serializers, status
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.core.authentication import generate_token
from apps.core.exceptions import AuthorizationError
from apps.core.responses import api_response

logger = logging.getLogger(__name__)


class HealthCheckView(APIView):
    """
    Health check endpoint to verify system dependencies.

    GET /v1/health

    Returns 200 if all dependencies are healthy, 503 otherwise.
    """
    authentication_classes = []
    permission_classes = []

    @extend_schema(
        summary="Health check",
        description="Check the health of the database and cache",
        tags=['Health'],
    )
    def get(self, request):
        health_status = {
            'status': 'healthy',
            'database': 'unknown',
            'cache': 'unknown',
        }
        errors = []

        try:
            with connection.cursor() as cursor:
                cursor.execute("SELECT 1")
            health_status['database'] = 'healthy'
        except DatabaseError as e:
            health_status['database'] = 'unhealthy'
            errors.append(f"Database: {e}")
            logger.error("Database health check failed", exc_info=True)

        try:
            cache.set('health_check', 'ok', timeout=10)
            if cache.get('health_check') == 'ok':
                health_status['cache'] = 'healthy'
            else:
                health_status['cache'] = 'unhealthy'
                errors.append("Cache: Unable to read test key")
        except Exception as e:  # cache backends raise backend-specific errors
            health_status['cache'] = 'unhealthy'
            errors.append(f"Cache: {e}")
            logger.error("Cache health check failed", exc_info=True)

        if errors:
            health_status['status'] = 'unhealthy'
            health_status['errors'] = errors
            return Response(health_status, status=status.HTTP_503_SERVICE_UNAVAILABLE)

        return Response(health_status, status=status.HTTP_200_OK)


class LoginSerializer(serializers.Serializer):
    email = serializers.EmailField()
    password = serializers.CharField(write_only=True)


class LoginView(APIView):
    """
    Exchange email and password for a JWT.

    POST /v1/auth/login
    """
    authentication_classes = []
    permission_classes = []

    @extend_schema(
        summary="Log in",
        request=LoginSerializer,
        tags=['Authentication'],
    )
    def post(self, request):
        serializer = LoginSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        User = get_user_model()
        user = User.objects.filter(email__iexact=serializer.validated_data['email']).first()
        if user is None or not user.check_password(serializer.validated_data['password']):
            raise AuthorizationError('Invalid email or password')
        if not user.is_active:
            raise AuthorizationError('User account is inactive')

        user.record_login()
        logger.info("User logged in", extra={'user_id': str(user.id)})
        return api_response({
            'token': generate_token(user),
            'user_id': str(user.id),
        })
