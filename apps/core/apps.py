from django.apps import AppConfig
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
import logging

logger = logging.getLogger(__name__)


class CoreConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.core'
    verbose_name = 'Core'

    def ready(self):
        """
        Validate the JWT configuration before the application accepts requests.
        """
        self._validate_jwt_configuration()

    def _validate_jwt_configuration(self):
        jwt_secret = getattr(settings, 'JWT_SECRET_KEY', None)

        if not jwt_secret:
            raise ImproperlyConfigured("JWT_SECRET_KEY must be set in environment variables.")

        if len(jwt_secret) < 32:
            raise ImproperlyConfigured(
                f"JWT_SECRET_KEY must be at least 32 characters long. "
                f"Current length: {len(jwt_secret)}."
            )

        if jwt_secret == settings.SECRET_KEY:
            raise ImproperlyConfigured("JWT_SECRET_KEY must be different from SECRET_KEY.")

        if len(set(jwt_secret)) < 16:
            raise ImproperlyConfigured("JWT_SECRET_KEY has insufficient entropy.")
