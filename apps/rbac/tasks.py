"""
Celery tasks for RBAC housekeeping.
"""
import logging

from celery import shared_task

from apps.core.tasks import LoggedTask

logger = logging.getLogger(__name__)


@shared_task(base=LoggedTask, name='apps.rbac.tasks.cleanup_expired_overrides_task')
def cleanup_expired_overrides_task():
    """
    Delete expired permission overrides.

    Scheduled daily by Celery beat; expired rows are already ignored by
    access checks, so a missed run is harmless.
    """
    from apps.rbac.services import OverrideService

    removed = OverrideService.cleanup_expired_overrides()
    return {'removed': removed}
