"""
RBAC signals.

Any change to the permission catalogue invalidates the permission
hierarchy tables in every process.
"""
import logging

from django.db.models.signals import post_save, post_delete
from django.dispatch import receiver

from apps.rbac.hierarchy import invalidate_permission_hierarchy

logger = logging.getLogger(__name__)


@receiver(post_save, sender='rbac.Permission')
@receiver(post_delete, sender='rbac.Permission')
def invalidate_hierarchy_on_permission_change(sender, instance, **kwargs):
    invalidate_permission_hierarchy()
    logger.debug(
        "Permission catalogue changed, hierarchy invalidated",
        extra={'permission_code': instance.code}
    )
