"""
Core models for the back office.

Provides BaseModel with UUID primary keys and timestamps, and LifecycleModel
which replaces the usual is_active/is_deleted boolean pair with a single
explicit lifecycle state.
"""
import uuid
from django.db import models
from django.db.models import Q
from django.utils import timezone


class BaseModel(models.Model):
    """
    Abstract base model with UUID primary key and timestamps.

    All models in the back office inherit from this base model to ensure
    consistent identifiers and ordering across apps.
    """
    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier"
    )

    created_at = models.DateTimeField(
        auto_now_add=True,
        db_index=True,
        help_text="Timestamp when the record was created"
    )

    updated_at = models.DateTimeField(
        auto_now=True,
        help_text="Timestamp when the record was last updated"
    )

    class Meta:
        abstract = True
        ordering = ['-created_at']


class LifecycleState(models.TextChoices):
    ACTIVE = 'active', 'Active'
    INACTIVE = 'inactive', 'Inactive'
    DELETED = 'deleted', 'Deleted'


class LifecycleQuerySet(models.QuerySet):
    """QuerySet with lifecycle-aware soft delete."""

    def active(self):
        return self.filter(state=LifecycleState.ACTIVE)

    def delete(self):
        """Soft delete all objects in queryset."""
        return self.update(state=LifecycleState.DELETED, deleted_at=timezone.now())

    def hard_delete(self):
        """Permanently delete all objects in queryset."""
        return super().delete()


class LifecycleManager(models.Manager.from_queryset(LifecycleQuerySet)):
    """Manager that excludes soft-deleted objects by default."""

    def get_queryset(self):
        return super().get_queryset().exclude(state=LifecycleState.DELETED)


class LifecycleModel(BaseModel):
    """
    Abstract model carrying an explicit lifecycle state.

    A row is exactly one of active, inactive or deleted. `deleted_at` is set
    if and only if the row is deleted, which the database enforces.
    """
    state = models.CharField(
        max_length=16,
        choices=LifecycleState.choices,
        default=LifecycleState.ACTIVE,
        db_index=True,
    )
    deleted_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Timestamp when the record was soft deleted"
    )

    # Default manager excludes soft-deleted objects
    objects = LifecycleManager()

    # Manager that includes soft-deleted objects
    objects_with_deleted = models.Manager.from_queryset(LifecycleQuerySet)()

    class Meta:
        abstract = True
        ordering = ['-created_at']
        constraints = [
            models.CheckConstraint(
                condition=(
                    Q(state=LifecycleState.DELETED, deleted_at__isnull=False)
                    | (~Q(state=LifecycleState.DELETED) & Q(deleted_at__isnull=True))
                ),
                name='%(app_label)s_%(class)s_lifecycle_state',
            ),
        ]

    @property
    def is_active(self):
        return self.state == LifecycleState.ACTIVE

    @property
    def is_deleted(self):
        return self.state == LifecycleState.DELETED

    def delete(self, using=None, keep_parents=False):
        """Soft delete the object."""
        self.state = LifecycleState.DELETED
        self.deleted_at = timezone.now()
        self.save(using=using, update_fields=['state', 'deleted_at', 'updated_at'])

    def hard_delete(self):
        """Permanently delete the object."""
        super().delete()

    def deactivate(self, using=None):
        self.state = LifecycleState.INACTIVE
        self.save(using=using, update_fields=['state', 'updated_at'])

    def restore(self, using=None):
        """Return a deleted or inactive object to the active state."""
        self.state = LifecycleState.ACTIVE
        self.deleted_at = None
        self.save(using=using, update_fields=['state', 'deleted_at', 'updated_at'])
