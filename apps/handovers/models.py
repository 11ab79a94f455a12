"""
Manager handover models.

A handover temporarily makes a backup manager responsible for another
manager's work. Nothing is reassigned: visibility is resolved at query time
from the active handover.
"""
from django.db import models
from django.db.models import F, Q

from apps.core.models import BaseModel


class HandoverStatus(models.TextChoices):
    PENDING = 'pending', 'Pending'
    ACTIVE = 'active', 'Active'
    REJECTED = 'rejected', 'Rejected'
    COMPLETED = 'completed', 'Completed'
    CANCELLED = 'cancelled', 'Cancelled'


class ManagerHandoverQuerySet(models.QuerySet):

    def active(self):
        return self.filter(status=HandoverStatus.ACTIVE)

    def pending(self):
        return self.filter(status=HandoverStatus.PENDING)

    def for_company(self, company):
        return self.filter(company=company)

    def involving(self, user):
        return self.filter(Q(manager=user) | Q(backup_manager=user))


class ManagerHandover(BaseModel):
    """
    A manager's request for a backup manager to cover for them.
    """

    TRANSITIONS = {
        HandoverStatus.PENDING: (HandoverStatus.ACTIVE, HandoverStatus.REJECTED),
        HandoverStatus.ACTIVE: (HandoverStatus.COMPLETED, HandoverStatus.CANCELLED),
        HandoverStatus.REJECTED: (),
        HandoverStatus.COMPLETED: (),
        HandoverStatus.CANCELLED: (),
    }

    company = models.ForeignKey(
        'companies.Company',
        on_delete=models.CASCADE,
        related_name='handovers',
    )
    manager = models.ForeignKey(
        'rbac.User',
        on_delete=models.CASCADE,
        related_name='handovers_given',
        help_text="Manager whose work is being covered"
    )
    backup_manager = models.ForeignKey(
        'rbac.User',
        on_delete=models.CASCADE,
        related_name='handovers_received',
        help_text="Manager covering the work"
    )
    status = models.CharField(
        max_length=16,
        choices=HandoverStatus.choices,
        default=HandoverStatus.PENDING,
        db_index=True,
    )
    start_date = models.DateField()
    end_date = models.DateField(null=True, blank=True)
    notes = models.TextField(blank=True)

    requested_by = models.ForeignKey(
        'rbac.User', on_delete=models.SET_NULL, null=True, blank=True, related_name='+'
    )
    approved_by = models.ForeignKey(
        'rbac.User', on_delete=models.SET_NULL, null=True, blank=True, related_name='+',
        help_text="Admin who assigned the handover directly"
    )
    accepted_by = models.ForeignKey(
        'rbac.User', on_delete=models.SET_NULL, null=True, blank=True, related_name='+'
    )
    accepted_at = models.DateTimeField(null=True, blank=True)
    rejected_by = models.ForeignKey(
        'rbac.User', on_delete=models.SET_NULL, null=True, blank=True, related_name='+'
    )
    rejected_at = models.DateTimeField(null=True, blank=True)
    rejection_reason = models.TextField(blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)

    objects = ManagerHandoverQuerySet.as_manager()

    class Meta:
        db_table = 'manager_handovers'
        ordering = ['-created_at']
        constraints = [
            models.UniqueConstraint(
                fields=['manager'],
                condition=Q(status=HandoverStatus.ACTIVE),
                name='handover_single_active_per_manager',
            ),
            models.CheckConstraint(
                condition=~Q(manager=F('backup_manager')),
                name='handover_manager_differs_from_backup',
            ),
            models.CheckConstraint(
                condition=Q(end_date__isnull=True) | Q(end_date__gte=F('start_date')),
                name='handover_end_after_start',
            ),
        ]
        indexes = [
            models.Index(fields=['company', 'status']),
            models.Index(fields=['backup_manager', 'status']),
        ]

    def __str__(self):
        return f"Handover {self.manager_id} -> {self.backup_manager_id} ({self.status})"

    def can_transition_to(self, status):
        return status in self.TRANSITIONS.get(self.status, ())


class HandoverTimelineEntry(BaseModel):
    """
    Immutable record of one handover state change.
    """

    CHANGE_TYPE_CHOICES = [
        ('handover_request', 'Handover Requested'),
        ('handover_accept', 'Handover Accepted'),
        ('handover_reject', 'Handover Rejected'),
        ('handover_complete', 'Handover Completed'),
        ('handover_cancel', 'Handover Cancelled'),
        ('handover_admin_assign', 'Handover Assigned by Admin'),
    ]

    handover = models.ForeignKey(ManagerHandover, on_delete=models.CASCADE, related_name='timeline')
    change_type = models.CharField(max_length=32, choices=CHANGE_TYPE_CHOICES)
    old_status = models.CharField(max_length=16, choices=HandoverStatus.choices, blank=True)
    new_status = models.CharField(max_length=16, choices=HandoverStatus.choices)
    actor = models.ForeignKey(
        'rbac.User', on_delete=models.SET_NULL, null=True, blank=True, related_name='+'
    )
    notes = models.TextField(blank=True)

    class Meta:
        db_table = 'handover_timeline_entries'
        ordering = ['created_at']

    def __str__(self):
        return f"{self.change_type}: {self.old_status or '-'} -> {self.new_status}"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValueError("Handover timeline entries cannot be modified")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValueError("Handover timeline entries cannot be deleted")
