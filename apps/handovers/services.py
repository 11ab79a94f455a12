"""
Manager handover state machine.

pending -> active -> completed | cancelled
pending -> rejected

Transitions lock the handover row and append an immutable timeline entry.
"""
import logging

from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone

from apps.core.exceptions import AuthorizationError, ConflictError, ValidationError
from apps.handovers.models import HandoverStatus, HandoverTimelineEntry, ManagerHandover
from apps.rbac.models import AuditLog

logger = logging.getLogger(__name__)


def _admin_max_priority():
    return getattr(settings, 'HANDOVER_ADMIN_MAX_PRIORITY', 10)


class HandoverService:
    """Service for requesting, accepting and closing manager handovers."""

    @staticmethod
    def is_admin(user, company=None):
        """Admins hold a role with priority <= 10 and, if scoped, the same company."""
        priority = getattr(user, 'role_priority', None)
        if priority is None or priority > _admin_max_priority():
            return False
        if company is not None and user.company_id is not None:
            return user.company_id == company.id
        return True

    @staticmethod
    def _validate_parties(manager, backup_manager, start_date, end_date):
        if manager.id == backup_manager.id:
            raise ValidationError("Manager and backup manager must be different users")
        if manager.company_id is None or manager.company_id != backup_manager.company_id:
            raise ValidationError(
                "Manager and backup manager must belong to the same company",
                details={
                    'manager_company_id': str(manager.company_id),
                    'backup_company_id': str(backup_manager.company_id),
                },
            )
        if not backup_manager.is_active:
            raise ValidationError("Backup manager account is inactive")
        if end_date is not None and end_date < start_date:
            raise ValidationError("End date cannot be before start date")

    @staticmethod
    def _record(handover, change_type, old_status, actor, notes='', using='default'):
        HandoverTimelineEntry.objects.using(using).create(
            handover=handover,
            change_type=change_type,
            old_status=old_status or '',
            new_status=handover.status,
            actor=actor,
            notes=notes,
        )
        AuditLog.log_action(
            action=change_type,
            user=actor,
            company=handover.company,
            target_type='ManagerHandover',
            target_id=handover.id,
            diff={'before': old_status, 'after': handover.status},
            using=using,
        )
        logger.info(
            "Handover transition",
            extra={
                'handover_id': str(handover.id),
                'change_type': change_type,
                'old_status': old_status,
                'new_status': handover.status,
                'actor_id': str(actor.id) if actor else None,
            }
        )

    @staticmethod
    def _save_new(handover, using):
        try:
            with transaction.atomic(using=using):
                handover.save(using=using, force_insert=True)
        except IntegrityError:
            raise ConflictError(
                "Manager already has an active handover",
                details={'manager_id': str(handover.manager_id)},
            )

    @classmethod
    def request_handover(cls, manager, backup_manager, requested_by, start_date,
                         end_date=None, notes='', using='default'):
        """Open a pending handover. Only the manager or an admin may ask."""
        if requested_by.id != manager.id and not cls.is_admin(requested_by, manager.company):
            raise AuthorizationError("Only the manager or an admin can request a handover")
        cls._validate_parties(manager, backup_manager, start_date, end_date)

        with transaction.atomic(using=using):
            handover = ManagerHandover(
                company_id=manager.company_id,
                manager=manager,
                backup_manager=backup_manager,
                start_date=start_date,
                end_date=end_date,
                notes=notes,
                requested_by=requested_by,
            )
            cls._save_new(handover, using)
            cls._record(handover, 'handover_request', None, requested_by, notes, using)
        return handover

    @classmethod
    def admin_assign(cls, manager, backup_manager, actor, start_date, end_date=None,
                     notes='', using='default'):
        """Create a handover directly in the active state."""
        if not cls.is_admin(actor, manager.company):
            raise AuthorizationError("Only an admin can assign a handover directly")
        cls._validate_parties(manager, backup_manager, start_date, end_date)

        with transaction.atomic(using=using):
            now = timezone.now()
            handover = ManagerHandover(
                company_id=manager.company_id,
                manager=manager,
                backup_manager=backup_manager,
                start_date=start_date,
                end_date=end_date,
                notes=notes,
                status=HandoverStatus.ACTIVE,
                requested_by=actor,
                approved_by=actor,
                accepted_at=now,
            )
            cls._save_new(handover, using)
            cls._record(handover, 'handover_admin_assign', None, actor, notes, using)
        return handover

    @classmethod
    def _transition(cls, handover, new_status, actor, allowed_actor_ids, change_type,
                    notes='', using='default', **fields):
        with transaction.atomic(using=using):
            locked = (
                ManagerHandover.objects.using(using).select_for_update()
                .select_related('company').get(pk=handover.pk)
            )
            if actor.id not in allowed_actor_ids(locked) and not cls.is_admin(actor, locked.company):
                raise AuthorizationError(
                    "Not allowed to change this handover",
                    details={'handover_id': str(locked.id), 'target_status': new_status},
                )
            if not locked.can_transition_to(new_status):
                raise ConflictError(
                    f"Cannot move handover from {locked.status} to {new_status}",
                    details={'handover_id': str(locked.id), 'status': locked.status},
                )

            old_status = locked.status
            locked.status = new_status
            for name, value in fields.items():
                setattr(locked, name, value)
            try:
                with transaction.atomic(using=using):
                    locked.save(using=using)
            except IntegrityError:
                raise ConflictError(
                    "Manager already has an active handover",
                    details={'manager_id': str(locked.manager_id)},
                )
            cls._record(locked, change_type, old_status, actor, notes, using)
        return locked

    @classmethod
    def accept(cls, handover, actor, using='default'):
        return cls._transition(
            handover, HandoverStatus.ACTIVE, actor,
            lambda h: {h.backup_manager_id}, 'handover_accept', using=using,
            accepted_at=timezone.now(), accepted_by=actor,
        )

    @classmethod
    def reject(cls, handover, actor, reason='', using='default'):
        return cls._transition(
            handover, HandoverStatus.REJECTED, actor,
            lambda h: {h.backup_manager_id}, 'handover_reject', notes=reason, using=using,
            rejected_at=timezone.now(), rejected_by=actor, rejection_reason=reason,
        )

    @classmethod
    def complete(cls, handover, actor, using='default'):
        return cls._transition(
            handover, HandoverStatus.COMPLETED, actor,
            lambda h: {h.manager_id, h.backup_manager_id}, 'handover_complete', using=using,
            completed_at=timezone.now(),
        )

    @classmethod
    def cancel(cls, handover, actor, using='default'):
        return cls._transition(
            handover, HandoverStatus.CANCELLED, actor,
            lambda h: {h.manager_id, h.backup_manager_id}, 'handover_cancel', using=using,
            cancelled_at=timezone.now(),
        )

    # Query-time visibility

    @staticmethod
    def active_handover_for(manager):
        return ManagerHandover.objects.active().filter(manager=manager).first()

    @classmethod
    def effective_manager_for(cls, manager):
        """The backup manager while a handover is active, otherwise the manager."""
        handover = cls.active_handover_for(manager)
        return handover.backup_manager if handover else manager

    @staticmethod
    def manager_ids_visible_to(user):
        """The user's own id plus every manager they currently cover for."""
        covered = ManagerHandover.objects.active().filter(
            backup_manager=user
        ).values_list('manager_id', flat=True)
        return {user.id, *covered}

    @staticmethod
    def handover_history(manager):
        return (
            ManagerHandover.objects.involving(manager)
            .select_related('manager', 'backup_manager')
            .prefetch_related('timeline')
        )

    @staticmethod
    def active_handovers_for_company(company):
        return ManagerHandover.objects.active().for_company(company).select_related(
            'manager', 'backup_manager'
        )
