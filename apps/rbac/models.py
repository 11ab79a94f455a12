"""
RBAC models for company-scoped access control.

Implements:
- User identity with at most one role and at most one company
- Module (feature area, unit of entitlement)
- Permission (fine-grained action inside a module)
- Role (platform or company scoped, ranked by priority)
- RolePermission (direct grants of a role)
- UserPermissionOverride (per-user allow/deny with optional expiry)
- AuditLog (audit trail of RBAC and billing mutations)
"""
import logging
from django.db import models
from django.db.models import Q
from django.contrib.auth.hashers import make_password, check_password
from django.utils import timezone

from apps.core.models import BaseModel, LifecycleModel, LifecycleManager, LifecycleState
from apps.rbac.hierarchy import action_of, resource_of

logger = logging.getLogger(__name__)

# Role priority ranks: lower number = more authority
SUPER_ADMIN_PRIORITY = 0
CUSTOM_PLATFORM_ROLE_MIN_PRIORITY = 10
COMPANY_ROLE_MIN_PRIORITY = 20
DEFAULT_ROLE_PRIORITY = 50


class UserManager(models.Manager):
    """
    Manager for User queries.

    Compatible with Django's authentication system and admin interface.
    """

    def active(self):
        """Return only active users."""
        return self.filter(is_active=True)

    def for_company(self, company):
        return self.filter(company=company)

    def create_user(self, email, password=None, **extra_fields):
        """
        Create a new user with hashed password.
        """
        if not email:
            raise ValueError('Email address is required')

        email = self.normalize_email(email)
        extra_fields.setdefault('is_active', True)
        extra_fields.setdefault('is_superuser', False)

        user = self.model(email=email, **extra_fields)
        if password:
            user.set_password(password)
        user.save(using=self._db)
        return user

    def create_superuser(self, email, password=None, **extra_fields):
        """
        Create a superuser with Django admin access.
        """
        extra_fields['is_superuser'] = True
        return self.create_user(email, password, **extra_fields)

    def normalize_email(self, email):
        """
        Normalize the email address by lowercasing the domain part.
        """
        email = email or ''
        try:
            email_name, domain_part = email.strip().rsplit('@', 1)
        except ValueError:
            pass
        else:
            email = email_name + '@' + domain_part.lower()
        return email

    def get_by_natural_key(self, email):
        return self.get(**{self.model.USERNAME_FIELD: email})


class User(BaseModel):
    """
    User identity.

    A user holds at most one role and belongs to at most one company. A user
    without a company is a platform-internal account and never passes the
    company-scoped access checks.

    This is the AUTH_USER_MODEL for the entire application, including Django admin.
    """

    email = models.EmailField(
        unique=True,
        help_text="User email address (unique globally)"
    )
    password_hash = models.CharField(
        max_length=255,
        help_text="Hashed password",
        db_column='password_hash'
    )
    first_name = models.CharField(max_length=100, blank=True)
    last_name = models.CharField(max_length=100, blank=True)

    role = models.ForeignKey(
        'rbac.Role',
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='users',
        help_text="Role held by the user"
    )
    company = models.ForeignKey(
        'companies.Company',
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='users',
        help_text="Company the user belongs to (null for platform accounts)"
    )

    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Whether user account is active"
    )
    is_superuser = models.BooleanField(
        default=False,
        help_text="Django admin access"
    )
    last_login_at = models.DateTimeField(null=True, blank=True)

    USERNAME_FIELD = 'email'
    REQUIRED_FIELDS = []

    objects = UserManager()

    class Meta:
        db_table = 'users'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['company', 'is_active']),
        ]

    def __str__(self):
        return self.email

    @property
    def password(self):
        """Alias for password_hash, expected by Django admin."""
        return self.password_hash

    @password.setter
    def password(self, value):
        self.password_hash = value

    def check_password(self, raw_password):
        return check_password(raw_password, self.password_hash)

    def set_password(self, raw_password):
        self.password_hash = make_password(raw_password)

    def get_full_name(self):
        if self.first_name or self.last_name:
            return f"{self.first_name} {self.last_name}".strip()
        return self.email

    def record_login(self):
        self.last_login_at = timezone.now()
        self.save(update_fields=['last_login_at'])

    @property
    def role_priority(self):
        """Priority of the user's role, or None when no role is held."""
        return self.role.priority if self.role_id else None

    @property
    def is_authenticated(self):
        return True

    @property
    def is_anonymous(self):
        return False

    @property
    def is_staff(self):
        return self.is_superuser

    def has_perm(self, perm, obj=None):
        return self.is_superuser

    def has_perms(self, perm_list, obj=None):
        return self.is_superuser

    def has_module_perms(self, app_label):
        return self.is_superuser

    def natural_key(self):
        return (self.email,)


class Module(LifecycleModel):
    """
    Coarse feature area and the unit of full-access entitlement.
    """

    name = models.CharField(max_length=100, unique=True)
    description = models.TextField(blank=True)
    is_free_for_all = models.BooleanField(
        default=False,
        help_text="Free modules bypass all entitlement checks"
    )
    parent = models.ForeignKey(
        'self',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='children',
    )
    price = models.DecimalField(max_digits=12, decimal_places=2, default=0)

    class Meta(LifecycleModel.Meta):
        db_table = 'modules'
        ordering = ['name']

    def __str__(self):
        return self.name


class PermissionManager(LifecycleManager):
    """Manager for Permission queries."""

    def by_code(self, code):
        return self.active().filter(code=code).first()

    def for_module(self, module):
        return self.filter(module=module)


class Permission(LifecycleModel):
    """
    One fine-grained action inside a module.

    Codes are colon separated with the action last, e.g. `crm:leads:view`.
    """

    code = models.CharField(
        max_length=150,
        unique=True,
        help_text="Permission key (e.g., 'crm:leads:view')"
    )
    label = models.CharField(max_length=150, blank=True)
    description = models.TextField(blank=True)
    module = models.ForeignKey(
        Module,
        on_delete=models.PROTECT,
        related_name='permissions',
    )
    action = models.CharField(
        max_length=50,
        db_index=True,
        help_text="Action used for hierarchy matching (e.g., 'view', 'manage')"
    )
    is_free_for_all = models.BooleanField(default=False)
    is_subscription_exempt = models.BooleanField(
        default=False,
        help_text="Reachable without entitlement (e.g. billing management)"
    )
    is_system_permission = models.BooleanField(
        default=False,
        help_text="System permissions cannot be overridden per user"
    )
    price = models.DecimalField(max_digits=12, decimal_places=2, default=0)

    objects = PermissionManager()

    class Meta(LifecycleModel.Meta):
        db_table = 'permissions'
        ordering = ['code']

    def __str__(self):
        return self.code

    def save(self, *args, **kwargs):
        if not self.action:
            self.action = action_of(self.code)
        super().save(*args, **kwargs)

    @property
    def resource(self):
        """The code without its action segment."""
        return resource_of(self.code, self.action)

    @property
    def is_free(self):
        return self.is_free_for_all or self.module.is_free_for_all


class RoleScope(models.TextChoices):
    PLATFORM = 'platform', 'Platform'
    COMPANY = 'company', 'Company'


class RoleManager(LifecycleManager):
    """Manager for Role queries."""

    def platform_roles(self):
        return self.filter(scope=RoleScope.PLATFORM)

    def system_roles(self):
        return self.filter(is_system_role=True)

    def for_company(self, company):
        return self.filter(scope=RoleScope.COMPANY, company=company)

    def assignable_to_company(self, company):
        """Platform system roles plus the company's own roles."""
        return self.filter(
            Q(scope=RoleScope.PLATFORM, is_system_role=True)
            | Q(scope=RoleScope.COMPANY, company=company)
        )


class Role(LifecycleModel):
    """
    A named bundle of permissions ranked by priority.

    Lower priority means more authority; 0 is the super-admin. System roles
    are platform scoped, company roles need priority >= 20 and custom
    platform roles need priority >= 10.
    """

    name = models.CharField(max_length=100)
    description = models.TextField(blank=True)
    scope = models.CharField(max_length=16, choices=RoleScope.choices)
    company = models.ForeignKey(
        'companies.Company',
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='roles',
    )
    priority = models.PositiveIntegerField(default=DEFAULT_ROLE_PRIORITY)
    is_system_role = models.BooleanField(default=False)
    base_role = models.ForeignKey(
        'self',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='clones',
        help_text="Platform role this company role was cloned from"
    )

    objects = RoleManager()

    class Meta(LifecycleModel.Meta):
        db_table = 'roles'
        ordering = ['priority', 'name']
        constraints = LifecycleModel.Meta.constraints + [
            models.CheckConstraint(
                condition=(
                    Q(scope=RoleScope.PLATFORM, company__isnull=True)
                    | Q(scope=RoleScope.COMPANY, company__isnull=False)
                ),
                name='role_scope_matches_company',
            ),
            models.CheckConstraint(
                condition=Q(is_system_role=False) | Q(scope=RoleScope.PLATFORM),
                name='role_system_roles_are_platform',
            ),
            models.CheckConstraint(
                condition=~Q(scope=RoleScope.COMPANY) | Q(priority__gte=COMPANY_ROLE_MIN_PRIORITY),
                name='role_company_priority_floor',
            ),
            models.CheckConstraint(
                condition=(
                    ~Q(scope=RoleScope.PLATFORM, is_system_role=False)
                    | Q(priority__gte=CUSTOM_PLATFORM_ROLE_MIN_PRIORITY)
                ),
                name='role_custom_platform_priority_floor',
            ),
            models.UniqueConstraint(
                fields=['name'],
                condition=Q(scope=RoleScope.PLATFORM) & ~Q(state=LifecycleState.DELETED),
                name='role_unique_platform_name',
            ),
            models.UniqueConstraint(
                fields=['company', 'name'],
                condition=Q(scope=RoleScope.COMPANY) & ~Q(state=LifecycleState.DELETED),
                name='role_unique_company_name',
            ),
        ]

    def __str__(self):
        return f"{self.name} ({self.scope})"

    def invariant_violations(self):
        """Return the list of scope/priority rules this role breaks."""
        violations = []
        if self.scope == RoleScope.PLATFORM and self.company_id:
            violations.append("Platform roles cannot belong to a company")
        if self.scope == RoleScope.COMPANY and not self.company_id:
            violations.append("Company roles require a company")
        if self.is_system_role and self.scope != RoleScope.PLATFORM:
            violations.append("System roles must be platform scoped")
        if self.scope == RoleScope.COMPANY and self.priority < COMPANY_ROLE_MIN_PRIORITY:
            violations.append(
                f"Company roles require priority >= {COMPANY_ROLE_MIN_PRIORITY}"
            )
        if (
            self.scope == RoleScope.PLATFORM
            and not self.is_system_role
            and self.priority < CUSTOM_PLATFORM_ROLE_MIN_PRIORITY
        ):
            violations.append(
                f"Custom platform roles require priority >= {CUSTOM_PLATFORM_ROLE_MIN_PRIORITY}"
            )
        return violations


class RolePermissionManager(models.Manager):
    """Manager for RolePermission queries."""

    def for_role(self, role):
        return self.filter(role=role)

    def permission_ids_for_role(self, role_id):
        return set(self.filter(role_id=role_id).values_list('permission_id', flat=True))

    def grant_permission(self, role, permission):
        """Grant permission to role (idempotent)."""
        return self.get_or_create(role=role, permission=permission)

    def revoke_permission(self, role, permission):
        return self.filter(role=role, permission=permission).delete()


class RolePermission(BaseModel):
    """
    A permission granted directly to a role.

    There is no inheritance between roles at runtime; cloning copies rows.
    """

    role = models.ForeignKey(Role, on_delete=models.CASCADE, related_name='role_permissions')
    permission = models.ForeignKey(Permission, on_delete=models.CASCADE, related_name='role_permissions')

    objects = RolePermissionManager()

    class Meta:
        db_table = 'role_permissions'
        unique_together = [('role', 'permission')]
        ordering = ['role', 'permission']

    def __str__(self):
        return f"{self.role.name} -> {self.permission.code}"


class OverrideEffect(models.TextChoices):
    ALLOW = 'allow', 'Allow'
    DENY = 'deny', 'Deny'


class UserPermissionOverrideQuerySet(models.QuerySet):

    def active(self, now=None):
        """Overrides that never expire or expire in the future."""
        now = now or timezone.now()
        return self.filter(Q(expires_at__isnull=True) | Q(expires_at__gt=now))

    def expired(self, now=None):
        now = now or timezone.now()
        return self.filter(expires_at__isnull=False, expires_at__lte=now)

    def for_user(self, user):
        return self.filter(user=user)

    def allows(self):
        return self.filter(effect=OverrideEffect.ALLOW)

    def denies(self):
        return self.filter(effect=OverrideEffect.DENY)


class UserPermissionOverride(BaseModel):
    """
    Per-user allow or deny directive on one permission.

    Deny overrides always win over allow overrides and role grants, but no
    override can bypass a missing company entitlement.
    """

    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='permission_overrides')
    permission = models.ForeignKey(Permission, on_delete=models.CASCADE, related_name='user_overrides')
    effect = models.CharField(max_length=8, choices=OverrideEffect.choices)
    expires_at = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text="Null means the override never expires"
    )
    reason = models.TextField(blank=True)
    granted_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='permission_overrides_granted',
    )

    objects = UserPermissionOverrideQuerySet.as_manager()

    class Meta:
        db_table = 'user_permission_overrides'
        unique_together = [('user', 'permission')]
        ordering = ['user', 'permission']
        indexes = [
            models.Index(fields=['user', 'effect']),
        ]

    def __str__(self):
        return f"{self.effect.upper()} {self.permission.code} for {self.user.email}"

    def is_expired(self, now=None):
        return self.expires_at is not None and self.expires_at <= (now or timezone.now())


class AuditLogManager(models.Manager):
    """Manager for AuditLog queries."""

    def for_company(self, company):
        return self.filter(company=company)

    def for_user(self, user):
        return self.filter(user=user)

    def by_action(self, action):
        return self.filter(action=action)

    def by_target(self, target_type, target_id=None):
        qs = self.filter(target_type=target_type)
        if target_id:
            qs = qs.filter(target_id=target_id)
        return qs


class AuditLog(BaseModel):
    """
    Audit trail for RBAC, billing and handover mutations.
    """

    company = models.ForeignKey(
        'companies.Company',
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='audit_logs',
        help_text="Company this action belongs to (null for platform-level)"
    )
    user = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='audit_logs',
        help_text="User who performed the action (null for system actions)"
    )
    action = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Action performed (e.g., 'override_created', 'role_assigned')"
    )
    target_type = models.CharField(max_length=50, db_index=True)
    target_id = models.UUIDField(null=True, blank=True, db_index=True)
    diff = models.JSONField(default=dict, blank=True)
    metadata = models.JSONField(default=dict, blank=True)
    ip_address = models.GenericIPAddressField(null=True, blank=True)
    user_agent = models.TextField(blank=True)
    request_id = models.CharField(max_length=64, blank=True, db_index=True)

    objects = AuditLogManager()

    class Meta:
        db_table = 'audit_logs'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['company', 'created_at']),
            models.Index(fields=['target_type', 'target_id']),
        ]

    def __str__(self):
        user_str = self.user.email if self.user else 'System'
        return f"{user_str} - {self.action}"

    @classmethod
    def log_action(cls, action, user=None, company=None, target_type='', target_id=None,
                   diff=None, metadata=None, request=None, using='default'):
        """
        Create an audit log entry inside the caller's transaction.

        Args:
            action: Action being performed
            user: User performing the action
            company: Company context
            target_type: Type of target entity
            target_id: ID of target entity
            diff: Before/after changes
            metadata: Additional context
            request: Django request object (for IP, user agent, request ID)
            using: Database alias of the caller's transaction
        """
        from apps.core.middleware import current_request_id

        if user is not None and not user.is_authenticated:
            user = None

        log_data = {
            'action': action,
            'user': user,
            'company': company,
            'target_type': target_type,
            'target_id': target_id,
            'diff': diff or {},
            'metadata': metadata or {},
            'request_id': current_request_id() or '',
        }

        if request is not None:
            log_data['ip_address'] = cls._get_client_ip(request)
            log_data['user_agent'] = request.META.get('HTTP_USER_AGENT', '')
            log_data['request_id'] = getattr(request, 'request_id', '') or ''

        return cls.objects.using(using).create(**log_data)

    @staticmethod
    def _get_client_ip(request):
        x_forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
        if x_forwarded_for:
            return x_forwarded_for.split(',')[0].strip()
        return request.META.get('REMOTE_ADDR')
