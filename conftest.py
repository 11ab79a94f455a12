"""
Pytest configuration and fixtures.
"""
from decimal import Decimal

import pytest
from django.conf import settings
import django


def pytest_configure(config):
    """Configure Django settings for tests."""
    settings.DATABASES['default'] = {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
        'ATOMIC_REQUESTS': False,
    }
    django.setup()


@pytest.fixture(autouse=True)
def fresh_permission_hierarchy():
    """Every test starts with an empty cache and a rebuilt hierarchy."""
    from django.core.cache import cache
    from apps.rbac.hierarchy import invalidate_permission_hierarchy

    cache.clear()
    invalidate_permission_hierarchy()
    yield
    cache.clear()


@pytest.fixture
def api_client():
    """Return DRF API client."""
    from rest_framework.test import APIClient
    return APIClient()


# ===== COMPANIES =====

@pytest.fixture
def company(db):
    from apps.companies.models import Company
    return Company.objects.create(name='Acme Ltd', slug='acme')


@pytest.fixture
def other_company(db):
    from apps.companies.models import Company
    return Company.objects.create(name='Globex', slug='globex')


# ===== CATALOGUE =====

@pytest.fixture
def free_module(db):
    from apps.rbac.models import Module
    return Module.objects.create(name='general', is_free_for_all=True)


@pytest.fixture
def crm_module(db):
    from apps.rbac.models import Module
    return Module.objects.create(name='crm', price=Decimal('100.00'))


@pytest.fixture
def reports_module(db):
    from apps.rbac.models import Module
    return Module.objects.create(name='reports', price=Decimal('40.00'))


@pytest.fixture
def billing_module(db):
    from apps.rbac.models import Module
    return Module.objects.create(name='billing')


def _permission(module, code, **extra):
    from apps.rbac.models import Permission
    return Permission.objects.create(module=module, code=code, label=code, **extra)


@pytest.fixture
def crm_permissions(crm_module):
    """The crm:leads action family plus an unrelated crm:contacts:view."""
    codes = [
        'crm:leads:view',
        'crm:leads:create',
        'crm:leads:update',
        'crm:leads:delete',
        'crm:leads:manage',
        'crm:contacts:view',
    ]
    return {code: _permission(crm_module, code) for code in codes}


@pytest.fixture
def reports_permissions(reports_module):
    return {
        'reports:sales:view': _permission(reports_module, 'reports:sales:view', price=Decimal('15.00')),
        'reports:sales:export': _permission(reports_module, 'reports:sales:export', price=Decimal('5.00')),
    }


@pytest.fixture
def free_permission(free_module):
    return _permission(free_module, 'general:dashboard:view')


@pytest.fixture
def billing_permission(billing_module):
    return _permission(billing_module, 'companies:subscriptions:view', is_subscription_exempt=True)


@pytest.fixture
def system_permission(crm_module):
    return _permission(crm_module, 'crm:settings:manage', is_system_permission=True)


# ===== ROLES AND USERS =====

@pytest.fixture
def system_roles(db):
    """Platform system roles keyed by name."""
    from apps.rbac.services import RoleService
    return {role.name: role for role in RoleService.initialize_system_roles()}


@pytest.fixture
def make_user(db):
    """Factory creating users with a unique email."""
    from apps.rbac.models import User

    counter = {'n': 0}

    def factory(company=None, role=None, email=None, is_active=True, password='Str0ng-pass!'):
        counter['n'] += 1
        return User.objects.create_user(
            email=email or f"user{counter['n']}@example.com",
            password=password,
            company=company,
            role=role,
            is_active=is_active,
        )

    return factory


@pytest.fixture
def super_admin(make_user, system_roles):
    return make_user(role=system_roles['Super Admin'], email='root@example.com')


@pytest.fixture
def company_admin(make_user, company, system_roles):
    return make_user(company=company, role=system_roles['Company Admin'], email='admin@acme.com')


@pytest.fixture
def manager(make_user, company, system_roles):
    return make_user(company=company, role=system_roles['Manager'], email='manager@acme.com')


@pytest.fixture
def employee(make_user, company, system_roles):
    return make_user(company=company, role=system_roles['Employee'], email='employee@acme.com')


# ===== SUBSCRIPTIONS =====

@pytest.fixture
def crm_plan(crm_module):
    from apps.companies.models import SubscriptionPlan, SubscriptionPlanModule
    plan = SubscriptionPlan.objects.create(
        name='CRM Starter',
        price=Decimal('10.00'),
        price_per_user=True,
        duration_value=1,
        duration_unit='month',
        min_users=1,
        max_users=50,
    )
    SubscriptionPlanModule.objects.create(plan=plan, module=crm_module)
    return plan


@pytest.fixture
def subscribed_company(company, crm_plan, crm_permissions):
    """The company on the CRM plan with five seats."""
    from apps.companies.services import SubscriptionService
    SubscriptionService.create_subscription(company, crm_plan, 5)
    return company


# ===== API AUTH =====

@pytest.fixture
def auth_client(api_client):
    """Factory returning an API client authenticated as `user`."""
    from apps.core.authentication import generate_token

    def factory(user):
        api_client.credentials(HTTP_AUTHORIZATION=f'Bearer {generate_token(user)}')
        return api_client

    return factory
