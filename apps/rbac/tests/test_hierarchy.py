"""
Tests for the action hierarchy and the permission hierarchy tables.
"""
import uuid
from dataclasses import dataclass, field

import pytest
from hypothesis import given, settings, strategies as st

from apps.rbac.hierarchy import (
    ACTION_HIERARCHY,
    PermissionHierarchy,
    action_satisfies,
    actions_granting,
    action_of,
    actions_implied_by,
    expand_action,
    get_permission_hierarchy,
    resource_of,
)
from apps.rbac.models import Permission


@dataclass
class Row:
    code: str
    module_id: str
    id: uuid.UUID = field(default_factory=uuid.uuid4)

    @property
    def action(self):
        return action_of(self.code)

    @property
    def resource(self):
        return resource_of(self.code, self.action)


ACTIONS = sorted(ACTION_HIERARCHY)


class TestActionHierarchy:

    def test_manage_implies_crud(self):
        assert expand_action('manage') == ['manage', 'create', 'update', 'view', 'delete']

    def test_update_implies_view(self):
        assert action_satisfies('update', 'view')
        assert not action_satisfies('view', 'update')

    def test_unknown_action_implies_only_itself(self):
        assert expand_action('archive') == ['archive']

    def test_actions_granting_view_in_table_order(self):
        assert actions_granting('view') == ['manage', 'update', 'approve', 'export']

    def test_actions_implied_by_excludes_self(self):
        assert actions_implied_by('update') == ['view']
        assert actions_implied_by('view') == []

    @given(st.sampled_from(ACTIONS), st.sampled_from(ACTIONS))
    def test_granting_and_implied_are_converse(self, broad, narrow):
        assert (broad in actions_granting(narrow)) == (narrow in actions_implied_by(broad))

    @given(st.sampled_from(ACTIONS))
    def test_no_action_grants_itself(self, action):
        assert action not in actions_granting(action)
        assert action not in actions_implied_by(action)

    @given(st.sampled_from(ACTIONS), st.sampled_from(ACTIONS), st.sampled_from(ACTIONS))
    def test_satisfaction_is_transitive(self, a, b, c):
        if action_satisfies(a, b) and action_satisfies(b, c):
            assert action_satisfies(a, c)


class TestCodeSegments:

    @pytest.mark.parametrize('code, action, resource', [
        ('crm:leads:view', 'view', 'crm:leads'),
        ('view:billing', 'view', 'billing'),
        ('manage:billing:invoices', 'manage', 'billing:invoices'),
        ('crm:export:leads', 'export', 'crm:leads'),
        ('crm:leads:archive', 'archive', 'crm:leads'),
    ])
    def test_action_and_resource(self, code, action, resource):
        assert action_of(code) == action
        assert resource_of(code, action) == resource

    def test_explicit_action_missing_from_code(self):
        assert resource_of('crm:leads', 'view') == 'crm:leads'


class TestPermissionHierarchy:

    def _family(self, module_id='crm', resource='crm:leads', actions=ACTIONS):
        return {action: Row(f'{resource}:{action}', module_id) for action in actions}

    def test_broader_ids_follow_table_order(self):
        family = self._family()
        hierarchy = PermissionHierarchy.build(family.values())

        assert hierarchy.broader(family['view'].id) == (
            family['manage'].id, family['update'].id, family['approve'].id, family['export'].id,
        )

    def test_narrower_ids_of_manage(self):
        family = self._family()
        hierarchy = PermissionHierarchy.build(family.values())

        assert set(hierarchy.narrower(family['manage'].id)) == {
            family['create'].id, family['update'].id, family['view'].id, family['delete'].id,
        }

    def test_missing_actions_are_skipped(self):
        family = self._family(actions=['manage', 'view'])
        hierarchy = PermissionHierarchy.build(family.values())

        assert hierarchy.broader(family['view'].id) == (family['manage'].id,)

    def test_different_resources_are_unrelated(self):
        leads = Row('crm:leads:manage', 'crm')
        contacts = Row('crm:contacts:view', 'crm')
        hierarchy = PermissionHierarchy.build([leads, contacts])

        assert hierarchy.broader(contacts.id) == ()
        assert hierarchy.narrower(leads.id) == ()

    def test_same_code_in_other_module_is_unrelated(self):
        manage = Row('shared:items:manage', 'module-a')
        view = Row('shared:items:view', 'module-b')
        hierarchy = PermissionHierarchy.build([manage, view])

        assert hierarchy.broader(view.id) == ()

    def test_action_first_codes_share_a_family(self):
        manage = Row('manage:billing', 'billing')
        view = Row('view:billing', 'billing')
        hierarchy = PermissionHierarchy.build([manage, view])

        assert hierarchy.broader(view.id) == (manage.id,)
        assert hierarchy.narrower(manage.id) == (view.id,)

    def test_unknown_id_has_no_relations(self):
        hierarchy = PermissionHierarchy.build([])

        assert hierarchy.broader(uuid.uuid4()) == ()
        assert hierarchy.code(uuid.uuid4()) is None

    @settings(max_examples=50)
    @given(st.lists(st.sampled_from(ACTIONS), min_size=1, unique=True))
    def test_tables_are_mutual_inverses(self, actions):
        family = self._family(actions=actions)
        hierarchy = PermissionHierarchy.build(family.values())

        for row in family.values():
            assert row.id not in hierarchy.broader(row.id)
            for broader_id in hierarchy.broader(row.id):
                assert row.id in hierarchy.narrower(broader_id)
            for narrower_id in hierarchy.narrower(row.id):
                assert row.id in hierarchy.broader(narrower_id)


@pytest.mark.django_db
class TestHierarchyCache:

    def test_new_permission_invalidates_tables(self, crm_module):
        view = Permission.objects.create(module=crm_module, code='crm:deals:view')
        assert get_permission_hierarchy().broader(view.id) == ()

        manage = Permission.objects.create(module=crm_module, code='crm:deals:manage')

        assert get_permission_hierarchy().broader(view.id) == (manage.id,)

    def test_hierarchy_is_reused_until_catalogue_changes(self, crm_permissions):
        first = get_permission_hierarchy()

        assert get_permission_hierarchy() is first

    def test_deleted_permission_leaves_tables(self, crm_permissions):
        view = crm_permissions['crm:leads:view']
        crm_permissions['crm:leads:manage'].delete()

        assert crm_permissions['crm:leads:manage'].id not in get_permission_hierarchy().broader(view.id)

    def test_action_defaults_to_last_code_segment(self, crm_module):
        permission = Permission.objects.create(module=crm_module, code='crm:deals:export')

        assert permission.action == 'export'
        assert permission.resource == 'crm:deals'
