"""
API tests for manager handovers.
"""
from io import StringIO

import pytest
from django.core.management import call_command
from django.urls import reverse

from apps.handovers.models import HandoverStatus, ManagerHandover


@pytest.fixture
def seeded(db):
    call_command('seed_permissions', stdout=StringIO())
    call_command('seed_system_roles', stdout=StringIO())


@pytest.fixture
def backup(make_user, company, system_roles):
    return make_user(company=company, role=system_roles['Manager'], email='backup@acme.com')


def _request(client, backup, **extra):
    return client.post(
        reverse('handovers:handover-list'),
        {'backup_manager_id': str(backup.id), 'start_date': '2025-03-01', **extra},
        format='json',
    )


@pytest.mark.django_db
class TestHandoverFlow:

    def test_request_accept_complete(self, seeded, auth_client, manager, backup):
        created = _request(auth_client(manager), backup, notes='Parental leave')
        handover_id = created.data['data']['id']

        accepted = auth_client(backup).post(reverse('handovers:handover-accept', args=[handover_id]))
        completed = auth_client(manager).post(reverse('handovers:handover-complete', args=[handover_id]))

        assert created.status_code == 201
        assert created.data['data']['backup_manager_email'] == 'backup@acme.com'
        assert accepted.data['data']['status'] == 'active'
        assert completed.data['message'] == 'Handover completed'

    def test_detail_includes_timeline(self, seeded, auth_client, manager, backup):
        handover_id = _request(auth_client(manager), backup).data['data']['id']

        response = auth_client(manager).get(reverse('handovers:handover-detail', args=[handover_id]))

        assert response.status_code == 200
        assert [e['change_type'] for e in response.data['data']['timeline']] == ['handover_request']

    def test_reject_with_reason(self, seeded, auth_client, manager, backup):
        handover_id = _request(auth_client(manager), backup).data['data']['id']

        response = auth_client(backup).post(
            reverse('handovers:handover-reject', args=[handover_id]), {'reason': 'On leave too'}, format='json'
        )

        assert response.data['data']['status'] == 'rejected'
        assert response.data['data']['rejection_reason'] == 'On leave too'

    def test_requester_cannot_accept(self, seeded, auth_client, manager, backup):
        handover_id = _request(auth_client(manager), backup).data['data']['id']

        response = auth_client(manager).post(reverse('handovers:handover-accept', args=[handover_id]))

        assert response.status_code == 403
        assert response.data['code'] == 'FORBIDDEN'

    def test_invalid_transition_is_a_409(self, seeded, auth_client, manager, backup):
        handover_id = _request(auth_client(manager), backup).data['data']['id']

        response = auth_client(manager).post(reverse('handovers:handover-complete', args=[handover_id]))

        assert response.status_code == 409
        assert response.data['details']['status'] == 'pending'

    def test_self_backup_rejected(self, seeded, auth_client, manager):
        response = _request(auth_client(manager), manager)

        assert response.status_code == 400
        assert response.data['code'] == 'VALIDATION_ERROR'

    def test_backup_outside_company_not_found(self, seeded, auth_client, manager, make_user,
                                              other_company, system_roles):
        outsider = make_user(company=other_company, role=system_roles['Manager'])

        response = _request(auth_client(manager), outsider)

        assert response.status_code == 404
        assert not ManagerHandover.objects.exists()

    def test_handover_of_other_company_hidden(self, seeded, auth_client, manager, backup, make_user,
                                              other_company, system_roles):
        handover_id = _request(auth_client(manager), backup).data['data']['id']
        outsider = make_user(company=other_company, role=system_roles['Company Admin'])

        response = auth_client(outsider).get(reverse('handovers:handover-detail', args=[handover_id]))

        assert response.status_code == 404

    def test_history_lists_both_sides(self, seeded, auth_client, manager, backup):
        _request(auth_client(manager), backup)

        response = auth_client(backup).get(reverse('handovers:handover-list'))

        assert len(response.data['data']) == 1
        assert response.data['data'][0]['manager_email'] == 'manager@acme.com'


@pytest.mark.django_db
class TestAdminEndpoints:

    def test_admin_assign_and_list_active(self, seeded, auth_client, company_admin, manager, backup):
        client = auth_client(company_admin)

        assigned = client.post(
            reverse('handovers:handover-assign'),
            {'manager_id': str(manager.id), 'backup_manager_id': str(backup.id), 'start_date': '2025-03-01'},
            format='json',
        )
        listed = client.get(reverse('handovers:handover-active'))

        assert assigned.status_code == 201
        assert assigned.data['data']['status'] == HandoverStatus.ACTIVE
        assert [h['id'] for h in listed.data['data']] == [assigned.data['data']['id']]

    def test_manager_cannot_assign(self, seeded, auth_client, manager, backup, employee):
        response = auth_client(manager).post(
            reverse('handovers:handover-assign'),
            {'manager_id': str(employee.id), 'backup_manager_id': str(backup.id), 'start_date': '2025-03-01'},
            format='json',
        )

        assert response.status_code == 403
        assert response.data['details']['permission'] == 'handovers:manage'

    def test_employee_cannot_list_active(self, seeded, auth_client, employee):
        response = auth_client(employee).get(reverse('handovers:handover-active'))

        assert response.status_code == 403

    def test_admin_requests_on_behalf(self, seeded, auth_client, company_admin, manager, backup):
        response = _request(auth_client(company_admin), backup, manager_id=str(manager.id))

        assert response.status_code == 201
        assert response.data['data']['manager'] == manager.id
        assert response.data['data']['requested_by'] == company_admin.id
