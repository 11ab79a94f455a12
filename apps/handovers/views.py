"""
Manager handover API views.
"""
from django.shortcuts import get_object_or_404
from drf_spectacular.utils import extend_schema, extend_schema_view
from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.views import APIView

from apps.core.permissions import HasPermissions
from apps.core.responses import api_response
from apps.handovers.models import ManagerHandover
from apps.handovers.serializers import (
    HandoverAdminAssignSerializer,
    HandoverRejectSerializer,
    HandoverRequestSerializer,
    ManagerHandoverDetailSerializer,
    ManagerHandoverSerializer,
)
from apps.handovers.services import HandoverService
from apps.rbac.models import User


def get_company_handover(request, handover_id):
    queryset = ManagerHandover.objects.select_related('manager', 'backup_manager', 'company')
    if request.user.company_id is not None:
        queryset = queryset.filter(company_id=request.user.company_id)
    return get_object_or_404(queryset, pk=handover_id)


def get_colleague(request, user_id):
    return get_object_or_404(
        User.objects.select_related('role', 'company').filter(company_id=request.user.company_id),
        pk=user_id,
    )


@extend_schema_view(
    get=extend_schema(tags=['Handovers'], summary='Handovers involving the user',
                      responses={200: ManagerHandoverSerializer(many=True)}),
    post=extend_schema(tags=['Handovers'], summary='Request a handover',
                       request=HandoverRequestSerializer,
                       responses={201: ManagerHandoverSerializer}),
)
class HandoverListView(APIView):
    """
    GET  /v1/handovers - the user's handover history
    POST /v1/handovers - request a handover (manager or admin)
    """
    permission_classes = [IsAuthenticated]

    def get(self, request):
        handovers = HandoverService.handover_history(request.user)
        return api_response(ManagerHandoverSerializer(handovers, many=True).data)

    def post(self, request):
        serializer = HandoverRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        manager = request.user
        if data.get('manager_id'):
            manager = get_colleague(request, data['manager_id'])
        handover = HandoverService.request_handover(
            manager,
            get_colleague(request, data['backup_manager_id']),
            requested_by=request.user,
            start_date=data['start_date'],
            end_date=data.get('end_date'),
            notes=data['notes'],
        )
        return api_response(ManagerHandoverSerializer(handover).data, "Handover requested",
                            status.HTTP_201_CREATED)


@extend_schema_view(
    get=extend_schema(tags=['Handovers'], summary='Active handovers of the company',
                      responses={200: ManagerHandoverSerializer(many=True)}),
)
class CompanyActiveHandoversView(APIView):
    permission_classes = [HasPermissions]
    required_permissions = ['handovers:view']

    def get(self, request):
        handovers = HandoverService.active_handovers_for_company(request.user.company_id)
        return api_response(ManagerHandoverSerializer(handovers, many=True).data)


@extend_schema_view(
    post=extend_schema(tags=['Handovers'], summary='Assign an active handover directly',
                       request=HandoverAdminAssignSerializer,
                       responses={201: ManagerHandoverSerializer}),
)
class HandoverAdminAssignView(APIView):
    permission_classes = [HasPermissions]
    required_permissions = ['handovers:manage']

    def post(self, request):
        serializer = HandoverAdminAssignSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        handover = HandoverService.admin_assign(
            get_colleague(request, data['manager_id']),
            get_colleague(request, data['backup_manager_id']),
            actor=request.user,
            start_date=data['start_date'],
            end_date=data.get('end_date'),
            notes=data['notes'],
        )
        return api_response(ManagerHandoverSerializer(handover).data, "Handover assigned",
                            status.HTTP_201_CREATED)


@extend_schema_view(
    get=extend_schema(tags=['Handovers'], summary='Handover with its timeline',
                      responses={200: ManagerHandoverDetailSerializer}),
)
class HandoverDetailView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request, handover_id):
        handover = get_company_handover(request, handover_id)
        return api_response(ManagerHandoverDetailSerializer(handover).data)


class HandoverTransitionView(APIView):
    """
    POST /v1/handovers/<id>/<action>

    Authorization per transition is enforced by HandoverService.
    """
    permission_classes = [IsAuthenticated]
    transition = None

    @extend_schema(tags=['Handovers'], summary='Move a handover to its next state',
                   request=HandoverRejectSerializer, responses={200: ManagerHandoverSerializer})
    def post(self, request, handover_id):
        handover = get_company_handover(request, handover_id)
        if self.transition == 'reject':
            serializer = HandoverRejectSerializer(data=request.data)
            serializer.is_valid(raise_exception=True)
            handover = HandoverService.reject(handover, request.user, reason=serializer.validated_data['reason'])
        else:
            handover = getattr(HandoverService, self.transition)(handover, request.user)
        return api_response(ManagerHandoverSerializer(handover).data, f"Handover {handover.status}")
