"""
Manager handover URLs.
"""
from django.urls import path
from apps.handovers.views import (
    CompanyActiveHandoversView,
    HandoverAdminAssignView,
    HandoverDetailView,
    HandoverListView,
    HandoverTransitionView,
)

app_name = 'handovers'

urlpatterns = [
    path('', HandoverListView.as_view(), name='handover-list'),
    path('active', CompanyActiveHandoversView.as_view(), name='handover-active'),
    path('assign', HandoverAdminAssignView.as_view(), name='handover-assign'),
    path('<uuid:handover_id>', HandoverDetailView.as_view(), name='handover-detail'),
] + [
    path(
        f'<uuid:handover_id>/{transition}',
        HandoverTransitionView.as_view(transition=transition),
        name=f'handover-{transition}',
    )
    for transition in ('accept', 'reject', 'complete', 'cancel')
]
