"""
Handover serializers.
"""
from rest_framework import serializers

from apps.handovers.models import HandoverTimelineEntry, ManagerHandover


class HandoverTimelineEntrySerializer(serializers.ModelSerializer):

    class Meta:
        model = HandoverTimelineEntry
        fields = ['id', 'change_type', 'old_status', 'new_status', 'actor', 'notes', 'created_at']
        read_only_fields = fields


class ManagerHandoverSerializer(serializers.ModelSerializer):
    """Serializer for ManagerHandover model."""

    manager_email = serializers.EmailField(source='manager.email', read_only=True)
    backup_manager_email = serializers.EmailField(source='backup_manager.email', read_only=True)

    class Meta:
        model = ManagerHandover
        fields = [
            'id', 'company', 'manager', 'manager_email', 'backup_manager', 'backup_manager_email',
            'status', 'start_date', 'end_date', 'notes', 'requested_by', 'approved_by',
            'accepted_by', 'accepted_at', 'rejected_by', 'rejected_at', 'rejection_reason',
            'completed_at', 'cancelled_at', 'created_at',
        ]
        read_only_fields = fields


class ManagerHandoverDetailSerializer(ManagerHandoverSerializer):
    timeline = HandoverTimelineEntrySerializer(many=True, read_only=True)

    class Meta(ManagerHandoverSerializer.Meta):
        fields = ManagerHandoverSerializer.Meta.fields + ['timeline']
        read_only_fields = fields


class HandoverRequestSerializer(serializers.Serializer):
    manager_id = serializers.UUIDField(required=False, help_text="Defaults to the requesting user")
    backup_manager_id = serializers.UUIDField()
    start_date = serializers.DateField()
    end_date = serializers.DateField(required=False, allow_null=True)
    notes = serializers.CharField(required=False, allow_blank=True, default='')

    def validate(self, attrs):
        end_date = attrs.get('end_date')
        if end_date and end_date < attrs['start_date']:
            raise serializers.ValidationError({'end_date': "End date cannot be before start date."})
        return attrs


class HandoverAdminAssignSerializer(HandoverRequestSerializer):
    manager_id = serializers.UUIDField()


class HandoverRejectSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, default='')
