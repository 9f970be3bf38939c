from rest_framework import serializers
from .models import AuditLog


class AuditLogSerializer(serializers.ModelSerializer):
    actor = serializers.SerializerMethodField()

    class Meta:
        model = AuditLog
        fields = ['id', 'actor', 'action', 'resource_type', 'resource_id', 'details', 'created_at']
        read_only_fields = fields

    def get_actor(self, obj):
        return obj.actor.username if obj.actor else 'system'


class RefundSerializer(serializers.Serializer):
    """Omit amount for a full refund of the captured total."""
    amount = serializers.DecimalField(max_digits=10, decimal_places=2, required=False, allow_null=True, min_value=0)
    reason = serializers.CharField(max_length=1000)


class ResolveDisputeSerializer(serializers.Serializer):
    resolution = serializers.CharField(max_length=5000)


class VoidSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=1000, required=False, allow_blank=True, default='')
