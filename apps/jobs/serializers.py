from rest_framework import serializers
from apps.users.serializers import PublicUserSerializer
from apps.payments.serializers import PaymentSerializer
from core.constants import PAY_TYPE_CHOICES, PAY_TYPE_FLAT, DISPUTE_REASON_CHOICES
from .models import Job, Offer, JobDispute, JobVerification


class JobCreateSerializer(serializers.Serializer):
    """Input shape for posting a job; business rules live in the lifecycle engine."""
    title = serializers.CharField(max_length=200)
    category = serializers.CharField(max_length=100)
    description = serializers.CharField(required=False, allow_blank=True, default='')
    address = serializers.CharField(max_length=255)
    zip_code = serializers.RegexField(r'^\d{5}(-\d{4})?$', max_length=10)
    latitude = serializers.DecimalField(max_digits=9, decimal_places=6, required=False, allow_null=True)
    longitude = serializers.DecimalField(max_digits=9, decimal_places=6, required=False, allow_null=True)
    scheduled_date = serializers.DateField(required=False)
    start_time = serializers.DateTimeField()
    end_time = serializers.DateTimeField()
    pay_type = serializers.ChoiceField(choices=PAY_TYPE_CHOICES, default=PAY_TYPE_FLAT)
    amount = serializers.DecimalField(max_digits=10, decimal_places=2, required=False, min_value=0)
    hourly_rate = serializers.DecimalField(max_digits=10, decimal_places=2, required=False, min_value=0)
    estimated_hours = serializers.DecimalField(max_digits=6, decimal_places=2, required=False, min_value=0)

    def validate(self, data):
        if data.get('pay_type') == PAY_TYPE_FLAT and data.get('amount') is None:
            raise serializers.ValidationError({"amount": "Flat jobs need an amount."})
        return data


class JobSerializer(serializers.ModelSerializer):
    customer = PublicUserSerializer(read_only=True)
    hustler = PublicUserSerializer(read_only=True)
    has_active_dispute = serializers.BooleanField(read_only=True)

    class Meta:
        model = Job
        fields = [
            'id', 'customer', 'hustler', 'title', 'category', 'description', 'address', 'zip_code',
            'latitude', 'longitude', 'scheduled_date', 'start_time', 'end_time', 'pay_type', 'amount',
            'hourly_rate', 'estimated_hours', 'authorized_hours', 'actual_hours', 'status',
            'has_active_dispute', 'started_at', 'completed_at', 'paid_at', 'cancelled_at',
            'cancellation_reason', 'created_at', 'updated_at',
        ]
        read_only_fields = fields


class JobDetailSerializer(JobSerializer):
    payment = serializers.SerializerMethodField()

    class Meta(JobSerializer.Meta):
        fields = JobSerializer.Meta.fields + ['payment']
        read_only_fields = fields

    def get_payment(self, obj):
        payment = getattr(obj, 'payment', None)
        user = self.context.get('user')
        if payment is None or user is None or not obj.is_participant(user.id):
            return None
        return PaymentSerializer(payment).data


class OfferSerializer(serializers.ModelSerializer):
    hustler = PublicUserSerializer(read_only=True)

    class Meta:
        model = Offer
        fields = ['id', 'job', 'hustler', 'note', 'proposed_amount', 'status', 'created_at', 'responded_at']
        read_only_fields = fields


class OfferCreateSerializer(serializers.Serializer):
    note = serializers.CharField(required=False, allow_blank=True, default='', max_length=2000)
    proposed_amount = serializers.DecimalField(max_digits=10, decimal_places=2, required=False, allow_null=True, min_value=0)


class AcceptOfferSerializer(serializers.Serializer):
    tip_percent = serializers.DecimalField(max_digits=5, decimal_places=2, required=False, allow_null=True, min_value=0)


class AddTipSerializer(serializers.Serializer):
    """Give either tip_amount or tip_percent; percentages win when both are sent."""
    tip_amount = serializers.DecimalField(max_digits=10, decimal_places=2, required=False, allow_null=True, min_value=0)
    tip_percent = serializers.DecimalField(max_digits=5, decimal_places=2, required=False, allow_null=True, min_value=0)


class CodeSerializer(serializers.Serializer):
    # Free-form so that "12-34" or "12 34" are accepted; digits are extracted later
    code = serializers.CharField(max_length=20)


class CompleteJobSerializer(serializers.Serializer):
    actual_hours = serializers.DecimalField(max_digits=6, decimal_places=2, required=False, allow_null=True, min_value=0)


class CancelJobSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, default='', max_length=1000)


class ReportIssueSerializer(serializers.Serializer):
    reason = serializers.ChoiceField(choices=DISPUTE_REASON_CHOICES)
    description = serializers.CharField(max_length=5000)


class JobVerificationSerializer(serializers.ModelSerializer):
    class Meta:
        model = JobVerification
        fields = ['kind', 'code', 'generated_at', 'used_at']


class JobDisputeSerializer(serializers.ModelSerializer):
    reported_by = PublicUserSerializer(read_only=True)

    class Meta:
        model = JobDispute
        fields = [
            'id', 'job', 'reported_by', 'reason', 'description', 'status',
            'resolution', 'resolved_at', 'created_at',
        ]
        read_only_fields = fields
