from rest_framework import serializers
from .models import Payment, Payout, Tip


class PaymentSerializer(serializers.ModelSerializer):
    class Meta:
        model = Payment
        fields = [
            'id', 'job', 'amount', 'tip', 'fee_customer', 'fee_hustler', 'total', 'captured_amount',
            'status', 'refund_amount', 'refund_reason', 'receipt_url',
            'preauthorized_at', 'captured_at', 'voided_at', 'refunded_at',
        ]
        read_only_fields = fields


class AdminPaymentSerializer(PaymentSerializer):
    class Meta(PaymentSerializer.Meta):
        fields = PaymentSerializer.Meta.fields + [
            'customer', 'hustler', 'provider_id', 'capture_started_at', 'needs_reconciliation', 'reconciliation_note',
        ]
        read_only_fields = fields


class PayoutSerializer(serializers.ModelSerializer):
    class Meta:
        model = Payout
        fields = ['id', 'job', 'amount', 'platform_fee', 'net_amount', 'status', 'created_at', 'updated_at']
        read_only_fields = fields


class FeeQuoteSerializer(serializers.Serializer):
    amount = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=0)
    tip = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=0, required=False, default=0)


class TipSerializer(serializers.ModelSerializer):
    class Meta:
        model = Tip
        fields = ['id', 'job', 'amount', 'status', 'captured_at', 'created_at']
        read_only_fields = fields
