from django.contrib import admin
from .models import Payment, Payout, Tip


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = ('id', 'job', 'customer', 'total', 'captured_amount', 'status', 'needs_reconciliation')
    list_filter = ('status', 'needs_reconciliation')
    readonly_fields = ('provider_id', 'total', 'captured_amount', 'refund_amount')


@admin.register(Payout)
class PayoutAdmin(admin.ModelAdmin):
    list_display = ('id', 'job', 'hustler', 'net_amount', 'status', 'updated_at')
    list_filter = ('status',)


@admin.register(Tip)
class TipAdmin(admin.ModelAdmin):
    list_display = ('id', 'job', 'hustler', 'amount', 'status', 'captured_at')
    list_filter = ('status',)
    readonly_fields = ('charge_id', 'provider_id', 'amount')
