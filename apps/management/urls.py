from django.urls import path
from . import views

urlpatterns = [
    path('audit-logs/', views.AuditLogListView.as_view(), name='audit_logs'),
    path('payments/reconciliation/', views.ReconciliationListView.as_view(), name='payments_needing_reconciliation'),
    path('payments/<int:payment_id>/refund/', views.AdminRefundView.as_view(), name='admin_refund'),
    path('payments/<int:payment_id>/void/', views.AdminVoidView.as_view(), name='admin_void'),

    # Admin Dispute URLs
    path('disputes/', views.AdminDisputeListView.as_view(), name='admin_list_disputes'),
    path('disputes/<int:dispute_id>/resolve/', views.AdminDisputeResolveView.as_view(), name='admin_resolve_dispute'),
]
