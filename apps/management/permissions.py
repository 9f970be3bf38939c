from rest_framework.permissions import BasePermission


class IsSuperuser(BasePermission):
    """Operators who may refund payments, resolve disputes and run sweeps."""
    def has_permission(self, request, view):
        return bool(request.user and request.user.is_authenticated and request.user.is_superuser)
