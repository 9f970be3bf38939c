from dataclasses import dataclass
from rest_framework import permissions


@dataclass(frozen=True)
class Actor:
    """Who is calling the lifecycle engine and which roles they may act in."""
    actor_id: int
    can_act_as_customer: bool = False
    can_act_as_hustler: bool = False
    is_admin: bool = False

    @classmethod
    def from_user(cls, user):
        return cls(
            actor_id=user.id,
            can_act_as_customer=user.is_customer,
            can_act_as_hustler=user.is_hustler,
            is_admin=user.is_superuser,
        )


def actor_from_request(request):
    return Actor.from_user(request.user)


class IsCustomer(permissions.BasePermission):
    def has_permission(self, request, view):
        if not request.user.is_authenticated:
            return False
        return request.user.is_customer


class IsHustler(permissions.BasePermission):
    def has_permission(self, request, view):
        if not request.user.is_authenticated:
            return False
        return request.user.is_hustler