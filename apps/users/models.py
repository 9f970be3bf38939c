from django.db import models
from django.contrib.auth.models import AbstractUser
from django.utils import timezone

ROLE_CUSTOMER = 'customer'
ROLE_HUSTLER = 'hustler'
ROLE_CHOICES = [(ROLE_CUSTOMER, 'Customer'), (ROLE_HUSTLER, 'Hustler')]


class User(AbstractUser):
    email = models.EmailField(blank=True, null=True, unique=True)
    phone_number = models.CharField(max_length=15, blank=True, null=True, unique=True)

    @property
    def is_customer(self):
        return hasattr(self, 'customer_profile')

    @property
    def is_hustler(self):
        return hasattr(self, 'hustler_profile')

    @property
    def payout_account_id(self):
        if not self.is_hustler:
            return None
        return self.hustler_profile.payout_account_id or None

    def enable_role(self, role):
        """
        Explicitly grant a role capability. Called once at signup or when a
        user opts into the other side of the marketplace; reading a user never
        grants roles.
        """
        if role == ROLE_CUSTOMER:
            profile, _ = CustomerProfile.objects.get_or_create(user=self)
        elif role == ROLE_HUSTLER:
            profile, _ = HustlerProfile.objects.get_or_create(user=self)
        else:
            raise ValueError(f"Unknown role: {role}")
        return profile


class CustomerProfile(models.Model):
    user = models.OneToOneField(User, on_delete=models.CASCADE, related_name='customer_profile')
    created_at = models.DateTimeField(default=timezone.now)

    def __str__(self):
        return f"Customer: {self.user.username}"


class HustlerProfile(models.Model):
    user = models.OneToOneField(User, on_delete=models.CASCADE, related_name='hustler_profile')
    payout_account_id = models.CharField(max_length=100, blank=True, default='')
    bio = models.TextField(blank=True, default='')
    created_at = models.DateTimeField(default=timezone.now)

    def __str__(self):
        return f"Hustler: {self.user.username}"
