from django.contrib import admin
from .models import User, CustomerProfile, HustlerProfile

@admin.register(User)
class UserAdmin(admin.ModelAdmin):
    list_display = ('username', 'email', 'phone_number', 'is_customer', 'is_hustler', 'is_superuser')
    list_filter = ('is_superuser',)
    search_fields = ('username', 'email', 'phone_number')

@admin.register(CustomerProfile)
class CustomerProfileAdmin(admin.ModelAdmin):
    list_display = ('user', 'created_at')
    search_fields = ('user__username', 'user__email')

@admin.register(HustlerProfile)
class HustlerProfileAdmin(admin.ModelAdmin):
    list_display = ('user', 'payout_account_id', 'created_at')
    search_fields = ('user__username', 'user__email', 'payout_account_id')
