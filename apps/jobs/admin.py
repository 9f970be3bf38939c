from django.contrib import admin
from .models import Job, Offer, JobVerification, JobDispute, Review


@admin.register(Job)
class JobAdmin(admin.ModelAdmin):
    list_display = ('id', 'title', 'customer', 'hustler', 'pay_type', 'amount', 'status', 'start_time')
    list_filter = ('status', 'pay_type', 'category')
    search_fields = ('title', 'customer__username', 'hustler__username', 'zip_code')


@admin.register(Offer)
class OfferAdmin(admin.ModelAdmin):
    list_display = ('id', 'job', 'hustler', 'status', 'created_at')
    list_filter = ('status',)


@admin.register(JobDispute)
class JobDisputeAdmin(admin.ModelAdmin):
    list_display = ('id', 'job', 'reported_by', 'reason', 'status', 'created_at')
    list_filter = ('status', 'reason')


@admin.register(Review)
class ReviewAdmin(admin.ModelAdmin):
    list_display = ('id', 'job', 'reviewer', 'reviewee', 'stars', 'is_hidden', 'created_at')
    list_filter = ('stars', 'is_hidden')
    list_editable = ('is_hidden',)
    search_fields = ('reviewer__username', 'reviewee__username', 'text')


# Codes are secrets shared between the two parties; list them without the value
@admin.register(JobVerification)
class JobVerificationAdmin(admin.ModelAdmin):
    list_display = ('job', 'kind', 'generated_at', 'used_at')
    exclude = ('code',)
