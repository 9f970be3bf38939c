from django.contrib import admin
from django.urls import path, include
from drf_yasg.views import get_schema_view
from drf_yasg import openapi
from rest_framework.permissions import AllowAny

schema_view = get_schema_view(
    openapi.Info(
        title="Hustl API",
        default_version='v1',
        description="Local services marketplace: jobs, offers, escrowed payments and payouts",
    ),
    public=True,
    permission_classes=[AllowAny],
)

urlpatterns = [
    path('', schema_view.with_ui('swagger', cache_timeout=0), name='schema-swagger-ui'),
    path('admin/', admin.site.urls),
    path('users/', include('apps.users.urls')),
    path('jobs/', include('apps.jobs.urls')),
    path('payments/', include('apps.payments.urls')),
    path('messaging/', include('apps.messaging.urls')),
    path('management/', include('apps.management.urls')),
]
