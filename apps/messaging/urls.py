from django.urls import path
from .views import JobMessagesView

urlpatterns = [
    path('jobs/<int:job_id>/messages/', JobMessagesView.as_view(), name='job_messages'),
]
