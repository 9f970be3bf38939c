from django.db import models
from django.conf import settings


class Thread(models.Model):
    """Conversation between a job's customer and its (prospective) hustler."""
    job = models.OneToOneField('jobs.Job', on_delete=models.CASCADE, related_name='thread')
    customer = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='customer_threads')
    hustler = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='hustler_threads')
    created_at = models.DateTimeField(auto_now_add=True)
    last_message_at = models.DateTimeField(null=True, blank=True)

    def __str__(self):
        return f"Thread for job {self.job_id}"

    def is_participant(self, user_id):
        return user_id in (self.customer_id, self.hustler_id)


class Message(models.Model):
    thread = models.ForeignKey(Thread, on_delete=models.CASCADE, related_name='messages')
    sender = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='sent_messages')
    body = models.TextField()
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['created_at']

    def __str__(self):
        return f"Message from {self.sender_id} in thread {self.thread_id}"
