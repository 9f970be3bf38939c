from django.conf import settings
from django.core.management.base import BaseCommand
from apps.jobs.lifecycle import get_engine


class Command(BaseCommand):
    help = "Cancel open jobs that received no accepted offer within STALE_JOB_HOURS."

    def handle(self, *args, **options):
        expired = get_engine().expire_stale_jobs()
        self.stdout.write(self.style.SUCCESS(
            f"Expired {expired} open jobs older than {settings.STALE_JOB_HOURS} hours"
        ))
