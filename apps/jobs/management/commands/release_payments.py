from django.core.management.base import BaseCommand
from apps.jobs.lifecycle import get_engine


class Command(BaseCommand):
    help = "Release held payments for completed jobs the customer has not confirmed in time. Run from cron."

    def handle(self, *args, **options):
        summary = get_engine().auto_release()
        self.stdout.write(
            f"{summary['candidates']} candidates: {summary['released']} released, "
            f"{summary['skipped']} skipped, {summary['failed']} failed, "
            f"{summary['payouts_retried']} payouts retried"
        )
        if summary['failed']:
            self.stderr.write(self.style.WARNING("Some releases failed, see the error log"))
