from django.core.management.base import BaseCommand

from blood_requests.lifecycle import RequestLifecycleManager

class Command(BaseCommand):
    help = 'Expire unanswered RED requests and timed-out donor notifications (run from cron)'

    def add_arguments(self, parser):
        parser.add_argument(
            '--skip-notifications',
            action='store_true',
            help='Only check request expiration, leave donor notifications alone'
        )

    def handle(self, *args, **options):
        manager = RequestLifecycleManager()

        expired_requests = manager.expire_due_requests()
        expired_notifications = 0
        if not options['skip_notifications']:
            expired_notifications = manager.expire_stale_notifications()

        self.stdout.write(
            self.style.SUCCESS(
                f"Expired {expired_requests} requests and {expired_notifications} donor notifications"
            )
        )
