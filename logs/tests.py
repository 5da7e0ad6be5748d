import logging
from datetime import timedelta
from io import StringIO

import pytest
from django.core.management import call_command
from django.test import RequestFactory
from django.http import HttpResponse
from django.utils import timezone

from .handlers import DatabaseLogHandler
from .middleware import LoggingMiddleware
from .models import LogEntry


@pytest.fixture
def db_logger(settings):
    settings.CARE_CIRCLE = {**settings.CARE_CIRCLE, 'DATABASE_LOGGING': True}
    logger = logging.getLogger('logs.tests.db_logger')
    logger.propagate = False
    logger.setLevel(logging.INFO)
    handler = DatabaseLogHandler()
    logger.addHandler(handler)
    yield logger
    logger.removeHandler(handler)


@pytest.mark.django_db
class TestDatabaseLogHandler:
    def test_writes_context_ids(self, db_logger):
        db_logger.warning('Donor 4 skipped', extra={'donor_id': 4, 'blood_request_id': 9})

        entry = LogEntry.objects.get()
        assert entry.level == 'WARNING'
        assert entry.message == 'Donor 4 skipped'
        assert entry.logger_name == 'logs.tests.db_logger'
        assert entry.donor_id == 4
        assert entry.blood_request_id == 9
        assert entry.user_id is None

    def test_switched_off(self, db_logger, settings):
        settings.CARE_CIRCLE = {**settings.CARE_CIRCLE, 'DATABASE_LOGGING': False}
        db_logger.info('not stored')

        assert not LogEntry.objects.exists()

    def test_skips_sql_logging(self, settings):
        settings.CARE_CIRCLE = {**settings.CARE_CIRCLE, 'DATABASE_LOGGING': True}
        record = logging.LogRecord('django.db.backends', logging.INFO, __file__, 1, 'SELECT 1', None, None)

        DatabaseLogHandler().emit(record)

        assert not LogEntry.objects.exists()


@pytest.mark.django_db
def test_cleanup_logs_command():
    old = LogEntry.objects.create(level='INFO', message='old', logger_name='donors', module='matching')
    recent = LogEntry.objects.create(level='INFO', message='recent', logger_name='donors', module='matching')
    LogEntry.objects.filter(pk=old.pk).update(timestamp=timezone.now() - timedelta(days=120))
    out = StringIO()

    call_command('cleanup_logs', stdout=out)

    assert list(LogEntry.objects.all()) == [recent]
    assert 'Deleted 1 log entries older than 90 days' in out.getvalue()


@pytest.mark.django_db
def test_cleanup_logs_custom_window():
    entry = LogEntry.objects.create(level='INFO', message='week old', logger_name='donors', module='matching')
    LogEntry.objects.filter(pk=entry.pk).update(timestamp=timezone.now() - timedelta(days=8))

    call_command('cleanup_logs', days=7, stdout=StringIO())

    assert not LogEntry.objects.exists()


def test_middleware_reports_forwarded_ip(caplog):
    request = RequestFactory().get('/api/donors/map/', HTTP_X_FORWARDED_FOR='203.0.113.7, 10.0.0.1')
    middleware = LoggingMiddleware(lambda request: HttpResponse(status=200))

    with caplog.at_level(logging.INFO, logger='logs.middleware'):
        middleware(request)

    record = caplog.records[-1]
    assert record.ip_address == '203.0.113.7'
    assert record.request_path == '/api/donors/map/'
    assert 'GET /api/donors/map/ - 200 - anonymous' in record.getMessage()
