import logging
import sys

from django.db import connection

from carecircle.conf import get_setting

# Loggers whose records must never be written back through this handler
SKIPPED_LOGGERS = ('django.db.backends',)


class DatabaseLogHandler(logging.Handler):
    """
    Persist domain log records as LogEntry rows.

    Callers attach context with ``extra={'donor_id': ..., 'blood_request_id': ...}``.
    """

    def emit(self, record):
        if record.name.startswith(SKIPPED_LOGGERS):
            return
        if not get_setting('DATABASE_LOGGING'):
            return
        try:
            if connection.connection is None and not connection.settings_dict.get('NAME'):
                return

            from .models import LogEntry

            LogEntry.objects.create(
                level=record.levelname,
                message=self.format(record),
                logger_name=record.name[:100],
                module=record.module,
                user_id=getattr(record, 'user_id', None),
                donor_id=getattr(record, 'donor_id', None),
                blood_request_id=getattr(record, 'blood_request_id', None),
                ip_address=getattr(record, 'ip_address', None),
                request_path=getattr(record, 'request_path', ''),
            )
        except Exception as e:
            # Logging must not take the request down with it
            sys.stderr.write(f"Database logging failed: {e}\n")
