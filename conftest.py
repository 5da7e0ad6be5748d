import pytest


@pytest.fixture(autouse=True, scope='session')
def _no_database_logging():
    from django.conf import settings
    settings.CARE_CIRCLE['DATABASE_LOGGING'] = False
    yield
