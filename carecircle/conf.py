from django.conf import settings

DEFAULTS = {
    'GOOGLE_MAPS_API_KEY': '',
    'TRAFFIC_TIMEOUT_SECONDS': 5,
    'AVERAGE_SPEED_KMH': 40,
    'ETA_LOOKUP_WORKERS': 8,
    'OTP_EXPIRY_MINUTES': 10,
    'OTP_MAX_ATTEMPTS': 3,
    'LOG_RETENTION_DAYS': 90,
    'DATABASE_LOGGING': True,
    'FRONTEND_URL': 'http://localhost:3000',
}


def get_setting(name):
    """Look up a CARE_CIRCLE setting, falling back to the built-in default"""
    overrides = getattr(settings, 'CARE_CIRCLE', {})
    if name in overrides:
        return overrides[name]
    return DEFAULTS[name]
