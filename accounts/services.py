"""
Registration validation and notification preference rules.

These helpers are pure: they raise ``carecircle.exceptions.ValidationError``
on bad input and never touch the database.
"""
import re
from datetime import datetime, time

from django.utils import timezone

from carecircle.exceptions import ValidationError

MIN_DONOR_AGE = 18
MAX_DONOR_AGE = 60

MEDICAL_FLAGS = ('diabetes', 'seizures', 'heartDisease', 'hypertension')

REQUIRED_REGISTRATION_FIELDS = ('fullName', 'age', 'gender', 'mobileNumber', 'city', 'bloodGroup')

TIME_OF_DAY_RE = re.compile(r'^([0-1]?[0-9]|2[0-3]):[0-5][0-9]$')


def validate_age(age):
    if isinstance(age, bool) or not isinstance(age, int):
        raise ValidationError('Age must be a whole number')
    if age < MIN_DONOR_AGE or age > MAX_DONOR_AGE:
        raise ValidationError(
            f'Age must be between {MIN_DONOR_AGE} and {MAX_DONOR_AGE} years inclusive'
        )
    return True


def validate_medical_history(medical_history):
    if not isinstance(medical_history, dict):
        raise ValidationError('Medical history must be a valid object')

    for field in MEDICAL_FLAGS:
        value = medical_history.get(field)
        if value is not None and not isinstance(value, bool):
            raise ValidationError(f"Medical history field '{field}' must be a boolean")
    return True


def validate_notification_preferences(preferences):
    if not isinstance(preferences, dict):
        raise ValidationError('Notification preferences must be a valid object')

    enabled = preferences.get('notificationEnabled')
    if enabled is not None and not isinstance(enabled, bool):
        raise ValidationError('notificationEnabled must be a boolean')

    start = preferences.get('quietHoursStart')
    end = preferences.get('quietHoursEnd')
    if start or end:
        if not start or not end:
            raise ValidationError('Both quietHoursStart and quietHoursEnd must be provided together')
        if not is_valid_time_of_day(start) or not is_valid_time_of_day(end):
            raise ValidationError('Quiet hours must be in HH:MM format')
    return True


def is_valid_time_of_day(value):
    return isinstance(value, str) and bool(TIME_OF_DAY_RE.match(value))


def parse_time_of_day(value):
    """Accept a ``time`` or an ``HH:MM`` string; anything else is rejected"""
    if value is None or isinstance(value, time):
        return value
    if not is_valid_time_of_day(value):
        raise ValidationError('Quiet hours must be in HH:MM format')
    return datetime.strptime(value, '%H:%M').time()


def configure_notification_preferences(user_id, preferences):
    if not user_id:
        raise ValidationError('User ID is required')

    validate_notification_preferences(preferences)

    enabled = preferences.get('notificationEnabled')
    return {
        'user_id': user_id,
        'notification_enabled': True if enabled is None else enabled,
        'quiet_hours_start': parse_time_of_day(preferences.get('quietHoursStart') or None),
        'quiet_hours_end': parse_time_of_day(preferences.get('quietHoursEnd') or None),
        'updated_at': timezone.now(),
    }


def validate_registration(data):
    """Check a camelCase registration payload, returning the normalised fields"""
    missing = [field for field in REQUIRED_REGISTRATION_FIELDS if not data.get(field)]
    if missing:
        raise ValidationError(f"All required fields must be provided (missing: {', '.join(missing)})")

    validate_age(data['age'])

    medical_history = data.get('medicalHistory')
    if medical_history:
        validate_medical_history(medical_history)

    preferences = data.get('notificationPreferences')
    if preferences:
        validate_notification_preferences(preferences)
    preferences = preferences or {}

    enabled = preferences.get('notificationEnabled')
    return {
        'full_name': data['fullName'],
        'age': data['age'],
        'gender': data['gender'],
        'mobile_number': data['mobileNumber'],
        'city': data['city'],
        'blood_group': data['bloodGroup'],
        'medical_history': medical_history or {},
        'last_donation_date': data.get('lastDonationDate') or None,
        'notification_enabled': True if enabled is None else enabled,
        'quiet_hours_start': parse_time_of_day(preferences.get('quietHoursStart') or None),
        'quiet_hours_end': parse_time_of_day(preferences.get('quietHoursEnd') or None),
    }


def is_in_quiet_hours(quiet_hours_start, quiet_hours_end, now=None):
    if not quiet_hours_start or not quiet_hours_end:
        return False

    start = parse_time_of_day(quiet_hours_start)
    end = parse_time_of_day(quiet_hours_end)
    now = now or timezone.localtime()
    current = now.time().replace(second=0, microsecond=0)

    # Windows such as 22:00-06:00 wrap past midnight
    if start <= end:
        return start <= current <= end
    return current >= start or current <= end


def should_send_notification(user, urgency_band, now=None):
    if not user.notification_enabled:
        return False

    # RED band overrides quiet hours
    if urgency_band == 'RED':
        return True

    return not is_in_quiet_hours(user.quiet_hours_start, user.quiet_hours_end, now=now)
