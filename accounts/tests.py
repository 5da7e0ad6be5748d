from datetime import datetime, time, timedelta, timezone as dt_timezone
from types import SimpleNamespace
from unittest import mock

import pytest
from django.core.cache.backends.locmem import LocMemCache
from rest_framework.test import APIClient

from carecircle.exceptions import ValidationError

from .models import User
from .otp import OTPStore
from .services import (
    configure_notification_preferences,
    is_in_quiet_hours,
    should_send_notification,
    validate_age,
    validate_medical_history,
    validate_notification_preferences,
    validate_registration,
)


def at(hour, minute=0):
    return datetime(2026, 10, 19, hour, minute, tzinfo=dt_timezone.utc)


def registration_payload(**overrides):
    payload = {
        'fullName': 'Asha Rao',
        'age': 29,
        'gender': 'F',
        'mobileNumber': '9000000001',
        'city': 'Pune',
        'bloodGroup': 'O+',
    }
    payload.update(overrides)
    return payload


class TestValidateAge:
    @pytest.mark.parametrize('age', [18, 35, 60])
    def test_accepts_ages_in_range(self, age):
        assert validate_age(age) is True

    @pytest.mark.parametrize('age', [17, 61, 0])
    def test_rejects_ages_out_of_range(self, age):
        with pytest.raises(ValidationError, match='between 18 and 60'):
            validate_age(age)

    @pytest.mark.parametrize('age', ['30', 30.5, None, True])
    def test_rejects_non_integers(self, age):
        with pytest.raises(ValidationError):
            validate_age(age)


def test_medical_history_flags_must_be_booleans():
    assert validate_medical_history({'diabetes': True, 'seizures': False})
    assert validate_medical_history({})

    with pytest.raises(ValidationError, match='diabetes'):
        validate_medical_history({'diabetes': 'yes'})
    with pytest.raises(ValidationError, match='valid object'):
        validate_medical_history(['diabetes'])


class TestNotificationPreferences:
    def test_quiet_hours_come_in_pairs(self):
        with pytest.raises(ValidationError, match='together'):
            validate_notification_preferences({'quietHoursStart': '22:00'})

    def test_quiet_hours_format(self):
        assert validate_notification_preferences({'quietHoursStart': '22:00', 'quietHoursEnd': '6:30'})
        with pytest.raises(ValidationError, match='HH:MM'):
            validate_notification_preferences({'quietHoursStart': '24:00', 'quietHoursEnd': '06:00'})

    def test_enabled_flag_must_be_boolean(self):
        with pytest.raises(ValidationError):
            validate_notification_preferences({'notificationEnabled': 'no'})

    def test_configure_requires_user(self):
        with pytest.raises(ValidationError, match='User ID is required'):
            configure_notification_preferences(None, {})

    def test_configure_normalises_times(self):
        result = configure_notification_preferences(7, {
            'notificationEnabled': False,
            'quietHoursStart': '22:00',
            'quietHoursEnd': '06:00',
        })

        assert result['user_id'] == 7
        assert result['notification_enabled'] is False
        assert result['quiet_hours_start'] == time(22, 0)
        assert result['quiet_hours_end'] == time(6, 0)

    def test_configure_defaults_to_enabled(self):
        result = configure_notification_preferences(7, {})
        assert result['notification_enabled'] is True
        assert result['quiet_hours_start'] is None


class TestValidateRegistration:
    def test_missing_fields_are_listed(self):
        with pytest.raises(ValidationError, match='city'):
            validate_registration(registration_payload(city=''))

    def test_age_is_checked(self):
        with pytest.raises(ValidationError):
            validate_registration(registration_payload(age=61))

    def test_returns_snake_case_fields(self):
        fields = validate_registration(registration_payload(
            medicalHistory={'diabetes': True},
            notificationPreferences={'quietHoursStart': '23:00', 'quietHoursEnd': '05:00'},
        ))

        assert fields['full_name'] == 'Asha Rao'
        assert fields['blood_group'] == 'O+'
        assert fields['medical_history'] == {'diabetes': True}
        assert fields['notification_enabled'] is True
        assert fields['quiet_hours_start'] == time(23, 0)
        assert fields['last_donation_date'] is None


class TestQuietHours:
    def test_no_window_configured(self):
        assert is_in_quiet_hours(None, None, now=at(3)) is False

    def test_same_day_window_is_inclusive(self):
        assert is_in_quiet_hours('13:00', '15:00', now=at(13)) is True
        assert is_in_quiet_hours('13:00', '15:00', now=at(15)) is True
        assert is_in_quiet_hours('13:00', '15:00', now=at(15, 1)) is False

    def test_window_wrapping_midnight(self):
        assert is_in_quiet_hours('22:00', '06:00', now=at(23, 30)) is True
        assert is_in_quiet_hours('22:00', '06:00', now=at(2)) is True
        assert is_in_quiet_hours('22:00', '06:00', now=at(12)) is False

    def test_accepts_time_objects(self):
        assert is_in_quiet_hours(time(22), time(6), now=at(5, 59)) is True


class TestShouldSendNotification:
    def user(self, **overrides):
        values = {'notification_enabled': True, 'quiet_hours_start': time(22), 'quiet_hours_end': time(6)}
        values.update(overrides)
        return SimpleNamespace(**values)

    def test_disabled_user_gets_nothing(self):
        assert should_send_notification(self.user(notification_enabled=False), 'RED', now=at(12)) is False

    def test_red_overrides_quiet_hours(self):
        assert should_send_notification(self.user(), 'RED', now=at(23)) is True

    def test_quiet_hours_hold_back_other_bands(self):
        assert should_send_notification(self.user(), 'PINK', now=at(23)) is False
        assert should_send_notification(self.user(), 'WHITE', now=at(12)) is True


class TestOTPStore:
    @pytest.fixture
    def store(self):
        cache = LocMemCache('otp-tests', {})
        cache.clear()
        return OTPStore(cache=cache, expiry_minutes=10, max_attempts=3)

    def issued_otp(self, store, mobile='9000000001'):
        store.generate(mobile)
        return store.cache.get(f'otp:{mobile}')['otp']

    def test_generate_requires_mobile(self, store):
        with pytest.raises(ValidationError, match='required for OTP generation'):
            store.generate('')

    def test_generate_issues_six_digits(self, store):
        result = store.generate('9000000001')
        entry = store.cache.get('otp:9000000001')

        assert result == {'success': True, 'message': 'OTP sent successfully', 'expires_in': 10}
        assert len(entry['otp']) == 6 and entry['otp'].isdigit()
        assert entry['attempts'] == 0

    def test_verify_consumes_otp(self, store):
        otp = self.issued_otp(store)

        assert store.verify('9000000001', otp)['success'] is True
        with pytest.raises(ValidationError, match='No OTP found'):
            store.verify('9000000001', otp)

    def test_verify_requires_both_values(self, store):
        with pytest.raises(ValidationError, match='are required'):
            store.verify('9000000001', '')

    def test_wrong_otp_counts_attempts(self, store):
        otp = self.issued_otp(store)
        wrong = '000000' if otp != '000000' else '111111'

        for _ in range(3):
            with pytest.raises(ValidationError, match='Invalid OTP'):
                store.verify('9000000001', wrong)

        with pytest.raises(ValidationError, match='Maximum OTP verification attempts'):
            store.verify('9000000001', otp)

    def test_expired_otp(self, store):
        otp = self.issued_otp(store)
        later = datetime.now(dt_timezone.utc) + timedelta(minutes=11)

        with mock.patch('accounts.otp.timezone.now', return_value=later):
            with pytest.raises(ValidationError, match='OTP has expired'):
                store.verify('9000000001', otp)

    def test_expire_drops_pending_otp(self, store):
        otp = self.issued_otp(store)
        store.expire('9000000001')

        with pytest.raises(ValidationError, match='No OTP found'):
            store.verify('9000000001', otp)


@pytest.mark.django_db
class TestRegistrationAPI:
    def payload(self, **overrides):
        data = registration_payload(
            password='Vein-Runner-2026',
            password2='Vein-Runner-2026',
            email='asha@example.com',
        )
        data.update(overrides)
        return data

    def test_register_donor_creates_profile(self):
        client = APIClient()
        response = client.post('/api/auth/register/', self.payload(
            isDonor=True, medicalHistory={'diabetes': True},
        ), format='json')

        assert response.status_code == 201
        user = User.objects.get(mobile_number='9000000001')
        assert user.user_type == 'donor'
        assert float(user.donor_profile.eligibility_score) == 85

    def test_register_rejects_underage(self):
        client = APIClient()
        response = client.post('/api/auth/register/', self.payload(age=17), format='json')

        assert response.status_code == 400
        assert not User.objects.filter(mobile_number='9000000001').exists()

    def test_login_returns_tokens(self):
        client = APIClient()
        client.post('/api/auth/register/', self.payload(), format='json')

        response = client.post('/api/auth/login/', {
            'mobileNumber': '9000000001', 'password': 'Vein-Runner-2026',
        }, format='json')

        assert response.status_code == 200
        assert 'access' in response.data
        assert response.data['user']['full_name'] == 'Asha Rao'

    def test_update_preferences(self):
        user = User.objects.create_user(
            username='9000000002', password='x', mobile_number='9000000002',
            full_name='Ravi', blood_group='A+',
        )
        client = APIClient()
        client.force_authenticate(user=user)

        response = client.put('/api/auth/preferences/', {
            'notificationEnabled': True, 'quietHoursStart': '22:00', 'quietHoursEnd': '06:00',
        }, format='json')

        assert response.status_code == 200
        user.refresh_from_db()
        assert user.quiet_hours_start == time(22, 0)
