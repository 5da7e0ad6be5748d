from datetime import datetime, time, timedelta, timezone as dt_timezone
from io import StringIO

import pytest
from django.contrib import admin
from django.core.management import call_command
from django.utils import timezone
from rest_framework.test import APIClient

from accounts.models import User
from carecircle.exceptions import ExternalServiceError, NotFoundError, ValidationError
from donors.matching import DonorRankingEngine
from donors.models import Donor
from donors.reliability import reliability_scorer

from . import urgency
from .lifecycle import EXPIRED_MESSAGE, InMemoryRequestStore, RequestLifecycleManager
from .models import BloodRequest, DonationHistory, DonorNotification
from .notifications import EmailNotifier, dispatch_request, initial_timeout

NOW = datetime(2026, 10, 19, 9, 0, tzinfo=dt_timezone.utc)

NEW_YORK = 'POINT(-74.0060 40.7128)'


class RecordingNotifier:
    def __init__(self):
        self.messages = []

    def notify(self, blood_request, message):
        self.messages.append((blood_request.id, message))


class FailingTraffic:
    def eta_minutes(self, origin, destination):
        raise ExternalServiceError('Traffic API key not configured')


def minutes_ago(minutes):
    return NOW - timedelta(minutes=minutes)


class TestUrgency:
    @pytest.mark.parametrize('timeframe, band, warning', [
        ('immediate', 'RED', True),
        ('within_2_hours', 'RED', True),
        ('within_24_hours', 'PINK', False),
        ('after_24_hours', 'WHITE', False),
        ('next_month', 'WHITE', False),
    ])
    def test_classify(self, timeframe, band, warning):
        classification = urgency.classify(timeframe)
        assert classification.urgency_band == band
        assert classification.emergency_warning is warning

    @pytest.mark.parametrize('timeframe', [None, ''])
    def test_timeframe_is_mandatory(self, timeframe):
        with pytest.raises(ValidationError, match='timeframe is mandatory'):
            urgency.classify(timeframe)

    def test_is_valid_timeframe(self):
        assert urgency.is_valid_timeframe('immediate')
        assert not urgency.is_valid_timeframe('soon')
        assert not urgency.is_valid_timeframe(None)
        assert not urgency.is_valid_timeframe(['immediate'])

    def test_timeout_thresholds(self):
        assert urgency.timeout_thresholds('RED') == urgency.TimeoutThresholds(10, 20)
        assert urgency.timeout_thresholds('PINK') == urgency.TimeoutThresholds(None, 30)
        assert urgency.timeout_thresholds('WHITE') == urgency.TimeoutThresholds(None, None)
        assert urgency.timeout_thresholds('unknown') == urgency.TimeoutThresholds(None, None)

    def test_initial_notification_timeout(self):
        assert initial_timeout('RED', NOW) == NOW + timedelta(minutes=10)
        assert initial_timeout('PINK', NOW) == NOW + timedelta(minutes=30)
        assert initial_timeout('WHITE', NOW) is None


class TestRequestStateMachine:
    @pytest.fixture
    def notifier(self):
        return RecordingNotifier()

    @pytest.fixture
    def manager(self, notifier):
        return RequestLifecycleManager(store=InMemoryRequestStore(), notifier=notifier, clock=lambda: NOW)

    def create(self, manager, timeframe='immediate', created=0):
        return manager.create_request('O+', NEW_YORK, timeframe, requester_id=1, now=minutes_ago(created))

    def test_create_request(self, manager):
        blood_request = self.create(manager)

        assert blood_request.id == 1
        assert blood_request.status == 'PENDING'
        assert blood_request.urgency_band == 'RED'
        assert blood_request.emergency_warning is True
        assert blood_request.viewed_at is None
        assert blood_request.location == 'POINT(-74.006 40.7128)'
        assert manager.get_request(1) is blood_request

    def test_create_request_validation(self, manager):
        with pytest.raises(ValidationError, match='timeframe is mandatory'):
            manager.create_request('O+', NEW_YORK, None, requester_id=1)
        with pytest.raises(ValidationError):
            manager.create_request('', NEW_YORK, 'immediate', requester_id=1)

    def test_unknown_request(self, manager):
        with pytest.raises(NotFoundError):
            manager.get_request(99)

    def test_unviewed_red_request_expires_after_ten_minutes(self, manager, notifier):
        blood_request = self.create(manager, created=21)

        assert manager.check_expiration(blood_request) is True
        assert blood_request.status == 'EXPIRED'
        assert blood_request.expires_at == NOW
        assert notifier.messages == [(blood_request.id, EXPIRED_MESSAGE)]

    def test_expiration_is_idempotent(self, manager, notifier):
        blood_request = self.create(manager, created=21)
        manager.check_expiration(blood_request)

        assert manager.check_expiration(blood_request) is True
        assert len(notifier.messages) == 1

    def test_fresh_request_does_not_expire(self, manager, notifier):
        assert manager.check_expiration(self.create(manager, created=0.1)) is False
        assert manager.check_expiration(self.create(manager, created=10)) is False
        assert notifier.messages == []

    @pytest.mark.parametrize('timeframe', ['within_24_hours', 'after_24_hours'])
    def test_only_red_requests_expire(self, manager, timeframe):
        blood_request = self.create(manager, timeframe=timeframe, created=60 * 48)

        assert manager.check_expiration(blood_request) is False
        assert blood_request.status == 'PENDING'

    def test_viewed_request_gets_twenty_minutes(self, manager):
        blood_request = self.create(manager, created=30)
        manager.mark_viewed(blood_request, now=minutes_ago(15))
        assert manager.check_expiration(blood_request) is False

        other = self.create(manager, created=30)
        manager.mark_viewed(other, now=minutes_ago(21))
        assert manager.check_expiration(other) is True

    def test_mark_viewed_keeps_first_view(self, manager):
        blood_request = self.create(manager)
        manager.mark_viewed(blood_request, now=minutes_ago(5))
        manager.mark_viewed(blood_request, now=minutes_ago(1))

        assert blood_request.viewed_at == minutes_ago(5)

    def test_answered_request_does_not_expire(self, manager):
        blood_request = self.create(manager, created=60)
        manager.transition(blood_request, 'DONOR_ACCEPTED')

        assert manager.check_expiration(blood_request) is False
        assert blood_request.status == 'DONOR_ACCEPTED'

    def test_illegal_transitions(self, manager):
        blood_request = self.create(manager)
        with pytest.raises(ValidationError, match='PENDING to COMPLETED'):
            manager.transition(blood_request, 'COMPLETED')

        manager.transition(blood_request, 'CANCELLED')
        for status in ('PENDING', 'EXPIRED', 'DONOR_ACCEPTED'):
            with pytest.raises(ValidationError):
                manager.transition(blood_request, status)


def make_user(mobile, **fields):
    values = {
        'username': mobile,
        'password': 'x',
        'mobile_number': mobile,
        'full_name': f'User {mobile}',
        'blood_group': 'O+',
        'email': f'{mobile}@example.com',
    }
    values.update(fields)
    return User.objects.create_user(**values)


def make_donor(mobile, location=NEW_YORK, **user_fields):
    user = make_user(mobile, user_type='donor', **user_fields)
    return Donor.objects.create(user=user, current_location=location)


@pytest.mark.django_db
class TestLifecycleWithDatabase:
    @pytest.fixture
    def requester(self):
        return make_user('9200000000', user_type='requester')

    @pytest.fixture
    def donor(self):
        return make_donor('9200000001')

    @pytest.fixture
    def notifier(self):
        return RecordingNotifier()

    @pytest.fixture
    def manager(self, notifier):
        return RequestLifecycleManager(notifier=notifier, clock=lambda: NOW)

    def create(self, manager, requester, timeframe='immediate', created=0):
        return manager.create_request('O+', NEW_YORK, timeframe, requester.id, now=minutes_ago(created))

    def test_full_donation(self, manager, requester, donor):
        blood_request = self.create(manager, requester)

        manager.accept(blood_request, donor, now=NOW + timedelta(minutes=5))
        manager.start(blood_request, now=NOW + timedelta(minutes=30))
        manager.complete(blood_request, now=NOW + timedelta(hours=2))

        blood_request.refresh_from_db()
        donor.refresh_from_db()
        assert blood_request.status == 'COMPLETED'
        assert blood_request.accepted_donor == donor
        assert blood_request.completed_at == NOW + timedelta(hours=2)
        assert donor.total_donations == 1
        assert donor.completed_donations == 1
        assert donor.last_donation_date == NOW.date()
        assert float(donor.eligibility_score) == 50
        assert float(donor.reliability_score) == 60
        assert list(donor.donation_history.values_list('status', flat=True).order_by('id')) == [
            'ACCEPTED', 'COMPLETED'
        ]

    def test_complete_requires_accepted_donor(self, manager, requester):
        blood_request = self.create(manager, requester)
        with pytest.raises(ValidationError, match='no accepted donor'):
            manager.complete(blood_request)

    def test_donor_cancellation_costs_reliability(self, manager, requester, donor):
        blood_request = self.create(manager, requester)
        manager.accept(blood_request, donor)
        manager.cancel(blood_request, by_donor=True)

        donor.refresh_from_db()
        assert BloodRequest.objects.get(pk=blood_request.pk).status == 'CANCELLED'
        assert donor.cancelled_donations == 1
        assert float(donor.reliability_score) == 35

    def test_requester_cancellation_leaves_donor_alone(self, manager, requester, donor):
        blood_request = self.create(manager, requester)
        manager.accept(blood_request, donor)
        manager.cancel(blood_request)

        donor.refresh_from_db()
        assert donor.cancelled_donations == 0
        assert float(donor.reliability_score) == 50

    def test_history_entries_are_immutable(self, manager, requester, donor):
        manager.accept(self.create(manager, requester), donor)
        entry = DonationHistory.objects.get(donor=donor)

        entry.status = 'COMPLETED'
        with pytest.raises(ValueError):
            entry.save()

    def test_expire_due_requests(self, manager, notifier, requester):
        stale = self.create(manager, requester, created=30)
        self.create(manager, requester, created=2)
        self.create(manager, requester, timeframe='within_24_hours', created=600)

        assert manager.expire_due_requests() == 1
        assert BloodRequest.objects.get(pk=stale.pk).status == 'EXPIRED'
        assert notifier.messages == [(stale.pk, EXPIRED_MESSAGE)]

    def test_email_notifier_tells_requester(self, requester, mailoutbox):
        manager = RequestLifecycleManager(notifier=EmailNotifier(), clock=lambda: NOW)
        blood_request = self.create(manager, requester, created=30)

        assert manager.check_expiration(blood_request) is True
        assert len(mailoutbox) == 1
        assert mailoutbox[0].to == [requester.email]
        assert EXPIRED_MESSAGE in mailoutbox[0].subject


@pytest.mark.django_db
class TestDonorNotifications:
    @pytest.fixture
    def requester(self):
        return make_user('9300000000', user_type='requester')

    @pytest.fixture
    def donors(self):
        early_bird = make_donor('9300000001')
        night_owl = make_donor('9300000002', quiet_hours_start=time(22), quiet_hours_end=time(6))
        return [early_bird, night_owl]

    @pytest.fixture
    def manager(self):
        return RequestLifecycleManager(notifier=RecordingNotifier(), clock=lambda: NOW)

    def dispatch(self, manager, requester, timeframe, now=NOW):
        blood_request = manager.create_request('O+', NEW_YORK, timeframe, requester.id, now=now)
        ranking = DonorRankingEngine(traffic_provider=FailingTraffic()).rank('O+', NEW_YORK)
        return blood_request, dispatch_request(blood_request, ranking, now=now)

    def test_red_request_reaches_everyone(self, manager, requester, donors, mailoutbox):
        late = NOW.replace(hour=23)
        blood_request, notifications = self.dispatch(manager, requester, 'immediate', now=late)

        assert [n.donor for n in notifications] == donors
        assert all(n.timeout_at == late + timedelta(minutes=10) for n in notifications)
        assert len(mailoutbox) == 2
        assert mailoutbox[0].subject.startswith('🚨 EMERGENCY')

    def test_quiet_hours_hold_back_pink_requests(self, manager, requester, donors, mailoutbox):
        late = NOW.replace(hour=23)
        blood_request, notifications = self.dispatch(manager, requester, 'within_24_hours', now=late)

        assert [n.donor for n in notifications] == donors[:1]
        assert notifications[0].timeout_at == late + timedelta(minutes=30)
        assert len(mailoutbox) == 1

    def test_white_request_has_no_timeout(self, manager, requester, donors):
        _, notifications = self.dispatch(manager, requester, 'after_24_hours')
        assert all(n.timeout_at is None for n in notifications)

    def test_view_starts_response_window(self, manager, requester, donors):
        blood_request, notifications = self.dispatch(manager, requester, 'immediate')
        viewed = NOW + timedelta(minutes=3)

        manager.record_view(notifications[0], now=viewed)

        notification = DonorNotification.objects.get(pk=notifications[0].pk)
        assert notification.viewed_at == viewed
        assert notification.timeout_at == viewed + timedelta(minutes=20)
        assert BloodRequest.objects.get(pk=blood_request.pk).viewed_at == viewed

    def test_decline(self, manager, requester, donors):
        _, notifications = self.dispatch(manager, requester, 'immediate')

        manager.record_response(notifications[0], 'DECLINED', now=NOW + timedelta(minutes=1))

        donors[0].refresh_from_db()
        assert notifications[0].response_type == 'DECLINED'
        assert float(donors[0].reliability_score) == 48

    def test_accept_closes_other_notifications(self, manager, requester, donors, mailoutbox):
        blood_request, notifications = self.dispatch(manager, requester, 'immediate')
        mailoutbox.clear()

        manager.record_response(notifications[0], 'ACCEPTED', now=NOW + timedelta(minutes=1))

        blood_request.refresh_from_db()
        assert blood_request.status == 'DONOR_ACCEPTED'
        assert blood_request.accepted_donor == donors[0]
        assert DonorNotification.objects.get(pk=notifications[1].pk).is_expired is True
        assert [mail.to for mail in mailoutbox] == [[donors[1].user.email]]

    def test_cannot_answer_twice_or_late(self, manager, requester, donors):
        _, notifications = self.dispatch(manager, requester, 'immediate')

        manager.record_response(notifications[0], 'FUTURE_DONATION', now=NOW + timedelta(minutes=1))
        with pytest.raises(ValidationError, match='already been answered'):
            manager.record_response(notifications[0], 'DECLINED', now=NOW + timedelta(minutes=2))

        with pytest.raises(ValidationError, match='expired'):
            manager.record_response(notifications[1], 'DECLINED', now=NOW + timedelta(minutes=11))

        with pytest.raises(ValidationError, match='Invalid response type'):
            manager.record_response(notifications[1], 'MAYBE')

    def test_stale_notifications_count_as_ignored(self, manager, requester, donors):
        _, notifications = self.dispatch(manager, requester, 'immediate')

        assert manager.expire_stale_notifications(now=NOW + timedelta(minutes=5)) == 0
        assert manager.expire_stale_notifications(now=NOW + timedelta(minutes=11)) == 2

        notification = DonorNotification.objects.get(pk=notifications[0].pk)
        donors[0].refresh_from_db()
        assert notification.is_expired is True
        assert notification.response_type == 'IGNORED'
        assert float(donors[0].reliability_score) == 45


@pytest.mark.django_db
def test_expire_requests_command(mailoutbox):
    requester = make_user('9400000000', user_type='requester')
    manager = RequestLifecycleManager(notifier=RecordingNotifier())
    stale = manager.create_request(
        'O+', NEW_YORK, 'immediate', requester.id, now=timezone.now() - timedelta(minutes=30)
    )
    out = StringIO()

    call_command('expire_requests', stdout=out)

    assert 'Expired 1 requests and 0 donor notifications' in out.getvalue()
    assert BloodRequest.objects.get(pk=stale.pk).status == 'EXPIRED'
    assert len(mailoutbox) == 1


@pytest.mark.django_db
class TestBloodRequestAPI:
    @pytest.fixture(autouse=True)
    def no_traffic_key(self, settings):
        settings.CARE_CIRCLE = {**settings.CARE_CIRCLE, 'GOOGLE_MAPS_API_KEY': ''}

    def test_create_and_notify(self):
        requester = make_user('9500000000', user_type='requester')
        make_donor('9500000001')
        client = APIClient()
        client.force_authenticate(user=requester)

        response = client.post('/api/requests/', {
            'blood_group': 'O+',
            'required_timeframe': 'within_2_hours',
            'latitude': 40.7128,
            'longitude': -74.006,
            'hospital_name': 'City General',
        }, format='json')

        assert response.status_code == 201
        assert response.data['request']['urgency_band'] == 'RED'
        assert response.data['request']['coordinates'] == {'lng': -74.006, 'lat': 40.7128}
        assert response.data['notifications_sent'] == 1

    def test_timeframe_is_required(self):
        client = APIClient()
        client.force_authenticate(user=make_user('9500000000'))

        response = client.post('/api/requests/', {
            'blood_group': 'O+', 'latitude': 40.7128, 'longitude': -74.006,
        }, format='json')
        assert response.status_code == 400

    def test_donor_accepts_then_requester_completes(self):
        requester = make_user('9500000000', user_type='requester')
        donor = make_donor('9500000001')
        manager = RequestLifecycleManager(notifier=RecordingNotifier())
        blood_request = manager.create_request('O+', NEW_YORK, 'immediate', requester.id)
        ranking = DonorRankingEngine(traffic_provider=FailingTraffic()).rank('O+', NEW_YORK)
        notification = dispatch_request(blood_request, ranking)[0]

        donor_client = APIClient()
        donor_client.force_authenticate(user=donor.user)
        assert donor_client.get('/api/requests/notifications/').data['count'] == 1

        response = donor_client.post(
            f'/api/requests/notifications/{notification.id}/respond/', {'response': 'ACCEPTED'}, format='json'
        )
        assert response.status_code == 200
        assert response.data['request_status'] == 'DONOR_ACCEPTED'

        requester_client = APIClient()
        requester_client.force_authenticate(user=requester)
        assert donor_client.post(f'/api/requests/{blood_request.id}/start/').status_code == 403
        assert requester_client.post(f'/api/requests/{blood_request.id}/start/').data['new_status'] == 'IN_PROGRESS'
        assert requester_client.post(f'/api/requests/{blood_request.id}/complete/').data['new_status'] == 'COMPLETED'

        history = requester_client.get('/api/requests/history/').data
        assert {entry['status'] for entry in history['accepted']} == {'ACCEPTED', 'COMPLETED'}

    def test_illegal_transition_is_rejected(self):
        requester = make_user('9500000000', user_type='requester')
        manager = RequestLifecycleManager(notifier=RecordingNotifier())
        blood_request = manager.create_request('O+', NEW_YORK, 'immediate', requester.id)
        client = APIClient()
        client.force_authenticate(user=requester)

        response = client.post(f'/api/requests/{blood_request.id}/start/')

        assert response.status_code == 400
        assert 'PENDING to IN_PROGRESS' in response.data['error']


@pytest.mark.django_db
class TestAdminGuards:
    def test_lifecycle_fields_are_read_only(self, rf, admin_user):
        request = rf.get('/admin/blood_requests/bloodrequest/')
        request.user = admin_user

        readonly = admin.site._registry[BloodRequest].get_readonly_fields(request)

        assert {'status', 'accepted_donor', 'viewed_at', 'expires_at', 'completed_at'} <= set(readonly)

    def test_ledger_entries_cannot_be_deleted(self, admin_client):
        donor = make_donor('9600000001')
        reliability_scorer.record_action(donor, 'COMPLETED', now=NOW)
        entry = DonationHistory.objects.get(donor=donor)

        response = admin_client.post(f'/admin/blood_requests/donationhistory/{entry.pk}/delete/', {'post': 'yes'})

        assert response.status_code == 403
        assert DonationHistory.objects.filter(pk=entry.pk).exists()
