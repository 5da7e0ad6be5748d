from datetime import date, datetime, timedelta, timezone as dt_timezone

import logging

import pytest
import requests
from rest_framework.test import APIClient

from accounts.models import User
from carecircle.exceptions import ExternalServiceError, ParseError, ValidationError

from .eligibility import EligibilityScorer
from .geo import Coordinate, coerce_coordinate, format_point, haversine_km, parse_point
from .matching import (
    CompositeRanking,
    DonorRankingEngine,
    LegacyRanking,
    UIHeuristicRanking,
    filter_candidates,
    round_half_up,
)
from .models import Donor
from .reliability import ReliabilityScorer
from .timeutils import days_difference, months_difference
from .traffic import GoogleDistanceMatrixProvider

NOW = datetime(2026, 10, 19, tzinfo=dt_timezone.utc)

NEW_YORK = 'POINT(-74.0060 40.7128)'


def days_ago(days):
    return (NOW - timedelta(days=days)).date()


class FailingTraffic:
    def eta_minutes(self, origin, destination):
        raise ExternalServiceError('Traffic API key not configured')


class TimingOutTraffic:
    def eta_minutes(self, origin, destination):
        raise TimeoutError('slow')


class FixedTraffic:
    def __init__(self, minutes):
        self.minutes = minutes

    def eta_minutes(self, origin, destination):
        return self.minutes


def candidate(donor_id, location=NEW_YORK, blood_group='O+', eligibility=100, reliability=50, **extra):
    record = {
        'id': donor_id,
        'user_id': donor_id + 100,
        'full_name': f'Donor {donor_id}',
        'blood_group': blood_group,
        'location': location,
        'eligibility_score': eligibility,
        'reliability_score': reliability,
    }
    record.update(extra)
    return record


class TestTimeUtils:
    def test_same_instant_is_zero_days(self):
        assert days_difference(NOW, NOW) == 0

    def test_partial_days_round_up(self):
        assert days_difference(NOW, NOW - timedelta(hours=1)) == 1
        assert days_difference(NOW - timedelta(days=2, hours=3), NOW) == 3

    def test_dates_and_iso_strings(self):
        assert days_difference(NOW, date(2026, 10, 9)) == 10
        assert days_difference('2026-10-19T00:00:00Z', '2026-10-18') == 1

    def test_calendar_months(self):
        assert months_difference(NOW, datetime(2026, 2, 28, tzinfo=dt_timezone.utc)) == 8
        assert months_difference(NOW, datetime(2025, 10, 31, tzinfo=dt_timezone.utc)) == 12
        assert months_difference(datetime(2026, 1, 1, tzinfo=dt_timezone.utc), NOW) == -9


class TestEligibilityScorer:
    scorer = EligibilityScorer(clock=lambda: NOW)

    def test_no_history_is_fully_eligible(self):
        assert self.scorer.score({'medical_history': {}}) == 100

    @pytest.mark.parametrize('days, expected', [
        (50, 50),
        (89, 50),
        (90, 75),
        (100, 75),
        (119, 75),
        (120, 100),
        (365, 100),
    ])
    def test_recent_donation_penalties(self, days, expected):
        assert self.scorer.score({'last_donation_date': days_ago(days)}) == expected

    def test_medical_penalties(self):
        assert self.scorer.score({'medical_history': {'diabetes': True}}) == 85
        assert self.scorer.score({'medical_history': {'seizures': True}}) == 80
        assert self.scorer.score({'medical_history': {'diabetes': False, 'heartDisease': True}}) == 100

    def test_penalties_stack(self):
        donor = {
            'last_donation_date': days_ago(10),
            'medical_history': {'diabetes': True, 'seizures': True},
        }
        assert self.scorer.score(donor) == 15

    def test_camel_case_records(self):
        donor = {'lastDonationDate': days_ago(100).isoformat(), 'medicalHistory': {'seizures': True}}
        assert self.scorer.score(donor) == 55

    def test_status_messages(self):
        assert self.scorer.status({})['message'] == 'Fully eligible to donate'
        assert self.scorer.status({'medical_history': {'diabetes': True}})['message'] == 'Eligible with some restrictions'
        limited = self.scorer.status({'last_donation_date': days_ago(1), 'medical_history': {'seizures': True}})
        assert limited == {'score': 30, 'eligible': True, 'message': 'Limited eligibility'}


class TestReliabilityScorer:
    scorer = ReliabilityScorer(clock=lambda: NOW)

    def months_ago(self, months):
        return datetime(NOW.year, NOW.month - months, NOW.day, tzinfo=dt_timezone.utc)

    def test_empty_history(self):
        assert self.scorer.score([]) == 50

    def test_single_actions(self):
        assert self.scorer.score([{'status': 'COMPLETED', 'completed_at': NOW}]) == 60
        assert self.scorer.score([{'status': 'CANCELLED', 'cancelled_at': NOW}]) == 35
        assert self.scorer.score([{'status': 'PENDING', 'response_type': 'IGNORED', 'accepted_at': NOW}]) == 45
        assert self.scorer.score([{'status': 'PENDING', 'response_type': 'DECLINED', 'accepted_at': NOW}]) == 48

    def test_old_actions_count_half(self):
        assert self.scorer.score([{'status': 'COMPLETED', 'completed_at': self.months_ago(8)}]) == 55
        assert self.scorer.score([{'status': 'COMPLETED', 'completed_at': self.months_ago(6)}]) == 60

    def test_undated_entries_count_half(self):
        assert self.scorer.score([{'status': 'CANCELLED'}]) == 42.5
        assert self.scorer.score([{'status': 'PENDING', 'response_type': 'IGNORED'}]) == 47.5

    def test_mixed_history(self):
        history = [
            {'status': 'COMPLETED', 'completed_at': self.months_ago(1)},
            {'status': 'COMPLETED', 'completed_at': self.months_ago(8)},
            {'status': 'CANCELLED', 'cancelled_at': self.months_ago(1)},
        ]
        assert self.scorer.score(history) == 50

    def test_camel_case_entries(self):
        history = [{'status': 'PENDING', 'responseType': 'IGNORED', 'acceptedAt': NOW.isoformat()}]
        assert self.scorer.score(history) == 45

    def test_clamped_once_at_the_end(self):
        assert self.scorer.score([{'status': 'CANCELLED', 'cancelled_at': NOW}] * 20) == 0
        assert self.scorer.score([{'status': 'COMPLETED', 'completed_at': NOW}] * 20) == 100

        # 4 cancellations take the running total below zero before the completions land
        history = [{'status': 'CANCELLED', 'cancelled_at': NOW}] * 4 + \
                  [{'status': 'COMPLETED', 'completed_at': NOW}] * 3
        assert self.scorer.score(history) == 20

    @pytest.mark.parametrize('score, level', [
        (95, 'EXCELLENT'),
        (80, 'EXCELLENT'),
        (60, 'GOOD'),
        (45, 'FAIR'),
        (20, 'POOR'),
        (19.5, 'VERY_POOR'),
    ])
    def test_levels(self, score, level):
        assert self.scorer.status(score)['level'] == level


class TestGeo:
    def test_parse_point_is_longitude_first(self):
        point = parse_point('POINT(-74.0060 40.7128)')
        assert point == Coordinate(lng=-74.006, lat=40.7128)

    @pytest.mark.parametrize('text', ['', 'POINT(1)', 'POINT(a b)', '40.7 -74.0', None])
    def test_parse_point_rejects_garbage(self, text):
        with pytest.raises(ParseError, match='Invalid POINT string format'):
            parse_point(text)

    def test_format_point(self):
        assert format_point({'lat': 40.7128, 'lng': -74.006}) == 'POINT(-74.006 40.7128)'

    def test_coerce_coordinate(self):
        expected = Coordinate(lng=77.59, lat=12.97)
        assert coerce_coordinate({'longitude': 77.59, 'latitude': 12.97}) == expected
        assert coerce_coordinate((77.59, 12.97)) == expected
        with pytest.raises(ValidationError):
            coerce_coordinate({'lat': 12.97})

    def test_haversine(self):
        new_york = parse_point(NEW_YORK)
        los_angeles = Coordinate(lng=-118.2437, lat=34.0522)

        assert haversine_km(new_york, new_york) == 0
        assert 3900 < haversine_km(new_york, los_angeles) < 3980


class TestRankingStrategies:
    def test_composite_range(self):
        strategy = CompositeRanking()
        best = strategy.score(100, 100, 0, 0)
        worst = strategy.score(0, 0, 5000, 5000)

        assert best == pytest.approx(1.0)
        assert 0 < worst < 0.01

    def test_composite_monotonic(self):
        strategy = CompositeRanking()
        base = strategy.score(80, 60, 5, 15)

        assert strategy.score(90, 60, 5, 15) > base
        assert strategy.score(80, 70, 5, 15) > base
        assert strategy.score(80, 60, 2, 15) > base
        assert strategy.score(80, 60, 5, 10) > base

    def test_ui_heuristic_defaults(self):
        strategy = UIHeuristicRanking()
        parts = strategy.breakdown(0, 0, 1, 5)

        assert parts == {'distance': 95, 'eta': 90, 'eligibility': 80, 'reliability': 50}
        assert strategy.score(0, 0, 1, 5) == pytest.approx(95 * 0.3 + 90 * 0.2 + 50 * 0.3 + 80 * 0.2)

    def test_legacy_prefers_close_reliable_donor(self):
        legacy = LegacyRanking()
        assert legacy.score(1, 90) > legacy.score(5, 50)

    def test_legacy_prefers_reliability_over_proximity(self):
        legacy = LegacyRanking()
        assert legacy.score(10, 95) > legacy.score(0.5, 30)

    def test_legacy_sort_donors(self):
        donors = [
            {'id': 'near', 'distance': 0.5, 'reliability': 30},
            {'id': 'far', 'distance': 10, 'reliability': 95},
        ]
        ranked = LegacyRanking().sort_donors(donors)

        assert [donor['id'] for donor in ranked] == ['far', 'near']
        assert ranked[0]['score'] == pytest.approx(0.3 / 11 + 0.665)


def test_filter_candidates():
    donors = [
        candidate(1),
        candidate(2, blood_group='A+'),
        candidate(3, eligibility=0),
        candidate(4, is_active=False),
        candidate(5, notificationEnabled=False),
    ]
    assert [profile.id for profile in filter_candidates(donors, 'O+')] == [1]


class TestDonorRankingEngine:
    def engine(self, traffic=None, **kwargs):
        return DonorRankingEngine(
            traffic_provider=traffic or FixedTraffic(0), average_speed_kmh=40, max_workers=4, **kwargs
        )

    def test_requires_blood_group_and_location(self):
        with pytest.raises(ValidationError, match='Blood group and location are required'):
            self.engine().rank('', NEW_YORK, candidates=[])
        with pytest.raises(ValidationError):
            self.engine().rank('O+', None, candidates=[])

    def test_bad_location_text(self):
        with pytest.raises(ParseError):
            self.engine().rank('O+', 'downtown', candidates=[candidate(1)])

    def test_no_candidates(self):
        result = self.engine().rank('O+', NEW_YORK, candidates=[])
        assert result.best_donor is None
        assert result.all_donors == []

    def test_skips_wrong_group_and_unlocated_donors(self):
        donors = [candidate(1, blood_group='B+'), candidate(2, location=None), candidate(3)]
        result = self.engine().rank('O+', NEW_YORK, candidates=donors)

        assert [donor.id for donor in result.all_donors] == [3]

    def test_scores_colocated_donor(self):
        result = self.engine().rank('O+', parse_point(NEW_YORK), candidates=[candidate(1, reliability=80)])
        donor = result.best_donor

        assert donor.distance == 0
        assert donor.eta == 0
        assert donor.composite_score == pytest.approx(0.94)
        assert donor.location == parse_point(NEW_YORK)

    def test_orders_best_first(self):
        donors = [
            candidate(1, location='POINT(-74.2000 40.9000)', reliability=40),
            candidate(2, reliability=90),
            candidate(3, location='POINT(-74.0100 40.7200)', reliability=60),
        ]
        result = self.engine(traffic=FailingTraffic()).rank('O+', NEW_YORK, candidates=donors)

        assert [donor.id for donor in result.all_donors] == [2, 3, 1]
        assert result.best_donor.id == 2
        scores = [donor.composite_score for donor in result.all_donors]
        assert scores == sorted(scores, reverse=True)

    def test_ties_keep_retrieval_order(self):
        engine = self.engine()
        assert [d.id for d in engine.rank('O+', NEW_YORK, candidates=[candidate(1), candidate(2)]).all_donors] == [1, 2]
        assert [d.id for d in engine.rank('O+', NEW_YORK, candidates=[candidate(2), candidate(1)]).all_donors] == [2, 1]

    def test_traffic_failure_falls_back_to_average_speed(self):
        location = 'POINT(-74.1000 40.8000)'
        result = self.engine(traffic=FailingTraffic()).rank('O+', NEW_YORK, candidates=[candidate(1, location=location)])
        distance = haversine_km(parse_point(location), parse_point(NEW_YORK))

        assert result.best_donor.distance == round_half_up(distance, 2)
        assert result.best_donor.eta == round_half_up(distance / 40 * 60)
        assert result.best_donor.eta_source == 'average_speed'

    def test_traffic_eta_is_used_when_available(self):
        result = self.engine(traffic=FixedTraffic(17.4)).rank(
            'O+', NEW_YORK, candidates=[candidate(1, location='POINT(-74.1000 40.8000)')]
        )
        assert result.best_donor.eta == 17

    def test_unexpected_traffic_error_falls_back(self):
        location = 'POINT(-74.1000 40.8000)'
        result = self.engine(traffic=TimingOutTraffic()).rank('O+', NEW_YORK, candidates=[candidate(1, location=location)])
        distance = haversine_km(parse_point(location), parse_point(NEW_YORK))

        assert result.best_donor.eta == round_half_up(distance / 40 * 60)
        assert result.best_donor.eta_source == 'average_speed'

    def test_malformed_traffic_response_falls_back(self):
        session = FakeSession(FakeResponse(distance_matrix({'status': 'OK', 'duration': {'text': '5 mins'}})))
        provider = GoogleDistanceMatrixProvider(api_key='key', session=session)
        result = self.engine(traffic=provider).rank(
            'O+', NEW_YORK, candidates=[candidate(1, location='POINT(-74.1000 40.8000)')]
        )

        assert result.best_donor.eta_source == 'average_speed'
        assert result.best_donor.eta > 0

    def test_half_minute_eta_rounds_up(self):
        result = self.engine(traffic=FixedTraffic(2.5)).rank(
            'O+', NEW_YORK, candidates=[candidate(1, location='POINT(-74.1000 40.8000)')]
        )
        assert result.best_donor.eta == 3
        assert result.best_donor.eta_source == 'traffic'

    def test_round_half_up(self):
        assert round_half_up(0.5) == 1
        assert round_half_up(2.5) == 3
        assert round_half_up(2.345, 2) == 2.35
        assert round_half_up(0.123456, 4) == 0.1235

    def test_traffic_fallback_is_reported_once(self, caplog):
        donors = [candidate(donor_id, location='POINT(-74.1000 40.8000)') for donor_id in (1, 2, 3)]

        with caplog.at_level(logging.WARNING, logger='donors.matching'):
            self.engine(traffic=FailingTraffic()).rank('O+', NEW_YORK, candidates=donors)

        warnings = [record for record in caplog.records if record.name == 'donors.matching']
        assert len(warnings) == 1
        assert 'for 3 of 3 donors' in warnings[0].getMessage()

    def test_as_dict(self):
        data = self.engine().rank('O+', NEW_YORK, candidates=[candidate(1)]).as_dict()

        assert data['best_donor']['id'] == 1
        assert data['best_donor']['location'] == {'lng': -74.006, 'lat': 40.7128}
        assert len(data['all_donors']) == 1


class FakeResponse:
    def __init__(self, payload, status_code=200):
        self.payload = payload
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f'{self.status_code} error')

    def json(self):
        return self.payload


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def get(self, url, params=None, timeout=None):
        self.calls.append(params)
        if self.error:
            raise self.error
        return self.response


def distance_matrix(element, status='OK'):
    return {'status': status, 'rows': [{'elements': [element]}]}


class TestGoogleDistanceMatrixProvider:
    origin = Coordinate(lng=-74.006, lat=40.7128)
    destination = Coordinate(lng=-74.1, lat=40.8)

    def test_missing_key(self):
        provider = GoogleDistanceMatrixProvider(api_key='', session=FakeSession())
        with pytest.raises(ExternalServiceError, match='not configured'):
            provider.eta_minutes(self.origin, self.destination)

    def test_prefers_duration_in_traffic(self):
        session = FakeSession(FakeResponse(distance_matrix({
            'status': 'OK', 'duration': {'value': 600}, 'duration_in_traffic': {'value': 900},
        })))
        provider = GoogleDistanceMatrixProvider(api_key='key', timeout=2, session=session)

        assert provider.eta_minutes(self.origin, self.destination) == 15
        assert session.calls[0]['origins'] == '40.7128,-74.006'
        assert session.calls[0]['departure_time'] == 'now'

    def test_plain_duration(self):
        session = FakeSession(FakeResponse(distance_matrix({'status': 'OK', 'duration': {'value': 300}})))
        provider = GoogleDistanceMatrixProvider(api_key='key', session=session)
        assert provider.eta_minutes(self.origin, self.destination) == 5

    def test_api_error_status(self):
        session = FakeSession(FakeResponse(distance_matrix({'status': 'ZERO_RESULTS'})))
        provider = GoogleDistanceMatrixProvider(api_key='key', session=session)
        with pytest.raises(ExternalServiceError):
            provider.eta_minutes(self.origin, self.destination)

    def test_network_error(self):
        session = FakeSession(error=requests.ConnectionError('down'))
        provider = GoogleDistanceMatrixProvider(api_key='key', session=session)
        with pytest.raises(ExternalServiceError, match='request failed'):
            provider.eta_minutes(self.origin, self.destination)

    @pytest.mark.parametrize('duration', [{'text': '5 mins'}, {'value': 'soon'}, {'value': True}, None])
    def test_unusable_duration(self, duration):
        session = FakeSession(FakeResponse(distance_matrix({'status': 'OK', 'duration': duration})))
        provider = GoogleDistanceMatrixProvider(api_key='key', session=session)
        with pytest.raises(ExternalServiceError, match='no duration'):
            provider.eta_minutes(self.origin, self.destination)

    def test_each_lookup_gets_its_own_connection(self, monkeypatch):
        calls = []

        def fake_get(url, params=None, timeout=None):
            calls.append(params['destinations'])
            return FakeResponse(distance_matrix({'status': 'OK', 'duration': {'value': 120}}))

        monkeypatch.setattr('donors.traffic.requests.get', fake_get)
        provider = GoogleDistanceMatrixProvider(api_key='key')

        assert provider.session is None
        assert provider.eta_minutes(self.origin, self.destination) == 2
        assert calls == ['40.8,-74.1']


def make_donor(mobile, blood_group='O+', location=NEW_YORK, **fields):
    user = User.objects.create_user(
        username=mobile, password='x', mobile_number=mobile, full_name=f'Donor {mobile}',
        blood_group=blood_group, user_type='donor', email=f'{mobile}@example.com',
    )
    return Donor.objects.create(user=user, current_location=location or '', **fields)


@pytest.mark.django_db
class TestDonorModels:
    def test_eligible_for(self):
        first = make_donor('9100000001')
        make_donor('9100000002', blood_group='A+')
        make_donor('9100000003', eligibility_score=0)
        muted = make_donor('9100000004')
        muted.user.notification_enabled = False
        muted.user.save()
        inactive = make_donor('9100000005')
        inactive.deactivate()
        last = make_donor('9100000006')

        assert list(Donor.objects.eligible_for('O+')) == [first, last]

    def test_location_round_trip(self):
        donor = make_donor('9100000001', location='')
        assert donor.location is None

        donor.set_location(Coordinate(lng=77.59, lat=12.97))
        donor.save()
        donor.refresh_from_db()
        assert donor.location == Coordinate(lng=77.59, lat=12.97)

    def test_rank_reads_eligible_donors(self):
        make_donor('9100000001', reliability_score=90)
        make_donor('9100000002', blood_group='A+')
        engine = DonorRankingEngine(traffic_provider=FailingTraffic())

        result = engine.rank('O+', NEW_YORK)

        assert len(result.all_donors) == 1
        assert result.best_donor.full_name == 'Donor 9100000001'
        assert result.best_donor.reliability_score == 90

    def test_recalculate_eligibility(self):
        donor = make_donor('9100000001', last_donation_date=days_ago(30))
        donor.user.medical_history = {'diabetes': True}
        donor.user.save()

        assert EligibilityScorer().recalculate_and_update(donor, now=NOW) == 35
        donor.refresh_from_db()
        assert float(donor.eligibility_score) == 35

    def test_record_action_appends_and_rescores(self):
        donor = make_donor('9100000001')
        scorer = ReliabilityScorer()

        scorer.record_action(donor, 'COMPLETED', now=NOW)
        scorer.record_action(donor, 'PENDING', response_type='DECLINED', now=NOW)

        donor.refresh_from_db()
        assert float(donor.reliability_score) == 58
        assert donor.donation_history.count() == 2


@pytest.mark.django_db
class TestDonorAPI:
    def test_search(self, settings):
        settings.CARE_CIRCLE = {**settings.CARE_CIRCLE, 'GOOGLE_MAPS_API_KEY': ''}
        make_donor('9100000001', reliability_score=80)
        make_donor('9100000002', location='POINT(-74.3000 40.9000)')
        client = APIClient()
        client.force_authenticate(user=User.objects.get(mobile_number='9100000001'))

        response = client.get('/api/donors/search/', {
            'blood_group': 'O+', 'latitude': 40.7128, 'longitude': -74.006,
        })

        assert response.status_code == 200
        assert response.data['best_donor']['full_name'] == 'Donor 9100000001'
        assert len(response.data['all_donors']) == 2

    def test_search_requires_coordinates(self):
        user = make_donor('9100000001').user
        client = APIClient()
        client.force_authenticate(user=user)

        response = client.get('/api/donors/search/', {'blood_group': 'O+'})
        assert response.status_code == 400

    def test_update_location_only_for_self(self):
        donor = make_donor('9100000001', location='')
        other = make_donor('9100000002')
        client = APIClient()
        client.force_authenticate(user=other.user)

        response = client.put(f'/api/donors/{donor.id}/location/', {'latitude': 12.97, 'longitude': 77.59}, format='json')
        assert response.status_code == 403

        client.force_authenticate(user=donor.user)
        response = client.put(f'/api/donors/{donor.id}/location/', {'latitude': 12.97, 'longitude': 77.59}, format='json')
        assert response.status_code == 200
        donor.refresh_from_db()
        assert donor.current_location == 'POINT(77.59 12.97)'

    def test_map_donors_is_public(self):
        make_donor('9100000001')
        make_donor('9100000002', location='')

        response = APIClient().get('/api/donors/map/')

        assert response.status_code == 200
        assert [d['coordinates'] for d in response.data['donors']] == [{'lng': -74.006, 'lat': 40.7128}]

    def test_list_filters(self):
        keeper = make_donor('9100000001', reliability_score=75)
        make_donor('9100000002', blood_group='A+', reliability_score=75)
        make_donor('9100000003', reliability_score=40)
        client = APIClient()
        client.force_authenticate(user=keeper.user)

        response = client.get('/api/donors/', {'blood_group': 'O+', 'min_reliability': 60})

        assert response.status_code == 200
        assert [d['id'] for d in response.data['donors']] == [keeper.id]
