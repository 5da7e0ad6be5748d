"""
Donor ranking.

Three weighting schemes are in use and are kept apart on purpose:

* ``CompositeRanking``  - distance 25%, ETA 20%, eligibility 25%,
  reliability 30%, every term normalised to 0-1. Used for request matching.
* ``UIHeuristicRanking`` - distance 30%, ETA 20%, reliability 30%,
  eligibility 20%, on a 0-100 scale. Used by the map's "best donor" button.
* ``LegacyRanking`` - 30% distance, 70% reliability over caller-supplied
  ``distance`` and ``reliability`` values.

The 25/20/25/30 and 30/20/30/20 weightings disagree; which one is right has
not been settled, so neither replaces the other.
"""
import logging
import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, List, Optional

from carecircle.conf import get_setting
from carecircle.exceptions import ExternalServiceError, ValidationError

from .geo import Coordinate, coerce_coordinate, haversine_km
from .profiles import DonorProfile
from .traffic import GoogleDistanceMatrixProvider

logger = logging.getLogger(__name__)


@dataclass
class RankedDonor:
    id: Any
    user_id: Any
    full_name: str
    blood_group: str
    eligibility_score: float
    reliability_score: float
    distance: float
    eta: float
    composite_score: float
    location: Optional[Coordinate] = None
    breakdown: dict = field(default_factory=dict)
    eta_source: str = 'traffic'

    def as_dict(self):
        data = asdict(self)
        data['location'] = self.location.as_dict() if self.location else None
        return data


@dataclass
class RankingResult:
    best_donor: Optional[RankedDonor]
    all_donors: List[RankedDonor]

    def as_dict(self):
        return {
            'best_donor': self.best_donor.as_dict() if self.best_donor else None,
            'all_donors': [donor.as_dict() for donor in self.all_donors],
        }


class CompositeRanking:
    name = 'composite'

    weights = {
        'distance': 0.25,
        'eta': 0.20,
        'eligibility': 0.25,
        'reliability': 0.30,
    }

    def breakdown(self, eligibility_score, reliability_score, distance, eta):
        return {
            'distance': 1 / (1 + distance / 10),
            'eta': 1 / (1 + eta / 30),
            'eligibility': eligibility_score / 100,
            'reliability': reliability_score / 100,
        }

    def score(self, eligibility_score, reliability_score, distance, eta):
        parts = self.breakdown(eligibility_score, reliability_score, distance, eta)
        return sum(parts[key] * weight for key, weight in self.weights.items())


class UIHeuristicRanking(CompositeRanking):
    name = 'ui_heuristic'

    weights = {
        'distance': 0.30,
        'eta': 0.20,
        'reliability': 0.30,
        'eligibility': 0.20,
    }

    default_reliability = 50
    default_eligibility = 80

    def breakdown(self, eligibility_score, reliability_score, distance, eta):
        return {
            'distance': max(0, 100 - distance * 5),
            'eta': max(0, 100 - eta * 2),
            'eligibility': eligibility_score or self.default_eligibility,
            'reliability': reliability_score or self.default_reliability,
        }


class LegacyRanking:
    name = 'legacy'

    def score(self, distance, reliability):
        distance_score = 1 / (distance + 1)
        reliability_score = reliability / 100
        return distance_score * 0.3 + reliability_score * 0.7

    def sort_donors(self, donors):
        """Score dicts carrying ``distance`` and ``reliability``; best first"""
        scored = [
            {**donor, 'score': self.score(donor['distance'], donor['reliability'])}
            for donor in donors
        ]
        return sorted(scored, key=lambda donor: donor['score'], reverse=True)


def round_half_up(value, places=0):
    """Round halves away from zero, e.g. a 2.5 minute ETA becomes 3"""
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def filter_candidates(donors, blood_group):
    """In-memory version of ``Donor.objects.eligible_for``"""
    profiles = (DonorProfile.from_record(donor) for donor in donors)
    return [
        profile for profile in profiles
        if profile.blood_group == blood_group
        and profile.is_active
        and profile.notification_enabled
        and profile.eligibility_score > 0
    ]


class DonorRankingEngine:
    def __init__(self, traffic_provider=None, strategy=None, average_speed_kmh=None, max_workers=None):
        self.traffic_provider = traffic_provider or GoogleDistanceMatrixProvider()
        self.strategy = strategy or CompositeRanking()
        self.average_speed_kmh = average_speed_kmh or get_setting('AVERAGE_SPEED_KMH')
        self.max_workers = max_workers or get_setting('ETA_LOOKUP_WORKERS')

    def fallback_eta(self, distance):
        return distance / self.average_speed_kmh * 60

    def estimate_eta(self, origin, destination, distance):
        """Traffic ETA in minutes, or the average-speed estimate and the error that forced it"""
        try:
            eta = float(self.traffic_provider.eta_minutes(origin, destination))
            if not math.isfinite(eta) or eta < 0:
                raise ExternalServiceError(f"Traffic provider returned an unusable ETA: {eta}")
            return eta, None
        except Exception as e:
            return self.fallback_eta(distance), e

    def distance_and_eta(self, origin, destination):
        distance = haversine_km(origin, destination)
        eta, error = self.estimate_eta(origin, destination, distance)
        return round_half_up(distance, 2), int(round_half_up(eta)), error

    def score_donor(self, profile, request_location):
        """Score one donor; returns the RankedDonor and the traffic error, if any"""
        distance, eta, error = self.distance_and_eta(profile.location, request_location)
        breakdown = self.strategy.breakdown(
            profile.eligibility_score, profile.reliability_score, distance, eta
        )
        composite = self.strategy.score(
            profile.eligibility_score, profile.reliability_score, distance, eta
        )
        ranked = RankedDonor(
            id=profile.id,
            user_id=profile.user_id,
            full_name=profile.full_name,
            blood_group=profile.blood_group,
            eligibility_score=profile.eligibility_score,
            reliability_score=profile.reliability_score,
            distance=distance,
            eta=eta,
            composite_score=round_half_up(composite, 4),
            location=profile.location,
            breakdown=breakdown,
            eta_source='average_speed' if error else 'traffic',
        )
        return ranked, error

    def rank(self, blood_group, location, candidates=None):
        if not blood_group or not location:
            raise ValidationError('Blood group and location are required')
        request_location = coerce_coordinate(location)

        if candidates is None:
            from .models import Donor
            candidates = Donor.objects.eligible_for(blood_group)

        profiles = [DonorProfile.from_record(donor) for donor in candidates]
        located = [
            profile for profile in profiles
            if profile.blood_group == blood_group and profile.location is not None
        ]
        if not located:
            return RankingResult(best_donor=None, all_donors=[])

        # map() keeps retrieval order, so the stable sort below is deterministic
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(located))) as pool:
            results = list(pool.map(lambda profile: self.score_donor(profile, request_location), located))

        # Worker threads stay off the logging handlers; report fallbacks from here
        errors = [error for _, error in results if error is not None]
        if errors:
            logger.warning(
                f"Traffic ETA unavailable for {len(errors)} of {len(results)} donors, "
                f"using average speed: {errors[0]!r}"
            )

        scored = [ranked for ranked, _ in results]
        scored.sort(key=lambda donor: donor.composite_score, reverse=True)
        logger.info(
            f"Ranked {len(scored)} donors for {blood_group} using {self.strategy.name} weights"
        )
        return RankingResult(best_donor=scored[0], all_donors=scored)
