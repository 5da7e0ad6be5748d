import logging
from dataclasses import dataclass
from typing import Any, Optional

from django.utils import timezone

from .eligibility import clamp_score
from .timeutils import months_difference

logger = logging.getLogger(__name__)

BASE_SCORE = 50
RECENT_MONTHS = 6
RECENT_WEIGHT = 1.0
DECAYED_WEIGHT = 0.5

STATUS_ADJUSTMENTS = {
    'COMPLETED': 10,
    'CANCELLED': -15,
}

RESPONSE_ADJUSTMENTS = {
    'IGNORED': -5,
    'DECLINED': -2,
}

RELIABILITY_LEVELS = (
    (80, 'EXCELLENT', 'Highly reliable donor'),
    (60, 'GOOD', 'Reliable donor'),
    (40, 'FAIR', 'Moderately reliable donor'),
    (20, 'POOR', 'Low reliability'),
)


@dataclass
class HistoryEntry:
    status: Optional[str] = None
    response_type: Optional[str] = None
    accepted_at: Any = None
    completed_at: Any = None
    cancelled_at: Any = None

    @classmethod
    def from_record(cls, record):
        if isinstance(record, cls):
            return record
        if isinstance(record, dict):
            def pick(snake, camel):
                value = record.get(snake)
                return value if value is not None else record.get(camel)
            return cls(
                status=record.get('status'),
                response_type=pick('response_type', 'responseType'),
                accepted_at=pick('accepted_at', 'acceptedAt'),
                completed_at=pick('completed_at', 'completedAt'),
                cancelled_at=pick('cancelled_at', 'cancelledAt'),
            )
        return cls(
            status=record.status,
            response_type=record.response_type,
            accepted_at=record.accepted_at,
            completed_at=record.completed_at,
            cancelled_at=record.cancelled_at,
        )

    @property
    def reference_time(self):
        return self.completed_at or self.cancelled_at or self.accepted_at


class ReliabilityScorer:
    """
    Behavioural trust score of a donor, 0-100, folded over the donation ledger.

    Actions in the last six calendar months count in full, older ones at half
    weight. The running total is clamped once, after every entry is applied.
    """

    def __init__(self, clock=timezone.now):
        self.clock = clock

    def weight_for(self, entry, now):
        reference = entry.reference_time
        # Undated entries are treated as older than the recent window
        if reference is None:
            return DECAYED_WEIGHT
        months_ago = months_difference(now, reference)
        return DECAYED_WEIGHT if months_ago > RECENT_MONTHS else RECENT_WEIGHT

    def score(self, history, now=None):
        score = BASE_SCORE
        if not history:
            return score

        now = now or self.clock()
        for record in history:
            entry = HistoryEntry.from_record(record)
            weight = self.weight_for(entry, now)
            score += STATUS_ADJUSTMENTS.get(entry.status, 0) * weight
            score += RESPONSE_ADJUSTMENTS.get(entry.response_type, 0) * weight

        return clamp_score(score)

    def status(self, score):
        for threshold, level, message in RELIABILITY_LEVELS:
            if score >= threshold:
                break
        else:
            level, message = 'VERY_POOR', 'Very low reliability'
        return {
            'score': score,
            'level': level,
            'message': message,
        }

    def update_score(self, donor, history, now=None):
        """Recompute and persist ``donor.reliability_score``"""
        new_score = self.score(list(history), now=now)
        donor.reliability_score = new_score
        donor.save(update_fields=['reliability_score'])
        logger.info(
            f"Reliability score for donor {donor.pk} set to {new_score}",
            extra={'donor_id': donor.pk},
        )
        return new_score

    def record_action(self, donor, action_type, response_type=None, accepted_at=None,
                      blood_request=None, now=None):
        """
        Append an action to the donor's ledger and refresh the score.

        ``action_type`` is a ledger status (COMPLETED, CANCELLED, ACCEPTED,
        IN_PROGRESS) or PENDING for a bare notification response such as
        IGNORED or DECLINED.
        """
        from blood_requests.models import DonationHistory

        now = now or self.clock()
        DonationHistory.objects.create(
            donor=donor,
            blood_request=blood_request,
            requester=blood_request.requester if blood_request is not None else None,
            status=action_type,
            response_type=response_type,
            accepted_at=accepted_at or now,
            completed_at=now if action_type == 'COMPLETED' else None,
            cancelled_at=now if action_type == 'CANCELLED' else None,
        )
        history = DonationHistory.objects.filter(donor=donor)
        return self.update_score(donor, history, now=now)


reliability_scorer = ReliabilityScorer()
