import logging

from django.utils import timezone

from .profiles import DonorProfile
from .timeutils import days_difference

logger = logging.getLogger(__name__)

BASE_SCORE = 100
RECENT_DONATION_DAYS = 90
RECOVERING_DONATION_DAYS = 120
RECENT_DONATION_PENALTY = 50
RECOVERING_DONATION_PENALTY = 25
DIABETES_PENALTY = 15
SEIZURES_PENALTY = 20


def clamp_score(score):
    return max(0, min(100, score))


class EligibilityScorer:
    """
    Medical and donation-recency fitness of a donor, 0-100.

    Starts at 100, takes 50 off for a donation in the last 90 days (25 for
    90-119 days), 15 for diabetes and 20 for seizures.
    """

    def __init__(self, clock=timezone.now):
        self.clock = clock

    def score(self, donor, now=None):
        profile = DonorProfile.from_record(donor)
        now = now or self.clock()
        score = BASE_SCORE

        if profile.last_donation_date:
            days_since = days_difference(now, profile.last_donation_date)
            if days_since < RECENT_DONATION_DAYS:
                score -= RECENT_DONATION_PENALTY
            elif days_since < RECOVERING_DONATION_DAYS:
                score -= RECOVERING_DONATION_PENALTY

        medical_history = profile.medical_history or {}
        if medical_history.get('diabetes'):
            score -= DIABETES_PENALTY
        if medical_history.get('seizures'):
            score -= SEIZURES_PENALTY

        return clamp_score(score)

    def is_eligible(self, donor, now=None):
        return self.score(donor, now=now) > 0

    def status(self, donor, now=None):
        score = self.score(donor, now=now)

        if score == 100:
            message = 'Fully eligible to donate'
        elif score >= 50:
            message = 'Eligible with some restrictions'
        elif score > 0:
            message = 'Limited eligibility'
        else:
            message = 'Currently not eligible to donate'

        return {
            'score': score,
            'eligible': score > 0,
            'message': message,
        }

    def recalculate_and_update(self, donor, now=None):
        """Recompute and persist ``donor.eligibility_score``"""
        new_score = self.score(donor, now=now)
        donor.eligibility_score = new_score
        donor.save(update_fields=['eligibility_score'])
        logger.info(
            f"Eligibility score for donor {donor.pk} set to {new_score}",
            extra={'donor_id': donor.pk},
        )
        return new_score


eligibility_scorer = EligibilityScorer()
