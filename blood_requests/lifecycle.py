"""
Blood request state machine.

    PENDING -> DONOR_ACCEPTED -> IN_PROGRESS -> COMPLETED
    PENDING | DONOR_ACCEPTED | IN_PROGRESS -> CANCELLED
    PENDING -> EXPIRED

Expiration is poll-driven: a scheduler (see the ``expire_requests``
management command) calls ``check_expiration``; nothing here sets timers.
"""
import itertools
import logging
from datetime import timedelta

from django.db import transaction
from django.db.models import F
from django.utils import timezone

from carecircle.exceptions import NotFoundError, ValidationError
from donors.eligibility import eligibility_scorer
from donors.geo import format_point
from donors.reliability import reliability_scorer

from . import urgency
from .models import BloodRequest, DonorNotification

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    'PENDING': {'DONOR_ACCEPTED', 'CANCELLED', 'EXPIRED'},
    'DONOR_ACCEPTED': {'IN_PROGRESS', 'CANCELLED'},
    'IN_PROGRESS': {'COMPLETED', 'CANCELLED'},
}

# Minutes a RED request may wait before it lapses
UNVIEWED_EXPIRY_MINUTES = 10
VIEWED_EXPIRY_MINUTES = 20

EXPIRED_MESSAGE = 'Request expired - donor not available'

DONOR_RESPONSES = ('ACCEPTED', 'DECLINED', 'FUTURE_DONATION')


class ModelRequestStore:
    """Requests persisted through the ORM"""

    def add(self, blood_request):
        blood_request.save()
        return blood_request

    def get(self, request_id):
        try:
            return BloodRequest.objects.get(pk=request_id)
        except BloodRequest.DoesNotExist:
            raise NotFoundError(f'Blood request {request_id} not found')

    def save(self, blood_request, fields):
        blood_request.save(update_fields=fields)


class InMemoryRequestStore:
    """Unsaved BloodRequest instances keyed by a local id, for tests and tooling"""

    def __init__(self):
        self.requests = {}
        self._ids = itertools.count(1)

    def add(self, blood_request):
        blood_request.id = next(self._ids)
        self.requests[blood_request.id] = blood_request
        return blood_request

    def get(self, request_id):
        try:
            return self.requests[request_id]
        except KeyError:
            raise NotFoundError(f'Blood request {request_id} not found')

    def save(self, blood_request, fields):
        self.requests[blood_request.id] = blood_request


class RequestLifecycleManager:
    def __init__(self, store=None, notifier=None, clock=timezone.now):
        if notifier is None:
            from .notifications import EmailNotifier
            notifier = EmailNotifier()
        self.store = store or ModelRequestStore()
        self.notifier = notifier
        self.clock = clock

    # Requests

    def create_request(self, blood_group, location, required_timeframe, requester_id,
                       hospital_name='', now=None):
        if not blood_group:
            raise ValidationError('Blood group is required')
        if not location:
            raise ValidationError('Location is required')
        if not requester_id:
            raise ValidationError('Requester is required')

        classification = urgency.classify(required_timeframe)
        blood_request = BloodRequest(
            requester_id=requester_id,
            blood_group=blood_group,
            required_timeframe=required_timeframe,
            urgency_band=classification.urgency_band,
            emergency_warning=classification.emergency_warning,
            location=format_point(location),
            hospital_name=hospital_name or '',
            status='PENDING',
            created_at=now or self.clock(),
            viewed_at=None,
        )
        self.store.add(blood_request)
        logger.info(
            f"Blood request {blood_request.id} created: {blood_group} {classification.urgency_band}",
            extra={'blood_request_id': blood_request.id},
        )
        return blood_request

    def get_request(self, request_id):
        return self.store.get(request_id)

    def transition(self, blood_request, new_status, now=None):
        current = blood_request.status
        if new_status not in ALLOWED_TRANSITIONS.get(current, set()):
            raise ValidationError(f'Cannot move request from {current} to {new_status}')

        now = now or self.clock()
        blood_request.status = new_status
        fields = ['status']
        if new_status == 'COMPLETED':
            blood_request.completed_at = now
            fields.append('completed_at')
        elif new_status == 'EXPIRED':
            blood_request.expires_at = now
            fields.append('expires_at')

        self.store.save(blood_request, fields)
        logger.info(
            f"Blood request {blood_request.id}: {current} -> {new_status}",
            extra={'blood_request_id': blood_request.id},
        )
        return blood_request

    def mark_viewed(self, blood_request, now=None):
        if blood_request.is_terminal or blood_request.viewed_at is not None:
            return blood_request
        blood_request.viewed_at = now or self.clock()
        self.store.save(blood_request, ['viewed_at'])
        return blood_request

    def check_expiration(self, blood_request, now=None):
        """
        Expire an unanswered RED request.

        A request that was never viewed lapses after 10 minutes, a viewed one
        20 minutes after the view. Returns True when the request is (now)
        expired; repeat calls on an expired request do not notify again.
        """
        if blood_request.urgency_band != urgency.RED:
            return False
        if blood_request.status == 'EXPIRED':
            return True
        if blood_request.status != 'PENDING':
            return False

        now = now or self.clock()
        reference = blood_request.viewed_at or blood_request.created_at
        minutes_elapsed = (now - reference).total_seconds() / 60
        threshold = VIEWED_EXPIRY_MINUTES if blood_request.viewed_at else UNVIEWED_EXPIRY_MINUTES

        if minutes_elapsed <= threshold:
            return False

        self.transition(blood_request, 'EXPIRED', now=now)
        self.notifier.notify(blood_request, EXPIRED_MESSAGE)
        return True

    def accept(self, blood_request, donor, now=None):
        now = now or self.clock()
        with transaction.atomic():
            self.transition(blood_request, 'DONOR_ACCEPTED', now=now)
            blood_request.accepted_donor = donor
            self.store.save(blood_request, ['accepted_donor'])
            reliability_scorer.record_action(
                donor, 'ACCEPTED', response_type='ACCEPTED', accepted_at=now,
                blood_request=blood_request, now=now,
            )
        return blood_request

    def start(self, blood_request, now=None):
        return self.transition(blood_request, 'IN_PROGRESS', now=now)

    def complete(self, blood_request, now=None):
        donor = blood_request.accepted_donor
        if donor is None:
            raise ValidationError('Request has no accepted donor')

        now = now or self.clock()
        with transaction.atomic():
            self.transition(blood_request, 'COMPLETED', now=now)
            self._record_donation(donor, now)
            reliability_scorer.record_action(
                donor, 'COMPLETED', accepted_at=self._accepted_at(blood_request, donor),
                blood_request=blood_request, now=now,
            )
            eligibility_scorer.recalculate_and_update(donor, now=now)
        return blood_request

    def cancel(self, blood_request, by_donor=False, now=None):
        now = now or self.clock()
        donor = blood_request.accepted_donor
        with transaction.atomic():
            self.transition(blood_request, 'CANCELLED', now=now)
            if by_donor and donor is not None:
                donor.cancelled_donations = F('cancelled_donations') + 1
                donor.save(update_fields=['cancelled_donations'])
                donor.refresh_from_db(fields=['cancelled_donations'])
                reliability_scorer.record_action(
                    donor, 'CANCELLED', accepted_at=self._accepted_at(blood_request, donor),
                    blood_request=blood_request, now=now,
                )
        return blood_request

    def _record_donation(self, donor, now):
        donor.last_donation_date = timezone.localdate(now)
        donor.total_donations = F('total_donations') + 1
        donor.completed_donations = F('completed_donations') + 1
        donor.save(update_fields=['last_donation_date', 'total_donations', 'completed_donations'])
        donor.refresh_from_db(fields=['total_donations', 'completed_donations'])

    def _accepted_at(self, blood_request, donor):
        entry = blood_request.donation_history.filter(donor=donor, status='ACCEPTED').first()
        return entry.accepted_at if entry else None

    # Per-donor notifications

    def record_view(self, notification, now=None):
        now = now or self.clock()
        if notification.viewed_at is None:
            notification.viewed_at = now
            thresholds = urgency.timeout_thresholds(notification.blood_request.urgency_band)
            if thresholds.response_timeout is not None:
                notification.timeout_at = now + timedelta(minutes=thresholds.response_timeout)
            notification.save(update_fields=['viewed_at', 'timeout_at'])
        self.mark_viewed(notification.blood_request, now=now)
        return notification

    def record_response(self, notification, response_type, now=None):
        if response_type not in DONOR_RESPONSES:
            raise ValidationError(f'Invalid response type: {response_type}')

        now = now or self.clock()
        if notification.is_responded:
            raise ValidationError('Notification has already been answered')
        if notification.has_expired(now):
            raise ValidationError('Notification has expired')

        blood_request = notification.blood_request
        donor = notification.donor
        with transaction.atomic():
            notification.responded_at = now
            notification.response_type = response_type
            notification.save(update_fields=['responded_at', 'response_type'])

            if response_type == 'ACCEPTED':
                self.accept(blood_request, donor, now=now)
                self._close_other_notifications(notification)
            elif response_type == 'DECLINED':
                reliability_scorer.record_action(
                    donor, 'PENDING', response_type='DECLINED',
                    blood_request=blood_request, now=now,
                )
        logger.info(
            f"Donor {donor.pk} answered request {blood_request.pk}: {response_type}",
            extra={'donor_id': donor.pk, 'blood_request_id': blood_request.pk},
        )
        return notification

    def _close_other_notifications(self, accepted):
        from .notifications import send_request_fulfilled_email

        others = DonorNotification.objects.filter(
            blood_request=accepted.blood_request, responded_at__isnull=True, is_expired=False
        ).exclude(pk=accepted.pk).select_related('donor__user', 'blood_request')
        for notification in others:
            notification.is_expired = True
            notification.save(update_fields=['is_expired'])
            send_request_fulfilled_email(notification)

    def expire_stale_notifications(self, now=None):
        """Unanswered notifications past their timeout count as ignored"""
        now = now or self.clock()
        stale = DonorNotification.objects.filter(
            is_expired=False, responded_at__isnull=True, timeout_at__lt=now
        ).select_related('donor', 'blood_request__requester')

        expired = 0
        for notification in stale:
            with transaction.atomic():
                notification.is_expired = True
                notification.response_type = 'IGNORED'
                notification.save(update_fields=['is_expired', 'response_type'])
                reliability_scorer.record_action(
                    notification.donor, 'PENDING', response_type='IGNORED',
                    accepted_at=notification.sent_at,
                    blood_request=notification.blood_request, now=now,
                )
            expired += 1

        if expired:
            logger.info(f"Expired {expired} unanswered donor notifications")
        return expired

    def expire_due_requests(self, now=None):
        """Run ``check_expiration`` over every pending RED request"""
        now = now or self.clock()
        pending = BloodRequest.objects.filter(status='PENDING', urgency_band=urgency.RED)
        return sum(1 for blood_request in pending if self.check_expiration(blood_request, now=now))
