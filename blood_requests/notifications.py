import logging
from datetime import timedelta

from django.conf import settings
from django.core.mail import EmailMultiAlternatives
from django.template.loader import render_to_string
from django.utils import timezone

from accounts.services import should_send_notification
from carecircle.conf import get_setting
from donors.models import Donor

from . import urgency
from .models import DonorNotification

logger = logging.getLogger(__name__)


def _send(subject, template, context, recipient):
    text_content = render_to_string(f'emails/{template}.txt', context)
    html_content = render_to_string(f'emails/{template}.html', context)

    email = EmailMultiAlternatives(
        subject=subject,
        body=text_content,
        from_email=settings.DEFAULT_FROM_EMAIL,
        to=[recipient],
    )
    email.attach_alternative(html_content, 'text/html')
    email.send(fail_silently=False)


def send_donation_request_email(notification):
    """
    Send email to donor about a new blood request
    """
    try:
        donor = notification.donor
        blood_request = notification.blood_request
        if not donor.user.email:
            logger.info(f"Donor {donor.pk} has no email address, skipping request email")
            return False

        prefix = '🚨 EMERGENCY: ' if blood_request.emergency_warning else ''
        subject = f"{prefix}Blood needed - {blood_request.blood_group} ({blood_request.urgency_band})"
        context = {
            'donor': donor,
            'request': blood_request,
            'notification': notification,
            'portal_url': f"{get_setting('FRONTEND_URL')}/donor/notifications",
        }
        _send(subject, 'donation_request', context, donor.user.email)

        logger.info(f"Donation request email sent to {donor.user.email}")
        return True

    except Exception as e:
        logger.error(f"Failed to send donation request email: {str(e)}")
        return False


def send_request_fulfilled_email(notification):
    """
    Tell a donor that someone else already answered the request
    """
    try:
        donor = notification.donor
        if not donor.user.email:
            return False

        context = {
            'donor': donor,
            'request': notification.blood_request,
        }
        _send('Blood request fulfilled - thank you!', 'request_fulfilled', context, donor.user.email)

        logger.info(f"Request fulfilled email sent to {donor.user.email}")
        return True

    except Exception as e:
        logger.error(f"Failed to send request fulfilled email: {str(e)}")
        return False


class EmailNotifier:
    """Lifecycle notifier: tells the requester what happened to their request"""

    def notify(self, blood_request, message):
        try:
            requester = blood_request.requester
            if not requester.email:
                logger.info(
                    f"Requester of blood request {blood_request.pk} has no email: {message}",
                    extra={'blood_request_id': blood_request.pk},
                )
                return

            context = {
                'requester': requester,
                'request': blood_request,
                'message': message,
            }
            _send(f"Blood request update - {message}", 'request_status', context, requester.email)
            logger.info(
                f"Notification for request {blood_request.pk}: {message}",
                extra={'blood_request_id': blood_request.pk},
            )
        except Exception as e:
            logger.error(f"Failed to notify requester of request {blood_request.pk}: {str(e)}")


def initial_timeout(urgency_band, sent_at):
    thresholds = urgency.timeout_thresholds(urgency_band)
    minutes = thresholds.view_timeout or thresholds.response_timeout
    if minutes is None:
        return None
    return sent_at + timedelta(minutes=minutes)


def dispatch_request(blood_request, ranking, now=None):
    """
    Create one notification per ranked donor, best first, and email them.

    Donors who switched notifications off, or who are inside their quiet
    hours for a non-RED request, are skipped.
    """
    now = now or timezone.now()
    donor_ids = [ranked.id for ranked in ranking.all_donors]
    donors = Donor.objects.select_related('user').in_bulk(donor_ids)

    notifications = []
    skipped = 0
    for donor_id in donor_ids:
        donor = donors.get(donor_id)
        if donor is None:
            continue
        if not should_send_notification(donor.user, blood_request.urgency_band, now=timezone.localtime(now)):
            skipped += 1
            continue
        notification, created = DonorNotification.objects.get_or_create(
            blood_request=blood_request,
            donor=donor,
            defaults={
                'sent_at': now,
                'timeout_at': initial_timeout(blood_request.urgency_band, now),
            },
        )
        if created:
            notifications.append(notification)

    email_count = sum(1 for notification in notifications if send_donation_request_email(notification))
    logger.info(
        f"Request {blood_request.pk}: notified {len(notifications)} donors "
        f"({email_count} emails, {skipped} in quiet hours or opted out)",
        extra={'blood_request_id': blood_request.pk},
    )
    return notifications
