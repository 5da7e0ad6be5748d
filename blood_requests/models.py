from django.conf import settings
from django.db import models

from accounts.models import BLOOD_GROUP_CHOICES
from donors.geo import format_point, parse_point
from donors.models import Donor


class BloodRequest(models.Model):
    STATUS_CHOICES = (
        ('PENDING', 'Pending'),
        ('DONOR_ACCEPTED', 'Donor accepted'),
        ('IN_PROGRESS', 'In progress'),
        ('COMPLETED', 'Completed'),
        ('CANCELLED', 'Cancelled'),
        ('EXPIRED', 'Expired'),
    )

    URGENCY_BAND_CHOICES = (
        ('RED', 'Red'),
        ('PINK', 'Pink'),
        ('WHITE', 'White'),
    )

    TERMINAL_STATUSES = ('COMPLETED', 'CANCELLED', 'EXPIRED')
    ACTIVE_STATUSES = ('PENDING', 'DONOR_ACCEPTED', 'IN_PROGRESS')

    requester = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='blood_requests'
    )
    blood_group = models.CharField(max_length=3, choices=BLOOD_GROUP_CHOICES)
    required_timeframe = models.CharField(max_length=50)
    urgency_band = models.CharField(max_length=10, choices=URGENCY_BAND_CHOICES)
    emergency_warning = models.BooleanField(default=False)

    # Stored as POINT(longitude latitude)
    location = models.CharField(max_length=64)
    hospital_name = models.CharField(max_length=255, blank=True)
    is_private = models.BooleanField(default=False)

    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='PENDING')
    accepted_donor = models.ForeignKey(
        Donor, on_delete=models.SET_NULL, null=True, blank=True, related_name='accepted_requests'
    )
    requested_donors = models.ManyToManyField(
        Donor, through='DonorNotification', related_name='notified_requests'
    )

    created_at = models.DateTimeField()
    viewed_at = models.DateTimeField(null=True, blank=True)
    expires_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.urgency_band} request for {self.blood_group} ({self.status})"

    @property
    def coordinate(self):
        return parse_point(self.location)

    def set_location(self, coordinate):
        self.location = format_point(coordinate)

    @property
    def is_terminal(self):
        return self.status in self.TERMINAL_STATUSES


class DonorNotification(models.Model):
    RESPONSE_CHOICES = (
        ('ACCEPTED', 'Accepted'),
        ('DECLINED', 'Declined'),
        ('IGNORED', 'Ignored'),
        ('FUTURE_DONATION', 'Future donation'),
    )

    blood_request = models.ForeignKey(BloodRequest, on_delete=models.CASCADE, related_name='notifications')
    donor = models.ForeignKey(Donor, on_delete=models.CASCADE, related_name='notifications')
    sent_at = models.DateTimeField()
    viewed_at = models.DateTimeField(null=True, blank=True)
    responded_at = models.DateTimeField(null=True, blank=True)
    response_type = models.CharField(max_length=20, choices=RESPONSE_CHOICES, null=True, blank=True)
    timeout_at = models.DateTimeField(null=True, blank=True)
    is_expired = models.BooleanField(default=False)

    class Meta:
        unique_together = ('blood_request', 'donor')

    def __str__(self):
        return f"Notification to donor {self.donor_id} for request {self.blood_request_id}"

    @property
    def is_viewed(self):
        return self.viewed_at is not None

    @property
    def is_responded(self):
        return self.responded_at is not None

    def has_expired(self, now):
        return self.is_expired or (self.timeout_at is not None and now > self.timeout_at)


class DonationHistory(models.Model):
    """Append-only ledger the reliability score is folded over"""

    STATUS_CHOICES = (
        ('PENDING', 'Pending'),
        ('ACCEPTED', 'Accepted'),
        ('IN_PROGRESS', 'In progress'),
        ('COMPLETED', 'Completed'),
        ('CANCELLED', 'Cancelled'),
    )

    DONATION_TYPE_CHOICES = (
        ('SELF', 'Self'),
        ('FAMILY', 'Family'),
        ('FRIEND', 'Friend'),
        ('OTHER', 'Other'),
    )

    donor = models.ForeignKey(Donor, on_delete=models.CASCADE, related_name='donation_history')
    blood_request = models.ForeignKey(
        BloodRequest, on_delete=models.SET_NULL, null=True, blank=True, related_name='donation_history'
    )
    requester = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True,
        related_name='requested_donations'
    )
    donation_type = models.CharField(max_length=20, choices=DONATION_TYPE_CHOICES, blank=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES)
    response_type = models.CharField(
        max_length=20, choices=DonorNotification.RESPONSE_CHOICES, null=True, blank=True
    )
    accepted_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancellation_reason = models.TextField(blank=True)

    class Meta:
        ordering = ['-accepted_at']
        verbose_name_plural = 'Donation history'

    def __str__(self):
        return f"{self.status} by donor {self.donor_id}"

    def save(self, *args, **kwargs):
        if self.pk is not None:
            raise ValueError('Donation history entries are immutable once written')
        super().save(*args, **kwargs)
