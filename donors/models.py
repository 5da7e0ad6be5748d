from django.conf import settings
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models

from .geo import format_point, parse_point


class DonorManager(models.Manager):
    def eligible_for(self, blood_group):
        """Donors who can currently be asked to give blood of this group"""
        return self.filter(
            user__blood_group=blood_group,
            user__is_active=True,
            user__notification_enabled=True,
            eligibility_score__gt=0,
        ).select_related('user').order_by('id')

    def with_location(self):
        return self.exclude(current_location='').select_related('user')


class Donor(models.Model):
    user = models.OneToOneField(
        settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='donor_profile'
    )

    # Donation history
    last_donation_date = models.DateField(null=True, blank=True)
    total_donations = models.PositiveIntegerField(default=0)
    completed_donations = models.PositiveIntegerField(default=0)
    cancelled_donations = models.PositiveIntegerField(default=0)

    # Scores, written only by the eligibility and reliability scorers
    eligibility_score = models.DecimalField(
        max_digits=5, decimal_places=2, default=100,
        validators=[MinValueValidator(0), MaxValueValidator(100)]
    )
    reliability_score = models.DecimalField(
        max_digits=5, decimal_places=2, default=50,
        validators=[MinValueValidator(0), MaxValueValidator(100)]
    )

    # Stored as POINT(longitude latitude)
    current_location = models.CharField(max_length=64, blank=True)
    location_updated_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = DonorManager()

    def __str__(self):
        return f"{self.user.full_name} ({self.user.blood_group})"

    @property
    def blood_group(self):
        return self.user.blood_group

    @property
    def medical_history(self):
        return self.user.medical_history or {}

    @property
    def location(self):
        if not self.current_location:
            return None
        return parse_point(self.current_location)

    def set_location(self, coordinate):
        self.current_location = format_point(coordinate)

    def deactivate(self):
        """Donors are never deleted, only switched off"""
        self.user.is_active = False
        self.user.save(update_fields=['is_active'])
