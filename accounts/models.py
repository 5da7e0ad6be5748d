from django.contrib.auth.models import AbstractUser
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models

BLOOD_GROUP_CHOICES = (
    ('A+', 'A+'),
    ('A-', 'A-'),
    ('B+', 'B+'),
    ('B-', 'B-'),
    ('AB+', 'AB+'),
    ('AB-', 'AB-'),
    ('O+', 'O+'),
    ('O-', 'O-'),
)


class User(AbstractUser):
    USER_TYPE_CHOICES = (
        ('donor', 'Donor'),
        ('requester', 'Requester'),
        ('hospital_staff', 'Hospital Staff'),
    )

    GENDER_CHOICES = (
        ('M', 'Male'),
        ('F', 'Female'),
        ('O', 'Other'),
    )

    user_type = models.CharField(max_length=20, choices=USER_TYPE_CHOICES, default='requester')
    full_name = models.CharField(max_length=255)
    age = models.PositiveIntegerField(
        null=True, blank=True,
        validators=[MinValueValidator(18), MaxValueValidator(60)]
    )
    gender = models.CharField(max_length=1, choices=GENDER_CHOICES, blank=True)
    mobile_number = models.CharField(max_length=20, unique=True)
    mobile_verified = models.BooleanField(default=False)
    city = models.CharField(max_length=100, blank=True)
    blood_group = models.CharField(max_length=3, choices=BLOOD_GROUP_CHOICES)

    # Flags such as {"diabetes": true, "seizures": false}
    medical_history = models.JSONField(default=dict, blank=True)

    # Notification preferences
    notification_enabled = models.BooleanField(default=True)
    quiet_hours_start = models.TimeField(null=True, blank=True)
    quiet_hours_end = models.TimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.full_name or self.username} ({self.blood_group})"
