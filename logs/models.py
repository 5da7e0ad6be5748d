from django.db import models


class LogEntry(models.Model):
    LEVEL_CHOICES = (
        ('DEBUG', 'Debug'),
        ('INFO', 'Info'),
        ('WARNING', 'Warning'),
        ('ERROR', 'Error'),
        ('CRITICAL', 'Critical'),
    )

    timestamp = models.DateTimeField(auto_now_add=True)
    level = models.CharField(max_length=10, choices=LEVEL_CHOICES)
    message = models.TextField()
    logger_name = models.CharField(max_length=100)
    module = models.CharField(max_length=100)

    # Plain ids so log rows survive deletion of what they describe
    user_id = models.IntegerField(null=True, blank=True)
    donor_id = models.IntegerField(null=True, blank=True, db_index=True)
    blood_request_id = models.IntegerField(null=True, blank=True, db_index=True)
    ip_address = models.GenericIPAddressField(null=True, blank=True)
    request_path = models.CharField(max_length=500, blank=True)

    class Meta:
        ordering = ['-timestamp']
        verbose_name_plural = 'Log entries'

    def __str__(self):
        return f"{self.timestamp} - {self.level} - {self.message[:100]}"
