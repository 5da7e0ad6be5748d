import logging
import secrets
from datetime import timedelta

from django.core.cache import caches
from django.utils import timezone

from carecircle.conf import get_setting
from carecircle.exceptions import ValidationError

logger = logging.getLogger(__name__)


class OTPStore:
    """
    One-time passwords for mobile verification, keyed by mobile number.

    Entries live in a Django cache so expiry is enforced by the cache TTL as
    well as by the stored expiry timestamp. Pass a different cache alias (or a
    cache object) to isolate stores in tests.
    """

    key_prefix = 'otp:'

    def __init__(self, cache=None, expiry_minutes=None, max_attempts=None):
        self.cache = cache if cache is not None else caches['default']
        self.expiry_minutes = expiry_minutes or get_setting('OTP_EXPIRY_MINUTES')
        self.max_attempts = max_attempts or get_setting('OTP_MAX_ATTEMPTS')

    def _key(self, mobile_number):
        return f"{self.key_prefix}{mobile_number}"

    def generate(self, mobile_number):
        if not mobile_number:
            raise ValidationError('Mobile number is required for OTP generation')

        otp = str(100000 + secrets.randbelow(900000))
        entry = {
            'otp': otp,
            'expires_at': timezone.now() + timedelta(minutes=self.expiry_minutes),
            'attempts': 0,
        }
        self.cache.set(self._key(mobile_number), entry, timeout=self.expiry_minutes * 60)

        # SMS delivery is handled by the gateway integration; log for local runs
        logger.info(f"OTP issued for {mobile_number}")
        logger.debug(f"OTP for {mobile_number}: {otp}")

        return {
            'success': True,
            'message': 'OTP sent successfully',
            'expires_in': self.expiry_minutes,
        }

    def verify(self, mobile_number, otp):
        if not mobile_number or not otp:
            raise ValidationError('Mobile number and OTP are required')

        key = self._key(mobile_number)
        entry = self.cache.get(key)
        if entry is None:
            raise ValidationError('No OTP found for this mobile number')

        if timezone.now() > entry['expires_at']:
            self.cache.delete(key)
            raise ValidationError('OTP has expired')

        if entry['attempts'] >= self.max_attempts:
            self.cache.delete(key)
            raise ValidationError('Maximum OTP verification attempts exceeded')

        if entry['otp'] != str(otp):
            entry['attempts'] += 1
            remaining = (entry['expires_at'] - timezone.now()).total_seconds()
            self.cache.set(key, entry, timeout=max(1, int(remaining)))
            raise ValidationError('Invalid OTP')

        self.cache.delete(key)
        logger.info(f"Mobile number verified: {mobile_number}")
        return {
            'success': True,
            'message': 'Mobile number verified successfully',
        }

    def expire(self, mobile_number):
        """Drop any pending OTP for the number"""
        self.cache.delete(self._key(mobile_number))
