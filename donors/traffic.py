import logging

import requests

from carecircle.conf import get_setting
from carecircle.exceptions import ExternalServiceError

logger = logging.getLogger(__name__)

DISTANCE_MATRIX_URL = 'https://maps.googleapis.com/maps/api/distancematrix/json'


class TrafficProvider:
    """Real-time travel time between two coordinates, in minutes"""

    def eta_minutes(self, origin, destination):
        raise NotImplementedError


class GoogleDistanceMatrixProvider(TrafficProvider):
    def __init__(self, api_key=None, timeout=None, session=None):
        self.api_key = api_key if api_key is not None else get_setting('GOOGLE_MAPS_API_KEY')
        self.timeout = timeout or get_setting('TRAFFIC_TIMEOUT_SECONDS')
        # Without an injected session every lookup gets its own, so concurrent
        # lookups never share connection state
        self.session = session

    def eta_minutes(self, origin, destination):
        if not self.api_key:
            raise ExternalServiceError('Traffic API key not configured')

        params = {
            'origins': f"{origin.lat},{origin.lng}",
            'destinations': f"{destination.lat},{destination.lng}",
            'mode': 'driving',
            'departure_time': 'now',
            'key': self.api_key,
        }

        try:
            http = self.session or requests
            response = http.get(DISTANCE_MATRIX_URL, params=params, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            raise ExternalServiceError(f"Traffic API request failed: {e}")

        try:
            element = data['rows'][0]['elements'][0]
        except (KeyError, IndexError, TypeError):
            raise ExternalServiceError('Traffic API returned no route')

        if data.get('status') != 'OK' or element.get('status') != 'OK':
            raise ExternalServiceError('Traffic API request failed')

        duration = element.get('duration_in_traffic') or element.get('duration')
        seconds = duration.get('value') if isinstance(duration, dict) else None
        if isinstance(seconds, bool) or not isinstance(seconds, (int, float)):
            raise ExternalServiceError('Traffic API returned no duration')
        return seconds / 60
