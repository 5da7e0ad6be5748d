"""
Coordinates and great-circle distance.

Points travel to and from the store as ``POINT(lon lat)`` text: longitude
first, latitude second.
"""
import math
import re
from dataclasses import dataclass

from carecircle.exceptions import ParseError, ValidationError

EARTH_RADIUS_KM = 6371

POINT_RE = re.compile(r'^\s*POINT\s*\(\s*([^\s()]+)\s+([^\s()]+)\s*\)\s*$', re.IGNORECASE)


@dataclass(frozen=True)
class Coordinate:
    lng: float
    lat: float

    def as_dict(self):
        return {'lng': self.lng, 'lat': self.lat}


def parse_point(text):
    if not isinstance(text, str):
        raise ParseError('Invalid POINT string format')
    match = POINT_RE.match(text)
    if not match:
        raise ParseError('Invalid POINT string format')
    try:
        return Coordinate(lng=float(match.group(1)), lat=float(match.group(2)))
    except ValueError:
        raise ParseError('Invalid POINT string format')


def format_point(coordinate):
    coordinate = coerce_coordinate(coordinate)
    return f"POINT({coordinate.lng} {coordinate.lat})"


def coerce_coordinate(value):
    """Accept a Coordinate, POINT text, a {lng, lat} mapping or a (lng, lat) pair"""
    if isinstance(value, Coordinate):
        return value
    if isinstance(value, str):
        return parse_point(value)
    if isinstance(value, dict):
        lng = value.get('lng', value.get('longitude'))
        lat = value.get('lat', value.get('latitude'))
        if lng is None or lat is None:
            raise ValidationError('Location needs both longitude and latitude')
        return Coordinate(lng=float(lng), lat=float(lat))
    if isinstance(value, (tuple, list)) and len(value) == 2:
        return Coordinate(lng=float(value[0]), lat=float(value[1]))
    raise ValidationError('Unsupported location value')


def haversine_km(origin, destination):
    lat1, lon1 = math.radians(origin.lat), math.radians(origin.lng)
    lat2, lon2 = math.radians(destination.lat), math.radians(destination.lng)

    dlat = lat2 - lat1
    dlon = lon2 - lon1

    a = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    c = 2 * math.asin(math.sqrt(a))

    return c * EARTH_RADIUS_KM
