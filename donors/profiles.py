"""
Canonical donor view used by the scorers and the ranking engine.

Callers hand over Donor rows, plain dicts in snake_case, or dicts in
camelCase; ``DonorProfile.from_record`` is the one place that tells them
apart.
"""
from dataclasses import dataclass, field
from typing import Any, Optional

from .geo import Coordinate, coerce_coordinate


def _pick(record, *names, default=None):
    for name in names:
        value = record.get(name)
        if value is not None:
            return value
    return default


@dataclass
class DonorProfile:
    id: Any = None
    user_id: Any = None
    full_name: str = ''
    blood_group: str = ''
    location: Optional[Coordinate] = None
    eligibility_score: float = 100.0
    reliability_score: float = 50.0
    is_active: bool = True
    notification_enabled: bool = True
    last_donation_date: Any = None
    medical_history: dict = field(default_factory=dict)
    source: Any = None

    @classmethod
    def from_record(cls, record):
        if isinstance(record, cls):
            return record
        if isinstance(record, dict):
            return cls._from_mapping(record)
        return cls._from_model(record)

    @classmethod
    def _from_model(cls, donor):
        user = donor.user
        return cls(
            id=donor.pk,
            user_id=donor.user_id,
            full_name=user.full_name,
            blood_group=user.blood_group,
            location=donor.location,
            eligibility_score=float(donor.eligibility_score),
            reliability_score=float(donor.reliability_score),
            is_active=user.is_active,
            notification_enabled=user.notification_enabled,
            last_donation_date=donor.last_donation_date,
            medical_history=user.medical_history or {},
            source=donor,
        )

    @classmethod
    def _from_mapping(cls, record):
        location = _pick(record, 'location', 'current_location', 'currentLocation')
        return cls(
            id=record.get('id'),
            user_id=_pick(record, 'user_id', 'userId'),
            full_name=_pick(record, 'full_name', 'fullName', default=''),
            blood_group=_pick(record, 'blood_group', 'bloodGroup', default=''),
            location=coerce_coordinate(location) if location else None,
            eligibility_score=float(_pick(record, 'eligibility_score', 'eligibilityScore', default=100)),
            reliability_score=float(_pick(record, 'reliability_score', 'reliabilityScore', default=50)),
            is_active=_pick(record, 'is_active', 'isActive', default=True),
            notification_enabled=_pick(record, 'notification_enabled', 'notificationEnabled', default=True),
            last_donation_date=_pick(record, 'last_donation_date', 'lastDonationDate'),
            medical_history=_pick(record, 'medical_history', 'medicalHistory', default={}) or {},
            source=record,
        )
