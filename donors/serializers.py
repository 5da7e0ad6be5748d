from datetime import timedelta

from rest_framework import serializers

from .eligibility import RECOVERING_DONATION_DAYS, eligibility_scorer
from .models import Donor
from .reliability import reliability_scorer


class DonorListSerializer(serializers.ModelSerializer):
    full_name = serializers.CharField(source='user.full_name', read_only=True)
    blood_group = serializers.CharField(source='user.blood_group', read_only=True)
    city = serializers.CharField(source='user.city', read_only=True)
    eligibility_status = serializers.SerializerMethodField()

    class Meta:
        model = Donor
        fields = ('id', 'full_name', 'blood_group', 'city', 'eligibility_score',
                  'reliability_score', 'total_donations', 'completed_donations',
                  'eligibility_status')

    def get_eligibility_status(self, obj):
        return eligibility_scorer.status(obj)['message']


class DonorDetailSerializer(serializers.ModelSerializer):
    full_name = serializers.CharField(source='user.full_name', read_only=True)
    blood_group = serializers.CharField(source='user.blood_group', read_only=True)
    city = serializers.CharField(source='user.city', read_only=True)
    email = serializers.CharField(source='user.email', read_only=True)
    mobile_number = serializers.CharField(source='user.mobile_number', read_only=True)
    coordinates = serializers.SerializerMethodField()
    eligibility = serializers.SerializerMethodField()
    reliability = serializers.SerializerMethodField()
    next_eligible_date = serializers.SerializerMethodField()

    class Meta:
        model = Donor
        exclude = ('user', 'current_location')
        read_only_fields = ('eligibility_score', 'reliability_score', 'total_donations',
                            'completed_donations', 'cancelled_donations', 'created_at', 'updated_at')

    def get_coordinates(self, obj):
        location = obj.location
        return location.as_dict() if location else None

    def get_eligibility(self, obj):
        return eligibility_scorer.status(obj)

    def get_reliability(self, obj):
        return reliability_scorer.status(float(obj.reliability_score))

    def get_next_eligible_date(self, obj):
        if obj.last_donation_date:
            return obj.last_donation_date + timedelta(days=RECOVERING_DONATION_DAYS)
        return None


class MapDonorSerializer(serializers.ModelSerializer):
    user_id = serializers.IntegerField(read_only=True)
    full_name = serializers.CharField(source='user.full_name', read_only=True)
    blood_group = serializers.CharField(source='user.blood_group', read_only=True)
    city = serializers.CharField(source='user.city', read_only=True)
    coordinates = serializers.SerializerMethodField()

    class Meta:
        model = Donor
        fields = ('id', 'user_id', 'full_name', 'blood_group', 'city', 'eligibility_score',
                  'reliability_score', 'total_donations', 'completed_donations', 'coordinates')

    def get_coordinates(self, obj):
        location = obj.location
        return location.as_dict() if location else None


class LocationSerializer(serializers.Serializer):
    latitude = serializers.FloatField(min_value=-90, max_value=90)
    longitude = serializers.FloatField(min_value=-180, max_value=180)


class DonorSearchSerializer(LocationSerializer):
    blood_group = serializers.CharField()
    strategy = serializers.ChoiceField(choices=('composite', 'ui_heuristic'), default='composite')
