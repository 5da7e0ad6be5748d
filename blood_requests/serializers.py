from rest_framework import serializers

from accounts.models import BLOOD_GROUP_CHOICES

from .models import BloodRequest, DonationHistory, DonorNotification


class BloodRequestSerializer(serializers.ModelSerializer):
    requester_name = serializers.CharField(source='requester.full_name', read_only=True)
    requester_city = serializers.CharField(source='requester.city', read_only=True)
    coordinates = serializers.SerializerMethodField()

    class Meta:
        model = BloodRequest
        exclude = ('location', 'requested_donors')
        read_only_fields = ('urgency_band', 'emergency_warning', 'status', 'created_at',
                            'viewed_at', 'expires_at', 'completed_at')

    def get_coordinates(self, obj):
        return obj.coordinate.as_dict()


class BloodRequestCreateSerializer(serializers.Serializer):
    blood_group = serializers.ChoiceField(choices=BLOOD_GROUP_CHOICES)
    required_timeframe = serializers.CharField()
    latitude = serializers.FloatField(min_value=-90, max_value=90)
    longitude = serializers.FloatField(min_value=-180, max_value=180)
    hospital_name = serializers.CharField(required=False, allow_blank=True, default='')
    notify_donors = serializers.BooleanField(required=False, default=True)


class DonorNotificationSerializer(serializers.ModelSerializer):
    donor_name = serializers.CharField(source='donor.user.full_name', read_only=True)
    request_details = BloodRequestSerializer(source='blood_request', read_only=True)

    class Meta:
        model = DonorNotification
        fields = '__all__'


class DonorResponseSerializer(serializers.Serializer):
    response = serializers.ChoiceField(choices=('ACCEPTED', 'DECLINED', 'FUTURE_DONATION'))


class DonationHistorySerializer(serializers.ModelSerializer):
    donor_name = serializers.CharField(source='donor.user.full_name', read_only=True)
    requester_name = serializers.CharField(source='requester.full_name', read_only=True, default=None)
    urgency_band = serializers.CharField(source='blood_request.urgency_band', read_only=True, default=None)

    class Meta:
        model = DonationHistory
        fields = '__all__'
