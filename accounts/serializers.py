from django.contrib.auth.password_validation import validate_password
from rest_framework import serializers

from carecircle.exceptions import ValidationError as DomainValidationError

from .models import User
from .services import validate_notification_preferences, validate_registration


class UserRegistrationSerializer(serializers.Serializer):
    """
    camelCase registration payload. Field rules live in accounts.services so
    the same checks run outside HTTP.
    """
    fullName = serializers.CharField()
    age = serializers.IntegerField()
    gender = serializers.ChoiceField(choices=User.GENDER_CHOICES)
    mobileNumber = serializers.CharField(max_length=20)
    city = serializers.CharField()
    bloodGroup = serializers.CharField()
    email = serializers.EmailField(required=False, allow_blank=True)
    password = serializers.CharField(write_only=True, validators=[validate_password])
    password2 = serializers.CharField(write_only=True)
    isDonor = serializers.BooleanField(required=False, default=False)
    lastDonationDate = serializers.DateField(required=False, allow_null=True)
    medicalHistory = serializers.JSONField(required=False)
    notificationPreferences = serializers.JSONField(required=False)

    def validate_mobileNumber(self, value):
        if User.objects.filter(mobile_number=value).exists():
            raise serializers.ValidationError('Mobile number is already registered')
        return value

    def validate(self, attrs):
        if attrs['password'] != attrs['password2']:
            raise serializers.ValidationError({"password": "Password fields didn't match."})
        try:
            attrs['normalised'] = validate_registration(attrs)
        except DomainValidationError as e:
            raise serializers.ValidationError(str(e))
        return attrs

    def create(self, validated_data):
        from donors.eligibility import eligibility_scorer
        from donors.models import Donor

        fields = validated_data['normalised']
        last_donation_date = fields.pop('last_donation_date')
        user = User.objects.create_user(
            username=fields['mobile_number'],
            email=validated_data.get('email', ''),
            password=validated_data['password'],
            user_type='donor' if validated_data['isDonor'] else 'requester',
            **fields
        )

        if validated_data['isDonor']:
            donor = Donor.objects.create(user=user, last_donation_date=last_donation_date)
            eligibility_scorer.recalculate_and_update(donor)
        return user


class UserLoginSerializer(serializers.Serializer):
    mobileNumber = serializers.CharField()
    password = serializers.CharField()


class OTPRequestSerializer(serializers.Serializer):
    mobileNumber = serializers.CharField()


class OTPVerifySerializer(serializers.Serializer):
    mobileNumber = serializers.CharField()
    otp = serializers.CharField()


class NotificationPreferencesSerializer(serializers.Serializer):
    notificationEnabled = serializers.BooleanField(required=False)
    quietHoursStart = serializers.CharField(required=False, allow_null=True, allow_blank=True)
    quietHoursEnd = serializers.CharField(required=False, allow_null=True, allow_blank=True)

    def validate(self, attrs):
        try:
            validate_notification_preferences(attrs)
        except DomainValidationError as e:
            raise serializers.ValidationError(str(e))
        return attrs


class UserProfileSerializer(serializers.ModelSerializer):
    is_donor = serializers.SerializerMethodField()

    class Meta:
        model = User
        fields = ('id', 'username', 'email', 'user_type', 'full_name', 'age', 'gender',
                  'mobile_number', 'mobile_verified', 'city', 'blood_group', 'medical_history',
                  'notification_enabled', 'quiet_hours_start', 'quiet_hours_end', 'is_donor')

    def get_is_donor(self, obj):
        return hasattr(obj, 'donor_profile')
