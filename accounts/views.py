from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework_simplejwt.tokens import RefreshToken
from django.contrib.auth import authenticate
from carecircle.exceptions import CareCircleError
from .models import User
from .otp import OTPStore
from .services import configure_notification_preferences
import logging
from .serializers import (
    UserRegistrationSerializer, UserLoginSerializer, UserProfileSerializer,
    OTPRequestSerializer, OTPVerifySerializer, NotificationPreferencesSerializer
)

logger = logging.getLogger(__name__)


@api_view(['POST'])
@permission_classes([AllowAny])
def register(request):
    try:
        serializer = UserRegistrationSerializer(data=request.data)
        if serializer.is_valid():
            user = serializer.save()
            is_donor = serializer.validated_data['isDonor']

            logger.info(f"New {'donor' if is_donor else 'requester'} registered: {user.mobile_number}")
            return Response({
                'message': 'User registered successfully',
                'user_id': user.id,
                'is_donor': is_donor
            }, status=status.HTTP_201_CREATED)

        return Response({
            'error': 'Registration failed',
            'details': serializer.errors
        }, status=status.HTTP_400_BAD_REQUEST)

    except Exception as e:
        logger.error(f"Registration error: {str(e)}")
        return Response({
            'error': 'Registration failed due to server error'
        }, status=status.HTTP_500_INTERNAL_SERVER_ERROR)


@api_view(['POST'])
@permission_classes([AllowAny])
def user_login(request):
    try:
        serializer = UserLoginSerializer(data=request.data)
        if serializer.is_valid():
            mobile_number = serializer.validated_data['mobileNumber']
            password = serializer.validated_data['password']

            user = authenticate(username=mobile_number, password=password)

            if user:
                refresh = RefreshToken.for_user(user)
                logger.info(f"User logged in: {mobile_number}")

                return Response({
                    'access': str(refresh.access_token),
                    'refresh': str(refresh),
                    'user': UserProfileSerializer(user).data
                }, status=status.HTTP_200_OK)

            return Response({
                'error': 'Invalid credentials'
            }, status=status.HTTP_401_UNAUTHORIZED)

        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
    except Exception as e:
        logger.error(f"Login error: {str(e)}")
        return Response({'error': 'Login failed'}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def user_profile(request):
    try:
        serializer = UserProfileSerializer(request.user)
        return Response(serializer.data)
    except Exception as e:
        logger.error(f"Profile fetch error: {str(e)}")
        return Response({'error': 'Profile fetch failed'}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)


@api_view(['POST'])
@permission_classes([AllowAny])
def send_otp(request):
    serializer = OTPRequestSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
    try:
        result = OTPStore().generate(serializer.validated_data['mobileNumber'])
        return Response(result)
    except CareCircleError as e:
        return Response({'error': str(e)}, status=e.status_code)


@api_view(['POST'])
@permission_classes([AllowAny])
def verify_otp(request):
    serializer = OTPVerifySerializer(data=request.data)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
    try:
        mobile_number = serializer.validated_data['mobileNumber']
        result = OTPStore().verify(mobile_number, serializer.validated_data['otp'])
        User.objects.filter(mobile_number=mobile_number).update(mobile_verified=True)
        return Response(result)
    except CareCircleError as e:
        return Response({'error': str(e)}, status=e.status_code)


@api_view(['PUT'])
@permission_classes([IsAuthenticated])
def notification_preferences(request):
    try:
        serializer = NotificationPreferencesSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        config = configure_notification_preferences(request.user.id, serializer.validated_data)
        user = request.user
        user.notification_enabled = config['notification_enabled']
        user.quiet_hours_start = config['quiet_hours_start']
        user.quiet_hours_end = config['quiet_hours_end']
        user.save(update_fields=['notification_enabled', 'quiet_hours_start', 'quiet_hours_end'])

        return Response(UserProfileSerializer(user).data)
    except CareCircleError as e:
        return Response({'error': str(e)}, status=e.status_code)
    except Exception as e:
        logger.error(f"Preferences update error: {str(e)}")
        return Response({'error': 'Failed to update preferences'}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)
