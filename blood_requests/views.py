from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework import status
from django.utils import timezone

from carecircle.exceptions import CareCircleError
from donors.geo import Coordinate
from donors.matching import DonorRankingEngine
from donors.models import Donor
from .lifecycle import RequestLifecycleManager
from .models import BloodRequest, DonorNotification, DonationHistory
from .notifications import dispatch_request
from .serializers import (BloodRequestCreateSerializer, BloodRequestSerializer, DonationHistorySerializer,
                          DonorNotificationSerializer, DonorResponseSerializer)
import logging

logger = logging.getLogger(__name__)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def create_blood_request(request):
    try:
        serializer = BloodRequestCreateSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
        data = serializer.validated_data

        manager = RequestLifecycleManager()
        location = Coordinate(lng=data['longitude'], lat=data['latitude'])
        blood_request = manager.create_request(
            data['blood_group'],
            location,
            data['required_timeframe'],
            request.user.id,
            hospital_name=data['hospital_name'],
        )

        notified = 0
        if data['notify_donors']:
            ranking = DonorRankingEngine().rank(blood_request.blood_group, location)
            notified = len(dispatch_request(blood_request, ranking))

        return Response({
            'message': 'Blood request created successfully',
            'request': BloodRequestSerializer(blood_request).data,
            'notifications_sent': notified,
        }, status=status.HTTP_201_CREATED)
    except CareCircleError as e:
        return Response({'error': str(e)}, status=e.status_code)
    except Exception as e:
        logger.error(f"Request creation error: {str(e)}")
        return Response({'error': 'Failed to create request'}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def active_requests(request):
    try:
        requests = BloodRequest.objects.filter(
            status__in=BloodRequest.ACTIVE_STATUSES
        ).select_related('requester')
        serializer = BloodRequestSerializer(requests, many=True)
        return Response({
            'count': requests.count(),
            'requests': serializer.data
        })
    except Exception as e:
        logger.error(f"Active requests fetch error: {str(e)}")
        return Response({'error': 'Failed to fetch requests'}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def donor_notifications(request):
    try:
        donor = Donor.objects.get(user=request.user)

        notifications = DonorNotification.objects.filter(
            donor=donor,
            responded_at__isnull=True,
            is_expired=False,
            blood_request__status='PENDING',
        ).select_related('blood_request', 'blood_request__requester', 'donor__user')

        serializer = DonorNotificationSerializer(notifications, many=True)
        return Response({
            'count': notifications.count(),
            'notifications': serializer.data
        })
    except Donor.DoesNotExist:
        return Response({'error': 'Donor profile not found'}, status=status.HTTP_404_NOT_FOUND)
    except Exception as e:
        logger.error(f"Donor notifications error: {str(e)}")
        return Response({'error': 'Failed to fetch notifications'}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def view_notification(request, notification_id):
    try:
        notification = DonorNotification.objects.select_related(
            'donor__user', 'blood_request'
        ).get(id=notification_id)

        if notification.donor.user != request.user:
            return Response({'error': 'Permission denied'}, status=status.HTTP_403_FORBIDDEN)

        RequestLifecycleManager().record_view(notification)
        return Response(DonorNotificationSerializer(notification).data)
    except DonorNotification.DoesNotExist:
        return Response({'error': 'Notification not found'}, status=status.HTTP_404_NOT_FOUND)
    except Exception as e:
        logger.error(f"Notification view error: {str(e)}")
        return Response({'error': 'Failed to record view'}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def donor_response(request, notification_id):
    try:
        notification = DonorNotification.objects.select_related(
            'donor__user', 'blood_request__requester'
        ).get(id=notification_id)

        if notification.donor.user != request.user:
            return Response({'error': 'Permission denied'}, status=status.HTTP_403_FORBIDDEN)

        serializer = DonorResponseSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        response_type = serializer.validated_data['response']
        RequestLifecycleManager().record_response(notification, response_type)

        if response_type == 'ACCEPTED':
            message = 'Thank you for accepting the donation request!'
        else:
            message = 'Thank you for your response.'

        return Response({
            'message': message,
            'request_id': notification.blood_request_id,
            'request_status': notification.blood_request.status,
        })
    except DonorNotification.DoesNotExist:
        return Response({'error': 'Notification not found'}, status=status.HTTP_404_NOT_FOUND)
    except CareCircleError as e:
        return Response({'error': str(e)}, status=e.status_code)
    except Exception as e:
        logger.error(f"Donor response error: {str(e)}")
        return Response({'error': 'Failed to process response'}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)


def _requester_transition(request, request_id, action):
    try:
        blood_request = BloodRequest.objects.select_related('accepted_donor__user').get(id=request_id)

        manager = RequestLifecycleManager()
        if action == 'cancel':
            by_donor = (
                blood_request.accepted_donor is not None
                and blood_request.accepted_donor.user == request.user
            )
            if blood_request.requester != request.user and not by_donor:
                return Response({'error': 'Permission denied'}, status=status.HTTP_403_FORBIDDEN)
            manager.cancel(blood_request, by_donor=by_donor)
        else:
            if blood_request.requester != request.user:
                return Response({'error': 'Permission denied'}, status=status.HTTP_403_FORBIDDEN)
            getattr(manager, action)(blood_request)

        return Response({
            'message': f'Request {blood_request.get_status_display().lower()}',
            'request_id': blood_request.id,
            'new_status': blood_request.status,
        })
    except BloodRequest.DoesNotExist:
        return Response({'error': 'Request not found'}, status=status.HTTP_404_NOT_FOUND)
    except CareCircleError as e:
        return Response({'error': str(e)}, status=e.status_code)
    except Exception as e:
        logger.error(f"Request {action} error: {str(e)}")
        return Response({'error': f'Failed to {action} request'}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def start_request(request, request_id):
    return _requester_transition(request, request_id, 'start')


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def complete_request(request, request_id):
    return _requester_transition(request, request_id, 'complete')


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def cancel_request(request, request_id):
    return _requester_transition(request, request_id, 'cancel')


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def requester_history(request):
    """Accepted donations and future commitments for the signed-in requester"""
    try:
        accepted = DonationHistory.objects.filter(
            requester=request.user,
            status__in=('ACCEPTED', 'IN_PROGRESS', 'COMPLETED'),
        ).select_related('donor__user', 'blood_request')

        future = DonorNotification.objects.filter(
            blood_request__requester=request.user,
            response_type='FUTURE_DONATION',
        ).select_related('donor__user', 'blood_request').order_by('-responded_at')

        return Response({
            'accepted': DonationHistorySerializer(accepted, many=True).data,
            'future_commitments': DonorNotificationSerializer(future, many=True).data,
        })
    except Exception as e:
        logger.error(f"Requester history error: {str(e)}")
        return Response({'error': 'Failed to fetch history'}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def request_detail(request, request_id):
    try:
        blood_request = BloodRequest.objects.select_related('requester').get(id=request_id)
        return Response(BloodRequestSerializer(blood_request).data)
    except BloodRequest.DoesNotExist:
        return Response({'error': 'Request not found'}, status=status.HTTP_404_NOT_FOUND)
    except Exception as e:
        logger.error(f"Request detail error: {str(e)}")
        return Response({'error': 'Failed to fetch request'}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)
