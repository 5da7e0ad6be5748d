import logging

from django.utils import timezone
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response

from carecircle.exceptions import CareCircleError
from .filters import DonorFilter
from .geo import Coordinate
from .matching import CompositeRanking, DonorRankingEngine, UIHeuristicRanking
from .models import Donor
from .serializers import (DonorDetailSerializer, DonorListSerializer, DonorSearchSerializer,
                          LocationSerializer, MapDonorSerializer)

logger = logging.getLogger(__name__)

STRATEGIES = {
    'composite': CompositeRanking,
    'ui_heuristic': UIHeuristicRanking,
}


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def donor_list(request):
    try:
        donors = Donor.objects.filter(user__is_active=True).select_related('user')

        donor_filter = DonorFilter(request.GET, queryset=donors)
        filtered_donors = donor_filter.qs

        serializer = DonorListSerializer(filtered_donors, many=True)
        return Response({
            'count': filtered_donors.count(),
            'donors': serializer.data
        })
    except Exception as e:
        logger.error(f"Donor list error: {str(e)}")
        return Response({'error': 'Failed to fetch donors'}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def donor_detail(request, donor_id):
    try:
        donor = Donor.objects.select_related('user').get(id=donor_id)
        serializer = DonorDetailSerializer(donor)
        return Response(serializer.data)
    except Donor.DoesNotExist:
        return Response({'error': 'Donor not found'}, status=status.HTTP_404_NOT_FOUND)
    except Exception as e:
        logger.error(f"Donor detail error: {str(e)}")
        return Response({'error': 'Failed to fetch donor details'}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def donor_profile(request):
    """Let donors view their own profile and scores"""
    try:
        donor = Donor.objects.select_related('user').get(user=request.user)
        serializer = DonorDetailSerializer(donor)
        return Response(serializer.data)
    except Donor.DoesNotExist:
        return Response({'error': 'Donor profile not found'}, status=status.HTTP_404_NOT_FOUND)
    except Exception as e:
        logger.error(f"Donor profile error: {str(e)}")
        return Response({'error': 'Failed to fetch donor profile'}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)


@api_view(['PUT'])
@permission_classes([IsAuthenticated])
def update_location(request, donor_id):
    try:
        donor = Donor.objects.select_related('user').get(id=donor_id)
        if donor.user != request.user:
            return Response({'error': 'Permission denied'}, status=status.HTTP_403_FORBIDDEN)

        serializer = LocationSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        donor.set_location(Coordinate(
            lng=serializer.validated_data['longitude'],
            lat=serializer.validated_data['latitude'],
        ))
        donor.location_updated_at = timezone.now()
        donor.save(update_fields=['current_location', 'location_updated_at'])

        return Response({'message': 'Location updated successfully'})
    except Donor.DoesNotExist:
        return Response({'error': 'Donor not found'}, status=status.HTTP_404_NOT_FOUND)
    except Exception as e:
        logger.error(f"Location update error: {str(e)}")
        return Response({'error': 'Failed to update location'}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def search_donors(request):
    """Rank eligible donors for a blood group around a point"""
    try:
        serializer = DonorSearchSerializer(data=request.query_params)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
        data = serializer.validated_data

        engine = DonorRankingEngine(strategy=STRATEGIES[data['strategy']]())
        result = engine.rank(
            data['blood_group'],
            Coordinate(lng=data['longitude'], lat=data['latitude']),
        )
        return Response(result.as_dict())
    except CareCircleError as e:
        return Response({'error': str(e)}, status=e.status_code)
    except Exception as e:
        logger.error(f"Donor search error: {str(e)}")
        return Response({'error': 'Failed to search donors'}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)


@api_view(['GET'])
@permission_classes([AllowAny])
def map_donors(request):
    """Active, reachable donors with a known location"""
    try:
        donors = Donor.objects.with_location().filter(
            user__is_active=True,
            user__notification_enabled=True,
        )
        serializer = MapDonorSerializer(donors, many=True)
        return Response({'donors': serializer.data})
    except Exception as e:
        logger.error(f"Map donors error: {str(e)}")
        return Response({'error': 'Failed to fetch donors'}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def donation_history(request, donor_id):
    """Donation history for a donor, newest first"""
    try:
        donor = Donor.objects.get(id=donor_id)

        from blood_requests.models import DonationHistory
        from blood_requests.serializers import DonationHistorySerializer

        donations = DonationHistory.objects.filter(donor=donor).select_related(
            'requester', 'blood_request'
        )
        serializer = DonationHistorySerializer(donations, many=True)

        return Response({
            'count': donations.count(),
            'donations': serializer.data
        })

    except Donor.DoesNotExist:
        return Response({'error': 'Donor not found'}, status=status.HTTP_404_NOT_FOUND)
    except Exception as e:
        logger.error(f"Donation history error: {str(e)}")
        return Response({'error': 'Failed to fetch donation history'}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)
