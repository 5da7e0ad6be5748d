from rest_framework import status
from rest_framework.exceptions import APIException


class CareCircleError(APIException):
    """Base class for errors raised by the matching and lifecycle services"""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = 'Care Circle error'
    default_code = 'error'

    def __init__(self, detail=None, code=None):
        super().__init__(detail, code)
        self.message = str(self.detail)

    def __str__(self):
        return self.message


class ValidationError(CareCircleError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Invalid input'
    default_code = 'invalid'


class ParseError(CareCircleError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Malformed input'
    default_code = 'parse_error'


class NotFoundError(CareCircleError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = 'Not found'
    default_code = 'not_found'


class ExternalServiceError(CareCircleError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = 'External service unavailable'
    default_code = 'service_unavailable'
