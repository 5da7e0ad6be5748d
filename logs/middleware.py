import logging
import time

from django.utils.deprecation import MiddlewareMixin

logger = logging.getLogger(__name__)

class LoggingMiddleware(MiddlewareMixin):
    def process_request(self, request):
        request.log_context = {
            'ip_address': self.get_client_ip(request),
            'request_path': request.path,
            'started_at': time.monotonic(),
        }
        return None

    def get_client_ip(self, request):
        x_forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
        if x_forwarded_for:
            ip = x_forwarded_for.split(',')[0].strip()
        else:
            ip = request.META.get('REMOTE_ADDR')
        return ip

    def process_response(self, request, response):
        context = getattr(request, 'log_context', None)
        if context is None:
            return response

        # JWT auth runs inside the DRF view, so the user is resolved only here
        user = getattr(request, 'user', None)
        user_id = user.id if user is not None and user.is_authenticated else None
        elapsed_ms = (time.monotonic() - context['started_at']) * 1000

        logger.info(
            f"{request.method} {request.path} - {response.status_code} - "
            f"{'user_id:%s' % user_id if user_id else 'anonymous'} - {elapsed_ms:.0f}ms",
            extra={
                'user_id': user_id,
                'ip_address': context['ip_address'],
                'request_path': context['request_path'],
            }
        )
        return response
