from django.urls import path
from . import views

urlpatterns = [
    path('', views.create_blood_request, name='create-blood-request'),  # /api/requests/
    path('active/', views.active_requests, name='active-requests'),  # /api/requests/active/
    path('history/', views.requester_history, name='requester-history'),  # /api/requests/history/
    path('<int:request_id>/', views.request_detail, name='request-detail'),  # /api/requests/{id}/
    path('<int:request_id>/start/', views.start_request, name='start-request'),
    path('<int:request_id>/complete/', views.complete_request, name='complete-request'),
    path('<int:request_id>/cancel/', views.cancel_request, name='cancel-request'),
    path('notifications/', views.donor_notifications, name='donor-notifications'),  # /api/requests/notifications/
    path('notifications/<int:notification_id>/view/', views.view_notification, name='view-notification'),
    path('notifications/<int:notification_id>/respond/', views.donor_response, name='donor-response'),
]
