from django.urls import path
from . import views

urlpatterns = [
    path('register/', views.register, name='register'),
    path('login/', views.user_login, name='user-login'),
    path('profile/', views.user_profile, name='user-profile'),
    path('otp/send/', views.send_otp, name='send-otp'),
    path('otp/verify/', views.verify_otp, name='verify-otp'),
    path('preferences/', views.notification_preferences, name='notification-preferences'),
]
