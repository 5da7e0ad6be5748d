from django.urls import path
from . import views

urlpatterns = [
    path('', views.donor_list, name='donor-list'),  # /api/donors/
    path('search/', views.search_donors, name='donor-search'),  # /api/donors/search/
    path('map/', views.map_donors, name='donor-map'),  # /api/donors/map/
    path('me/', views.donor_profile, name='donor-profile'),  # /api/donors/me/
    path('<int:donor_id>/', views.donor_detail, name='donor-detail'),  # /api/donors/{id}/
    path('<int:donor_id>/location/', views.update_location, name='donor-location'),  # /api/donors/{id}/location/
    path('<int:donor_id>/history/', views.donation_history, name='donor-history'),  # /api/donors/{id}/history/
]
