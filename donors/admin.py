from django.contrib import admin
from .models import Donor

@admin.register(Donor)
class DonorAdmin(admin.ModelAdmin):
    list_display = ('user', 'eligibility_score', 'reliability_score', 'total_donations', 'last_donation_date')
    list_filter = ('user__blood_group', 'user__is_active')
    search_fields = ('user__full_name', 'user__mobile_number')
    readonly_fields = ('eligibility_score', 'reliability_score')
