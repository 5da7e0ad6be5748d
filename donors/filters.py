import django_filters

from accounts.models import BLOOD_GROUP_CHOICES

from .models import Donor


class DonorFilter(django_filters.FilterSet):
    blood_group = django_filters.ChoiceFilter(field_name='user__blood_group', choices=BLOOD_GROUP_CHOICES)
    city = django_filters.CharFilter(field_name='user__city', lookup_expr='icontains')
    min_eligibility = django_filters.NumberFilter(field_name='eligibility_score', lookup_expr='gte')
    min_reliability = django_filters.NumberFilter(field_name='reliability_score', lookup_expr='gte')
    has_location = django_filters.BooleanFilter(method='filter_has_location')
    eligible_to_donate = django_filters.BooleanFilter(method='filter_eligible_to_donate')

    class Meta:
        model = Donor
        fields = ['last_donation_date']

    def filter_has_location(self, queryset, name, value):
        if value:
            return queryset.exclude(current_location='')
        return queryset.filter(current_location='')

    def filter_eligible_to_donate(self, queryset, name, value):
        """Donors whose stored eligibility score is above zero"""
        if value:
            return queryset.filter(eligibility_score__gt=0)
        return queryset.filter(eligibility_score__lte=0)
