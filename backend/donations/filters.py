import django_filters
from django.db.models import Q

from .models import DonatedItem


class DonatedItemFilter(django_filters.FilterSet):
    """Query-string filters for the donated item list"""

    search = django_filters.CharFilter(method='filter_search', label='Search')
    status = django_filters.ChoiceFilter(field_name='current_status', choices=DonatedItem.STATUS_CHOICES)
    category = django_filters.CharFilter(field_name='category', lookup_expr='iexact')
    donor = django_filters.NumberFilter(field_name='donor_id', lookup_expr='exact')
    program = django_filters.NumberFilter(field_name='program_id', lookup_expr='exact')
    date_from = django_filters.DateFilter(field_name='date_donated', lookup_expr='date__gte')
    date_to = django_filters.DateFilter(field_name='date_donated', lookup_expr='date__lte')

    class Meta:
        model = DonatedItem
        fields = ['search', 'status', 'category', 'donor', 'program', 'date_from', 'date_to']

    def filter_search(self, queryset, name, value):
        """Match item type, category or donor name/email; every word must match"""
        if not value:
            return queryset
        for word in value.split():
            queryset = queryset.filter(
                Q(item_type__icontains=word)
                | Q(category__icontains=word)
                | Q(donor__first_name__icontains=word)
                | Q(donor__last_name__icontains=word)
                | Q(donor__email__icontains=word)
            )
        return queryset
