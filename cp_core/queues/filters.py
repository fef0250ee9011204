# cp_core/queues/filters.py
import django_filters

from cp_core.encounters.stages import RoutingStatus, Stage
from cp_core.queues.models import QueueProjectionRow


class QueueRowFilter(django_filters.FilterSet):
    current_stage = django_filters.ChoiceFilter(choices=Stage.choices)
    routing_status = django_filters.ChoiceFilter(choices=RoutingStatus.choices)
    has_unpaid_items = django_filters.BooleanFilter()

    class Meta:
        model = QueueProjectionRow
        fields = ["current_stage", "routing_status", "has_unpaid_items"]
