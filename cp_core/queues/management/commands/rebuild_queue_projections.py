# cp_core/queues/management/commands/rebuild_queue_projections.py
from django.core.management.base import BaseCommand, CommandError

from cp_core.facilities.models import Facility
from cp_core.queues.services import QueueProjectionService


class Command(BaseCommand):
    help = "Recompute dashboard queue rows from encounters (all facilities, or one)."

    def add_arguments(self, parser):
        parser.add_argument("--tenant-id", type=str, default=None)
        parser.add_argument("--facility-id", type=str, default=None)

    def handle(self, *args, **opts):
        facilities = Facility.objects.filter(is_active=True)
        if opts["tenant_id"]:
            facilities = facilities.filter(tenant_id=opts["tenant_id"])
        if opts["facility_id"]:
            facilities = facilities.filter(id=opts["facility_id"])

        if opts["facility_id"] and not facilities.exists():
            raise CommandError(f"Facility {opts['facility_id']} not found.")

        total = 0
        for facility in facilities.order_by("tenant_id", "code"):
            created = QueueProjectionService.rebuild_facility(tenant_id=facility.tenant_id, facility_id=facility.id)
            total += created
            self.stdout.write(f"{facility.code}: {created} queue rows")

        self.stdout.write(self.style.SUCCESS(f"Rebuilt queue projections ({total} rows)."))
