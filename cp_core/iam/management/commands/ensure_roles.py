# cp_core/iam/management/commands/ensure_roles.py

from django.core.management.base import BaseCommand

from cp_core.iam.services.roles import ensure_workflow_roles
from cp_core.tenants.models import Tenant, TenantStatus


class Command(BaseCommand):
    help = "Ensure workflow capabilities and default roles exist for every active tenant (idempotent)."

    def add_arguments(self, parser):
        parser.add_argument("--tenant-code", dest="tenant_code", default=None)

    def handle(self, *args, **options):
        tenants = Tenant.objects.filter(status=TenantStatus.ACTIVE)
        if options.get("tenant_code"):
            tenants = tenants.filter(code=options["tenant_code"])

        count = 0
        for tenant in tenants.order_by("code"):
            ensure_workflow_roles(tenant)
            count += 1

        self.stdout.write(self.style.SUCCESS(f"Roles ensured for {count} tenant(s)."))
