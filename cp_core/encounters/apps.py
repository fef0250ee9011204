# cp_core/encounters/apps.py
from django.apps import AppConfig


class EncountersConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "cp_core.encounters"

    def ready(self):
        # registers the billing settlement hook
        import cp_core.encounters.services.auto_advance  # noqa: F401
