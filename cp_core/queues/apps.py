# cp_core/queues/apps.py
from __future__ import annotations

from django.apps import AppConfig


class QueuesConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "cp_core.queues"

    def ready(self) -> None:
        from django.db.models.signals import post_save

        from cp_core.patients.models import Patient
        from cp_core.queues import subscribers  # noqa: F401  (registers event handlers)

        post_save.connect(
            subscribers.on_patient_saved,
            sender=Patient,
            dispatch_uid="queues.refresh_on_patient_saved",
        )
