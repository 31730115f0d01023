from __future__ import annotations

import json
import logging

from django.core.management.base import BaseCommand, CommandError

from patients.services.duplicates import DuplicateDetector

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = "Lists groups of suspected duplicate patients in one tenant (read-only)."

    def add_arguments(self, parser):
        parser.add_argument("--tenant", required=True, help="Tenant id to scan.")
        parser.add_argument(
            "--json",
            action="store_true",
            help="Print groups as JSON (ids only, no patient details).",
        )

    def handle(self, *args, **options):
        tenant_id = (options["tenant"] or "").strip()
        if not tenant_id:
            raise CommandError("--tenant must not be blank.")

        groups = DuplicateDetector().scan(tenant_id)

        if options["json"]:
            payload = [
                {"match_type": g.match_type, "patient_ids": list(g.patient_ids)}
                for g in groups
            ]
            self.stdout.write(json.dumps({"tenant_id": tenant_id, "count": len(groups), "groups": payload}))
            return

        if not groups:
            self.stdout.write(self.style.SUCCESS(f"No duplicate groups in tenant {tenant_id}."))
            return

        for group in groups:
            self.stdout.write(f"[{group.match_type}] {', '.join(group.patient_ids)}")
        self.stdout.write(self.style.WARNING(f"{len(groups)} duplicate group(s) in tenant {tenant_id}."))
