import uuid

import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models

import patients.models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Patient",
            fields=[
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("tenant_id", models.CharField(db_index=True, max_length=64)),
                ("organization_id", models.CharField(blank=True, default="", max_length=64)),
                ("clinic_id", models.CharField(blank=True, max_length=64, null=True)),
                ("patient_number", models.CharField(blank=True, max_length=32, null=True)),
                ("first_name", models.CharField(max_length=100)),
                ("last_name", models.CharField(max_length=100)),
                ("middle_name", models.CharField(blank=True, max_length=100, null=True)),
                ("date_of_birth", models.DateField()),
                (
                    "gender",
                    models.CharField(
                        choices=[("male", "Male"), ("female", "Female"), ("other", "Other"), ("unknown", "Unknown")],
                        default="unknown",
                        max_length=10,
                    ),
                ),
                ("contacts", models.JSONField(blank=True, default=patients.models.default_contacts)),
                ("medical", models.JSONField(blank=True, default=patients.models.default_medical)),
                ("tags", models.JSONField(blank=True, default=list)),
                ("notes", models.TextField(blank=True, default="")),
                ("consent", models.JSONField(blank=True, default=dict)),
                ("communication_preferences", models.JSONField(blank=True, default=dict)),
                ("insurance", models.JSONField(blank=True, default=list)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("active", "Active"),
                            ("inactive", "Inactive"),
                            ("archived", "Archived"),
                            ("deceased", "Deceased"),
                        ],
                        db_index=True,
                        default="active",
                        max_length=10,
                    ),
                ),
                ("version", models.PositiveIntegerField(default=1)),
                ("is_deleted", models.BooleanField(db_index=True, default=False)),
                ("deleted_at", models.DateTimeField(blank=True, null=True)),
                ("deleted_by", models.CharField(blank=True, max_length=64, null=True)),
                ("created_by", models.CharField(blank=True, max_length=64, null=True)),
                ("updated_by", models.CharField(blank=True, max_length=64, null=True)),
            ],
            options={
                "db_table": "patient",
                "ordering": ["last_name", "first_name"],
                "base_manager_name": "all_objects",
                "default_manager_name": "objects",
                "indexes": [
                    models.Index(fields=["tenant_id", "is_deleted"], name="patient_tenant_deleted_idx"),
                    models.Index(fields=["tenant_id", "last_name", "date_of_birth"], name="patient_tenant_name_dob_idx"),
                ],
            },
            managers=[
                ("objects", patients.models.SoftDeleteManager()),
                ("all_objects", django.db.models.manager.Manager()),
            ],
        ),
        migrations.CreateModel(
            name="PatientRelationship",
            fields=[
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("tenant_id", models.CharField(db_index=True, max_length=64)),
                (
                    "relationship_type",
                    models.CharField(
                        choices=[
                            ("parent", "Parent"),
                            ("child", "Child"),
                            ("spouse", "Spouse"),
                            ("sibling", "Sibling"),
                            ("guardian", "Guardian"),
                            ("other", "Other"),
                        ],
                        max_length=16,
                    ),
                ),
                ("notes", models.TextField(blank=True, default="")),
                (
                    "patient",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="relationships",
                        to="patients.patient",
                    ),
                ),
                (
                    "related_patient",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="related_to",
                        to="patients.patient",
                    ),
                ),
            ],
            options={
                "db_table": "patient_relationship",
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="PatientTimelineEvent",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("tenant_id", models.CharField(db_index=True, max_length=64)),
                ("event_type", models.CharField(max_length=64)),
                ("title", models.CharField(max_length=255)),
                ("description", models.TextField(blank=True, default="")),
                ("actor_id", models.CharField(blank=True, max_length=64, null=True)),
                ("metadata", models.JSONField(blank=True, default=dict)),
                ("occurred_at", models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
                (
                    "patient",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="timeline_events",
                        to="patients.patient",
                    ),
                ),
            ],
            options={
                "db_table": "patient_timeline_event",
                "ordering": ["-occurred_at"],
                "indexes": [
                    models.Index(fields=["tenant_id", "patient", "occurred_at"], name="timeline_patient_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="PatientMergeHistory",
            fields=[
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("tenant_id", models.CharField(db_index=True, max_length=64)),
                (
                    "duplicate_patient_id",
                    models.UUIDField(help_text="UUID of the patient that was merged into the master (now soft-deleted)."),
                ),
                (
                    "duplicate_snapshot",
                    models.JSONField(default=dict, help_text="Snapshot of the duplicate patient at time of merge."),
                ),
                ("merged_by", models.CharField(blank=True, max_length=64, null=True)),
                ("fields_updated", models.JSONField(default=list, help_text="Fields updated on the master patient.")),
                (
                    "references_reassigned",
                    models.JSONField(default=dict, help_text="Downstream references moved to the master."),
                ),
                (
                    "master_patient",
                    models.ForeignKey(
                        help_text="The patient record that was kept.",
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="merge_history",
                        to="patients.patient",
                    ),
                ),
            ],
            options={
                "db_table": "patient_merge_history",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["tenant_id", "master_patient", "created_at"], name="merge_history_master_idx"),
                    models.Index(fields=["duplicate_patient_id"], name="merge_history_duplicate_idx"),
                ],
            },
        ),
    ]
