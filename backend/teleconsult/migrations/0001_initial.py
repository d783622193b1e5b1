import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models

import teleconsult.models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="UserProfile",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("role", models.CharField(choices=[("doctor", "Doctor"), ("patient", "Patient"), ("admin", "Admin")], default="patient", max_length=10)),
                ("user", models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name="profile", to=settings.AUTH_USER_MODEL)),
            ],
        ),
        migrations.CreateModel(
            name="ConsultationSession",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("consultation_id", models.CharField(default=teleconsult.models._new_consultation_id, editable=False, max_length=64, unique=True)),
                ("doctor_id", models.PositiveIntegerField(db_index=True)),
                ("patient_id", models.PositiveIntegerField(db_index=True)),
                ("status", models.CharField(choices=[("ongoing", "Ongoing"), ("completed", "Completed"), ("cancelled", "Cancelled")], default="ongoing", max_length=20)),
                ("room_name", models.CharField(max_length=120)),
                ("consultation_type", models.CharField(default="video", max_length=20)),
                ("notes", models.TextField(blank=True)),
                ("cancel_reason", models.TextField(blank=True)),
                ("start_time", models.DateTimeField(auto_now_add=True)),
                ("end_time", models.DateTimeField(blank=True, null=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "ordering": ["-start_time", "-id"],
                "indexes": [models.Index(fields=["doctor_id", "patient_id", "status"], name="consult_pair_status_idx")],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("status", "ongoing")),
                        fields=("doctor_id", "patient_id"),
                        name="unique_ongoing_consultation",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="QueueEntry",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("doctor_id", models.PositiveIntegerField(db_index=True)),
                ("patient_id", models.PositiveIntegerField(db_index=True)),
                ("status", models.CharField(choices=[("waiting", "Waiting"), ("in_consultation", "In consultation"), ("left", "Left")], default="waiting", max_length=20)),
                ("room_name", models.CharField(blank=True, max_length=120)),
                ("joined_at", models.DateTimeField(auto_now_add=True)),
                ("left_at", models.DateTimeField(blank=True, null=True)),
            ],
            options={
                "ordering": ["joined_at", "id"],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("status__in", ["waiting", "in_consultation"])),
                        fields=("doctor_id", "patient_id"),
                        name="unique_active_queue_entry",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="DoctorPresence",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("doctor_id", models.PositiveIntegerField(unique=True)),
                ("is_available", models.BooleanField(default=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
        ),
        migrations.CreateModel(
            name="VideoRoom",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("sid", models.CharField(default=teleconsult.models._new_room_sid, editable=False, max_length=64, unique=True)),
                ("unique_name", models.CharField(db_index=True, max_length=120)),
                ("status", models.CharField(choices=[("in-progress", "In progress"), ("completed", "Completed")], default="in-progress", max_length=20)),
                ("date_created", models.DateTimeField(auto_now_add=True)),
                ("date_updated", models.DateTimeField(auto_now=True)),
            ],
            options={
                "ordering": ["-date_created", "-id"],
            },
        ),
        migrations.CreateModel(
            name="RoomParticipant",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("sid", models.CharField(default=teleconsult.models._new_participant_sid, editable=False, max_length=64, unique=True)),
                ("identity", models.CharField(max_length=64)),
                ("status", models.CharField(choices=[("connected", "Connected"), ("disconnected", "Disconnected")], default="connected", max_length=20)),
                ("date_created", models.DateTimeField(auto_now_add=True)),
                ("date_updated", models.DateTimeField(auto_now=True)),
                ("room", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="participants", to="teleconsult.videoroom")),
            ],
            options={
                "ordering": ["date_created", "id"],
                "constraints": [
                    models.UniqueConstraint(fields=("room", "identity"), name="unique_room_identity"),
                ],
            },
        ),
    ]
