from __future__ import annotations

import uuid

from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="SysAuditLog",
            fields=[
                ("id", models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False, serialize=False)),
                ("action", models.CharField(max_length=64, db_index=True)),
                ("entity_type", models.CharField(max_length=128)),
                ("entity_id", models.CharField(max_length=64, blank=True)),
                ("actor_email", models.EmailField(blank=True, max_length=254)),
                ("payload", models.JSONField(default=dict, blank=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={"db_table": "SYS_AUDIT_LOG", "ordering": ["-created_at"]},
        ),
    ]
