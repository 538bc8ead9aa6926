import uuid

import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Participant",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("username", models.CharField(max_length=150, unique=True)),
                ("name", models.CharField(max_length=200)),
                ("email", models.EmailField(max_length=254, unique=True)),
                ("role", models.CharField(
                    choices=[("farmer", "Farmer"), ("distributor", "Distributor"), ("retailer", "Retailer"), ("consumer", "Consumer")],
                    db_index=True, default="farmer", max_length=16,
                )),
                ("is_active", models.BooleanField(db_index=True, default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "ordering": ["username"],
                "indexes": [models.Index(fields=["role", "is_active"], name="core_partic_role_4f0c2e_idx")],
            },
        ),
        migrations.CreateModel(
            name="Product",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("name", models.CharField(max_length=200)),
                ("category", models.CharField(max_length=100)),
                ("description", models.TextField(blank=True)),
                ("quantity", models.DecimalField(decimal_places=3, max_digits=12)),
                ("unit", models.CharField(max_length=16)),
                ("farm_name", models.CharField(max_length=200)),
                ("location", models.CharField(max_length=255)),
                ("harvest_date", models.DateTimeField()),
                ("certifications", models.JSONField(blank=True, default=list)),
                ("batch_id", models.CharField(max_length=32, unique=True)),
                ("qr_code", models.CharField(max_length=500)),
                ("status", models.CharField(
                    choices=[("registered", "Registered"), ("in_transit", "In transit"), ("in_store", "In store"), ("sold", "Sold")],
                    db_index=True, default="registered", max_length=16,
                )),
                ("distributor_name", models.CharField(blank=True, max_length=200)),
                ("warehouse_location", models.CharField(blank=True, max_length=255)),
                ("dispatch_date", models.DateTimeField(blank=True, null=True)),
                ("price", models.DecimalField(blank=True, decimal_places=2, max_digits=12, null=True)),
                ("payment_proof_url", models.URLField(blank=True, max_length=500)),
                ("store_name", models.CharField(blank=True, max_length=200)),
                ("store_location", models.CharField(blank=True, max_length=255)),
                ("arrival_date", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("owner", models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT,
                    related_name="owned_products", to="core.participant",
                )),
            ],
            options={
                "ordering": ["-created_at", "batch_id"],
                "indexes": [
                    models.Index(fields=["owner", "status"], name="core_produc_owner_i_6a1b3d_idx"),
                    models.Index(fields=["category"], name="core_produc_categor_9e2c71_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="ProductEvent",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("event_type", models.CharField(
                    choices=[("ownership_registration", "Ownership registration"), ("ownership_transfer", "Ownership transfer"), ("field_update", "Field update")],
                    max_length=32,
                )),
                ("message", models.TextField(blank=True)),
                ("extra", models.JSONField(blank=True, default=dict)),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                ("actor", models.ForeignKey(
                    blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL,
                    related_name="product_events", to="core.participant",
                )),
                ("product", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name="events", to="core.product",
                )),
            ],
            options={
                "ordering": ["created_at", "id"],
                "indexes": [models.Index(fields=["product", "event_type"], name="core_produc_product_3d8f40_idx")],
            },
        ),
        migrations.CreateModel(
            name="OwnershipTransfer",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("transfer_type", models.CharField(
                    choices=[("initial", "Initial registration"), ("transfer", "Transfer"), ("sale", "Sale"), ("distribution", "Distribution"), ("return", "Return"), ("request", "Request")],
                    default="transfer", max_length=16,
                )),
                ("status", models.CharField(
                    choices=[("pending", "Pending"), ("completed", "Completed"), ("rejected", "Rejected")],
                    db_index=True, default="pending", max_length=16,
                )),
                ("notes", models.TextField(blank=True)),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("resolved_at", models.DateTimeField(blank=True, null=True)),
                ("from_user", models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT,
                    related_name="outgoing_transfers", to="core.participant",
                )),
                ("product", models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT,
                    related_name="transfers", to="core.product",
                )),
                ("to_user", models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT,
                    related_name="incoming_transfers", to="core.participant",
                )),
            ],
            options={
                "ordering": ["-created_at", "id"],
                "indexes": [
                    models.Index(fields=["product", "status"], name="core_ownersh_product_b27e19_idx"),
                    models.Index(fields=["to_user", "status"], name="core_ownersh_to_user_5c0a8f_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("status", "pending")),
                        fields=("product", "to_user"),
                        name="unique_pending_transfer_per_recipient",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("from_user", models.F("to_user")), _negated=True),
                        name="transfer_not_to_self",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Notification",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("title", models.CharField(max_length=200)),
                ("message", models.TextField()),
                ("type", models.CharField(
                    choices=[("transfer_request", "Transfer request"), ("transfer_accepted", "Transfer accepted"), ("transfer_rejected", "Transfer rejected"), ("info", "Info")],
                    default="info", max_length=32,
                )),
                ("is_read", models.BooleanField(db_index=True, default=False)),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                ("product", models.ForeignKey(
                    blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL,
                    related_name="notifications", to="core.product",
                )),
                ("recipient", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name="notifications", to="core.participant",
                )),
            ],
            options={
                "ordering": ["-created_at", "id"],
                "indexes": [models.Index(fields=["recipient", "is_read"], name="core_notifi_recipie_8b4d27_idx")],
            },
        ),
    ]
