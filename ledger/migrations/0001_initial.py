import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("core", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="OwnershipBlock",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("block_number", models.PositiveIntegerField()),
                ("owner_id", models.UUIDField(db_index=True)),
                ("role", models.CharField(max_length=32)),
                ("username", models.CharField(max_length=150)),
                ("name", models.CharField(max_length=200)),
                ("added_by", models.UUIDField()),
                ("can_edit_fields", models.JSONField(blank=True, default=list)),
                ("transfer_type", models.CharField(
                    choices=[("initial", "Initial registration"), ("transfer", "Transfer"), ("sale", "Sale"), ("distribution", "Distribution"), ("return", "Return"), ("request", "Request")],
                    max_length=16,
                )),
                ("previous_owner_hash", models.CharField(blank=True, max_length=64, null=True)),
                ("ownership_hash", models.CharField(db_index=True, max_length=64)),
                ("created_at", models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
                ("product", models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT,
                    related_name="ownership_blocks", to="core.product",
                )),
            ],
            options={
                "ordering": ["product_id", "block_number"],
                "indexes": [models.Index(fields=["product", "-block_number"], name="ledger_owne_product_1c7e52_idx")],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("product", "block_number"),
                        name="ownership_block_unique_number_per_product",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("block_number__gte", 1)),
                        name="ownership_block_number_positive",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            models.Q(("block_number", 1), ("previous_owner_hash__isnull", True)),
                            models.Q(models.Q(("block_number", 1), _negated=True), ("previous_owner_hash__isnull", False)),
                            _connector="OR",
                        ),
                        name="ownership_block_genesis_has_no_predecessor",
                    ),
                ],
            },
        ),
    ]
