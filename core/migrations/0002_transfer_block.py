import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ("core", "0001_initial"),
        ("ledger", "0001_initial"),
    ]

    operations = [
        migrations.AddField(
            model_name="ownershiptransfer",
            name="block",
            field=models.OneToOneField(
                blank=True, null=True, on_delete=django.db.models.deletion.PROTECT,
                related_name="transfer", to="ledger.ownershipblock",
            ),
        ),
        migrations.AddConstraint(
            model_name="ownershiptransfer",
            constraint=models.CheckConstraint(
                condition=models.Q(
                    models.Q(("status", "completed"), ("block__isnull", False)),
                    models.Q(("status", "completed"), _negated=True),
                    _connector="OR",
                ),
                name="completed_transfer_has_block",
            ),
        ),
    ]
