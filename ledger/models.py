from __future__ import annotations
from django.db import models
from django.db.models import Q
from django.utils import timezone
from django.utils.translation import gettext_lazy as _


class TransferType(models.TextChoices):
    INITIAL = "initial", _("Initial registration")
    TRANSFER = "transfer", _("Transfer")
    SALE = "sale", _("Sale")
    DISTRIBUTION = "distribution", _("Distribution")
    RETURN = "return", _("Return")
    REQUEST = "request", _("Request")


class OwnershipBlock(models.Model):
    """
    One custody event of a product: who holds it, who handed it over,
    and a SHA-256 link to the previous block of the same product.
    Rows are never edited or deleted (see ledger.signals).
    """
    product = models.ForeignKey(
        "core.Product",
        on_delete=models.PROTECT,
        related_name="ownership_blocks",
    )
    block_number = models.PositiveIntegerField()

    # custodian identity as of this block
    owner_id = models.UUIDField(db_index=True)
    role = models.CharField(max_length=32)
    username = models.CharField(max_length=150)
    name = models.CharField(max_length=200)

    added_by = models.UUIDField()
    can_edit_fields = models.JSONField(default=list, blank=True)
    transfer_type = models.CharField(max_length=16, choices=TransferType.choices)

    previous_owner_hash = models.CharField(max_length=64, null=True, blank=True)
    ownership_hash = models.CharField(max_length=64, db_index=True)

    created_at = models.DateTimeField(default=timezone.now, db_index=True)

    class Meta:
        ordering = ["product_id", "block_number"]
        constraints = [
            models.UniqueConstraint(
                fields=["product", "block_number"],
                name="ownership_block_unique_number_per_product",
            ),
            models.CheckConstraint(
                condition=Q(block_number__gte=1),
                name="ownership_block_number_positive",
            ),
            models.CheckConstraint(
                condition=Q(block_number=1, previous_owner_hash__isnull=True)
                | (~Q(block_number=1) & Q(previous_owner_hash__isnull=False)),
                name="ownership_block_genesis_has_no_predecessor",
            ),
        ]
        indexes = [
            models.Index(fields=["product", "-block_number"], name="ledger_owne_product_1c7e52_idx"),
        ]

    @property
    def is_genesis(self) -> bool:
        return self.block_number == 1

    def __str__(self) -> str:
        return f"{self.product_id} block {self.block_number} {self.ownership_hash[:10]}..."
