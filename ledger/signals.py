from django.db.models.signals import pre_delete, pre_save
from django.dispatch import receiver

from ledger.exceptions import BlockImmutableError
from ledger.models import OwnershipBlock


@receiver(pre_save, sender=OwnershipBlock)
def forbid_block_update(sender, instance: OwnershipBlock, **kwargs):
    """
    A block is written once. Any later save() through the ORM (admin, shell,
    services) is refused; only raw queryset updates bypass this, and those
    are what verify_chain is there to catch.
    """
    if instance._state.adding:
        return
    raise BlockImmutableError(
        f"Ownership block {instance.block_number} of product {instance.product_id} is immutable"
    )


@receiver(pre_delete, sender=OwnershipBlock)
def forbid_block_delete(sender, instance: OwnershipBlock, **kwargs):
    raise BlockImmutableError(
        f"Ownership block {instance.block_number} of product {instance.product_id} cannot be deleted"
    )
