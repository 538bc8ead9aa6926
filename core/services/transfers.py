# core/services/transfers.py
from __future__ import annotations

import logging

from django.db import IntegrityError, transaction
from django.utils.timezone import now
from rest_framework.exceptions import ValidationError

from core.exceptions import (
    InvalidTransferState,
    NotOwner,
    NotRecipient,
    TransferNotFound,
)
from core.models import (
    Notification,
    OwnershipTransfer,
    Participant,
    Product,
    ProductEvent,
    editable_fields_for_role,
)
from core.services.directory import get_participant, same_participant
from core.services.events import record_event
from core.services.notifications import notify
from core.services.products import get_product
from ledger.exceptions import ChainIntegrityError
from ledger.models import OwnershipBlock, TransferType
from ledger.services import append_block, verify_chain


__all__ = ["request_transfer", "accept_transfer", "reject_transfer", "get_transfer"]

logger = logging.getLogger(__name__)

# Product.status once custody reaches a participant of this role
STATUS_FOR_ROLE = {
    Participant.Role.FARMER.value: Product.Status.REGISTERED,
    Participant.Role.DISTRIBUTOR.value: Product.Status.IN_TRANSIT,
    Participant.Role.RETAILER.value: Product.Status.IN_STORE,
    Participant.Role.CONSUMER.value: Product.Status.SOLD,
}

REQUESTABLE_TYPES = {choice for choice in TransferType.values if choice != TransferType.INITIAL}


# ========================
# HELPERS
# ========================

def get_transfer(transfer_id, *, lock: bool = False) -> OwnershipTransfer:
    try:
        pk = int(transfer_id)
    except (TypeError, ValueError):
        raise TransferNotFound()
    qs = OwnershipTransfer.objects.select_for_update() if lock else OwnershipTransfer.objects.all()
    try:
        return qs.get(pk=pk)
    except OwnershipTransfer.DoesNotExist:
        raise TransferNotFound()


def _check_resolvable(transfer: OwnershipTransfer, acting_user_id) -> None:
    """Same gate for accept and reject: still pending, and only the recipient acts."""
    if transfer.status != OwnershipTransfer.Status.PENDING:
        raise InvalidTransferState(f"Transfer is already {transfer.status}.")
    if not same_participant(transfer.to_user_id, acting_user_id):
        raise NotRecipient()


# =================
# DOMAIN OPERATIONS
# =================

@transaction.atomic
def request_transfer(
    product_id,
    from_user_id,
    to_user_id,
    transfer_type: str = TransferType.TRANSFER,
    notes: str = "",
) -> OwnershipTransfer:
    """
    Opens a pending custody transfer.
    Requirements:
      - from_user_id is the current owner of the product;
      - to_user_id is an existing active participant other than the owner;
      - no other pending transfer of this product to the same recipient.
    Result:
      - OwnershipTransfer(status=pending)
      - notification to the recipient after commit
    """
    product = get_product(product_id, lock=True)

    if not same_participant(product.owner_id, from_user_id):
        raise NotOwner()

    recipient = get_participant(to_user_id)
    if recipient.pk == product.owner_id:
        raise ValidationError({"to_user_id": "The product already belongs to this participant."})

    if str(transfer_type) not in REQUESTABLE_TYPES:
        raise ValidationError({"transfer_type": f"'{transfer_type}' cannot be requested."})

    duplicate = OwnershipTransfer.objects.filter(
        product=product,
        to_user=recipient,
        status=OwnershipTransfer.Status.PENDING,
    ).exists()
    if duplicate:
        raise InvalidTransferState("A pending transfer to this participant already exists.")

    try:
        with transaction.atomic():
            transfer = OwnershipTransfer.objects.create(
                product=product,
                from_user_id=product.owner_id,
                to_user=recipient,
                transfer_type=transfer_type,
                notes=notes or "",
                status=OwnershipTransfer.Status.PENDING,
            )
    except IntegrityError:
        # the partial unique index lost a race with a parallel request
        raise InvalidTransferState("A pending transfer to this participant already exists.")

    sender_name = product.owner.name
    transaction.on_commit(lambda uid=recipient.pk, pid=product.pk, s=sender_name, b=product.batch_id, t=transfer_type: notify(
        uid,
        "Ownership transfer request",
        f"{s} wants to transfer {b} to you ({t}).",
        Notification.Type.TRANSFER_REQUEST,
        pid,
    ))
    logger.info(
        "transfer requested id=%s product=%s from=%s to=%s type=%s",
        transfer.pk, product.pk, product.owner_id, recipient.pk, transfer_type,
    )
    return transfer


@transaction.atomic
def accept_transfer(transfer_id, accepting_user_id) -> OwnershipBlock:
    """
    Completes a pending transfer.
    Requirements:
      - transfer is pending (checked under the row lock);
      - accepting_user_id is the recipient;
      - the sender still owns the product;
      - the product's chain verifies.
    Result (one database transaction):
      - new ownership block (added_by = sender)
      - product.owner = recipient
      - transfer.status = completed
      - notification to the sender and a history event after commit
    """
    # product row first, same order as append_block and reconciliation
    product = get_product(get_transfer(transfer_id).product_id, lock=True)
    transfer = get_transfer(transfer_id, lock=True)
    _check_resolvable(transfer, accepting_user_id)

    if product.owner_id != transfer.from_user_id:
        raise InvalidTransferState("The sender no longer owns this product.")

    verification = verify_chain(product.pk)
    if not verification["valid"]:
        logger.error(
            "CHAIN INTEGRITY: refusing transfer=%s, product=%s chain is broken: %s",
            transfer.pk, product.pk, verification["errors"],
        )
        blocks = ", ".join(str(e["block_number"]) for e in verification["errors"])
        raise ChainIntegrityError(
            f"Ownership chain failed verification at block(s) {blocks}; further transfers are blocked.",
            errors=verification["errors"],
        )

    recipient = transfer.to_user
    block = append_block(
        product_id=product.pk,
        owner_id=recipient.pk,
        role=recipient.role,
        username=recipient.username,
        name=recipient.name,
        added_by=transfer.from_user_id,
        transfer_type=transfer.transfer_type,
        can_edit_fields=editable_fields_for_role(recipient.role),
    )

    timestamp = now()
    previous_owner_id = product.owner_id
    product.owner = recipient
    product.status = STATUS_FOR_ROLE.get(recipient.role, product.status)
    product.save(update_fields=["owner", "status", "updated_at"])

    # conditional update: only one accept can move the transfer out of pending
    updated = (
        OwnershipTransfer.objects
        .filter(pk=transfer.pk, status=OwnershipTransfer.Status.PENDING)
        .update(
            status=OwnershipTransfer.Status.COMPLETED,
            block=block,
            resolved_at=timestamp,
            updated_at=timestamp,
        )
    )
    if not updated:
        raise InvalidTransferState()

    extra = {
        "transfer_id": transfer.pk,
        "transfer_type": transfer.transfer_type,
        "from_user_id": str(previous_owner_id),
        "to_user_id": str(recipient.pk),
        "block_number": block.block_number,
        "ownership_hash": block.ownership_hash,
        "previous_owner_hash": block.previous_owner_hash,
    }
    transaction.on_commit(lambda pid=product.pk, aid=recipient.pk, e=extra, n=recipient.name: record_event(
        product_id=pid,
        event_type=ProductEvent.EventType.OWNERSHIP_TRANSFER,
        actor_id=aid,
        message=f"Custody passed to {n}",
        extra=e,
    ))
    transaction.on_commit(lambda uid=previous_owner_id, pid=product.pk, n=recipient.name, b=product.batch_id: notify(
        uid,
        "Ownership transfer accepted",
        f"{n} accepted {b}.",
        Notification.Type.TRANSFER_ACCEPTED,
        pid,
    ))
    logger.info(
        "transfer completed id=%s product=%s block=%s owner=%s",
        transfer.pk, product.pk, block.block_number, recipient.pk,
    )
    return block


@transaction.atomic
def reject_transfer(transfer_id, rejecting_user_id) -> OwnershipTransfer:
    """
    Declines a pending transfer. The chain and the product are not touched.
    """
    transfer = get_transfer(transfer_id, lock=True)
    _check_resolvable(transfer, rejecting_user_id)

    timestamp = now()
    updated = (
        OwnershipTransfer.objects
        .filter(pk=transfer.pk, status=OwnershipTransfer.Status.PENDING)
        .update(
            status=OwnershipTransfer.Status.REJECTED,
            resolved_at=timestamp,
            updated_at=timestamp,
        )
    )
    if not updated:
        raise InvalidTransferState()
    transfer.refresh_from_db()

    recipient_name = transfer.to_user.name
    transaction.on_commit(lambda uid=transfer.from_user_id, pid=transfer.product_id, n=recipient_name: notify(
        uid,
        "Ownership transfer rejected",
        f"{n} declined the transfer.",
        Notification.Type.TRANSFER_REJECTED,
        pid,
    ))
    logger.info("transfer rejected id=%s product=%s", transfer.pk, transfer.product_id)
    return transfer
