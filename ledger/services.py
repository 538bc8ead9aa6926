from __future__ import annotations
import hashlib
import json
import logging
import uuid
from typing import Iterable, List, Optional

from django.db import DatabaseError, transaction
from django.db.models import F, OuterRef, Subquery
from django.utils import timezone

from core.exceptions import ProductNotFound
from core.models import OwnershipTransfer, Participant, Product
from ledger.exceptions import ChainWriteError
from ledger.models import OwnershipBlock


logger = logging.getLogger(__name__)

GENESIS_MARKER = "genesis"

BROKEN_LINK = "broken-link"
HASH_MISMATCH = "hash-mismatch"
OUT_OF_SEQUENCE = "out-of-sequence"
MISSING_GENESIS = "missing-genesis"


def _sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def _canon_json(payload: dict) -> bytes:
    # deterministic: sorted keys, no whitespace, every field quoted and separated
    return json.dumps(
        payload,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False
    ).encode("utf-8")


def _uuid_str(value) -> str:
    return str(value if isinstance(value, uuid.UUID) else uuid.UUID(str(value)))


def _product_pk(product_id) -> str:
    try:
        return _uuid_str(product_id)
    except (TypeError, ValueError, AttributeError):
        raise ProductNotFound()


def compute_ownership_hash(
        *,
        product_id,
        owner_id,
        block_number: int,
        previous_owner_hash: str | None,
) -> str:
    payload = {
        "product_id": _uuid_str(product_id),
        "owner_id": _uuid_str(owner_id),
        "block_number": int(block_number),
        "previous_owner_hash": previous_owner_hash or GENESIS_MARKER,
    }
    return _sha256_hex(_canon_json(payload))


def get_head(product_id) -> Optional[OwnershipBlock]:
    return (
        OwnershipBlock.objects
        .filter(product_id=_product_pk(product_id))
        .order_by("-block_number")
        .first()
    )


@transaction.atomic
def append_block(
        *,
        product_id,
        owner_id,
        role: str,
        username: str,
        name: str,
        added_by,
        transfer_type: str,
        can_edit_fields: Iterable[str],
) -> OwnershipBlock:
    """
    Appends the next block to the product's chain.

    The product row is locked for the rest of the surrounding transaction,
    so "read head, compute, insert" never interleaves with another append
    for the same product. The unique (product, block_number) constraint
    catches anything that slips past the lock.

    Does not touch Product.owner; the caller updates it in the same
    transaction.
    """
    pk = _product_pk(product_id)
    try:
        product = Product.objects.select_for_update().get(pk=pk)
    except Product.DoesNotExist:
        raise ProductNotFound()

    last = (
        OwnershipBlock.objects
        .filter(product=product)
        .order_by("-block_number")
        .first()
    )
    block_number = 1 if last is None else last.block_number + 1
    previous_owner_hash = None if last is None else last.ownership_hash

    ownership_hash = compute_ownership_hash(
        product_id=product.pk,
        owner_id=owner_id,
        block_number=block_number,
        previous_owner_hash=previous_owner_hash,
    )

    try:
        with transaction.atomic():
            block = OwnershipBlock.objects.create(
                product=product,
                block_number=block_number,
                owner_id=_uuid_str(owner_id),
                role=role,
                username=username,
                name=name,
                added_by=_uuid_str(added_by),
                can_edit_fields=list(can_edit_fields),
                transfer_type=transfer_type,
                previous_owner_hash=previous_owner_hash,
                ownership_hash=ownership_hash,
                created_at=timezone.now(),
            )
    except DatabaseError as exc:
        logger.warning(
            "block write failed product=%s block=%s: %s", product.pk, block_number, exc
        )
        raise ChainWriteError() from exc

    logger.info(
        "appended block product=%s number=%s owner=%s hash=%s...",
        product.pk, block.block_number, block.owner_id, block.ownership_hash[:10],
    )
    return block


def get_chain(product_id) -> List[OwnershipBlock]:
    pk = _product_pk(product_id)
    if not Product.objects.filter(pk=pk).exists():
        raise ProductNotFound()
    return list(OwnershipBlock.objects.filter(product_id=pk).order_by("block_number"))


def verify_blocks(blocks: List[OwnershipBlock]) -> dict:
    """
    Recomputes every hash from stored identity fields.

    Each block is checked against the recomputed hash of its predecessor,
    not the stored one, so a tampered interior block shows up as
    hash-mismatch and every block after it as broken-link.
    """
    if not blocks:
        return {
            "valid": False,
            "errors": [{"block_number": 1, "reason": MISSING_GENESIS}],
        }

    errors = []
    expected_prev = None
    for position, block in enumerate(blocks, start=1):
        if block.block_number != position:
            errors.append({"block_number": block.block_number, "reason": OUT_OF_SEQUENCE})

        if position == 1:
            link_ok = block.previous_owner_hash is None
        else:
            link_ok = block.previous_owner_hash == expected_prev

        expected = compute_ownership_hash(
            product_id=block.product_id,
            owner_id=block.owner_id,
            block_number=block.block_number,
            previous_owner_hash=expected_prev,
        )

        if not link_ok:
            errors.append({"block_number": block.block_number, "reason": BROKEN_LINK})
        elif expected != block.ownership_hash:
            errors.append({"block_number": block.block_number, "reason": HASH_MISMATCH})

        expected_prev = expected

    return {"valid": not errors, "errors": errors}


def verify_chain(product_id) -> dict:
    return verify_blocks(get_chain(product_id))


# === Owner projection recovery ===

def find_owner_divergence(limit: int | None = None) -> list[dict]:
    """Products whose owner differs from the owner of their latest block."""
    head_owner = Subquery(
        OwnershipBlock.objects
        .filter(product=OuterRef("pk"))
        .order_by("-block_number")
        .values("owner_id")[:1]
    )
    qs = (
        Product.objects
        .annotate(head_owner_id=head_owner)
        .filter(head_owner_id__isnull=False)
        .exclude(owner_id=F("head_owner_id"))
        .order_by("pk")
        .values("pk", "owner_id", "head_owner_id")
    )
    if limit:
        qs = qs[:limit]
    return [
        {"product_id": row["pk"], "owner_id": row["owner_id"], "head_owner_id": row["head_owner_id"]}
        for row in qs
    ]


@transaction.atomic
def reconcile_product_owner(product_id) -> bool:
    """
    Rolls Product.owner forward to the owner of the latest block and closes
    the pending transfer that produced that block. The chain is never touched.
    Returns True if anything was repaired.
    """
    pk = _product_pk(product_id)
    try:
        product = Product.objects.select_for_update().get(pk=pk)
    except Product.DoesNotExist:
        raise ProductNotFound()

    head = OwnershipBlock.objects.filter(product=product).order_by("-block_number").first()
    if head is None or product.owner_id == head.owner_id:
        return False

    if not Participant.objects.filter(pk=head.owner_id).exists():
        logger.error(
            "cannot reconcile product=%s: head owner %s is not in the directory",
            product.pk, head.owner_id,
        )
        return False

    timestamp = timezone.now()
    logger.warning(
        "owner projection diverged product=%s owner=%s head_owner=%s block=%s; rolling forward",
        product.pk, product.owner_id, head.owner_id, head.block_number,
    )
    Product.objects.filter(pk=product.pk).update(owner_id=head.owner_id, updated_at=timestamp)

    if OwnershipTransfer.objects.filter(block=head).exists():
        return True
    OwnershipTransfer.objects.filter(
        product=product,
        status=OwnershipTransfer.Status.PENDING,
        from_user_id=head.added_by,
        to_user_id=head.owner_id,
        block__isnull=True,
    ).update(
        status=OwnershipTransfer.Status.COMPLETED,
        block=head,
        resolved_at=timestamp,
        updated_at=timestamp,
    )
    return True


def reconcile_all(limit: int | None = None) -> int:
    repaired = 0
    for row in find_owner_divergence(limit=limit):
        if reconcile_product_owner(row["product_id"]):
            repaired += 1
    return repaired
