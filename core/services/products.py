# core/services/products.py
from __future__ import annotations

import random
import uuid
from urllib.parse import quote

from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils.timezone import now
from rest_framework.exceptions import ValidationError

from core.exceptions import FieldNotEditable, NotOwner, ProductNotFound
from core.models import Participant, Product, ProductEvent, editable_fields_for_role
from core.services.directory import get_participant, same_participant
from core.services.events import json_safe, record_event
from ledger.models import TransferType
from ledger.services import append_block, get_head


__all__ = [
    "register_product",
    "update_product_fields",
    "get_product",
    "get_product_by_batch_id",
    "product_history",
]

BATCH_ID_ATTEMPTS = 20


# ========================
# HELPERS
# ========================

def _generate_batch_id(category: str, wide: bool = False) -> str:
    """CAT-YYYY-NNN, e.g. VEG-2026-042. Wide ids are used once the short space is crowded."""
    prefix = (category or "GEN")[:3].upper()
    year = now().year
    if wide:
        return f"{prefix}-{year}-{random.randint(1, 999999):06d}"
    return f"{prefix}-{year}-{random.randint(1, 999):03d}"


def _qr_code_for(batch_id: str) -> str:
    return settings.QR_CODE_SERVICE_URL + quote(f"farmtrace://{batch_id}", safe="")


def get_product(product_id, *, lock: bool = False) -> Product:
    try:
        pk = product_id if isinstance(product_id, uuid.UUID) else uuid.UUID(str(product_id))
    except (TypeError, ValueError, AttributeError):
        raise ProductNotFound()
    qs = Product.objects.select_for_update() if lock else Product.objects.all()
    try:
        return qs.get(pk=pk)
    except Product.DoesNotExist:
        raise ProductNotFound()


def get_product_by_batch_id(batch_id: str) -> Product:
    try:
        return Product.objects.get(batch_id=batch_id)
    except Product.DoesNotExist:
        raise ProductNotFound()


def product_history(product_id):
    product = get_product(product_id)
    return product.events.select_related("actor").order_by("created_at", "id")


# =================
# DOMAIN OPERATIONS
# =================

@transaction.atomic
def register_product(owner_id, **attributes) -> Product:
    """
    Registers a product and writes its genesis block.
    Requirements:
      - the owner exists, is active and is not a consumer.
    Result:
      - Product with a fresh batch_id / qr_code, owner = owner_id
      - block 1 (transfer_type=initial, added_by=owner)
      - ProductEvent.OWNERSHIP_REGISTRATION
    """
    owner = get_participant(owner_id)
    if owner.role == Participant.Role.CONSUMER:
        raise ValidationError({"owner_id": "Consumers cannot register products."})

    for attempt in range(BATCH_ID_ATTEMPTS):
        batch_id = _generate_batch_id(attributes.get("category", ""), wide=attempt >= BATCH_ID_ATTEMPTS // 2)
        if Product.objects.filter(batch_id=batch_id).exists():
            continue
        try:
            with transaction.atomic():
                product = Product.objects.create(
                    owner=owner,
                    batch_id=batch_id,
                    qr_code=_qr_code_for(batch_id),
                    status=Product.Status.REGISTERED,
                    **attributes,
                )
            break
        except IntegrityError:
            # concurrent registration took the same batch id
            continue
    else:
        raise ValidationError({"batch_id": "Could not allocate a batch id, please retry."})

    genesis = append_block(
        product_id=product.pk,
        owner_id=owner.pk,
        role=owner.role,
        username=owner.username,
        name=owner.name,
        added_by=owner.pk,
        transfer_type=TransferType.INITIAL,
        can_edit_fields=editable_fields_for_role(owner.role),
    )

    extra = {
        "block_number": genesis.block_number,
        "ownership_hash": genesis.ownership_hash,
        "fields": {
            field: getattr(product, field)
            for field in editable_fields_for_role(owner.role)
        },
    }
    transaction.on_commit(lambda pid=product.pk, aid=owner.pk, e=extra, n=owner.name: record_event(
        product_id=pid,
        event_type=ProductEvent.EventType.OWNERSHIP_REGISTRATION,
        actor_id=aid,
        message=f"Registered by {n}",
        extra=e,
    ))
    return product


@transaction.atomic
def update_product_fields(product_id, acting_user_id, changes: dict) -> Product:
    """
    Changes product attributes on behalf of the current owner.
    Requirements:
      - acting user is the current owner;
      - every changed field is in can_edit_fields of the latest block.
    Result:
      - product saved with the new values
      - ProductEvent.FIELD_UPDATE with before/after snapshots
    """
    product = get_product(product_id, lock=True)

    if not same_participant(product.owner_id, acting_user_id):
        raise NotOwner()

    if not changes:
        raise ValidationError({"changes": "Nothing to update."})

    head = get_head(product.pk)
    allowed = set(head.can_edit_fields if head else [])
    forbidden = sorted(set(changes) - allowed)
    if forbidden:
        raise FieldNotEditable(f"Not editable by the current owner: {', '.join(forbidden)}")

    before = {field: getattr(product, field) for field in changes}
    for field, value in changes.items():
        setattr(product, field, value)
    product.save(update_fields=[*changes.keys(), "updated_at"])
    after = {field: getattr(product, field) for field in changes}

    extra = {"before": json_safe(before), "after": json_safe(after)}
    transaction.on_commit(lambda pid=product.pk, aid=product.owner_id, e=extra: record_event(
        product_id=pid,
        event_type=ProductEvent.EventType.FIELD_UPDATE,
        actor_id=aid,
        message=f"Updated {', '.join(sorted(e['after']))}",
        extra=e,
    ))
    return product
