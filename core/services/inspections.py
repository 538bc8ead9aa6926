# core/services/inspections.py
from __future__ import annotations

import logging

from django.db import transaction

from core.models import QualityCheck, Scan
from core.services.directory import get_participant
from core.services.products import get_product


__all__ = [
    "record_quality_check",
    "quality_checks_for_product",
    "record_scan",
    "recent_scans",
]

logger = logging.getLogger(__name__)

RECENT_SCANS_DEFAULT = 10
RECENT_SCANS_MAX = 100


def _clamp_limit(limit) -> int:
    try:
        value = int(limit)
    except (TypeError, ValueError):
        return RECENT_SCANS_DEFAULT
    if value < 1:
        return RECENT_SCANS_DEFAULT
    return min(value, RECENT_SCANS_MAX)


# ========================
# QUALITY CHECKS
# ========================

@transaction.atomic
def record_quality_check(
    product_id,
    inspector_id,
    check_type: str,
    score,
    notes: str = "",
    certification_url: str = "",
) -> QualityCheck:
    """
    Stores an inspection result against an existing product.
    The inspector must be an active participant; the check is then marked verified.
    """
    product = get_product(product_id)
    inspector = get_participant(inspector_id)

    check = QualityCheck.objects.create(
        product=product,
        inspector=inspector,
        check_type=check_type,
        score=score,
        notes=notes or "",
        certification_url=certification_url or "",
        verified=True,
    )
    logger.info(
        "quality check id=%s product=%s inspector=%s type=%s score=%s",
        check.pk, product.pk, inspector.pk, check_type, score,
    )
    return check


def quality_checks_for_product(product_id):
    product = get_product(product_id)
    return product.quality_checks.select_related("inspector").order_by("-created_at", "-id")


# ========================
# SCAN LOG
# ========================

def record_scan(product_id, participant_id=None, location: str = "", coordinates: dict | None = None) -> Scan:
    product = get_product(product_id)
    participant = get_participant(participant_id) if participant_id else None
    return Scan.objects.create(
        product=product,
        participant=participant,
        location=location or "",
        coordinates=coordinates or None,
    )


def recent_scans(participant_id=None, limit=RECENT_SCANS_DEFAULT):
    """Newest first, optionally for one participant."""
    qs = Scan.objects.select_related("product", "participant")
    if participant_id:
        qs = qs.filter(participant=get_participant(participant_id, active_only=False))
    return list(qs.order_by("-created_at", "-id")[:_clamp_limit(limit)])
