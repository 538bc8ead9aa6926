from __future__ import annotations

import uuid

from core.exceptions import UnknownRecipient
from core.models import Participant


__all__ = ["get_participant", "same_participant"]


def _as_uuid(value) -> uuid.UUID | None:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError, AttributeError):
        return None


def same_participant(left, right) -> bool:
    """Compares participant ids given as UUIDs or strings."""
    a, b = _as_uuid(left), _as_uuid(right)
    return a is not None and a == b


def get_participant(participant_id, *, active_only: bool = True) -> Participant:
    pk = _as_uuid(participant_id)
    if pk is None:
        raise UnknownRecipient()
    qs = Participant.objects.all()
    if active_only:
        qs = qs.filter(is_active=True)
    try:
        return qs.get(pk=pk)
    except Participant.DoesNotExist:
        raise UnknownRecipient()
