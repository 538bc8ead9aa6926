from __future__ import annotations

import json

from django.core.serializers.json import DjangoJSONEncoder

from core.models import ProductEvent


def json_safe(value):
    # Decimal/datetime/UUID -> JSON primitives, same shape the API returns
    return json.loads(json.dumps(value, cls=DjangoJSONEncoder))


def record_event(
        *,
        product_id,
        event_type: str,
        actor_id,
        message: str = "",
        extra: dict | None = None,
) -> ProductEvent:
    return ProductEvent.objects.create(
        product_id=product_id,
        event_type=event_type,
        actor_id=actor_id,
        message=message,
        extra=json_safe(extra or {}),
    )
