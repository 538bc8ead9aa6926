from __future__ import annotations

import os
from time import perf_counter

from celery import shared_task
from celery.utils.log import get_task_logger
from django.conf import settings
from django.utils.timezone import now

from core.models import Product
from ledger.services import reconcile_all, verify_chain

# Fixed logger name, configured by LOGGING in settings.py
logger = get_task_logger("ledger.celery_tasks")

SLOW_TICK_MS = int(os.getenv("LEDGER_SLOW_TICK_MS", "500"))


@shared_task(bind=True, autoretry_for=(Exception,), retry_backoff=True,
             retry_backoff_max=60, retry_jitter=True, max_retries=5)
def verify_chains_tick(self, batch_size: int | None = None) -> int:
    """
    Re-verifies every product chain. Returns the number of broken chains.
    One error line per broken chain, one summary line per tick.
    """
    started = perf_counter()
    batch_size = batch_size or settings.LEDGER_SWEEP_BATCH_SIZE
    checked = 0
    broken = 0

    product_ids = Product.objects.order_by("pk").values_list("pk", flat=True)
    for product_id in product_ids.iterator(chunk_size=batch_size):
        checked += 1
        result = verify_chain(product_id)
        if not result["valid"]:
            broken += 1
            logger.error(f"⛓️‍💥 BROKEN CHAIN product={product_id} errors={result['errors']}")

    dur_ms = (perf_counter() - started) * 1000.0
    head = "❌ BROKEN" if broken else "✅ OK"
    slow = " 🐢" if dur_ms >= SLOW_TICK_MS else ""
    logger.info(
        f"{head}{slow} | tick={getattr(self.request, 'id', None)} | checked={checked} "
        f"| broken={broken} | dur={dur_ms:.1f}ms | ts={now().isoformat()}"
    )
    return broken


@shared_task(bind=True, autoretry_for=(Exception,), retry_backoff=True,
             retry_backoff_max=60, retry_jitter=True, max_retries=5)
def reconcile_owners_tick(self, limit: int | None = None) -> int:
    repaired = reconcile_all(limit=limit or settings.LEDGER_SWEEP_BATCH_SIZE)
    if repaired:
        logger.warning(f"🔧 reconciled owner projection for {repaired} product(s)")
    return repaired
