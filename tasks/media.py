"""
Media-related tasks: deleting remote assets that no record points to.
"""
import asyncio
import logging

from celery import shared_task

from media.errors import UploadError
from media.reconcile import (
    delete_remote_asset,
    is_pending,
    mark_attempt,
    mark_resolved,
    unresolved_asset_ids,
)

logger = logging.getLogger(__name__)


@shared_task(bind=True, max_retries=5, default_retry_delay=60)
def reconcile_orphan(self, asset_id: str) -> bool:
    """
    Delete one orphaned asset from the store and close its ledger row.
    Returns False when there was nothing left to do.
    """
    if not is_pending(asset_id):
        return False
    try:
        asyncio.run(delete_remote_asset(asset_id))
    except UploadError as exc:
        mark_attempt(asset_id)
        logger.warning("Orphan %s not deleted yet: %s", asset_id, exc.code)
        raise self.retry(exc=exc)
    mark_resolved(asset_id)
    return True


@shared_task
def sweep_orphans(limit: int = 500) -> int:
    """Queue every unresolved orphan; returns how many were queued."""
    asset_ids = unresolved_asset_ids(limit)
    for asset_id in asset_ids:
        reconcile_orphan.delay(asset_id)
    logger.info("Queued %d orphaned assets", len(asset_ids))
    return len(asset_ids)
