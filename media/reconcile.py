"""
Bookkeeping for remote assets that never got linked to a domain record.

The request path only records the gap; deletion happens later in the worker,
so a slow or failing store never holds up the user-visible response.
"""
import logging
from datetime import datetime, timezone

from kombu.exceptions import OperationalError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cache import RedisCredentialLedger
from database import session_scope
from media.errors import PersistenceGap
from media.uploader import RemoteUploader
from models import OrphanedAsset

logger = logging.getLogger(__name__)


async def record_orphan(
    db: AsyncSession, gap: PersistenceGap, user_id: str | None = None
) -> OrphanedAsset:
    existing = (
        await db.execute(select(OrphanedAsset).where(OrphanedAsset.asset_id == gap.asset_id))
    ).scalar_one_or_none()
    if existing is not None:
        return existing

    orphan = OrphanedAsset(
        asset_id=gap.asset_id,
        path=gap.path,
        user_id=str(user_id) if user_id is not None else None,
        reason=gap.reason,
    )
    db.add(orphan)
    await db.commit()
    await db.refresh(orphan)
    logger.warning("Recorded orphaned asset %s (%s)", gap.asset_id, gap.reason)
    return orphan


def unresolved_asset_ids(limit: int = 500) -> list[str]:
    with session_scope() as db:
        stmt = (
            select(OrphanedAsset.asset_id)
            .where(OrphanedAsset.resolved.is_(False))
            .order_by(OrphanedAsset.id.asc())
            .limit(limit)
        )
        return list(db.execute(stmt).scalars().all())


def _load(db, asset_id: str) -> OrphanedAsset | None:
    return db.execute(
        select(OrphanedAsset).where(OrphanedAsset.asset_id == asset_id)
    ).scalar_one_or_none()


def is_pending(asset_id: str) -> bool:
    with session_scope() as db:
        orphan = _load(db, asset_id)
        return orphan is not None and not orphan.resolved


def mark_attempt(asset_id: str) -> None:
    with session_scope() as db:
        orphan = _load(db, asset_id)
        if orphan is not None:
            orphan.attempts += 1


def mark_resolved(asset_id: str) -> None:
    with session_scope() as db:
        orphan = _load(db, asset_id)
        if orphan is not None:
            orphan.attempts += 1
            orphan.resolved = True
            orphan.resolved_at = datetime.now(timezone.utc)


async def delete_remote_asset(asset_id: str, uploader: RemoteUploader | None = None) -> None:
    owned = uploader is None
    uploader = uploader or RemoteUploader(ledger=RedisCredentialLedger())
    try:
        await uploader.delete(asset_id)
    finally:
        if owned:
            await uploader.aclose()


class OrphanLedger:
    """Request-side handle: record the gap, then hand it to the worker."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def record(self, gap: PersistenceGap, user_id: str | None = None) -> OrphanedAsset:
        return await record_orphan(self.db, gap, user_id)

    def enqueue(self, asset_id: str) -> bool:
        from tasks.media import reconcile_orphan

        try:
            reconcile_orphan.delay(asset_id)
        except OperationalError as exc:
            # the periodic sweep picks it up later
            logger.error("Could not queue orphan %s: %s", asset_id, exc)
            return False
        return True
