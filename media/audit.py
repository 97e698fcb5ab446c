import logging
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from models import SecurityEvent

logger = logging.getLogger(__name__)

PHOTO_UPLOAD_BLOCKED = "PHOTO_UPLOAD_BLOCKED"


class AuditLog(Protocol):
    async def security_event(
        self, user_id: str, event_type: str, metadata: dict, ip_address: str | None = None
    ) -> None: ...


class SqlAuditLog:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def security_event(
        self, user_id: str, event_type: str, metadata: dict, ip_address: str | None = None
    ) -> None:
        logger.error("Security event %s for user %s: %s", event_type, user_id, metadata)
        self.db.add(
            SecurityEvent(
                user_id=str(user_id),
                event_type=event_type,
                event_metadata=metadata,
                ip_address=ip_address or "unknown",
            )
        )
        await self.db.commit()
