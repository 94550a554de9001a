"""Persistence for the scheduled sync audit record."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Sequence

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import SyncLog
from ..models import TaskResult
from ..utils import utcnow

logger = logging.getLogger(__name__)

SYNC_LOG_ID = "daily-sync"


@dataclass(slots=True)
class SyncRecord:
    last_sync: datetime
    results: list[dict[str, Any]]

    def to_payload(self) -> dict[str, Any]:
        return {"lastSync": self.last_sync.isoformat(), "results": self.results}


class SyncLogStore:
    """Keeps the latest sync outcome under a single well-known id."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self._clock = clock

    async def save(self, results: Sequence[TaskResult]) -> SyncRecord:
        payload = [result.to_payload() for result in results]
        now = self._clock()
        async with self._session_factory() as session:
            row = await session.get(SyncLog, SYNC_LOG_ID)
            if row is None:
                row = SyncLog(id=SYNC_LOG_ID)
                session.add(row)
            row.last_sync = now
            row.results = {"tasks": payload}
            await session.commit()
        logger.info("Recorded sync results for %d tasks", len(payload))
        return SyncRecord(last_sync=now, results=payload)

    async def latest(self) -> SyncRecord | None:
        async with self._session_factory() as session:
            row = await session.get(SyncLog, SYNC_LOG_ID)
            if row is None:
                return None
            tasks = (row.results or {}).get("tasks")
            return SyncRecord(
                last_sync=row.last_sync,
                results=list(tasks) if isinstance(tasks, list) else [],
            )
