"""Durable usage store backed by the `ai_usage_records` table."""

import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from counselflow.db.base import Base
from counselflow.gateway.errors import ProviderErrorKind
from counselflow.gateway.types import AnalysisKind, ProviderId
from counselflow.gateway.usage import UsageRecord
from counselflow.models.ai_usage import AiUsageRecord

logger = logging.getLogger(__name__)


def _to_row(record: UsageRecord) -> AiUsageRecord:
    return AiUsageRecord(
        record_id=record.record_id,
        request_id=record.request_id,
        user_id=record.user_id,
        provider=record.provider.value,
        model=record.model,
        analysis_type=record.analysis_type.value,
        tokens_used=record.tokens_used,
        cost=record.cost,
        success=record.success,
        processing_time_ms=record.processing_time_ms,
        error_kind=record.error_kind.value if record.error_kind else None,
        timestamp=record.timestamp,
    )


def _from_row(row: AiUsageRecord) -> UsageRecord:
    return UsageRecord(
        record_id=row.record_id,
        request_id=row.request_id,
        user_id=row.user_id,
        provider=ProviderId(row.provider),
        model=row.model,
        analysis_type=AnalysisKind(row.analysis_type),
        tokens_used=row.tokens_used,
        cost=row.cost,
        success=row.success,
        processing_time_ms=row.processing_time_ms,
        error_kind=ProviderErrorKind(row.error_kind) if row.error_kind else None,
        timestamp=row.timestamp,
    )


class SqlAlchemyUsageStore:
    """UsageStore on an async SQLAlchemy session factory. One session per call."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def append(self, record: UsageRecord) -> None:
        async with self._session_factory() as session:
            session.add(_to_row(record))
            await session.commit()

    async def query(
        self,
        *,
        user_id: str | None = None,
        provider: ProviderId | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[UsageRecord]:
        stmt = select(AiUsageRecord)
        if user_id is not None:
            stmt = stmt.where(AiUsageRecord.user_id == user_id)
        if provider is not None:
            stmt = stmt.where(AiUsageRecord.provider == provider.value)
        if start is not None:
            stmt = stmt.where(AiUsageRecord.timestamp >= start)
        if end is not None:
            stmt = stmt.where(AiUsageRecord.timestamp < end)
        stmt = stmt.order_by(AiUsageRecord.timestamp)

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            rows = result.scalars().all()
        return [_from_row(row) for row in rows]


async def init_usage_schema(engine: AsyncEngine) -> None:
    """Create the usage table if it does not exist."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all, tables=[AiUsageRecord.__table__])
    logger.info("Usage schema ready")
