import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import Boolean, DateTime, Index, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from counselflow.db.base import Base
from counselflow.gateway.types import MAX_REQUEST_ID_LENGTH, MAX_USER_ID_LENGTH


class AiUsageRecord(Base):
    """One billed top-level AI request. Rows are only ever inserted."""

    __tablename__ = "ai_usage_records"
    __table_args__ = (
        Index("ix_ai_usage_user_ts", "user_id", "timestamp"),
        Index("ix_ai_usage_provider_ts", "provider", "timestamp"),
    )

    record_id: Mapped[str] = mapped_column(String(32), primary_key=True, default=lambda: uuid.uuid4().hex)
    request_id: Mapped[str] = mapped_column(String(MAX_REQUEST_ID_LENGTH), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(MAX_USER_ID_LENGTH), nullable=False)
    provider: Mapped[str] = mapped_column(String(32), nullable=False)  # ProviderId value
    model: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    analysis_type: Mapped[str] = mapped_column(String(32), nullable=False)  # AnalysisKind value

    tokens_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    cost: Mapped[Decimal] = mapped_column(Numeric(12, 6), nullable=False, default=Decimal("0"))
    success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    processing_time_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_kind: Mapped[str | None] = mapped_column(String(32), nullable=True)

    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )
