"""Usage & cost tracking.

Records one UsageRecord per top-level request that reached a provider and
answers budget / reporting queries. Recording is best-effort: a store outage
is logged and counted, never raised to the caller.

Budget alerts are advisory:
  - none      spent < 75 % of budget
  - warning   75 % ≤ spent < 90 %
  - critical  spent ≥ 90 %
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Protocol

from counselflow.core.metrics import USAGE_RECORD_FAILURES
from counselflow.gateway.errors import ProviderErrorKind
from counselflow.gateway.types import AnalysisKind, ProviderId

logger = logging.getLogger(__name__)

DEFAULT_MONTHLY_BUDGET = Decimal("50.00")
WARNING_THRESHOLD = Decimal("75")
CRITICAL_THRESHOLD = Decimal("90")


class AlertLevel(str, Enum):
    NONE = "none"
    WARNING = "warning"
    CRITICAL = "critical"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class UsageRecord:
    """One billed top-level request. Never mutated after creation."""

    request_id: str
    user_id: str
    provider: ProviderId
    model: str
    analysis_type: AnalysisKind
    tokens_used: int = 0
    cost: Decimal = Decimal("0")
    success: bool = True
    processing_time_ms: int = 0
    timestamp: datetime = field(default_factory=_utcnow)
    error_kind: ProviderErrorKind | None = None
    record_id: str = field(default_factory=lambda: uuid.uuid4().hex)


@dataclass(frozen=True)
class BudgetStatus:
    user_id: str
    budget: Decimal
    spent: Decimal
    remaining: Decimal
    percentage: float
    alert_level: AlertLevel

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "budget": str(self.budget),
            "spent": str(self.spent),
            "remaining": str(self.remaining),
            "percentage": self.percentage,
            "alert_level": self.alert_level.value,
        }


def classify_alert(percentage: Decimal | float) -> AlertLevel:
    pct = Decimal(str(percentage))
    if pct >= CRITICAL_THRESHOLD:
        return AlertLevel.CRITICAL
    if pct >= WARNING_THRESHOLD:
        return AlertLevel.WARNING
    return AlertLevel.NONE


def month_window(now: datetime) -> tuple[datetime, datetime]:
    """[start, end) of the calendar month containing `now`."""
    start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if start.month == 12:
        end = start.replace(year=start.year + 1, month=1)
    else:
        end = start.replace(month=start.month + 1)
    return start, end


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------


class UsageStore(Protocol):
    async def append(self, record: UsageRecord) -> None: ...

    async def query(
        self,
        *,
        user_id: str | None = None,
        provider: ProviderId | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[UsageRecord]: ...


class InMemoryUsageStore:
    """Append-only list guarded by an asyncio.Lock."""

    def __init__(self):
        self._records: list[UsageRecord] = []
        self._lock = asyncio.Lock()

    async def append(self, record: UsageRecord) -> None:
        async with self._lock:
            self._records.append(record)

    async def query(
        self,
        *,
        user_id: str | None = None,
        provider: ProviderId | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[UsageRecord]:
        async with self._lock:
            records = list(self._records)
        return [
            r
            for r in records
            if (user_id is None or r.user_id == user_id)
            and (provider is None or r.provider == provider)
            and (start is None or r.timestamp >= start)
            and (end is None or r.timestamp < end)
        ]

    def __len__(self) -> int:
        return len(self._records)


# ---------------------------------------------------------------------------
# Tracker
# ---------------------------------------------------------------------------


def _mean(values: list[int]) -> float:
    return round(sum(values) / len(values), 2) if values else 0.0


class UsageTracker:
    """Front door for usage recording and budget queries."""

    def __init__(
        self,
        store: UsageStore | None = None,
        default_budget: Decimal = DEFAULT_MONTHLY_BUDGET,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store if store is not None else InMemoryUsageStore()
        self.default_budget = Decimal(default_budget)
        self._clock = clock
        self._budgets: dict[str, Decimal] = {}

    async def record(self, record: UsageRecord) -> bool:
        """Persist a usage record. Never raises; returns False when the store failed."""
        try:
            await self.store.append(record)
        except Exception:
            USAGE_RECORD_FAILURES.inc()
            logger.exception(
                "Failed to record usage for request %s",
                record.request_id,
                extra={"request_id": record.request_id, "user_id": record.user_id},
            )
            return False
        return True

    def set_user_budget(self, user_id: str, amount: Decimal | str | float) -> None:
        budget = Decimal(str(amount))
        if budget < 0:
            raise ValueError("Budget must not be negative")
        self._budgets[user_id] = budget

    def get_user_budget(self, user_id: str) -> Decimal:
        return self._budgets.get(user_id, self.default_budget)

    async def check_budget(self, user_id: str) -> BudgetStatus:
        """Spend against budget over the current calendar month (UTC)."""
        start, end = month_window(self._clock())
        records = await self.store.query(user_id=user_id, start=start, end=end)
        spent = sum((r.cost for r in records), Decimal("0"))
        budget = self.get_user_budget(user_id)

        if budget > 0:
            pct = (spent / budget * 100).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
        else:
            pct = Decimal("100") if spent > 0 else Decimal("0")

        return BudgetStatus(
            user_id=user_id,
            budget=budget,
            spent=spent,
            remaining=max(budget - spent, Decimal("0")),
            percentage=float(pct),
            alert_level=classify_alert(pct),
        )

    async def get_user_usage(
        self,
        user_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[UsageRecord]:
        records = await self.store.query(user_id=user_id, start=start, end=end)
        return sorted(records, key=lambda r: r.timestamp, reverse=True)

    async def get_provider_usage(
        self,
        provider: ProviderId,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> dict:
        records = await self.store.query(provider=provider, start=start, end=end)
        return {
            "provider": provider.value,
            "requests": len(records),
            "successful": sum(1 for r in records if r.success),
            "tokens_used": sum(r.tokens_used for r in records),
            "cost": str(sum((r.cost for r in records), Decimal("0"))),
            "avg_processing_time_ms": _mean([r.processing_time_ms for r in records]),
        }

    async def get_usage_metrics(self, since: datetime | None = None) -> dict:
        """Aggregate view over all users since `since` (all time when None)."""
        records = await self.store.query(start=since)
        total = len(records)
        successful = sum(1 for r in records if r.success)
        by_type = Counter(r.analysis_type.value for r in records)
        by_provider = Counter(r.provider.value for r in records)
        return {
            "total_requests": total,
            "success_rate": round(successful / total, 4) if total else 0.0,
            "avg_processing_time_ms": _mean([r.processing_time_ms for r in records]),
            "total_cost": str(sum((r.cost for r in records), Decimal("0"))),
            "top_analysis_types": [{"type": t, "count": c} for t, c in by_type.most_common(5)],
            "provider_distribution": dict(sorted(by_provider.items())),
        }
