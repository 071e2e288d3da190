"""AI gateway API schemas."""

from decimal import Decimal

from pydantic import BaseModel, Field


class EnableProviderRequest(BaseModel):
    """Optional key for premium providers; ignored by self-hosted ones."""

    api_key: str | None = Field(None, min_length=1)


class SetBudgetRequest(BaseModel):
    amount: Decimal = Field(..., ge=0)


class ProviderModelsResponse(BaseModel):
    provider: str
    models: list[str]


class HealthResponse(BaseModel):
    status: str  # ok | degraded
    providers: dict[str, bool]
