"""AI gateway routes — analysis, provider management, health and budgets."""

from typing import Any

from fastapi import APIRouter, Body, Depends, Header, Request

from counselflow.gateway.gateway import AnalysisGateway
from counselflow.gateway.types import MAX_USER_ID_LENGTH, ProviderId
from counselflow.schemas.ai import EnableProviderRequest, HealthResponse, ProviderModelsResponse, SetBudgetRequest

router = APIRouter(prefix="/ai", tags=["ai"])


def get_gateway(request: Request) -> AnalysisGateway:
    return request.app.state.gateway


# ── Analysis ─────────────────────────────────────────────────────


@router.post("/analyze")
async def analyze(
    payload: dict[str, Any] = Body(...),
    x_user_id: str = Header(
        ..., min_length=1, max_length=MAX_USER_ID_LENGTH, description="Caller identity, set by the auth proxy"
    ),
    gateway: AnalysisGateway = Depends(get_gateway),
):
    response = await gateway.process(payload, user_id=x_user_id)
    return {**response.to_dict(), "metadata": response.metadata}


# ── Providers ────────────────────────────────────────────────────


@router.get("/providers")
async def list_providers(gateway: AnalysisGateway = Depends(get_gateway)):
    return gateway.get_provider_status()


@router.get("/providers/{provider}")
async def get_provider(provider: ProviderId, gateway: AnalysisGateway = Depends(get_gateway)):
    return gateway.get_provider_status(provider)


@router.post("/providers/{provider}/enable")
async def enable_provider(
    provider: ProviderId,
    body: EnableProviderRequest | None = None,
    gateway: AnalysisGateway = Depends(get_gateway),
):
    await gateway.enable_provider(provider, api_key=body.api_key if body else None)
    return gateway.get_provider_status(provider)


@router.post("/providers/{provider}/disable")
async def disable_provider(provider: ProviderId, gateway: AnalysisGateway = Depends(get_gateway)):
    await gateway.disable_provider(provider)
    return gateway.get_provider_status(provider)


@router.get("/health", response_model=HealthResponse)
async def health(gateway: AnalysisGateway = Depends(get_gateway)):
    results = await gateway.health_check()
    enabled = {p.value for p in gateway.enabled_providers()}
    ok = any(healthy for name, healthy in results.items() if name in enabled)
    return HealthResponse(status="ok" if ok else "degraded", providers=results)


@router.get("/models/{provider}", response_model=ProviderModelsResponse)
async def list_models(provider: ProviderId, gateway: AnalysisGateway = Depends(get_gateway)):
    return ProviderModelsResponse(provider=provider.value, models=await gateway.list_models(provider))


# ── Usage & budgets ──────────────────────────────────────────────


@router.get("/usage/metrics")
async def usage_metrics(gateway: AnalysisGateway = Depends(get_gateway)):
    return await gateway.usage.get_usage_metrics()


@router.get("/usage/{user_id}/budget")
async def get_budget(user_id: str, gateway: AnalysisGateway = Depends(get_gateway)):
    status = await gateway.usage.check_budget(user_id)
    return status.to_dict()


@router.put("/usage/{user_id}/budget")
async def set_budget(user_id: str, body: SetBudgetRequest, gateway: AnalysisGateway = Depends(get_gateway)):
    gateway.usage.set_user_budget(user_id, body.amount)
    status = await gateway.usage.check_budget(user_id)
    return status.to_dict()
