import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from counselflow.api.v1.router import api_v1_router
from counselflow.core.config import settings, validate_settings_for_production
from counselflow.core.logging import setup_logging
from counselflow.core.metrics import PrometheusMiddleware, metrics_response
from counselflow.core.sentry import init_sentry
from counselflow.gateway.errors import AllProvidersExhausted, NoProviderAvailable, ProviderError, ValidationError
from counselflow.gateway.gateway import AnalysisGateway, GatewayConfig
from counselflow.gateway.usage import UsageTracker

# Configure logging before anything else
setup_logging()
init_sentry()

logger = logging.getLogger(__name__)


async def _build_gateway() -> AnalysisGateway:
    config = GatewayConfig.from_settings(settings)
    if settings.usage_store != "sql":
        return AnalysisGateway(config)

    from counselflow.db.postgres import async_session_factory, engine
    from counselflow.db.usage_store import SqlAlchemyUsageStore, init_usage_schema

    await init_usage_schema(engine)
    usage = UsageTracker(
        store=SqlAlchemyUsageStore(async_session_factory),
        default_budget=config.default_monthly_budget,
    )
    return AnalysisGateway(config, usage=usage)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    validate_settings_for_production()
    logger.info("Starting CounselFlow AI gateway...")

    if getattr(app.state, "gateway", None) is None:
        app.state.gateway = await _build_gateway()
    await app.state.gateway.start()

    yield

    # Shutdown
    await app.state.gateway.close()
    if settings.usage_store == "sql":
        from counselflow.db.postgres import engine

        await engine.dispose()
    logger.info("CounselFlow AI gateway shut down")


# ── Error mapping ────────────────────────────────────────────────


async def _validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=422, content={"detail": str(exc), "errors": exc.errors})


async def _no_provider_handler(request: Request, exc: NoProviderAvailable):
    return JSONResponse(status_code=503, content={"detail": str(exc)})


async def _exhausted_handler(request: Request, exc: AllProvidersExhausted):
    return JSONResponse(
        status_code=502,
        content={
            "detail": "All AI providers failed",
            "attempted": [p.value for p in exc.attempted],
            "last_error": exc.last_error.kind.value,
        },
    )


async def _provider_error_handler(request: Request, exc: ProviderError):
    return JSONResponse(
        status_code=400,
        content={"detail": exc.message, "provider": exc.provider.value, "kind": exc.kind.value},
    )


# Log unhandled exceptions with the full traceback
async def _unhandled_exception_handler(request: Request, exc: Exception):
    tb = traceback.format_exception(type(exc), exc, exc.__traceback__)
    logger.error("Unhandled %s on %s %s:\n%s", type(exc).__name__, request.method, request.url.path, "".join(tb))
    return JSONResponse(status_code=500, content={"detail": f"{type(exc).__name__}: {exc}"})


def create_app(gateway: AnalysisGateway | None = None) -> FastAPI:
    """Build the FastAPI app. A pre-built gateway skips construction from settings."""
    app = FastAPI(
        title="CounselFlow AI Gateway",
        description="Routes legal analysis requests to self-hosted and premium AI providers",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/api/docs" if settings.app_debug else None,
        redoc_url="/api/redoc" if settings.app_debug else None,
    )
    app.state.gateway = gateway

    app.add_exception_handler(ValidationError, _validation_error_handler)
    app.add_exception_handler(NoProviderAvailable, _no_provider_handler)
    app.add_exception_handler(AllProvidersExhausted, _exhausted_handler)
    app.add_exception_handler(ProviderError, _provider_error_handler)
    app.add_exception_handler(Exception, _unhandled_exception_handler)

    app.add_middleware(PrometheusMiddleware)

    app.include_router(api_v1_router)

    @app.get("/metrics", include_in_schema=False)
    async def metrics():
        return metrics_response()

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("counselflow.main:app", host=settings.app_host, port=settings.app_port, log_config=None)
