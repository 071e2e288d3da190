"""Sentry error tracking integration.

Initializes Sentry SDK if SENTRY_DSN env variable is set.
Request bodies and analysis payloads are stripped before events leave the
process: they may carry privileged client material.
"""

import logging

from counselflow.core.config import settings

logger = logging.getLogger(__name__)

_SCRUBBED_EXTRA_KEYS = ("input", "context", "output", "prompt")


def _scrub_event(event: dict, hint: dict) -> dict:
    request = event.get("request")
    if isinstance(request, dict):
        request.pop("data", None)
        request.pop("cookies", None)
    extra = event.get("extra")
    if isinstance(extra, dict):
        for key in _SCRUBBED_EXTRA_KEYS:
            extra.pop(key, None)
    return event


def init_sentry() -> None:
    """Initialize Sentry if SENTRY_DSN is configured."""
    if not settings.sentry_dsn:
        logger.debug("Sentry DSN not configured, skipping")
        return

    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    integrations = [FastApiIntegration(transaction_style="endpoint")]
    if settings.usage_store == "sql":
        integrations.append(SqlalchemyIntegration())

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.app_env,
        traces_sample_rate=0.1 if settings.app_env == "production" else 1.0,
        send_default_pii=False,
        before_send=_scrub_event,
        integrations=integrations,
    )
    sentry_sdk.set_tag("service", "ai_gateway")
    logger.info("Sentry initialized (env=%s)", settings.app_env)
