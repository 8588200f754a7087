"""booking-ocr FastAPI application entry point.

Wires the provider registry, adapters, per-provider rate limiters, quality
gate and orchestrator together from ``.env`` and ``config/config.yaml``.
``build_services`` is also used by the CLI, outside the web server.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

import httpx
import structlog
import uvicorn
from fastapi import FastAPI

from booking_ocr import __version__
from booking_ocr.api.middleware import (
    ErrorHandlingMiddleware,
    RequestLoggingMiddleware,
    configure_cors,
)
from booking_ocr.api.routes import router as api_router
from booking_ocr.config.loader import load_ocr_config
from booking_ocr.config.ocr_config import OCRConfig
from booking_ocr.config.settings import Settings
from booking_ocr.interfaces.ocr_provider import IOCRProvider
from booking_ocr.models.provider import ProviderDescriptor
from booking_ocr.providers.ocr import GeminiOCRProvider, NativePDFProvider, OpenRouterOCRProvider
from booking_ocr.services.batch_coordinator import BatchCoordinator
from booking_ocr.services.handwriting_detector import HandwritingDetector
from booking_ocr.services.ocr_service import OCRMultiProviderService
from booking_ocr.services.provider_registry import ProviderRegistry
from booking_ocr.services.quality_validator import QualityPolicy, QualityValidator
from booking_ocr.services.rate_limiter import RateLimiterService
from booking_ocr.utils.image_preprocessor import ImagePreprocessor
from booking_ocr.utils.logging import configure_logging, get_logger

_logger: structlog.BoundLogger = get_logger(__name__)

_DEFAULT_BACKOFF_CAP_SECONDS = 30.0


# ---------------------------------------------------------------------------
# Component construction
# ---------------------------------------------------------------------------


def _build_adapters(
    settings: Settings,
    http_client: httpx.AsyncClient,
    registry: ProviderRegistry,
) -> dict[str, IOCRProvider]:
    openrouter = registry.resolve("openrouter")
    return {
        "gemini": GeminiOCRProvider(settings, http_client=http_client),
        "openrouter": OpenRouterOCRProvider(
            settings,
            timeout=openrouter.timeout_ms / 1000 if openrouter else 25.0,
        ),
        "native": NativePDFProvider(),
    }


def _build_limiter(descriptor: ProviderDescriptor, config: OCRConfig) -> RateLimiterService:
    limits = config.rate_limiting
    cooldown = descriptor.cooldown_period_ms / 1000
    return RateLimiterService(
        descriptor.name,
        requests_per_minute=descriptor.requests_per_minute,
        max_retries=limits.rate_limit_retries,
        cache_max_size=limits.cache_max_size,
        default_ttl=limits.cache_ttl_seconds,
        cache_enabled=limits.cache_enabled,
        queue_enabled=limits.queue_enabled,
        burst_limit=descriptor.burst_limit,
        max_queue_size=limits.queue_max_size,
        backoff_cap=cooldown if cooldown > 0 else _DEFAULT_BACKOFF_CAP_SECONDS,
    )


def build_services(
    settings: Settings | None = None,
    ocr_config: OCRConfig | None = None,
) -> dict[str, Any]:
    """Construct every component of the OCR layer.

    Returns a flat dict of named components to be stored on ``app.state``.
    Adapters exist for every known provider; the registry decides which of
    them are available.
    """
    settings = settings or Settings()
    ocr_config = ocr_config or load_ocr_config(settings=settings)

    http_client = httpx.AsyncClient(timeout=60.0)
    registry = ProviderRegistry(ocr_config, settings)
    adapters = _build_adapters(settings, http_client, registry)
    limiters = {d.name: _build_limiter(d, ocr_config) for d in registry.list_all()}

    validator = QualityValidator(QualityPolicy.from_config(ocr_config.quality))
    detector = HandwritingDetector(threshold=ocr_config.quality.handwriting_threshold)
    service = OCRMultiProviderService(
        registry,
        adapters,
        limiters,
        validator,
        detector,
        ImagePreprocessor(),
        max_concurrent=ocr_config.rate_limiting.max_concurrent_requests,
        preprocess_images=settings.preprocess_images,
        cache_ttl=ocr_config.rate_limiting.cache_ttl_seconds,
        degraded_min_length=ocr_config.quality.degraded_min_length,
    )
    coordinator = BatchCoordinator(service, max_documents=settings.max_batch_documents)

    return {
        "settings": settings,
        "http_client": http_client,
        "provider_registry": registry,
        "rate_limiters": limiters,
        "quality_validator": validator,
        "ocr_service": service,
        "batch_coordinator": coordinator,
    }


async def shutdown_services(components: dict[str, Any]) -> None:
    """Drain limiter workers and close the shared HTTP client."""
    await components["ocr_service"].close()
    http_client: httpx.AsyncClient | None = components.get("http_client")
    if http_client is not None:
        await http_client.aclose()


# ---------------------------------------------------------------------------
# FastAPI application factory
# ---------------------------------------------------------------------------


def create_app(
    settings: Settings | None = None,
    components: dict[str, Any] | None = None,
) -> FastAPI:
    """Build and configure the FastAPI application.

    Parameters
    ----------
    settings:
        Application settings; read from the environment when omitted.
    components:
        Pre-built components (as returned by :func:`build_services`).  When
        omitted they are built on startup.
    """
    settings = settings or (components or {}).get("settings") or Settings()
    configure_logging(settings.log_level, json_output=settings.app_env == "production")

    @asynccontextmanager
    async def _lifespan(application: FastAPI):  # noqa: ANN202
        built = components or build_services(settings)
        for key, value in built.items():
            setattr(application.state, key, value)

        registry: ProviderRegistry = built["provider_registry"]
        registry.require_available()
        report = registry.validate()
        for issue in report.issues:
            _logger.warning("ocr_configuration_issue", issue=issue)

        _logger.info(
            "app_startup",
            version=__version__,
            environment=settings.app_env,
            available_providers=report.available_providers,
        )

        yield

        await shutdown_services(built)
        _logger.info("app_shutdown")

    application = FastAPI(
        title="booking-ocr API",
        version=__version__,
        description=(
            "Multi-provider OCR for booking documents: provider failover, "
            "quality gating, rate-limited queueing and result caching."
        ),
        lifespan=_lifespan,
    )

    # -- Middleware (last added = first executed) --
    application.add_middleware(ErrorHandlingMiddleware)
    application.add_middleware(RequestLoggingMiddleware)
    configure_cors(application, allowed_origins=settings.cors_origin_list)

    application.include_router(api_router)
    return application


def run() -> None:
    settings = Settings()
    uvicorn.run(
        "booking_ocr.main:create_app",
        factory=True,
        host=settings.app_host,
        port=settings.app_port,
        reload=(settings.app_env == "development"),
    )


if __name__ == "__main__":
    run()
