"""Registry of OCR providers built from configuration and credentials.

The registry is the single source of truth for which providers exist, in
what order they are tried, and which of them can actually be used.  A
provider is *available* when it is enabled and, if it lists credential
settings fields, at least one of them is non-empty.

``validate`` is diagnostic only; ``require_available`` is the fail-fast
check run at startup.
"""

from __future__ import annotations

from booking_ocr.config.ocr_config import (
    DocumentTypeConfig,
    FailoverStrategyConfig,
    OCRConfig,
    ProviderConfig,
)
from booking_ocr.config.settings import Settings
from booking_ocr.models.provider import ConfigurationReport, ProviderDescriptor
from booking_ocr.utils.errors import ConfigurationError
from booking_ocr.utils.logging import get_logger

_NATIVE = "native"


def _describe(name: str, cfg: ProviderConfig, settings: Settings) -> ProviderDescriptor:
    has_credentials = not cfg.credentials or any(settings.has_credential(f) for f in cfg.credentials)
    return ProviderDescriptor(
        name=name,
        display_name=cfg.display_name or name,
        description=cfg.description,
        priority=cfg.priority,
        available=cfg.enabled and has_credentials,
        max_retries=cfg.retry.max_retries,
        timeout_ms=cfg.limits.timeout_ms,
        cost_per_page=cfg.costs.per_page,
        cost_per_mb=cfg.costs.per_mb,
        supports_pdf=cfg.capabilities.pdf,
        supports_image=cfg.capabilities.images,
        structured_extraction=cfg.capabilities.structured_extraction,
        supports_handwriting=cfg.capabilities.handwriting,
        multi_language=cfg.capabilities.multi_language,
        quality_score=cfg.capabilities.quality_score,
        max_file_size_mb=cfg.limits.max_file_size_mb,
        max_pages=cfg.limits.max_pages,
        requests_per_minute=cfg.rate_limit.requests_per_minute,
        burst_limit=cfg.rate_limit.burst_limit,
        cooldown_period_ms=cfg.rate_limit.cooldown_period_ms,
        initial_delay_ms=cfg.retry.initial_delay_ms,
        backoff_multiplier=cfg.retry.backoff_multiplier,
        credentials=list(cfg.credentials),
    )


class ProviderRegistry:
    """Holds one :class:`ProviderDescriptor` per configured provider."""

    def __init__(self, config: OCRConfig, settings: Settings) -> None:
        self._logger = get_logger(__name__)
        self._config = config
        self._descriptors: dict[str, ProviderDescriptor] = {}
        self.reload(config, settings)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    @property
    def config(self) -> OCRConfig:
        return self._config

    def list_all(self) -> list[ProviderDescriptor]:
        """All configured providers, ascending by priority."""
        return sorted(self._descriptors.values(), key=lambda d: (d.priority, d.name))

    def list_available(self) -> list[ProviderDescriptor]:
        """Available providers, ascending by priority (lower is tried first)."""
        return [d for d in self.list_all() if d.available]

    def resolve(self, name: str) -> ProviderDescriptor | None:
        return self._descriptors.get(name)

    def document_type(self, name: str | None) -> DocumentTypeConfig:
        """Profile for *name*, falling back to the default document type."""
        types = self._config.document_types
        if name and name in types:
            return types[name]
        return types.get(self._config.default_document_type, DocumentTypeConfig())

    def failover_strategy(self, name: str | None) -> FailoverStrategyConfig:
        """Strategy *name*, falling back to the configured default strategy."""
        strategies = self._config.failover_strategies
        if name and name in strategies:
            return strategies[name]
        return strategies.get(self._config.default_strategy, FailoverStrategyConfig())

    def optimal_provider(self, document_type: str | None = None) -> ProviderDescriptor | None:
        """The document type's preferred provider if available, else the first available."""
        preferred = self.document_type(document_type).preferred_provider
        if preferred:
            descriptor = self.resolve(preferred)
            if descriptor is not None and descriptor.available:
                return descriptor
        available = self.list_available()
        return available[0] if available else None

    # ------------------------------------------------------------------
    # Configuration lifecycle
    # ------------------------------------------------------------------

    def reload(self, config: OCRConfig, settings: Settings) -> None:
        """Rebuild every descriptor from *config* and the credentials in *settings*."""
        self._config = config
        self._descriptors = {
            name: _describe(name, cfg, settings) for name, cfg in config.providers.items()
        }
        self._logger.info(
            "provider_registry_loaded",
            providers=[d.name for d in self.list_all()],
            available=[d.name for d in self.list_available()],
        )

    def validate(self) -> ConfigurationReport:
        """Non-fatal diagnostics about the current provider setup."""
        available = self.list_available()
        names = [d.name for d in available]
        issues: list[str] = []
        recommendations: list[str] = []

        if not available:
            issues.append("No OCR providers are available")
        elif names == [_NATIVE]:
            issues.append("Only native PDF parser available - limited OCR capabilities")

        for descriptor in self.list_all():
            if descriptor.available or not descriptor.credentials:
                continue
            keys = " or ".join(c.upper() for c in descriptor.credentials)
            issues.append(f"{descriptor.display_name} not configured - missing {keys}")

        if len(available) < 2:
            recommendations.append("Configure at least 2 OCR providers for redundancy")
        if not any(d.structured_extraction for d in available):
            recommendations.append(
                "Configure an AI provider with structured extraction for reliable field parsing"
            )
        if not any(d.supports_image for d in available):
            recommendations.append("No available provider accepts images; only PDFs can be processed")
        for document_type, profile in self._config.document_types.items():
            preferred = profile.preferred_provider
            if preferred and preferred not in self._descriptors:
                issues.append(
                    f"Document type '{document_type}' prefers unknown provider '{preferred}'"
                )

        return ConfigurationReport(
            valid=bool(available),
            issues=issues,
            available_providers=names,
            recommendations=recommendations,
        )

    def require_available(self) -> None:
        """Fail fast when no provider can be used.

        Raises:
            ConfigurationError: If no provider is available.
        """
        if not self.list_available():
            raise ConfigurationError(
                "No OCR providers are available; set GOOGLE_GEMINI_API_KEY, "
                "OPENROUTER_API_KEY or enable the native provider"
            )
