"""Multi-provider OCR orchestration with failover and quality gating.

Turns one document into ``(text, confidence, provider, structured hints)``
despite provider failures, latency and quota limits.

Architecture: Fallback Chain with a quality gate
------------------------------------------------
Each document walks a small state machine:

    SELECT_PROVIDER -> ATTEMPT -> VALIDATE -> ACCEPT
                          |          |
                          |          +-> NEXT_PROVIDER (quality too low)
                          +-> RETRY_SAME (error / timeout, up to max_retries)
                          +-> NEXT_PROVIDER (retries used up)
    ... -> EXHAUSTED: best attempt with text, else ProvidersExhaustedError

Provider order is: explicit preference -> a handwriting-capable provider
when the handwriting heuristic fires -> the document type's preferred
provider -> registry priority order.  No provider is tried twice.

Each attempt is bounded by its provider's ``timeout_ms``.  A whole-document
deadline only exists when the caller asks for one; when it fires, the best
attempt collected so far is returned.

Every provider call goes through that provider's
:class:`~booking_ocr.services.rate_limiter.RateLimiterService`, so quota
errors are absorbed by the queue and identical documents are served from
cache.  Structured field extraction is a second pass that only runs after
a result has been accepted.
"""

from __future__ import annotations

import asyncio
import hashlib
import time
from typing import Any
from uuid import uuid4

import structlog

from booking_ocr.config.ocr_config import DocumentTypeConfig, FailoverStrategyConfig
from booking_ocr.interfaces.ocr_provider import IOCRProvider
from booking_ocr.models.ocr import OCRDocument, OCRResult, ProcessOptions, ValidationResult
from booking_ocr.models.provider import ProviderDescriptor, ProviderHealth
from booking_ocr.services import field_extractor
from booking_ocr.services.handwriting_detector import HandwritingDetector
from booking_ocr.services.provider_registry import ProviderRegistry
from booking_ocr.services.quality_validator import QualityValidator
from booking_ocr.services.rate_limiter import RateLimiterService
from booking_ocr.utils import pdf_tools
from booking_ocr.utils.backoff import attempt_delay
from booking_ocr.utils.concurrency import throttled_gather
from booking_ocr.utils.errors import (
    BookingOCRError,
    DocumentTimeoutError,
    ProviderTimeoutError,
    ProvidersExhaustedError,
    QueueFullError,
    RetryLimitExceededError,
    UnsupportedDocumentError,
)
from booking_ocr.utils.image_preprocessor import ImagePreprocessor
from booking_ocr.utils.logging import get_logger

_HEALTH_CHECK_TIMEOUT_SECONDS = 10.0
_OCR_CACHE_TTL_SECONDS = 300

# Errors that make further attempts on the same provider pointless.
_FINAL_ERRORS = (UnsupportedDocumentError, RetryLimitExceededError, QueueFullError)


class _ChainState:
    """What one document's walk has collected so far.

    Lives outside the chain coroutine so a caller deadline that cancels the
    walk can still hand back the best attempt.
    """

    def __init__(self) -> None:
        self.failures: dict[str, str] = {}
        self.best: tuple[OCRResult, ValidationResult] | None = None

    def offer(self, result: OCRResult, verdict: ValidationResult) -> None:
        if result.has_text and (self.best is None or result.confidence > self.best[0].confidence):
            self.best = (result, verdict)

    def best_result(self) -> OCRResult | None:
        if self.best is None:
            return None
        result, verdict = self.best
        return result.model_copy(update={"validation": verdict})


class OCRMultiProviderService:
    """Processes documents across the configured OCR providers.

    Parameters
    ----------
    registry:
        Provider descriptors, document types and failover strategies.
    providers:
        Adapter per provider name.  Registry entries without an adapter are
        skipped.
    limiters:
        One rate limiter per provider name.
    validator:
        Quality gate.
    handwriting_detector:
        Advisory heuristic for provider ordering.
    preprocessor:
        Image preprocessing; ``None`` disables it.
    max_concurrent:
        Documents processed at the same time across all callers.
    preprocess_images:
        Preprocess every image, not only document types that ask for it.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        providers: dict[str, IOCRProvider],
        limiters: dict[str, RateLimiterService],
        validator: QualityValidator,
        handwriting_detector: HandwritingDetector,
        preprocessor: ImagePreprocessor | None = None,
        *,
        max_concurrent: int = 5,
        preprocess_images: bool = True,
        cache_ttl: int = _OCR_CACHE_TTL_SECONDS,
        degraded_min_length: int = 10,
        sleep: Any = asyncio.sleep,
    ) -> None:
        self._registry = registry
        self._providers = providers
        self._limiters = limiters
        self._validator = validator
        self._detector = handwriting_detector
        self._preprocessor = preprocessor
        self._max_concurrent = max_concurrent
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._preprocess_images = preprocess_images
        self._cache_ttl = cache_ttl
        self._degraded_min_length = degraded_min_length
        self._sleep = sleep
        self._current_processing = 0
        self._logger: structlog.BoundLogger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    @property
    def validator(self) -> QualityValidator:
        return self._validator

    async def process_document(
        self,
        document: OCRDocument,
        options: ProcessOptions | None = None,
    ) -> OCRResult:
        """Run *document* through the failover chain.

        Parameters
        ----------
        document:
            The document to read.
        options:
            Preferred provider, quality requirement, deadline, document
            type and failover strategy.

        Returns
        -------
        OCRResult
            The accepted result (with ``validation`` and, where possible,
            ``structured_data``), or the best sub-threshold attempt when no
            provider passed the quality gate.

        Raises
        ------
        ProvidersExhaustedError
            If no provider produced any text.
        DocumentTimeoutError
            If ``options.timeout_seconds`` elapsed before any provider
            produced text.  When an attempt with text was already collected
            it is returned instead.

        Without ``timeout_seconds`` there is no whole-document deadline;
        each attempt is bounded by its provider's ``timeout_ms`` only.
        """
        options = options or ProcessOptions()
        profile = self._registry.document_type(options.document_type or document.document_type)
        strategy = self._registry.failover_strategy(options.strategy)
        deadline = options.timeout_seconds
        log = self._logger.bind(processing_id=uuid4().hex[:12], document_id=document.id)

        log.info(
            "ocr_document_started",
            filename=document.filename,
            mime_type=document.mime_type,
            size=document.file_size,
            document_type=options.document_type or document.document_type,
            deadline_seconds=deadline,
        )
        start = time.perf_counter()
        state = _ChainState()
        if deadline is None:
            result = await self._process(document, options, profile, strategy, state, log)
        else:
            try:
                result = await asyncio.wait_for(
                    self._process(document, options, profile, strategy, state, log), timeout=deadline,
                )
            except asyncio.TimeoutError as exc:
                result = state.best_result()
                if result is None:
                    log.warning("ocr_document_timeout", deadline_seconds=deadline, failures=state.failures)
                    raise DocumentTimeoutError(
                        f"Document {document.id} not processed within {deadline:.1f}s"
                    ) from exc
                log.warning(
                    "ocr_document_timeout_returning_best",
                    deadline_seconds=deadline,
                    provider=result.provider,
                    confidence=round(result.confidence, 4),
                )

        log.info(
            "ocr_document_finished",
            provider=result.provider,
            confidence=round(result.confidence, 4),
            chars=len(result.text),
            duration_ms=round((time.perf_counter() - start) * 1000, 1),
        )
        return result

    async def get_provider_status(self) -> list[ProviderHealth]:
        """Descriptor, rate-limit state and a live health probe per provider."""
        descriptors = self._registry.list_all()
        probes = await throttled_gather([self._probe(d) for d in descriptors])

        statuses: list[ProviderHealth] = []
        for descriptor, probe in zip(descriptors, probes):
            if isinstance(probe, BaseException):
                healthy, latency, error = False, None, str(probe)
            else:
                healthy, latency, error = probe
            limiter = self._limiters.get(descriptor.name)
            statuses.append(ProviderHealth(
                name=descriptor.name,
                display_name=descriptor.display_name,
                available=descriptor.available,
                healthy=healthy,
                latency_ms=latency,
                error=error,
                priority=descriptor.priority,
                capabilities={
                    "pdf": descriptor.supports_pdf,
                    "images": descriptor.supports_image,
                    "handwriting": descriptor.supports_handwriting,
                    "structured_extraction": descriptor.structured_extraction,
                    "multi_language": descriptor.multi_language,
                    "quality_score": descriptor.quality_score,
                },
                limits={
                    "max_file_size_mb": descriptor.max_file_size_mb,
                    "max_pages": descriptor.max_pages,
                    "timeout_ms": descriptor.timeout_ms,
                    "max_retries": descriptor.max_retries,
                    "cost_per_page": descriptor.cost_per_page,
                },
                rate_limit=limiter.get_status() if limiter else None,
            ))
        return statuses

    def get_statistics(self) -> dict[str, Any]:
        available = self._registry.list_available()
        return {
            "available_providers": [d.name for d in available],
            "total_providers": len(self._registry.list_all()),
            "queue_length": sum(limiter.queue_size for limiter in self._limiters.values()),
            "current_processing": self._current_processing,
            "max_concurrent": self._max_concurrent,
            "rate_limits": {
                name: limiter.get_status().model_dump() for name, limiter in self._limiters.items()
            },
        }

    async def close(self) -> None:
        for limiter in self._limiters.values():
            await limiter.close()

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    async def _process(
        self,
        document: OCRDocument,
        options: ProcessOptions,
        profile: DocumentTypeConfig,
        strategy: FailoverStrategyConfig,
        state: _ChainState,
        log: structlog.BoundLogger,
    ) -> OCRResult:
        async with self._semaphore:
            self._current_processing += 1
            try:
                return await self._run_chain(document, options, profile, strategy, state, log)
            finally:
                self._current_processing -= 1

    async def _run_chain(
        self,
        document: OCRDocument,
        options: ProcessOptions,
        profile: DocumentTypeConfig,
        strategy: FailoverStrategyConfig,
        state: _ChainState,
        log: structlog.BoundLogger,
    ) -> OCRResult:
        plan, skipped = await self._plan(document, options, profile, log)
        failures = state.failures
        failures.update(skipped)
        prepared = await self._prepare(document, profile, log)

        for descriptor in plan:
            provider = self._providers[descriptor.name]
            result, reason = await self._attempt(descriptor, provider, prepared, log)
            if result is None:
                failures[descriptor.name] = reason
                continue

            verdict = self._validator.validate(result, min_quality_score=strategy.min_quality_score)
            if self._accepts(result, verdict, options, strategy, log):
                log.info(
                    "ocr_provider_accepted",
                    provider=descriptor.name,
                    confidence=round(result.confidence, 4),
                    quality_score=verdict.quality_score,
                )
                # A deadline during the structured pass still returns this result.
                state.best = (result, verdict)
                return await self._enrich(result, verdict, log)

            failures[descriptor.name] = f"quality score {verdict.quality_score} below threshold"
            log.info(
                "ocr_provider_below_threshold",
                provider=descriptor.name,
                confidence=round(result.confidence, 4),
                quality_score=verdict.quality_score,
                issues=verdict.issues,
            )
            state.offer(result, verdict)

        result = state.best_result()
        if result is not None:
            log.info(
                "ocr_returning_best_fallback",
                provider=result.provider,
                confidence=round(result.confidence, 4),
                quality_score=result.validation.quality_score if result.validation else None,
            )
            return result

        log.error("ocr_providers_exhausted", failures=failures)
        raise ProvidersExhaustedError(failures)

    def _accepts(
        self,
        result: OCRResult,
        verdict: ValidationResult,
        options: ProcessOptions,
        strategy: FailoverStrategyConfig,
        log: structlog.BoundLogger,
    ) -> bool:
        if strategy.skip_quality_validation and result.has_text:
            return True
        if verdict.is_valid:
            return True
        degraded = (
            not options.require_high_quality
            and strategy.accept_partial_results
            and len(result.text.strip()) > self._degraded_min_length
        )
        if degraded:
            log.info(
                "ocr_degraded_accept",
                provider=result.provider,
                quality_score=verdict.quality_score,
            )
        return degraded

    async def _plan(
        self,
        document: OCRDocument,
        options: ProcessOptions,
        profile: DocumentTypeConfig,
        log: structlog.BoundLogger,
    ) -> tuple[list[ProviderDescriptor], dict[str, str]]:
        available = {d.name: d for d in self._registry.list_available() if d.name in self._providers}
        order: list[ProviderDescriptor] = []

        def add(descriptor: ProviderDescriptor | None) -> None:
            if descriptor is not None and descriptor not in order:
                order.append(descriptor)

        if options.preferred_provider:
            if options.preferred_provider not in available:
                log.warning("ocr_preferred_provider_unavailable", provider=options.preferred_provider)
            add(available.get(options.preferred_provider))

        handwriting_score = self._detector.score(document.data)
        if handwriting_score > self._detector.threshold:
            add(next((d for d in available.values() if d.supports_handwriting), None))

        if profile.preferred_provider:
            add(available.get(profile.preferred_provider))

        for descriptor in sorted(available.values(), key=lambda d: d.priority):
            add(descriptor)

        page_count = 0
        if document.is_pdf:
            page_count = await asyncio.to_thread(pdf_tools.count_pages, document.data)

        plan: list[ProviderDescriptor] = []
        skipped: dict[str, str] = {}
        for descriptor in order:
            if not descriptor.accepts_mime_type(document.mime_type):
                skipped[descriptor.name] = f"does not accept {document.mime_type}"
            elif document.size_mb > descriptor.max_file_size_mb:
                skipped[descriptor.name] = (
                    f"file size {document.size_mb:.1f} MB over {descriptor.max_file_size_mb} MB"
                )
            elif page_count > descriptor.max_pages:
                skipped[descriptor.name] = f"{page_count} pages over {descriptor.max_pages}"
            else:
                plan.append(descriptor)

        log.info(
            "ocr_plan",
            order=[d.name for d in plan],
            skipped=skipped,
            handwriting_score=round(handwriting_score, 3),
        )
        return plan, skipped

    async def _prepare(
        self,
        document: OCRDocument,
        profile: DocumentTypeConfig,
        log: structlog.BoundLogger,
    ) -> OCRDocument:
        if not document.is_image or self._preprocessor is None:
            return document
        if not (self._preprocess_images or profile.preprocess):
            return document

        processed = await asyncio.to_thread(self._preprocessor.prepare_for_ocr, document.data)
        if processed is document.data:
            return document
        log.debug("ocr_image_preprocessed", original=document.file_size, processed=len(processed))
        return OCRDocument.from_bytes(
            processed,
            mime_type="image/png",
            filename=document.filename,
            document_type=document.document_type,
            document_id=document.id,
        )

    async def _attempt(
        self,
        descriptor: ProviderDescriptor,
        provider: IOCRProvider,
        document: OCRDocument,
        log: structlog.BoundLogger,
    ) -> tuple[OCRResult | None, str]:
        """Try one provider up to ``max_retries`` times.

        Returns ``(result, "")`` on success or ``(None, reason)``.
        """
        reason = "no attempt made"

        for attempt in range(1, descriptor.max_retries + 1):
            started = time.perf_counter()
            outcome = "success"
            try:
                result = await self._call(descriptor, provider, document)
            except ProviderTimeoutError as exc:
                outcome, reason = "timeout", exc.message
            except _FINAL_ERRORS as exc:
                outcome, reason = "rejected", exc.message
            except BookingOCRError as exc:
                outcome, reason = "error", exc.message
            except Exception as exc:
                outcome, reason = "error", f"{type(exc).__name__}: {exc}"

            latency_ms = round((time.perf_counter() - started) * 1000, 1)
            log.info(
                "ocr_attempt_completed",
                provider=descriptor.name,
                attempt=attempt,
                latency_ms=latency_ms,
                outcome=outcome,
                error=None if outcome == "success" else reason,
            )
            if outcome == "success":
                return result, ""
            if outcome == "rejected":
                break
            if attempt < descriptor.max_retries:
                await self._sleep(attempt_delay(
                    attempt,
                    initial_delay_ms=descriptor.initial_delay_ms,
                    multiplier=descriptor.backoff_multiplier,
                ))

        log.warning("ocr_provider_failed", provider=descriptor.name, error=reason)
        return None, reason

    # ------------------------------------------------------------------
    # Structured data pass
    # ------------------------------------------------------------------

    async def _enrich(
        self,
        result: OCRResult,
        verdict: ValidationResult,
        log: structlog.BoundLogger,
    ) -> OCRResult:
        structured = result.structured_data
        if not structured and result.has_text:
            structured = await self._structured_fields(result.text, log)
        return result.model_copy(update={"validation": verdict, "structured_data": structured or None})

    async def _structured_fields(self, text: str, log: structlog.BoundLogger) -> dict[str, Any]:
        for descriptor in self._registry.list_available():
            provider = self._providers.get(descriptor.name)
            if provider is None or not (
                descriptor.structured_extraction and provider.supports_structured_extraction()
            ):
                continue
            limiter = self._limiters[descriptor.name]
            key = f"fields:{descriptor.name}:{hashlib.sha256(text.encode('utf-8')).hexdigest()}"
            try:
                fields = await asyncio.wait_for(
                    limiter.schedule("fields", provider.extract_fields, text, cache_key=key),
                    timeout=descriptor.timeout_ms / 1000,
                )
            except asyncio.TimeoutError:
                log.warning("structured_extraction_timeout", provider=descriptor.name)
                continue
            except BookingOCRError as exc:
                log.warning("structured_extraction_failed", provider=descriptor.name, error=exc.message)
                continue
            if fields:
                log.info("structured_extraction_complete", provider=descriptor.name, fields=sorted(fields))
                return {"document_type": "reservation", **fields}

        fields = field_extractor.extract_fields(text)
        log.info("structured_extraction_complete", provider="patterns", fields=sorted(fields))
        return fields

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _call(
        self,
        descriptor: ProviderDescriptor,
        provider: IOCRProvider,
        document: OCRDocument,
    ) -> OCRResult:
        """One provider call through its limiter, bounded by ``timeout_ms``."""
        timeout = descriptor.timeout_ms / 1000
        try:
            return await asyncio.wait_for(
                self._limiters[descriptor.name].schedule(
                    "ocr",
                    provider.process,
                    document,
                    cache_key=f"ocr:{descriptor.name}:{document.content_hash}",
                    ttl=self._cache_ttl,
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError as exc:
            raise ProviderTimeoutError(
                f"timed out after {timeout:.1f}s", provider_name=descriptor.name,
            ) from exc

    async def _probe(self, descriptor: ProviderDescriptor) -> tuple[bool, float | None, str | None]:
        provider = self._providers.get(descriptor.name)
        if provider is None:
            return False, None, "no adapter registered"
        if not descriptor.available:
            return False, None, "not configured"
        started = time.perf_counter()
        try:
            healthy = await asyncio.wait_for(provider.health_check(), timeout=_HEALTH_CHECK_TIMEOUT_SECONDS)
        except asyncio.TimeoutError:
            return False, None, "health check timed out"
        latency = round((time.perf_counter() - started) * 1000, 1)
        return healthy, latency, None if healthy else "health check failed"
