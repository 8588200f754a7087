"""Standalone CLI for the OCR layer.

Usage::

    python -m booking_ocr.cli process booking.pdf
    python -m booking_ocr.cli process scan.jpg --provider gemini --json
    python -m booking_ocr.cli batch a.pdf b.pdf c.png --concurrency 2
    python -m booking_ocr.cli providers

Builds the same components as the web server (``main.build_services``),
so credentials and ``config/config.yaml`` apply unchanged.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
import time
from pathlib import Path
from typing import Any

from booking_ocr.models.ocr import OCRDocument, OCRResult, ProcessOptions
from booking_ocr.utils.errors import BookingOCRError
from booking_ocr.utils.logging import configure_logging


def _load_document(path: Path, document_type: str | None, max_upload_mb: int) -> OCRDocument:
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")
    data = path.read_bytes()
    if len(data) > max_upload_mb * 1024 * 1024:
        raise ValueError(f"File too large: {len(data):,} bytes. Maximum: {max_upload_mb} MB")
    return OCRDocument.from_bytes(data, filename=path.name, document_type=document_type or "booking_pdf")


def _options(args: argparse.Namespace) -> ProcessOptions:
    return ProcessOptions(
        preferred_provider=args.provider,
        require_high_quality=not args.allow_low_quality,
        timeout_seconds=getattr(args, "timeout", None),
        document_type=args.document_type,
        strategy=args.strategy,
    )


def _result_dict(result: OCRResult) -> dict[str, Any]:
    return result.model_dump(mode="json")


def _format_result(name: str, result: OCRResult) -> str:
    sep = "=" * 60
    lines = [sep, f"  {name}", sep]
    if not result.success:
        lines.append(f"FAILED: {result.error}")
        return "\n".join(lines)

    lines.append(f"Provider: {result.provider}  |  Confidence: {result.confidence:.0%}")
    lines.append(f"OCR time: {result.processing_time_ms:.0f} ms")
    if result.validation:
        lines.append(
            f"Quality score: {result.validation.quality_score}  |  Valid: {result.validation.is_valid}"
        )
        for issue in result.validation.issues:
            lines.append(f"  - {issue}")
    if result.structured_data:
        lines.append("")
        lines.append("FIELDS")
        lines.append("-" * 40)
        for key, value in result.structured_data.items():
            lines.append(f"  {key}: {value}")
    lines.append("")
    lines.append("TEXT")
    lines.append("-" * 40)
    lines.append(result.text)
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


async def _cmd_process(args: argparse.Namespace, components: dict[str, Any]) -> int:
    settings = components["settings"]
    document = _load_document(Path(args.file), args.document_type, settings.max_upload_mb)
    print(f"Processing: {document.filename} ({document.file_size:,} bytes)", file=sys.stderr)

    start = time.monotonic()
    result = await components["ocr_service"].process_document(document, _options(args))
    print(f"Done in {time.monotonic() - start:.1f}s", file=sys.stderr)

    if args.json:
        print(json.dumps(_result_dict(result), indent=2, default=str))
    else:
        print(_format_result(document.filename, result))
    return 0 if result.success else 1


async def _cmd_batch(args: argparse.Namespace, components: dict[str, Any]) -> int:
    settings = components["settings"]
    coordinator = components["batch_coordinator"]
    if len(args.files) > coordinator.max_documents:
        print(f"Error: Maximum {coordinator.max_documents} documents per batch", file=sys.stderr)
        return 1

    documents = [_load_document(Path(f), args.document_type, settings.max_upload_mb) for f in args.files]
    batch = await coordinator.batch_process(documents, concurrency=args.concurrency, options=_options(args))

    if args.json:
        print(json.dumps(batch.model_dump(mode="json"), indent=2, default=str))
    else:
        for item in batch.results:
            print(_format_result(item.filename, item.result))
            print()
        s = batch.summary
        print(f"{s.successful}/{s.total} succeeded in {s.processing_time_ms / 1000:.1f}s")
    return 0 if batch.summary.failed == 0 else 1


async def _cmd_providers(args: argparse.Namespace, components: dict[str, Any]) -> int:
    service = components["ocr_service"]
    statuses = await service.get_provider_status()
    report = components["provider_registry"].validate()

    if args.json:
        print(json.dumps({
            "providers": [s.model_dump(mode="json") for s in statuses],
            "configuration": report.model_dump(mode="json"),
        }, indent=2))
        return 0 if report.valid else 1

    for status in statuses:
        state = "healthy" if status.healthy else ("available" if status.available else "unavailable")
        latency = f"{status.latency_ms:.0f} ms" if status.latency_ms is not None else "-"
        line = f"  [{status.priority}] {status.display_name:<28} {state:<12} {latency}"
        if status.error:
            line += f"  ({status.error})"
        print(line)
    for issue in report.issues:
        print(f"  ! {issue}")
    for rec in report.recommendations:
        print(f"  > {rec}")
    return 0 if report.valid else 1


_COMMANDS = {
    "process": _cmd_process,
    "batch": _cmd_batch,
    "providers": _cmd_providers,
}


async def _run(args: argparse.Namespace) -> int:
    from booking_ocr.main import build_services, shutdown_services

    components = build_services()
    try:
        return await _COMMANDS[args.command](args, components)
    finally:
        await shutdown_services(components)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="booking_ocr.cli",
        description="Multi-provider OCR for booking documents.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    def _output(p: argparse.ArgumentParser) -> None:
        p.add_argument("--json", action="store_true", help="Print JSON instead of a text report")
        p.add_argument("--quiet", action="store_true", help="Only log warnings and errors")

    def _common(p: argparse.ArgumentParser) -> None:
        _output(p)
        p.add_argument("--provider", default=None, help="Preferred provider name")
        p.add_argument("--document-type", default=None, help="Document type profile, e.g. handwritten")
        p.add_argument("--strategy", default=None, choices=["fast", "balanced", "quality"])
        p.add_argument(
            "--allow-low-quality",
            action="store_true",
            help="Accept partial results when no provider passes the quality gate",
        )

    p_process = sub.add_parser("process", help="OCR a single document")
    p_process.add_argument("file", help="PDF or image path")
    p_process.add_argument("--timeout", type=float, default=None, help="Whole-document deadline in seconds")
    _common(p_process)

    p_batch = sub.add_parser("batch", help="OCR several documents")
    p_batch.add_argument("files", nargs="+", help="PDF or image paths")
    p_batch.add_argument("--concurrency", type=int, default=3)
    _common(p_batch)
    # Batches accept degraded results, as the HTTP batch endpoint does.
    p_batch.set_defaults(allow_low_quality=True)

    p_providers = sub.add_parser("providers", help="Show provider status and configuration issues")
    _output(p_providers)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    configure_logging("WARNING" if args.quiet or args.json else "INFO")
    try:
        return asyncio.run(_run(args))
    except (BookingOCRError, FileNotFoundError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
