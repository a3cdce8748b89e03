from __future__ import annotations

import asyncio
import json
import logging
import sys
from importlib import import_module
from pathlib import Path
from typing import Any, Dict, Optional, cast

from ocr_cleaner.adapters.completion import CompletionClient, init_llm
from ocr_cleaner.config import PresetType, load_configuration
from ocr_cleaner.content_types import ContentType
from ocr_cleaner.env_utils import ai_enabled
from ocr_cleaner.errors import CompletionUnavailableError
from ocr_cleaner.orchestrator import CleaningPipeline, CleaningReport
from ocr_cleaner.pattern_extractor import detect_all_patterns

typer = cast(Any, import_module("typer"))

logger = logging.getLogger(__name__)


def _exit_with_error(exc: Exception) -> None:
    """Print ``exc`` to stderr and exit with status 1."""
    print(f"error: {exc}", file=sys.stderr)
    raise typer.Exit(1)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _client(no_ai: bool, model: str | None) -> Optional[CompletionClient]:
    """Completion client, or ``None`` when AI is switched off or has no key."""
    if no_ai or not ai_enabled():
        return None
    try:
        return init_llm(model=model)
    except CompletionUnavailableError as exc:
        logger.warning("continuing without AI: %s", exc)
        return None


def _cli_overrides(preset: str | None, content_type: str | None) -> Dict[str, Dict[str, Any]]:
    cleaning: Dict[str, Any] = {
        k: v
        for k, v in {
            "preset": PresetType(preset) if preset else None,
            "content_type": _content_type(content_type),
        }.items()
        if v is not None
    }
    return {"cleaning": cleaning} if cleaning else {}


def _content_type(value: str | None) -> Optional[ContentType]:
    if value is None:
        return None
    parsed = ContentType.parse(value)
    if parsed is None:
        known = ", ".join(t.value for t in ContentType)
        raise typer.BadParameter(f"unknown content type {value!r} (one of: {known})")
    return parsed


def _summary(report: CleaningReport) -> str:
    content = report.content
    review = report.final_review
    rating = review.quality_rating.value if review else "unreviewed"
    return (
        f"{content.document_id}: {content.original_word_count} -> "
        f"{content.final_word_count} words, quality {rating}, "
        f"confidence {report.confidence.summary()}, "
        f"{len(report.context.removals)} removal(s), {content.api_call_count} API call(s)"
    )


def _run_clean(
    input_path: Path,
    out: Path | None,
    report_path: Path | None,
    preset: str | None,
    content_type: str | None,
    config: str,
    no_ai: bool,
    model: str | None,
) -> None:
    configuration = load_configuration(config, _cli_overrides(preset, content_type))
    pipeline = CleaningPipeline(client=_client(no_ai, model), configuration=configuration)
    text = input_path.read_text(encoding="utf-8")
    report = asyncio.run(
        pipeline.clean(input_path.name, text, user_content_type=_content_type(content_type))
    )
    cleaned = report.content.cleaned_markdown
    if out:
        out.write_text(cleaned, encoding="utf-8")
    else:
        sys.stdout.write(cleaned)
    if report_path:
        report_path.write_text(report.to_json(), encoding="utf-8")
    print(_summary(report), file=sys.stderr)


def _run_patterns(input_path: Path) -> None:
    patterns = detect_all_patterns(input_path.read_text(encoding="utf-8"))
    print(json.dumps(patterns.model_dump(mode="json"), indent=2))


app = typer.Typer(add_completion=False, no_args_is_help=True)


@app.command()
def clean(
    input_path: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True),
    out: Optional[Path] = typer.Option(None, "--out", help="Write cleaned Markdown here."),
    report: Optional[Path] = typer.Option(None, "--report", help="Write the JSON report here."),
    preset: Optional[str] = typer.Option(None, "--preset"),
    content_type: Optional[str] = typer.Option(None, "--content-type"),
    config: str = typer.Option("cleaning.yaml", "--config"),
    no_ai: bool = typer.Option(False, "--no-ai"),
    model: Optional[str] = typer.Option(None, "--model"),
    verbose: bool = typer.Option(False, "--verbose"),
) -> None:
    """Clean an OCR Markdown file."""
    _configure_logging(verbose)
    try:
        _run_clean(input_path, out, report, preset, content_type, config, no_ai, model)
    except typer.BadParameter:
        raise
    except Exception as exc:  # pragma: no cover - exercised in CLI tests
        _exit_with_error(exc)


@app.command()
def patterns(
    input_path: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True),
) -> None:
    """Print the page-number, citation and footnote patterns found in a file."""
    try:
        _run_patterns(input_path)
    except Exception as exc:  # pragma: no cover - exercised in CLI tests
        _exit_with_error(exc)


if __name__ == "__main__":  # pragma: no cover
    app()
