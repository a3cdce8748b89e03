"""Bibliographic metadata from the opening of the document.

The completion service reads the first few thousand characters when one is
configured; a line-pattern scan fills whatever it leaves empty and stands in
for it entirely when it is unavailable or fails.
"""

from __future__ import annotations

import logging
import re
from typing import Dict, List, Optional

from ocr_cleaner.adapters.completion import complete_with_timeout
from ocr_cleaner.errors import FALLBACK_TRIGGERS
from ocr_cleaner.framework import Artifact, register
from ocr_cleaner.models import DocumentMetadata
from ocr_cleaner.passes.run_meta import (
    configuration_of,
    context_of,
    control_of,
    emit,
    services_of,
)
from ocr_cleaner.prompts import PromptType
from ocr_cleaner.response_parser import parse_metadata
from ocr_cleaner.steps import CleaningStep, PipelinePhase
from ocr_cleaner.text_utils import split_lines

logger = logging.getLogger(__name__)

FRONT_MATTER_CHARS = 5000
MAX_TITLE_WORDS = 15
SCAN_LINES = 60
SENTENCE_ENDS = (".", "!", "?")

_NOT_TITLE_RE = re.compile(
    r"copyright|©|\(c\)|all rights reserved|\bisbn\b|published|printed in|edition"
    r"|contents|^by\s|translated|edited|^\d+$|^page\s",
    re.I,
)
_FIELD_RES: Dict[str, List[re.Pattern[str]]] = {
    "author": [re.compile(r"^(?:by|written by|author:)\s+(.+)$", re.I)],
    "translator": [re.compile(r"^translated(?: from (?:the )?\w+)? by\s+(.+)$", re.I)],
    "editor": [re.compile(r"^(?:edited by|editor:)\s+(.+)$", re.I)],
    "publisher": [re.compile(r"^(?:published by|publisher:)\s+(.+?)\.?$", re.I)],
    "publish_date": [
        re.compile(r"(?:copyright|©|\(c\))\s*(?:©\s*)?(\d{4})", re.I),
        re.compile(r"first published(?: in)?\s+(\d{4})", re.I),
    ],
    "isbn": [re.compile(r"\bISBN(?:-1[03])?:?\s*([\dXx][\d\- Xx]{8,16}[\dXx])", re.I)],
    "language": [re.compile(r"^language:\s*(\w[\w -]*)$", re.I)],
}


def _clean(line: str) -> str:
    return line.strip().strip("#*_ ").strip()


def heuristic_metadata(
    front_matter: str, base: Optional[DocumentMetadata] = None
) -> DocumentMetadata:
    """Metadata read from the line shapes of the document opening."""
    lines = [_clean(line) for line in split_lines(front_matter)]
    lines = [line for line in lines if line][:SCAN_LINES]
    fields: Dict[str, Optional[str]] = {}
    title = next(
        (
            line
            for line in lines
            if len(line.split()) <= MAX_TITLE_WORDS
            and not line.endswith(SENTENCE_ENDS)
            and not _NOT_TITLE_RE.search(line)
        ),
        None,
    )
    if title:
        head, sep, tail = title.partition(": ")
        fields["title"] = head.strip()
        if sep and tail.strip():
            fields["subtitle"] = tail.strip()
    for key, patterns in _FIELD_RES.items():
        fields[key] = next(
            (
                match.group(1).strip()
                for line in lines
                for rx in patterns
                for match in [rx.search(line)]
                if match
            ),
            None,
        )
    found = DocumentMetadata(**{k: v for k, v in fields.items() if v})
    return (base or DocumentMetadata()).merging(found)


class _ExtractMetadataPass:
    name = CleaningStep.EXTRACT_METADATA.pass_name
    step = CleaningStep.EXTRACT_METADATA

    async def __call__(self, a: Artifact) -> Artifact:
        context = context_of(a)
        base = DocumentMetadata.from_filename(context.document_id) if context else None
        front_matter = a.payload[:FRONT_MATTER_CHARS]
        if not front_matter.strip():
            logger.warning("no front matter to extract metadata from")
            metadata = base or DocumentMetadata()
            return self._emit(a, metadata, used_ai=False)

        heuristic = heuristic_metadata(front_matter, base)
        services = services_of(a)
        if services is None or services.client is None:
            return self._emit(a, heuristic, used_ai=False)

        try:
            extracted = await self._ask(a, front_matter)
        except FALLBACK_TRIGGERS as exc:
            if not configuration_of(a).use_fallback_on_failure:
                raise
            logger.warning("metadata extraction failed, using heuristics: %s", exc)
            if context is not None:
                context.record_fallback(PipelinePhase.METADATA_EXTRACTION, str(exc))
                context.add_warning(f"Metadata extraction fell back to heuristics: {exc}")
            return self._emit(a, heuristic, used_ai=False)
        logger.info("metadata (AI): %s", extracted.title)
        return self._emit(a, heuristic.merging(extracted), used_ai=True)

    async def _ask(self, a: Artifact, front_matter: str) -> DocumentMetadata:
        services = services_of(a)
        control = control_of(a)
        if control is not None:
            control.check("metadata extraction")
        prompt = services.prompts.build(PromptType.METADATA_EXTRACTION, front_matter=front_matter)
        response = await complete_with_timeout(
            services.client,
            prompt,
            timeout=services.completion.timeout_seconds,
            max_tokens=services.completion.max_tokens,
            usage=services.usage,
        )
        return parse_metadata(response).unwrap()

    def _emit(self, a: Artifact, metadata: DocumentMetadata, *, used_ai: bool) -> Artifact:
        logger.debug("metadata fields: %s", ", ".join(metadata.present_fields()))
        artifact = emit(
            a, self.name, a.payload, used_ai=used_ai, fields=len(metadata.present_fields())
        )
        return artifact.with_text(artifact.payload, metadata=metadata)


extract_metadata = register(_ExtractMetadataPass())
