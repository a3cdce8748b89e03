"""Prompt templates for the completion service.

Templates are plain ``.txt`` files under ``prompt_templates/`` with
``{name}`` placeholders. ``render`` insists on every placeholder being
filled; ``render_partial`` leaves unfilled ones literally in place.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping

from ocr_cleaner.errors import PromptError

logger = logging.getLogger(__name__)

VARIABLE_RE = re.compile(r"\{([a-zA-Z_][a-zA-Z0-9_]*)\}")
DEFAULT_TEMPLATE_DIR = Path(__file__).resolve().parent / "prompt_templates"


class PromptType(str, Enum):
    STRUCTURE_ANALYSIS = "structure_analysis_v1"
    CONTENT_TYPE = "content_type_v1"
    FRONT_MATTER_BOUNDARY = "front_matter_boundary_v1"
    BACK_MATTER_BOUNDARY = "back_matter_boundary_v1"
    PARAGRAPH_REFLOW = "paragraph_reflow_v1"
    PARAGRAPH_OPTIMIZATION = "paragraph_optimization_v1"
    FINAL_REVIEW = "final_review_v1"
    METADATA_EXTRACTION = "metadata_extraction_v1"

    @property
    def filename(self) -> str:
        return f"{self.value}.txt"

    @property
    def version(self) -> str:
        return self.value.rsplit("_", 1)[-1]


@dataclass(frozen=True)
class PromptTemplate:
    identifier: str
    version: str
    content: str

    @property
    def variables(self) -> List[str]:
        """Placeholder names in first-appearance order."""
        return list(dict.fromkeys(VARIABLE_RE.findall(self.content)))

    def missing_parameters(self, params: Mapping[str, Any]) -> List[str]:
        return [v for v in self.variables if v not in params]

    def has_all_parameters(self, params: Mapping[str, Any]) -> bool:
        return not self.missing_parameters(params)

    def render(self, **params: Any) -> str:
        missing = self.missing_parameters(params)
        if missing:
            raise PromptError.missing_parameter(missing[0])
        return self._substitute(params)

    def render_partial(self, **params: Any) -> str:
        return self._substitute(params)

    def _substitute(self, params: Mapping[str, Any]) -> str:
        def repl(match: re.Match[str]) -> str:
            name = match.group(1)
            return str(params[name]) if name in params else match.group(0)

        return VARIABLE_RE.sub(repl, self.content)


class PromptManager:
    """Load and cache templates from a directory of ``<type>.txt`` files."""

    def __init__(self, template_dir: str | Path | None = None) -> None:
        self._dir = Path(template_dir) if template_dir else DEFAULT_TEMPLATE_DIR
        self._cache: Dict[PromptType, PromptTemplate] = {}

    def get(self, kind: PromptType) -> PromptTemplate:
        if kind in self._cache:
            return self._cache[kind]
        path = self._dir / kind.filename
        if not path.exists():
            logger.error("prompt template not found: %s", path)
            raise PromptError.template_not_found(kind.value)
        try:
            content = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise PromptError.load_failed(kind.value, exc) from exc
        template = PromptTemplate(identifier=kind.value, version=kind.version, content=content)
        self._cache[kind] = template
        logger.debug("loaded prompt template %s (%d chars)", kind.value, len(content))
        return template

    def build(self, kind: PromptType, **params: Any) -> str:
        return self.get(kind).render(**params)

    def clear_cache(self) -> None:
        self._cache.clear()
