from __future__ import annotations

import os
import pathlib
import warnings
from dataclasses import fields
from enum import Enum
from functools import reduce
from importlib import import_module
from typing import Any, Dict, Iterable, List, Mapping, Type, TypeVar, cast

from pydantic import BaseModel, ConfigDict, Field

from ocr_cleaner.content_types import DEFAULT_MAX_PARAGRAPH_WORDS, ContentType
from ocr_cleaner.steps import ALWAYS_ENABLED, CleaningStep

yaml = cast(Any, import_module("yaml"))

T = TypeVar("T")

ENV_PREFIX = "OCR_CLEANER_"
CLEANING_SECTION = "cleaning"
SERVICE_SECTIONS = (
    "completion",
    "reconnaissance",
    "boundary_detection",
    "reflow",
    "optimization",
    "final_review",
    "confidence",
)


class PresetType(str, Enum):
    DEFAULT = "default"
    TRAINING = "training"
    MINIMAL = "minimal"
    SCHOLARLY = "scholarly"


class MetadataFormat(str, Enum):
    YAML = "yaml"
    JSON = "json"
    MARKDOWN = "markdown"


class ChapterMarkerStyle(str, Enum):
    NONE = "none"
    HTML_COMMENTS = "html_comments"
    MARKDOWN_H1 = "markdown_h1"
    MARKDOWN_H2 = "markdown_h2"
    TOKEN_STYLE = "token_style"


class EndMarkerStyle(str, Enum):
    NONE = "none"
    MINIMAL = "minimal"
    SIMPLE = "simple"
    STANDARD = "standard"
    HTML_COMMENT = "html_comment"
    MARKDOWN_HR = "markdown_hr"
    TOKEN = "token"
    TOKEN_WITH_AUTHOR = "token_with_author"


_PRESETS: Mapping[PresetType, Dict[str, Any]] = {
    PresetType.DEFAULT: {
        "remove_back_matter": True,
        "remove_index": True,
    },
    PresetType.TRAINING: {
        "remove_back_matter": True,
        "remove_index": True,
        "remove_auxiliary_lists": True,
        "remove_citations": True,
        "remove_footnotes_endnotes": True,
        "chapter_marker_style": ChapterMarkerStyle.TOKEN_STYLE,
        "end_marker_style": EndMarkerStyle.TOKEN,
    },
    PresetType.MINIMAL: {
        "remove_front_matter": False,
        "remove_table_of_contents": False,
        "optimize_paragraph_length": False,
        "chapter_marker_style": ChapterMarkerStyle.NONE,
        "end_marker_style": EndMarkerStyle.MINIMAL,
        "boundary_confidence_threshold": 0.85,
    },
    PresetType.SCHOLARLY: {
        "remove_auxiliary_lists": True,
        "remove_citations": True,
        "remove_footnotes_endnotes": True,
        "max_paragraph_words": 300,
    },
}


class CleaningConfiguration(BaseModel):
    """Per-run cleaning policy. Frozen; build a new one to change anything."""

    model_config = ConfigDict(frozen=True)

    preset: PresetType = PresetType.DEFAULT
    content_type: ContentType = ContentType.AUTO_DETECT

    extract_metadata: bool = True
    remove_page_numbers: bool = True
    remove_headers_footers: bool = True
    remove_front_matter: bool = True
    remove_table_of_contents: bool = True
    remove_back_matter: bool = False
    remove_index: bool = False
    remove_auxiliary_lists: bool = False
    remove_citations: bool = False
    remove_footnotes_endnotes: bool = False
    clean_special_characters: bool = True
    reflow_paragraphs: bool = True
    optimize_paragraph_length: bool = True
    add_structure: bool = True

    max_paragraph_words: int = Field(DEFAULT_MAX_PARAGRAPH_WORDS, ge=1)
    metadata_format: MetadataFormat = MetadataFormat.YAML
    chapter_marker_style: ChapterMarkerStyle = ChapterMarkerStyle.HTML_COMMENTS
    end_marker_style: EndMarkerStyle = EndMarkerStyle.STANDARD
    boundary_confidence_threshold: float = Field(0.7, ge=0.0, le=1.0)
    citation_confidence_threshold: float = Field(0.7, ge=0.0, le=1.0)
    footnote_confidence_threshold: float = Field(0.7, ge=0.0, le=1.0)
    use_fallback_on_failure: bool = True

    content_type_overrides: Dict[ContentType, Dict[CleaningStep, bool]] = Field(
        default_factory=dict
    )
    options: Dict[str, Dict[str, Any]] = Field(default_factory=dict)

    @classmethod
    def for_preset(
        cls, preset: PresetType | str = PresetType.DEFAULT, **values: Any
    ) -> CleaningConfiguration:
        kind = PresetType(preset)
        return cls.model_validate({**_PRESETS[kind], **values, "preset": kind})

    def with_content_type(self, content_type: ContentType) -> CleaningConfiguration:
        return self.model_copy(update={"content_type": content_type})

    def _resolved_type(self, content_type: ContentType | None) -> ContentType:
        return content_type or self.content_type

    def is_step_enabled(
        self, step: CleaningStep, content_type: ContentType | None = None
    ) -> bool:
        if step in ALWAYS_ENABLED:
            return True
        kind = self._resolved_type(content_type)
        override = self.content_type_overrides.get(kind, {}).get(step)
        if override is not None:
            return override
        if kind.policy.disables(step):
            return False
        return bool(getattr(self, step.pass_name))

    def disabled_reason(
        self, step: CleaningStep, content_type: ContentType | None = None
    ) -> str:
        kind = self._resolved_type(content_type)
        if self.content_type_overrides.get(kind, {}).get(step) is False:
            return f"disabled by {kind.value} override"
        if kind.policy.disables(step):
            return f"disabled for {kind.value} content"
        return "disabled by configuration"

    def enabled_steps(self, content_type: ContentType | None = None) -> List[CleaningStep]:
        return [s for s in CleaningStep if self.is_step_enabled(s, content_type)]

    def effective_max_paragraph_words(self, content_type: ContentType | None = None) -> int:
        """Content types with their own limit override the configured one."""
        limit = self._resolved_type(content_type).policy.max_paragraph_words
        return self.max_paragraph_words if limit == DEFAULT_MAX_PARAGRAPH_WORDS else limit

    def service_options(self, section: str) -> Dict[str, Any]:
        return dict(self.options.get(section, {}))


def build_options(cls: Type[T], options: Mapping[str, Any] | None = None) -> T:
    """Instantiate a service config dataclass from an options section.

    Unknown keys are dropped with a warning.
    """
    opts = dict(options or {})
    names = {f.name for f in fields(cast(Any, cls))}
    unknown = sorted(k for k in opts if k not in names)
    if unknown:
        warnings.warn(
            f"Unknown options for {cls.__name__}: {', '.join(unknown)}",
            stacklevel=2,
        )
    return cls(**{k: v for k, v in opts.items() if k in names})


def _read_yaml(path: str | os.PathLike | None) -> Dict[str, Any]:
    """Return a dict from YAML or {} if path is None/missing/empty."""
    if not path:
        return {}
    p = pathlib.Path(path)
    if not p.exists():
        return {}
    data = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise TypeError(f"{p.name} must contain a top-level mapping")
    return data


def _coerce(value: str) -> Any:
    try:
        return yaml.safe_load(value)
    except yaml.YAMLError:
        return value


def _env_overrides(environ: Mapping[str, str] | None = None) -> Dict[str, Dict[str, Any]]:
    """
    Map OCR_CLEANER_SECTION__key=value → {section: {key: value}} (lower-cased).
    Values are YAML-coerced (so 'true', '42' etc. become bool/int).
    """
    env = os.environ if environ is None else environ
    out: Dict[str, Dict[str, Any]] = {}
    for k, v in env.items():
        if not k.startswith(ENV_PREFIX) or "__" not in k:
            continue
        section, key = k[len(ENV_PREFIX) :].lower().split("__", 1)
        out.setdefault(section, {})[key] = _coerce(v)
    return out


def _merge_sections(
    base: Dict[str, Dict[str, Any]], override: Dict[str, Dict[str, Any]]
) -> Dict[str, Dict[str, Any]]:
    """Shallow-merge per-section options; override wins."""
    sources = set(base) | set(override)
    return {s: {**base.get(s, {}), **override.get(s, {})} for s in sources}


def _warn_unknown_sections(sections: Iterable[str]) -> None:
    known = {CLEANING_SECTION, *SERVICE_SECTIONS}
    unknown = [s for s in sections if s not in known]
    if unknown:
        warnings.warn(
            f"Unknown configuration sections: {', '.join(sorted(unknown))}",
            stacklevel=3,
        )


def _yaml_sections(data: Mapping[str, Any]) -> Dict[str, Dict[str, Any]]:
    """Split a config file into the ``cleaning`` section and service options."""
    options = data.get("options") or {}
    steps = data.get("steps") or {}
    top = {
        k: v for k, v in data.items() if k not in {"options", "steps"}
    }
    cleaning = {**top, **{_step_field(name): on for name, on in steps.items()}}
    return {CLEANING_SECTION: cleaning, **options}


def _step_field(name: str) -> str:
    step = next((s for s in CleaningStep if name in {s.value, s.pass_name}), None)
    return step.pass_name if step else name


def load_configuration(
    path: str | os.PathLike | None = "cleaning.yaml",
    overrides: Dict[str, Dict[str, Any]] | None = None,
    *,
    environ: Mapping[str, str] | None = None,
) -> CleaningConfiguration:
    """Load YAML + env/CLI overrides into a validated CleaningConfiguration.

    Precedence, lowest first: preset defaults, YAML file, environment,
    ``overrides``. Section ``cleaning`` holds configuration fields; every
    other section becomes ``options[section]`` for the services.
    """
    data = _read_yaml(path)
    sources: Iterable[Dict[str, Dict[str, Any]]] = (
        d for d in (_yaml_sections(data), _env_overrides(environ), overrides) if d
    )
    acc: Dict[str, Dict[str, Any]] = {}
    merged = reduce(_merge_sections, sources, acc)
    _warn_unknown_sections(merged)

    values = dict(merged.get(CLEANING_SECTION, {}))
    preset = values.pop("preset", PresetType.DEFAULT)
    options = {
        s: opts for s, opts in merged.items() if s != CLEANING_SECTION and opts
    }
    return CleaningConfiguration.for_preset(preset, **values, options=options)
