from dataclasses import dataclass

import pytest
from pydantic import ValidationError

from ocr_cleaner.config import (
    ChapterMarkerStyle,
    CleaningConfiguration,
    EndMarkerStyle,
    MetadataFormat,
    PresetType,
    build_options,
    load_configuration,
)
from ocr_cleaner.content_types import ContentType
from ocr_cleaner.steps import CleaningStep


def test_defaults():
    config = CleaningConfiguration()
    assert config.preset is PresetType.DEFAULT
    assert config.is_step_enabled(CleaningStep.REMOVE_PAGE_NUMBERS)
    assert config.is_step_enabled(CleaningStep.ADD_STRUCTURE)
    assert not config.is_step_enabled(CleaningStep.REMOVE_CITATIONS)
    assert config.metadata_format is MetadataFormat.YAML
    assert config.chapter_marker_style is ChapterMarkerStyle.HTML_COMMENTS
    assert config.end_marker_style is EndMarkerStyle.STANDARD
    assert config.boundary_confidence_threshold == pytest.approx(0.7)


def test_always_enabled_steps_ignore_configuration():
    config = CleaningConfiguration(
        content_type_overrides={
            ContentType.MIXED: {CleaningStep.FINAL_QUALITY_REVIEW: False}
        }
    )
    assert config.is_step_enabled(CleaningStep.FINAL_QUALITY_REVIEW, ContentType.MIXED)
    assert config.is_step_enabled(CleaningStep.ANALYZE_STRUCTURE)


def test_configuration_is_frozen():
    config = CleaningConfiguration()
    with pytest.raises(ValidationError):
        config.remove_index = True  # type: ignore[misc]


def test_training_preset():
    config = CleaningConfiguration.for_preset("training")
    assert config.preset is PresetType.TRAINING
    assert config.is_step_enabled(CleaningStep.REMOVE_CITATIONS)
    assert config.chapter_marker_style is ChapterMarkerStyle.TOKEN_STYLE
    assert config.end_marker_style is EndMarkerStyle.TOKEN


def test_preset_values_can_be_overridden():
    config = CleaningConfiguration.for_preset(PresetType.MINIMAL, remove_front_matter=True)
    assert config.remove_front_matter
    assert config.boundary_confidence_threshold == pytest.approx(0.85)


def test_content_type_policy_disables_layout_for_poetry():
    config = CleaningConfiguration()
    assert not config.is_step_enabled(CleaningStep.REFLOW_PARAGRAPHS, ContentType.POETRY)
    assert config.disabled_reason(CleaningStep.REFLOW_PARAGRAPHS, ContentType.POETRY) == (
        "disabled for poetry content"
    )
    assert config.is_step_enabled(CleaningStep.REFLOW_PARAGRAPHS, ContentType.PROSE_FICTION)


def test_override_beats_policy():
    config = CleaningConfiguration(
        remove_citations=True,
        content_type_overrides={ContentType.ACADEMIC: {CleaningStep.REMOVE_CITATIONS: True}},
    )
    assert config.is_step_enabled(CleaningStep.REMOVE_CITATIONS, ContentType.ACADEMIC)
    assert not config.is_step_enabled(CleaningStep.REMOVE_CITATIONS, ContentType.LEGAL)


def test_override_can_disable():
    config = CleaningConfiguration(
        content_type_overrides={ContentType.MIXED: {CleaningStep.REMOVE_PAGE_NUMBERS: False}}
    )
    assert not config.is_step_enabled(CleaningStep.REMOVE_PAGE_NUMBERS, ContentType.MIXED)
    assert config.disabled_reason(CleaningStep.REMOVE_PAGE_NUMBERS, ContentType.MIXED) == (
        "disabled by mixed override"
    )


def test_effective_paragraph_limit():
    config = CleaningConfiguration(max_paragraph_words=180)
    assert config.effective_max_paragraph_words(ContentType.PROSE_NON_FICTION) == 180
    assert config.effective_max_paragraph_words(ContentType.CHILDRENS) == 100


def test_load_configuration_precedence(tmp_path):
    path = tmp_path / "cleaning.yaml"
    path.write_text(
        "preset: scholarly\n"
        "metadata_format: json\n"
        "max_paragraph_words: 220\n"
        "steps:\n"
        "  removeIndex: true\n"
        "options:\n"
        "  completion:\n"
        "    timeout_seconds: 5\n",
        encoding="utf-8",
    )
    environ = {"OCR_CLEANER_CLEANING__MAX_PARAGRAPH_WORDS": "120"}
    config = load_configuration(path, environ=environ)
    assert config.preset is PresetType.SCHOLARLY
    assert config.metadata_format is MetadataFormat.JSON
    assert config.remove_index
    assert config.remove_citations
    assert config.max_paragraph_words == 120
    assert config.service_options("completion") == {"timeout_seconds": 5}

    overridden = load_configuration(
        path, {"cleaning": {"max_paragraph_words": 90}}, environ=environ
    )
    assert overridden.max_paragraph_words == 90


def test_missing_file_gives_defaults(tmp_path):
    config = load_configuration(tmp_path / "absent.yaml", environ={})
    assert config == CleaningConfiguration.for_preset(PresetType.DEFAULT)
    assert config.remove_back_matter and config.remove_index


def test_non_mapping_file_is_rejected(tmp_path):
    path = tmp_path / "cleaning.yaml"
    path.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(TypeError):
        load_configuration(path, environ={})


def test_unknown_section_warns(tmp_path):
    path = tmp_path / "cleaning.yaml"
    path.write_text("options:\n  mystery:\n    depth: 3\n", encoding="utf-8")
    with pytest.warns(UserWarning, match="mystery"):
        load_configuration(path, environ={})


@dataclass(frozen=True)
class _Opts:
    limit: int = 1


def test_build_options_drops_unknown_keys():
    with pytest.warns(UserWarning, match="colour"):
        opts = build_options(_Opts, {"limit": 4, "colour": "red"})
    assert opts == _Opts(limit=4)
