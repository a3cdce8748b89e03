"""Cleaning steps and the pipeline phases that group them."""

from __future__ import annotations

from enum import Enum
from types import MappingProxyType
from typing import List, Mapping


class PipelinePhase(str, Enum):
    """The nine phases of a cleaning run, in execution order."""

    RECONNAISSANCE = "reconnaissance"
    METADATA_EXTRACTION = "metadataExtraction"
    STRUCTURAL_REMOVAL = "structuralRemoval"
    CONTENT_CLEANING = "contentCleaning"
    SCHOLARLY_CONTENT = "scholarlyContent"
    BACK_MATTER_REMOVAL = "backMatterRemoval"
    OPTIMIZATION = "optimization"
    ASSEMBLY = "assembly"
    FINAL_REVIEW = "finalReview"

    @property
    def order(self) -> int:
        return _PHASE_ORDER[self]

    @classmethod
    def ordered(cls) -> List["PipelinePhase"]:
        return list(cls)


_PHASE_ORDER: Mapping[PipelinePhase, int] = MappingProxyType(
    {phase: i for i, phase in enumerate(PipelinePhase)}
)


class CleaningStep(str, Enum):
    """The sixteen user-visible cleaning steps, in execution order."""

    ANALYZE_STRUCTURE = "analyzeStructure"
    EXTRACT_METADATA = "extractMetadata"
    REMOVE_PAGE_NUMBERS = "removePageNumbers"
    REMOVE_HEADERS_FOOTERS = "removeHeadersFooters"
    REMOVE_FRONT_MATTER = "removeFrontMatter"
    REMOVE_TABLE_OF_CONTENTS = "removeTableOfContents"
    REMOVE_BACK_MATTER = "removeBackMatter"
    REMOVE_INDEX = "removeIndex"
    REMOVE_AUXILIARY_LISTS = "removeAuxiliaryLists"
    REMOVE_CITATIONS = "removeCitations"
    REMOVE_FOOTNOTES_ENDNOTES = "removeFootnotesEndnotes"
    CLEAN_SPECIAL_CHARACTERS = "cleanSpecialCharacters"
    REFLOW_PARAGRAPHS = "reflowParagraphs"
    OPTIMIZE_PARAGRAPH_LENGTH = "optimizeParagraphLength"
    ADD_STRUCTURE = "addStructure"
    FINAL_QUALITY_REVIEW = "finalQualityReview"

    @property
    def phase(self) -> PipelinePhase:
        return STEP_PHASES[self]

    @property
    def pass_name(self) -> str:
        """Registry name of the pass implementing this step."""
        return _snake(self.value)


def _snake(name: str) -> str:
    return "".join(f"_{c.lower()}" if c.isupper() else c for c in name)


ALWAYS_ENABLED = frozenset(
    {CleaningStep.ANALYZE_STRUCTURE, CleaningStep.FINAL_QUALITY_REVIEW}
)

STEP_PHASES: Mapping[CleaningStep, PipelinePhase] = MappingProxyType(
    {
        CleaningStep.ANALYZE_STRUCTURE: PipelinePhase.RECONNAISSANCE,
        CleaningStep.EXTRACT_METADATA: PipelinePhase.METADATA_EXTRACTION,
        CleaningStep.REMOVE_PAGE_NUMBERS: PipelinePhase.STRUCTURAL_REMOVAL,
        CleaningStep.REMOVE_HEADERS_FOOTERS: PipelinePhase.STRUCTURAL_REMOVAL,
        CleaningStep.REMOVE_FRONT_MATTER: PipelinePhase.STRUCTURAL_REMOVAL,
        CleaningStep.REMOVE_TABLE_OF_CONTENTS: PipelinePhase.STRUCTURAL_REMOVAL,
        CleaningStep.REMOVE_AUXILIARY_LISTS: PipelinePhase.STRUCTURAL_REMOVAL,
        CleaningStep.CLEAN_SPECIAL_CHARACTERS: PipelinePhase.CONTENT_CLEANING,
        CleaningStep.REFLOW_PARAGRAPHS: PipelinePhase.CONTENT_CLEANING,
        CleaningStep.REMOVE_CITATIONS: PipelinePhase.SCHOLARLY_CONTENT,
        CleaningStep.REMOVE_FOOTNOTES_ENDNOTES: PipelinePhase.SCHOLARLY_CONTENT,
        CleaningStep.REMOVE_BACK_MATTER: PipelinePhase.BACK_MATTER_REMOVAL,
        CleaningStep.REMOVE_INDEX: PipelinePhase.BACK_MATTER_REMOVAL,
        CleaningStep.OPTIMIZE_PARAGRAPH_LENGTH: PipelinePhase.OPTIMIZATION,
        CleaningStep.ADD_STRUCTURE: PipelinePhase.ASSEMBLY,
        CleaningStep.FINAL_QUALITY_REVIEW: PipelinePhase.FINAL_REVIEW,
    }
)


def steps_in_phase(phase: PipelinePhase) -> List[CleaningStep]:
    """Steps belonging to ``phase`` in their canonical order."""
    return [s for s in CleaningStep if STEP_PHASES[s] is phase]


class PipelineState(str, Enum):
    """Orchestrator states; ``cancelled`` and ``failed`` are terminal."""

    IDLE = "idle"
    RECONNAISSANCE = "reconnaissance"
    BOUNDARY_DETECTION = "boundaryDetection"
    STRUCTURAL_REMOVAL = "structuralRemoval"
    CONTENT_CLEANING = "contentCleaning"
    SCHOLARLY_CONTENT = "scholarlyContent"
    BACK_MATTER_REMOVAL = "backMatterRemoval"
    OPTIMIZATION = "optimization"
    ASSEMBLY = "assembly"
    FINAL_REVIEW = "finalReview"
    COMPLETE = "complete"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def phases(self) -> List[PipelinePhase]:
        """Phases executed while the orchestrator is in this state."""
        return list(STATE_PHASES.get(self, ()))

    @property
    def is_terminal(self) -> bool:
        return self in {PipelineState.COMPLETE, PipelineState.CANCELLED, PipelineState.FAILED}

    @classmethod
    def stages(cls) -> List["PipelineState"]:
        """In-progress states in execution order."""
        return [s for s in cls if s is not cls.IDLE and not s.is_terminal]


STATE_PHASES: Mapping[PipelineState, tuple] = MappingProxyType(
    {
        PipelineState.RECONNAISSANCE: (
            PipelinePhase.RECONNAISSANCE,
            PipelinePhase.METADATA_EXTRACTION,
        ),
        PipelineState.BOUNDARY_DETECTION: (),
        PipelineState.STRUCTURAL_REMOVAL: (PipelinePhase.STRUCTURAL_REMOVAL,),
        PipelineState.CONTENT_CLEANING: (PipelinePhase.CONTENT_CLEANING,),
        PipelineState.SCHOLARLY_CONTENT: (PipelinePhase.SCHOLARLY_CONTENT,),
        PipelineState.BACK_MATTER_REMOVAL: (PipelinePhase.BACK_MATTER_REMOVAL,),
        PipelineState.OPTIMIZATION: (PipelinePhase.OPTIMIZATION,),
        PipelineState.ASSEMBLY: (PipelinePhase.ASSEMBLY,),
        PipelineState.FINAL_REVIEW: (PipelinePhase.FINAL_REVIEW,),
    }
)
