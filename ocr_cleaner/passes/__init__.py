"""Lazy pass accessors that avoid shadowing submodules."""

from importlib import import_module
from typing import Any

_PASS_MODULES = [
    "extract_metadata",
    "page_artifacts",
    "front_matter",
    "special_characters",
    "layout",
    "scholarly",
    "back_matter",
    "add_structure",
]

_PASSES = {
    "extract_metadata": "extract_metadata",
    "remove_page_numbers": "page_artifacts",
    "remove_headers_footers": "page_artifacts",
    "remove_front_matter": "front_matter",
    "remove_table_of_contents": "front_matter",
    "remove_auxiliary_lists": "front_matter",
    "clean_special_characters_pass": "special_characters",
    "reflow_paragraphs": "layout",
    "optimize_paragraph_length": "layout",
    "remove_citations": "scholarly",
    "remove_footnotes_endnotes": "scholarly",
    "remove_back_matter": "back_matter",
    "remove_index": "back_matter",
    "add_structure": "add_structure",
}

# Import submodules for registration side effects without polluting the package
# namespace. ``ocr_cleaner.passes.<module>`` stays importable while each pass
# registers itself with the framework.
for _mod in _PASS_MODULES:  # pragma: no cover - import side effects only
    import_module(f".{_mod}", __name__)

__all__ = list(_PASSES)


def __getattr__(name: str) -> Any:  # pragma: no cover - simple delegation
    if name in _PASSES:
        module = import_module(f".{_PASSES[name]}", __name__)
        return getattr(module, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
