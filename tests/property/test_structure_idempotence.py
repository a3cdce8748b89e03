from hypothesis import given, settings, strategies as st
from ocr_cleaner.config import ChapterMarkerStyle, EndMarkerStyle, MetadataFormat
from ocr_cleaner.models import DocumentMetadata
from ocr_cleaner.passes.add_structure import apply_structure, strip_existing_structure

METADATA = DocumentMetadata(title="The River", author="Mary Hollis")

line = st.text(alphabet="abcdefgh .,", max_size=30)
bodies = st.lists(line, min_size=1, max_size=20).map("\n".join).filter(str.strip)


@given(bodies, st.sampled_from(list(MetadataFormat)), st.sampled_from(list(EndMarkerStyle)))
@settings(deadline=None)
def test_structure_is_replaced_not_stacked(
    body: str, fmt: MetadataFormat, end: EndMarkerStyle
) -> None:
    once, _, _ = apply_structure(body, METADATA, fmt, ChapterMarkerStyle.HTML_COMMENTS, end)
    twice, _, _ = apply_structure(once, METADATA, fmt, ChapterMarkerStyle.HTML_COMMENTS, end)
    assert twice == once
    assert strip_existing_structure(once) == body.strip()
