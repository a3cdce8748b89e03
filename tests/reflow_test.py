import json

import pytest

from ocr_cleaner.content_types import ContentType
from ocr_cleaner.context import AccumulatedContext, TransformationType
from ocr_cleaner.control import CancellationToken, RunControl
from ocr_cleaner.errors import EmptyInputError, PipelineCancelledError
from ocr_cleaner.processing import chunk_text, join_chunks, paragraph_blocks
from ocr_cleaner.reflow import ReflowService, reflow_heuristically
from ocr_cleaner.steps import PipelinePhase
from ocr_cleaner.text_utils import split_lines, split_paragraphs, word_count
from tests.conftest import FakeClient, prose, prose_paragraph


def test_heuristic_joins_wrapped_lines():
    text, joined = reflow_heuristically(prose(2))
    assert joined == 8
    assert [len(split_lines(p)) for p in split_paragraphs(text)] == [1, 1]
    assert word_count(text) == word_count(prose(2))


def test_heuristic_keeps_structure():
    text = "\n".join(
        [
            "# The Mill",
            "the wheel turned",
            "all night long.",
            "- first item",
            "- second item",
            "```",
            "keep this",
            "and this",
            "```",
        ]
    )
    out, joined = reflow_heuristically(text)
    assert joined == 1
    assert split_lines(out) == [
        "# The Mill",
        "the wheel turned all night long.",
        "- first item",
        "- second item",
        "```",
        "keep this",
        "and this",
        "```",
    ]


def test_heuristic_keeps_index_like_runs():
    text = "mill, 4, 9\nriver, 2\nstone walls, 12-14"
    assert reflow_heuristically(text) == (text, 0)


async def test_reflow_without_client():
    context = AccumulatedContext.create("doc")
    result = await ReflowService().reflow(prose(3), context=context)
    assert result.word_count_preserved
    assert result.output_word_count == result.input_word_count
    assert result.lines_joined == 12
    assert not result.used_ai
    assert result.paragraphs_in == result.paragraphs_out == 3
    assert len(context.transformations_of(TransformationType.PARAGRAPH_REFLOW)) == 1


async def test_poetry_is_left_alone():
    text = prose(1)
    result = await ReflowService().reflow(text, ContentType.POETRY)
    assert result.text == text
    assert "line breaks are content" in result.warnings[0]


async def test_empty_input_is_rejected():
    with pytest.raises(EmptyInputError):
        await ReflowService().reflow("  \n ")


async def test_ai_reflow():
    paragraph = prose_paragraph(0)
    reply = json.dumps({"reflowedText": " ".join(split_lines(paragraph)), "lineBreaksRemoved": 4})
    client = FakeClient([reply])
    result = await ReflowService(client=client).reflow(paragraph)
    assert client.calls == 1
    assert result.used_ai
    assert result.lines_joined == 4
    assert result.text == " ".join(split_lines(paragraph))


async def test_ai_reply_that_drops_words_is_ignored():
    paragraph = prose_paragraph(0)
    reply = json.dumps({"reflowedText": "The river carried silt."})
    result = await ReflowService(client=FakeClient([reply])).reflow(paragraph)
    assert not result.used_ai
    assert word_count(result.text) == word_count(paragraph)
    assert "changed word count" in result.warnings[0]


async def test_ai_failure_falls_back_per_chunk():
    context = AccumulatedContext.create("doc")
    result = await ReflowService(client=FakeClient()).reflow(prose(2), context=context)
    assert not result.used_ai
    assert result.lines_joined == 8
    assert PipelinePhase.CONTENT_CLEANING in context.fallbacks_used


async def test_cancellation_between_chunks():
    token = CancellationToken()
    token.cancel()
    with pytest.raises(PipelineCancelledError):
        await ReflowService().reflow(prose(2), control=RunControl(token=token))


async def test_progress_is_reported_per_chunk():
    control = RunControl(state="contentCleaning")
    service = ReflowService()
    await service.reflow(prose(6), control=control)
    chunk_events = [e for e in control.events if e.chunk is not None]
    assert chunk_events
    assert chunk_events[-1].chunk == chunk_events[-1].total_chunks


def test_chunks_hold_whole_blocks():
    text = prose(6)
    chunks = chunk_text(text, token_limit=200)
    assert len(chunks) > 1
    assert join_chunks([c.text for c in chunks]) == text
    assert chunks[0].start == 1


def test_blank_lines_inside_fences_do_not_split_blocks():
    lines = ["```", "a", "", "b", "```", "", "after"]
    assert paragraph_blocks(lines) == [(1, 5), (7, 7)]
