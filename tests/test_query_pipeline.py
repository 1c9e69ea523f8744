"""Tests for the retriever and the query pipeline."""
import asyncio
from dataclasses import replace

import pytest
from unittest.mock import AsyncMock

from conftest import DIMENSION, HashingEmbedder, ScriptedLLM
from ragask.errors import EmbeddingError, GenerationError, StoreError
from ragask.models.chunk import ScoredChunk, VectorRecord
from ragask.models.query import QueryState
from ragask.services.query_pipeline import NO_CONTEXT_ANSWER, build_query_pipeline, parse_questions
from ragask.services.retrieval_engine import Retriever
from ragask.services.vector_store import InMemoryVectorStore

DOCS = {
    "a.md": "Ragask indexes markdown and rust files.",
    "b.rs": "pub fn add(a: i32, b: i32) -> i32 { a + b }",
}


async def _populated_store(embedder):
    store = InMemoryVectorStore()
    await store.ensure_namespace("ns", DIMENSION)
    await store.upsert("ns", [
        VectorRecord(path, embedder.vector(text), {"path": path, "content": text})
        for path, text in DOCS.items()
    ])
    return store


def _run_query(settings, llm, question="What does add do?", embedder=None, store=None):
    embedder = embedder or HashingEmbedder()

    async def scenario():
        target = store or await _populated_store(embedder)
        pipeline = build_query_pipeline(settings, "ns", llm, embedder, target)
        return await pipeline.run(question)

    return asyncio.run(scenario())


class TestParseQuestions:
    """Tests for parse_questions."""

    def test_strips_markers_and_duplicates(self):
        text = "1. Which function?\n- which function?\n* What does it return?\n\nWhat does add do?\n"

        assert parse_questions(text, "What does add do?", 5) == ["Which function?", "What does it return?"]

    def test_caps_at_count(self):
        assert parse_questions("a?\nb?\nc?", "q", 2) == ["a?", "b?"]


class TestRetriever:
    """Tests for Retriever."""

    def test_merges_deduplicates_and_caps(self):
        store = AsyncMock()
        store.search.side_effect = [
            [ScoredChunk("a", {}, 0.5), ScoredChunk("b", {}, 0.4)],
            [ScoredChunk("a", {}, 0.9), ScoredChunk("c", {}, 0.3)],
        ]

        retriever = Retriever(store, "ns", top_k=2, max_chunks=2)
        merged = asyncio.run(retriever.retrieve([[1.0], [0.5]]))

        assert [(c.chunk_id, c.score) for c in merged] == [("a", 0.9), ("b", 0.4)]
        assert store.search.await_count == 2
        store.search.assert_any_await("ns", [1.0], 2)

    def test_no_embeddings(self):
        store = AsyncMock()

        assert asyncio.run(Retriever(store, "ns").retrieve([])) == []
        store.search.assert_not_awaited()


class TestQueryPipeline:
    """State transitions of the query flow."""

    def test_answered_from_retrieved_context(self, settings):
        llm = ScriptedLLM()

        ctx = _run_query(settings, llm)

        assert ctx.state is QueryState.ANSWERED
        assert ctx.expansions == ["Which function is defined?", "What does it return?"]
        assert len(ctx.embeddings) == 3
        assert {c.path for c in ctx.candidates} == {"a.md", "b.rs"}
        assert ctx.compressed is False
        assert "[source: b.rs]" in ctx.response
        assert ctx.answer == "Answer drawn from: a.md, b.rs"
        assert "What does add do?" in llm.prompts[-1]

    def test_subquestion_failure_degrades_to_original(self, settings):
        llm = ScriptedLLM(fail_on="more specific questions")

        ctx = _run_query(settings, llm)

        assert ctx.state is QueryState.ANSWERED
        assert ctx.expansions == []
        assert len(ctx.embeddings) == 1

    def test_no_subquestions_when_count_is_zero(self, settings):
        llm = ScriptedLLM()

        ctx = _run_query(replace(settings, subquestion_count=0), llm)

        assert ctx.expansions == []
        assert not any("more specific questions" in p for p in llm.prompts)

    def test_embedding_failure_fails_query(self, settings):
        embedder = AsyncMock()
        embedder.embed.side_effect = EmbeddingError("Model is loading")

        ctx = _run_query(settings, ScriptedLLM(), embedder=embedder, store=InMemoryVectorStore())

        assert ctx.state is QueryState.FAILED
        assert isinstance(ctx.error, EmbeddingError)
        assert ctx.answer is None

    def test_unexpected_error_fails_query(self, settings):
        embedder = AsyncMock()
        embedder.embed.side_effect = RuntimeError("backend down")

        ctx = _run_query(settings, ScriptedLLM(), embedder=embedder, store=InMemoryVectorStore())

        assert ctx.state is QueryState.FAILED
        assert isinstance(ctx.error, RuntimeError)
        assert ctx.candidates == []

    def test_query_embedding_dimension_checked(self, settings):
        ctx = _run_query(
            settings, ScriptedLLM(),
            embedder=HashingEmbedder(dimension=DIMENSION + 1),
            store=InMemoryVectorStore(),
        )

        assert ctx.state is QueryState.FAILED
        assert "does not match namespace dimension" in str(ctx.error)

    def test_search_failure_fails_query(self, settings):
        store = AsyncMock()
        store.search.side_effect = StoreError("Vector store search failed", operation="search")

        ctx = _run_query(settings, ScriptedLLM(), store=store)

        assert ctx.state is QueryState.FAILED
        assert isinstance(ctx.error, StoreError)

    def test_context_over_budget_is_summarized(self, settings):
        llm = ScriptedLLM()

        ctx = _run_query(replace(settings, context_budget_chars=40), llm)

        assert ctx.state is QueryState.ANSWERED
        assert ctx.compressed is True
        assert ctx.response == "Summary of a.md, b.rs"[:40]

    def test_summary_failure_falls_back_to_truncated_context(self, settings):
        llm = ScriptedLLM(fail_on="Summarize the context")

        ctx = _run_query(replace(settings, context_budget_chars=40), llm)

        assert ctx.state is QueryState.ANSWERED
        assert ctx.compressed is False
        assert len(ctx.response) == 40
        assert ctx.response.startswith("[source: ")

    def test_answer_failure_fails_query(self, settings):
        llm = ScriptedLLM(fail_on="Answer:")

        ctx = _run_query(settings, llm)

        assert ctx.state is QueryState.FAILED
        assert isinstance(ctx.error, GenerationError)

    def test_answer_raises_failure(self, settings):
        llm = ScriptedLLM(fail_on="Answer:")

        async def scenario():
            embedder = HashingEmbedder()
            store = await _populated_store(embedder)
            await build_query_pipeline(settings, "ns", llm, embedder, store).answer("What does add do?")

        with pytest.raises(GenerationError):
            asyncio.run(scenario())

    def test_empty_namespace_answers_without_context(self, settings):
        llm = ScriptedLLM()

        async def scenario():
            store = InMemoryVectorStore()
            await store.ensure_namespace("ns", DIMENSION)
            return await build_query_pipeline(settings, "ns", llm, HashingEmbedder(), store).run("Anything?")

        ctx = asyncio.run(scenario())

        assert ctx.state is QueryState.ANSWERED
        assert ctx.answer == NO_CONTEXT_ANSWER
        assert ctx.candidates == []

    def test_empty_question_fails(self, settings):
        ctx = _run_query(settings, ScriptedLLM(), question="   ")

        assert ctx.state is QueryState.FAILED
        assert isinstance(ctx.error, ValueError)
