"""End-to-end tests for indexing a corpus and querying it."""
import asyncio

import pytest

from conftest import DIMENSION, HashingEmbedder, ScriptedLLM
from ragask.config import Settings
from ragask.errors import EmbeddingError, LoadError, PipelineRunError, StoreError
from ragask.models.query import QueryState
from ragask.services.indexer import Capabilities, Indexer, namespace_for
from ragask.services.metadata_enricher import QA_CODE_KEY, QA_TEXT_KEY
from ragask.services.outline import OUTLINE_KEY
from ragask.services.query_pipeline import build_query_pipeline


def _records(store, namespace):
    return list(store._records[namespace].values())


class TestNamespace:
    """Tests for namespace_for."""

    def test_format(self):
        assert namespace_for("/srv/my repo/proj", Settings()) == "ragask-v0.18-srv-my-repo-proj-384"

    def test_dimension_and_version_change_namespace(self):
        base = namespace_for("/srv/proj", Settings())

        assert namespace_for("/srv/proj", Settings(embedding_dimension=768)) != base
        assert namespace_for("/srv/proj", Settings(pipeline_version="v0.19")) != base


class TestIndexer:
    """Indexing runs over a real directory with scripted collaborators."""

    def test_index_then_query(self, settings, capabilities, corpus, store, embedder, llm):
        indexer = Indexer(settings, capabilities)
        namespace = indexer.namespace_for(str(corpus))

        report = asyncio.run(indexer.index(str(corpus)))

        assert report.pipeline == "index"
        assert (report.loaded, report.skipped, report.errored) == (2, 0, 0)
        assert report.stored == report.committed == 2

        records = _records(store, namespace)
        prose = [r for r in records if r.metadata["path"] == "a.md"]
        code = [r for r in records if r.metadata["path"] == "b.rs"]
        assert len(prose) == 1
        assert len(code) >= 1
        assert prose[0].metadata[QA_TEXT_KEY]
        assert code[0].metadata[QA_CODE_KEY]
        assert "pub fn add" in code[0].metadata[OUTLINE_KEY]
        assert all(len(r.vector) == DIMENSION for r in records)

        pipeline = build_query_pipeline(settings, namespace, llm, embedder, store)
        ctx = asyncio.run(pipeline.run("What does the add function return?"))

        assert ctx.state is QueryState.ANSWERED
        assert "b.rs" in {c.path for c in ctx.candidates}
        assert "b.rs" in ctx.answer

    def test_question_about_a_file_is_answered_from_its_chunks(self, settings, capabilities, corpus, store, embedder, llm):
        indexer = Indexer(settings, capabilities)
        namespace = indexer.namespace_for(str(corpus))
        asyncio.run(indexer.index(str(corpus)))

        pipeline = build_query_pipeline(settings, namespace, llm, embedder, store)
        ctx = asyncio.run(pipeline.run("What does b.rs do?"))

        retrieved = {c.path for c in ctx.candidates}
        assert ctx.state is QueryState.ANSWERED
        assert "b.rs" in retrieved
        assert ctx.answer
        cited = ctx.answer.split(": ", 1)[1].split(", ")
        assert set(cited) <= retrieved

    def test_second_run_skips_unchanged_files(self, settings, capabilities, corpus, store, embedder, llm):
        indexer = Indexer(settings, capabilities)
        namespace = indexer.namespace_for(str(corpus))

        asyncio.run(indexer.index(str(corpus)))
        ids = store.ids(namespace)
        embed_calls, prompts = len(embedder.calls), len(llm.prompts)

        report = asyncio.run(indexer.index(str(corpus)))

        assert (report.loaded, report.skipped, report.stored) == (2, 2, 0)
        assert len(embedder.calls) == embed_calls
        assert len(llm.prompts) == prompts
        assert store.ids(namespace) == ids

    def test_file_with_overlong_line_is_committed(self, settings, capabilities, corpus, llm):
        (corpus / "big.rs").write_text("const BIG: &str = \"" + "x" * 3000 + "\";\n\nfn small() {}\n")
        indexer = Indexer(settings, capabilities)

        first = asyncio.run(indexer.index(str(corpus)))
        prompts = len(llm.prompts)
        second = asyncio.run(indexer.index(str(corpus)))

        assert (first.errored, first.committed) == (0, 3)
        assert (second.skipped, second.stored) == (3, 0)
        assert len(llm.prompts) == prompts

    def test_changed_file_is_reindexed(self, settings, capabilities, corpus):
        indexer = Indexer(settings, capabilities)
        asyncio.run(indexer.index(str(corpus)))

        (corpus / "a.md").write_text("Ragask now indexes python files as well.\n")
        report = asyncio.run(indexer.index(str(corpus)))

        assert report.skipped == 1
        assert report.stored == 1

    def test_failing_file_does_not_block_others(self, settings, corpus, embedder, store, cache):
        (corpus / "c.md").write_text("POISON content in this file.\n")
        indexer = Indexer(settings, Capabilities(ScriptedLLM(fail_on="POISON"), embedder, store, cache))
        namespace = indexer.namespace_for(str(corpus))

        report = asyncio.run(indexer.index(str(corpus)))

        assert report.loaded == 3
        assert report.errored == 1
        assert report.committed == 2
        assert "c.md" in report.errors[0]
        assert {r.metadata["path"] for r in _records(store, namespace)} == {"a.md", "b.rs"}

        retry = Indexer(settings, Capabilities(ScriptedLLM(), embedder, store, cache))
        report = asyncio.run(retry.index(str(corpus)))

        assert (report.loaded, report.skipped, report.errored, report.stored) == (3, 2, 0, 1)
        assert "c.md" in {r.metadata["path"] for r in _records(store, namespace)}

    def test_wrong_dimension_embedder_aborts_and_writes_nothing(self, settings, corpus, llm, store, cache):
        indexer = Indexer(settings, Capabilities(llm, HashingEmbedder(dimension=DIMENSION + 1), store, cache))
        namespace = indexer.namespace_for(str(corpus))

        with pytest.raises(PipelineRunError) as exc_info:
            asyncio.run(indexer.index(str(corpus)))

        assert isinstance(exc_info.value.cause, EmbeddingError)
        assert asyncio.run(store.count(namespace)) == 0

        fixed = Indexer(settings, Capabilities(llm, HashingEmbedder(), store, cache))
        report = asyncio.run(fixed.index(str(corpus)))
        assert report.stored == 2

    def test_namespace_with_other_dimension_is_rejected(self, settings, capabilities, corpus, store):
        indexer = Indexer(settings, capabilities)
        namespace = indexer.namespace_for(str(corpus))
        asyncio.run(store.ensure_namespace(namespace, DIMENSION * 2))

        with pytest.raises(PipelineRunError) as exc_info:
            asyncio.run(indexer.index(str(corpus)))

        assert isinstance(exc_info.value.cause, StoreError)

    def test_roots_index_into_separate_namespaces(self, settings, capabilities, corpus, tmp_path_factory, store):
        other = tmp_path_factory.mktemp("other")
        (other / "notes.md").write_text("Separate notes about deployment.\n")
        indexer = Indexer(settings, capabilities)

        asyncio.run(indexer.index(str(corpus)))
        asyncio.run(indexer.index(str(other)))

        assert asyncio.run(store.count(indexer.namespace_for(str(corpus)))) == 2
        assert asyncio.run(store.count(indexer.namespace_for(str(other)))) == 1

    def test_missing_root_is_load_error(self, settings, capabilities, tmp_path):
        indexer = Indexer(settings, capabilities)

        with pytest.raises(PipelineRunError) as exc_info:
            asyncio.run(indexer.index(str(tmp_path / "missing")))

        assert isinstance(exc_info.value.cause, LoadError)
        assert exc_info.value.report.stored == 0
