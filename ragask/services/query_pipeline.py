"""
Query flow: expand the question, embed, retrieve, compress and answer.

Each stage moves a ``QueryContext`` one state forward:
RECEIVED -> EXPANDED -> EMBEDDED -> RETRIEVED -> COMPRESSED -> ANSWERED.
Any exception raised by a stage moves the context to FAILED and the
remaining stages do not run.
"""
import logging
import re
from abc import ABC, abstractmethod
from typing import List, Sequence

from ragask.config import Settings
from ragask.errors import EmbeddingError, GenerationError, RagAskError
from ragask.models.chunk import ScoredChunk
from ragask.models.query import QueryContext, QueryState
from ragask.services.batch_embedder import Embedder
from ragask.services.llm_client import LLMClientError
from ragask.services.metadata_enricher import Completer
from ragask.services.retrieval_engine import Retriever
from ragask.services.retry import call_with_retry
from ragask.services.vector_store import VectorStore

logger = logging.getLogger(__name__)

_LIST_MARKER_RE = re.compile(r"^\s*(?:[-*•]|\d+[.)]|Q\d+[:.])\s*")

NO_CONTEXT_ANSWER = "I could not find any indexed content related to this question."

SUBQUESTION_PROMPT = """You are helping search a codebase and its documentation.

Rewrite the question below as {count} different, more specific questions that together
cover what the user wants to know. Write one question per line, without numbering.

Question: {question}
"""

SUMMARY_PROMPT = """Summarize the context below so it can answer the questions that follow.
Keep every fact relevant to the questions and keep each "[source: ...]" marker next to
the facts taken from that source. Stay under {budget} characters.

Questions:
{questions}

Context:
{context}
"""

ANSWER_PROMPT = """You are a helpful assistant answering questions about a codebase.

Context:
{context}

Question: {question}

Instructions:
- Answer using only the provided context
- If the context doesn't contain the answer, say so clearly
- Be concise and mention the files your answer comes from

Answer:"""


def format_context(chunks: Sequence[ScoredChunk]) -> str:
    """Render retrieved chunks as source-tagged blocks."""
    return "\n\n".join(f"[source: {chunk.path}]\n{chunk.text}" for chunk in chunks)


def parse_questions(text: str, original: str, count: int) -> List[str]:
    """Extract up to ``count`` distinct questions, one per line, excluding ``original``."""
    seen = {original.strip().lower()}
    questions = []
    for line in (text or "").splitlines():
        question = _LIST_MARKER_RE.sub("", line).strip()
        if not question or question.lower() in seen:
            continue
        seen.add(question.lower())
        questions.append(question)
        if len(questions) == count:
            break
    return questions


class QueryStage(ABC):
    """One step of the query flow."""

    name = "query_stage"

    @abstractmethod
    async def apply(self, ctx: QueryContext) -> None:
        """Advance ``ctx``; raise to fail the query."""


class _Generating:
    """Shared retrying completion call for stages that prompt the LLM."""

    def __init__(self, llm: Completer, attempts: int = 3, initial_delay: float = 1.0, timeout: float = 60.0):
        self.llm = llm
        self.attempts = attempts
        self.initial_delay = initial_delay
        self.timeout = timeout

    async def _complete(self, prompt: str, label: str) -> str:
        try:
            text = await call_with_retry(
                lambda: self.llm.complete(prompt),
                attempts=self.attempts,
                initial_delay=self.initial_delay,
                timeout=self.timeout,
                retry_on=(LLMClientError, GenerationError),
                label=label,
            )
        except (LLMClientError, GenerationError, TimeoutError) as e:
            raise GenerationError(f"{label} failed: {e}") from e
        if not text or not text.strip():
            raise GenerationError(f"{label} returned an empty response")
        return text


class GenerateSubquestions(_Generating, QueryStage):
    """Ask for ``count`` related questions; on failure keep only the original."""

    name = "generate_subquestions"

    def __init__(self, llm: Completer, count: int = 5, **kwargs):
        super().__init__(llm, **kwargs)
        self.count = count

    async def apply(self, ctx: QueryContext) -> None:
        if self.count > 0:
            prompt = SUBQUESTION_PROMPT.format(count=self.count, question=ctx.original)
            try:
                text = await self._complete(prompt, self.name)
                ctx.expansions = parse_questions(text, ctx.original, self.count)
            except GenerationError as e:
                logger.warning(f"Sub-question generation failed, using the original question only: {e}")
                ctx.expansions = []
        ctx.state = QueryState.EXPANDED
        logger.debug(f"Expanded question into {len(ctx.expansions)} sub-questions")


class EmbedQuestions(QueryStage):
    """Embed the original question and its expansions in one batch call."""

    name = "embed_questions"

    def __init__(
        self,
        embedder: Embedder,
        dimension: int,
        attempts: int = 3,
        initial_delay: float = 1.0,
        timeout: float = 120.0,
    ):
        self.embedder = embedder
        self.dimension = dimension
        self.attempts = attempts
        self.initial_delay = initial_delay
        self.timeout = timeout

    async def apply(self, ctx: QueryContext) -> None:
        questions = ctx.questions
        try:
            vectors = await call_with_retry(
                lambda: self.embedder.embed(questions),
                attempts=self.attempts,
                initial_delay=self.initial_delay,
                timeout=self.timeout,
                retry_on=(EmbeddingError,),
                label=self.name,
            )
        except TimeoutError as e:
            raise EmbeddingError(f"Embedding questions timed out: {e}") from e

        if len(vectors) != len(questions):
            raise EmbeddingError(
                "Embedding call returned a different number of vectors than questions",
                {"expected": len(questions), "received": len(vectors)},
            )
        for vector in vectors:
            if len(vector) != self.dimension:
                raise EmbeddingError(
                    f"Query embedding dimension {len(vector)} does not match namespace dimension {self.dimension}",
                    {"expected": self.dimension, "received": len(vector)},
                )

        ctx.embeddings = [list(vector) for vector in vectors]
        ctx.state = QueryState.EMBEDDED


class RetrieveChunks(QueryStage):
    """Run the retriever over every query embedding."""

    name = "retrieve"

    def __init__(self, retriever: Retriever):
        self.retriever = retriever

    async def apply(self, ctx: QueryContext) -> None:
        ctx.candidates = await self.retriever.retrieve(ctx.embeddings)
        ctx.state = QueryState.RETRIEVED


class SummarizeContext(_Generating, QueryStage):
    """
    Compress retrieved context that exceeds ``budget`` characters.

    Context within budget passes through unchanged. If summarization fails the
    context is truncated to the budget instead.
    """

    name = "summarize_context"

    def __init__(self, llm: Completer, budget: int = 12000, **kwargs):
        super().__init__(llm, **kwargs)
        if budget < 1:
            raise ValueError("budget must be positive")
        self.budget = budget

    async def apply(self, ctx: QueryContext) -> None:
        context = format_context(ctx.candidates)
        if len(context) <= self.budget:
            ctx.response = context
            ctx.state = QueryState.COMPRESSED
            return

        prompt = SUMMARY_PROMPT.format(
            budget=self.budget,
            questions="\n".join(f"- {q}" for q in ctx.questions),
            context=context,
        )
        try:
            summary = await self._complete(prompt, self.name)
            ctx.response = summary[: self.budget]
            ctx.compressed = True
            logger.info(f"Compressed context from {len(context)} to {len(ctx.response)} characters")
        except GenerationError as e:
            logger.warning(f"Context compression failed, truncating instead: {e}")
            ctx.response = context[: self.budget]
        ctx.state = QueryState.COMPRESSED


class SimpleAnswer(_Generating, QueryStage):
    """Answer the original question from the compressed context only."""

    name = "answer"

    async def apply(self, ctx: QueryContext) -> None:
        if not ctx.candidates:
            ctx.answer = NO_CONTEXT_ANSWER
        else:
            prompt = ANSWER_PROMPT.format(context=ctx.response or "", question=ctx.original)
            ctx.answer = (await self._complete(prompt, self.name)).strip()
        ctx.state = QueryState.ANSWERED


class QueryPipeline:
    """Runs query stages in order over a fresh ``QueryContext``."""

    def __init__(self, stages: Sequence[QueryStage]):
        self.stages = tuple(stages)

    async def run(self, question: str) -> QueryContext:
        """
        Answer ``question``.

        Returns:
            The final context, either ANSWERED or FAILED with ``error`` set
        """
        ctx = QueryContext(original=question.strip())
        if not ctx.original:
            ctx.fail(ValueError("Question cannot be empty"))
            return ctx

        logger.info(f"Processing query: {ctx.original[:100]}")
        for stage in self.stages:
            try:
                await stage.apply(ctx)
            except RagAskError as e:
                logger.error(f"Query failed at {stage.name}: {e}", extra={"state": ctx.state.value})
                ctx.fail(e)
                break
            except Exception as e:
                logger.error(
                    f"Unexpected error at {stage.name}: {e}",
                    exc_info=True,
                    extra={"state": ctx.state.value},
                )
                ctx.fail(e)
                break
        return ctx

    async def answer(self, question: str) -> str:
        """Answer ``question`` or raise the error that failed it."""
        ctx = await self.run(question)
        if ctx.state is QueryState.FAILED:
            raise ctx.error
        return ctx.answer


def build_query_pipeline(
    settings: Settings,
    namespace: str,
    llm: Completer,
    embedder: Embedder,
    store: VectorStore,
) -> QueryPipeline:
    """Assemble the standard query flow for ``namespace``."""
    policy = dict(
        attempts=settings.retry_attempts,
        initial_delay=settings.retry_initial_delay,
        timeout=settings.call_timeout,
    )
    retriever = Retriever(store, namespace, top_k=settings.top_k, max_chunks=settings.max_context_chunks)
    return QueryPipeline([
        GenerateSubquestions(llm, count=settings.subquestion_count, **policy),
        EmbedQuestions(embedder, settings.embedding_dimension, **policy),
        RetrieveChunks(retriever),
        SummarizeContext(llm, budget=settings.context_budget_chars, **policy),
        SimpleAnswer(llm, **policy),
    ])
