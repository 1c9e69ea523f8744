"""Shared fixtures and test doubles."""
import hashlib
import re
from typing import List, Optional

import pytest

from ragask.config import ContentProfile, Settings
from ragask.errors import GenerationError
from ragask.models.unit import ContentClass, Unit, fingerprint_of
from ragask.services.cache import InMemoryFingerprintCache
from ragask.services.indexer import Capabilities
from ragask.services.pipeline import Source
from ragask.services.vector_store import InMemoryVectorStore

DIMENSION = 16

_TOKEN_RE = re.compile(r"[a-z0-9_]+")
_SOURCE_RE = re.compile(r"\[source: ([^\]]+)\]")


class HashingEmbedder:
    """Deterministic bag-of-words embedder; texts sharing words get similar vectors."""

    def __init__(self, dimension: int = DIMENSION):
        self.dimension = dimension
        self.calls: List[List[str]] = []

    def vector(self, text: str) -> List[float]:
        vector = [0.0] * self.dimension
        for token in _TOKEN_RE.findall(text.lower()):
            index = int(hashlib.md5(token.encode("utf-8")).hexdigest(), 16) % self.dimension
            vector[index] += 1.0
        return vector

    async def embed(self, texts: List[str]) -> List[List[float]]:
        self.calls.append(list(texts))
        return [self.vector(text) for text in texts]


def _context_sources(prompt: str) -> List[str]:
    """Source paths tagged in the prompt's ``Context:`` section."""
    _, _, context = prompt.partition("\nContext:\n")
    return sorted(set(_SOURCE_RE.findall(context)))


class ScriptedLLM:
    """
    Answers each kind of prompt with a fixed shape of response.

    Prompts containing ``fail_on`` raise GenerationError.
    """

    def __init__(self, fail_on: Optional[str] = None):
        self.fail_on = fail_on
        self.prompts: List[str] = []

    async def complete(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.fail_on and self.fail_on in prompt:
            raise GenerationError("scripted failure")
        if "question and answer pairs" in prompt:
            return "Q1: What is in this chunk?\nA1: The indexed content.\nQ2: Why?\nA2: For search."
        if "more specific questions" in prompt:
            return "1. Which function is defined?\n2. What does it return?"
        if prompt.startswith("Summarize the context"):
            return "Summary of " + ", ".join(_context_sources(prompt))
        sources = _context_sources(prompt)
        return "Answer drawn from: " + ", ".join(sources)


class ListSource(Source):
    """Source yielding prepared units."""

    name = "list"

    def __init__(self, units: List[Unit]):
        self._units = units

    def units(self):
        return iter(list(self._units))


def make_unit(content: str, path: str = "doc.md", content_class: ContentClass = ContentClass.PROSE) -> Unit:
    fingerprint = fingerprint_of(content.encode("utf-8"))
    return Unit(
        unit_id=f"{path}:{fingerprint[:16]}",
        path=path,
        content=content,
        fingerprint=fingerprint,
        content_class=content_class,
    )


@pytest.fixture
def settings():
    """Small, fast settings: tiny vectors, no backoff."""
    return Settings(
        embedding_dimension=DIMENSION,
        profiles=(
            ContentProfile(name="prose", extensions=("md",), chunk_range=(10, 50), embed_batch_size=2),
            ContentProfile(name="code", extensions=("rs", "py"), chunk_range=(10, 2048), embed_batch_size=2, outline=True),
        ),
        store_batch_size=3,
        retry_attempts=2,
        retry_initial_delay=0.0,
        call_timeout=5.0,
        concurrency=2,
    )


@pytest.fixture
def embedder():
    return HashingEmbedder()


@pytest.fixture
def llm():
    return ScriptedLLM()


@pytest.fixture
def store():
    return InMemoryVectorStore()


@pytest.fixture
def cache():
    return InMemoryFingerprintCache()


@pytest.fixture
def capabilities(llm, embedder, store, cache):
    return Capabilities(llm=llm, embedder=embedder, store=store, cache=cache)


@pytest.fixture
def corpus(tmp_path):
    """Two-file corpus: one markdown paragraph and one Rust function."""
    (tmp_path / "a.md").write_text("Ragask indexes markdown and rust files.\n")
    (tmp_path / "b.rs").write_text(
        "/// Adds two numbers.\n"
        "pub fn add(a: i32, b: i32) -> i32 {\n"
        "    a + b\n"
        "}\n"
    )
    return tmp_path
