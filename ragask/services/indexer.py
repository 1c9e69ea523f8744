"""Pipeline construction and the index operation."""
import logging
import os
import re
from dataclasses import dataclass
from typing import List

from ragask.config import ContentProfile, Settings
from ragask.errors import PipelineRunError
from ragask.models.report import RunReport
from ragask.models.unit import ContentClass
from ragask.services.batch_embedder import BatchEmbedder, Embedder
from ragask.services.cache import CacheFilter, FingerprintCache, SupabaseFingerprintCache
from ragask.services.chunking_engine import CodeChunker, ProseChunker
from ragask.services.embedding_model import EmbeddingModel
from ragask.services.llm_client import LLMClient
from ragask.services.metadata_enricher import Completer, MetadataQA
from ragask.services.outline import OutlineExtractor
from ragask.services.pipeline import Pipeline, Stage
from ragask.services.file_loader import FileLoader
from ragask.services.vector_store import StoreWriter, SupabaseVectorStore, VectorStore

logger = logging.getLogger(__name__)

_UNSAFE_NAMESPACE_CHARS = re.compile(r"[^A-Za-z0-9_.]+")


def namespace_for(root: str, settings: Settings) -> str:
    """
    Namespace for a corpus root.

    Combines the configured prefix and pipeline version, the absolute root path
    with separators replaced by ``-``, and the embedding dimension. Changing the
    model dimension or the pipeline version therefore never mixes vectors.
    """
    path = _UNSAFE_NAMESPACE_CHARS.sub("-", os.path.abspath(root)).strip("-")
    return f"{settings.namespace_prefix}-{settings.pipeline_version}-{path}-{settings.embedding_dimension}"


def build_indexing_pipeline(
    profile: ContentProfile,
    root: str,
    namespace: str,
    settings: Settings,
    llm: Completer,
    embedder: Embedder,
    store: VectorStore,
    cache: FingerprintCache,
) -> Pipeline:
    """
    Build the indexing pipeline for one content profile.

    Stages: cache filter, outline (code profiles with ``outline`` set),
    chunker, question/answer enrichment, batch embedder; sink: store writer.
    """
    content_class = ContentClass.CODE if profile.name == ContentClass.CODE.value else ContentClass.PROSE
    min_size, max_size = profile.chunk_range
    policy = dict(
        attempts=settings.retry_attempts,
        initial_delay=settings.retry_initial_delay,
    )

    stages: List[Stage] = [CacheFilter(cache, namespace)]
    if profile.outline:
        stages.append(OutlineExtractor(max_chars=max_size))
    if content_class is ContentClass.CODE:
        stages.append(CodeChunker((min_size, max_size)))
    else:
        stages.append(ProseChunker((min_size, max_size)))
    stages.append(MetadataQA(llm, timeout=settings.call_timeout, **policy))

    embed = BatchEmbedder(
        embedder,
        batch_size=profile.embed_batch_size,
        dimension=settings.embedding_dimension,
        timeout=settings.call_timeout,
        **policy,
    )
    stages.append(embed)

    sink = StoreWriter(store, namespace, settings.embedding_dimension, batch_size=settings.store_batch_size)

    return Pipeline(
        name=f"{profile.name}:{namespace}",
        source=FileLoader(root, profile.extensions, content_class),
        stages=tuple(stages),
        sink=sink,
        concurrency=settings.concurrency,
    )


@dataclass
class Capabilities:
    """The external collaborators shared by indexing and querying."""
    llm: Completer
    embedder: Embedder
    store: VectorStore
    cache: FingerprintCache

    @classmethod
    def from_settings(cls, settings: Settings) -> "Capabilities":
        """Build the production adapters (Groq, Hugging Face, Supabase)."""
        return cls(
            llm=LLMClient(
                api_key=settings.groq_api_key,
                model=settings.prompt_model,
                timeout=settings.call_timeout,
            ),
            embedder=EmbeddingModel(
                api_key=settings.huggingface_api_key,
                model_name=settings.embedding_model,
                dimension=settings.embedding_dimension,
                timeout=settings.call_timeout,
            ),
            store=SupabaseVectorStore(settings.supabase_url, settings.supabase_key),
            cache=SupabaseFingerprintCache(settings.supabase_url, settings.supabase_key),
        )

    async def aclose(self) -> None:
        close = getattr(self.embedder, "aclose", None)
        if close is not None:
            await close()


class Indexer:
    """Runs every configured content profile over a corpus root."""

    def __init__(self, settings: Settings, capabilities: Capabilities):
        self.settings = settings
        self.capabilities = capabilities

    def namespace_for(self, root: str) -> str:
        return namespace_for(root, self.settings)

    def pipelines(self, root: str) -> List[Pipeline]:
        namespace = self.namespace_for(root)
        caps = self.capabilities
        return [
            build_indexing_pipeline(
                profile, root, namespace, self.settings,
                caps.llm, caps.embedder, caps.store, caps.cache,
            )
            for profile in self.settings.profiles
        ]

    async def index(self, root: str) -> RunReport:
        """
        Index ``root`` into its namespace. Safe to re-run.

        Profiles run one after another; unchanged files are skipped through the
        fingerprint cache.

        Returns:
            RunReport summed over every profile

        Raises:
            PipelineRunError: If a run aborts; carries the report so far
        """
        logger.info(f"Indexing {root} into {self.namespace_for(root)}")
        report = RunReport(pipeline="index")
        for pipeline in self.pipelines(root):
            try:
                report = report.merge(await pipeline.run())
            except PipelineRunError as e:
                raise PipelineRunError(e.cause, report.merge(e.report)) from e
        report.pipeline = "index"

        logger.info(
            f"Indexed {root}: loaded={report.loaded}, skipped={report.skipped}, "
            f"errored={report.errored}, stored={report.stored}",
            extra={"namespace": self.namespace_for(root)},
        )
        return report
