"""Services for ragask."""
from .pipeline import BatchTransform, Filter, Pipeline, Sink, Source, Transform, run_pipeline
from .file_loader import FileLoader
from .cache import CacheFilter, FingerprintCache, InMemoryFingerprintCache, SupabaseFingerprintCache
from .chunking_engine import CodeChunker, ProseChunker
from .outline import OutlineExtractor
from .metadata_enricher import MetadataQA
from .batch_embedder import BatchEmbedder
from .embedding_model import EmbeddingModel
from .vector_store import InMemoryVectorStore, StoreWriter, SupabaseVectorStore, VectorStore
from .llm_client import LLMClient, LLMResponse, LLMError, LLMClientError
from .retrieval_engine import Retriever
from .query_pipeline import QueryPipeline, build_query_pipeline
from .indexer import Capabilities, Indexer, build_indexing_pipeline, namespace_for

__all__ = [
    'BatchTransform', 'Filter', 'Pipeline', 'Sink', 'Source', 'Transform', 'run_pipeline',
    'FileLoader', 'CacheFilter', 'FingerprintCache', 'InMemoryFingerprintCache',
    'SupabaseFingerprintCache', 'CodeChunker', 'ProseChunker', 'OutlineExtractor', 'MetadataQA',
    'BatchEmbedder', 'EmbeddingModel', 'InMemoryVectorStore', 'StoreWriter', 'SupabaseVectorStore',
    'VectorStore', 'LLMClient', 'LLMResponse', 'LLMError', 'LLMClientError', 'Retriever',
    'QueryPipeline', 'build_query_pipeline', 'Capabilities', 'Indexer', 'build_indexing_pipeline',
    'namespace_for',
]
