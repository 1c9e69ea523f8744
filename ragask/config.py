"""Configuration management for the ragask indexing and query engine."""
import os
from dataclasses import dataclass, field
from typing import Optional, Tuple

from dotenv import load_dotenv

# Model Configuration
EMBEDDING_MODEL = "sentence-transformers/all-MiniLM-L6-v2"
EMBEDDING_DIMENSION = 384  # all-MiniLM-L6-v2 vector size
PROMPT_MODEL = "llama-3.1-8b-instant"

# Namespace Configuration
NAMESPACE_PREFIX = "ragask"
PIPELINE_VERSION = "v0.18"

# Chunking Configuration (characters)
PROSE_CHUNK_RANGE = (100, 5000)
CODE_CHUNK_RANGE = (10, 2048)
PROSE_EMBED_BATCH_SIZE = 100
CODE_EMBED_BATCH_SIZE = 10
STORE_BATCH_SIZE = 50

# Retrieval Configuration
SUBQUESTION_COUNT = 5
TOP_K = 10
MAX_CONTEXT_CHUNKS = 20
CONTEXT_BUDGET_CHARS = 12000

# External call policy
CALL_TIMEOUT = 60.0  # seconds
RETRY_ATTEMPTS = 3
RETRY_INITIAL_DELAY = 1.0  # seconds
CONCURRENCY = 4


@dataclass(frozen=True)
class ContentProfile:
    """One class of content indexed by its own pipeline."""
    name: str  # "prose" or "code"
    extensions: Tuple[str, ...]
    chunk_range: Tuple[int, int]
    embed_batch_size: int
    outline: bool = False


PROSE_PROFILE = ContentProfile(
    name="prose",
    extensions=("md",),
    chunk_range=PROSE_CHUNK_RANGE,
    embed_batch_size=PROSE_EMBED_BATCH_SIZE,
)

CODE_PROFILE = ContentProfile(
    name="code",
    extensions=("rs", "py"),
    chunk_range=CODE_CHUNK_RANGE,
    embed_batch_size=CODE_EMBED_BATCH_SIZE,
    outline=True,
)


@dataclass(frozen=True)
class Settings:
    """
    Immutable process configuration.

    Built once at startup (usually through ``Settings.from_env``) and handed to
    the indexer, the query pipeline and every adapter.
    """
    groq_api_key: Optional[str] = None
    huggingface_api_key: Optional[str] = None
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None

    log_level: str = "INFO"
    port: int = 8000
    corpus_root: str = "."

    embedding_model: str = EMBEDDING_MODEL
    embedding_dimension: int = EMBEDDING_DIMENSION
    prompt_model: str = PROMPT_MODEL

    namespace_prefix: str = NAMESPACE_PREFIX
    pipeline_version: str = PIPELINE_VERSION

    profiles: Tuple[ContentProfile, ...] = field(
        default_factory=lambda: (PROSE_PROFILE, CODE_PROFILE)
    )
    store_batch_size: int = STORE_BATCH_SIZE
    concurrency: int = CONCURRENCY

    subquestion_count: int = SUBQUESTION_COUNT
    top_k: int = TOP_K
    max_context_chunks: int = MAX_CONTEXT_CHUNKS
    context_budget_chars: int = CONTEXT_BUDGET_CHARS

    call_timeout: float = CALL_TIMEOUT
    retry_attempts: int = RETRY_ATTEMPTS
    retry_initial_delay: float = RETRY_INITIAL_DELAY

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> "Settings":
        """
        Build settings from the process environment (and a .env file if present).

        Args:
            dotenv_path: Optional explicit path to a .env file

        Returns:
            Settings populated from environment variables
        """
        load_dotenv(dotenv_path)

        return cls(
            groq_api_key=os.getenv("GROQ_API_KEY"),
            huggingface_api_key=os.getenv("HUGGINGFACE_API_KEY"),
            supabase_url=os.getenv("SUPABASE_URL"),
            supabase_key=os.getenv("SUPABASE_KEY"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            port=int(os.getenv("PORT", "8000")),
            corpus_root=os.getenv("RAGASK_ROOT", "."),
            embedding_model=os.getenv("RAGASK_EMBEDDING_MODEL", EMBEDDING_MODEL),
            embedding_dimension=int(os.getenv("RAGASK_EMBEDDING_DIMENSION", str(EMBEDDING_DIMENSION))),
            prompt_model=os.getenv("RAGASK_PROMPT_MODEL", PROMPT_MODEL),
            pipeline_version=os.getenv("RAGASK_PIPELINE_VERSION", PIPELINE_VERSION),
            concurrency=int(os.getenv("RAGASK_CONCURRENCY", str(CONCURRENCY))),
        )
