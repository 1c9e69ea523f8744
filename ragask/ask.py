"""
Command-line entry point: index the current directory, then answer a question.

Usage:
    ragask-ask "What does b.rs do?"
"""
import asyncio
import logging
import os
import sys
from typing import List, Optional

from ragask.config import Settings
from ragask.errors import PipelineRunError, RagAskError
from ragask.logger import setup_logging
from ragask.services.indexer import Capabilities, Indexer
from ragask.services.query_pipeline import build_query_pipeline

logger = logging.getLogger(__name__)


async def ask(question: str, root: str, settings: Settings, capabilities: Capabilities) -> str:
    """Index ``root`` (skipping unchanged files) and answer ``question`` from it."""
    indexer = Indexer(settings, capabilities)
    report = await indexer.index(root)
    logger.info(f"Index up to date: {report.stored} chunks stored, {report.skipped} files unchanged")

    pipeline = build_query_pipeline(
        settings,
        indexer.namespace_for(root),
        capabilities.llm,
        capabilities.embedder,
        capabilities.store,
    )
    return await pipeline.answer(question)


async def _run(question: str, settings: Settings) -> str:
    capabilities = Capabilities.from_settings(settings)
    try:
        return await ask(question, os.getcwd(), settings, capabilities)
    finally:
        await capabilities.aclose()


def main(argv: Optional[List[str]] = None) -> int:
    argv = sys.argv if argv is None else argv
    if len(argv) < 2 or not argv[1].strip():
        print("Usage: ragask-ask <question>", file=sys.stderr)
        return 2

    settings = Settings.from_env()
    setup_logging(settings.log_level)

    try:
        answer = asyncio.run(_run(argv[1], settings))
    except PipelineRunError as e:
        logger.error(f"Indexing failed: {e}", extra={"stored": e.report.stored, "errored": e.report.errored})
        print(f"Indexing failed: {e.cause}", file=sys.stderr)
        return 1
    except (RagAskError, ValueError) as e:
        logger.error(f"Query failed: {e}")
        print(f"Query failed: {e}", file=sys.stderr)
        return 1

    print(answer)
    return 0


if __name__ == "__main__":
    sys.exit(main())
