"""Incremental indexing and retrieval-augmented question answering over a codebase."""

__version__ = "0.18.0"
