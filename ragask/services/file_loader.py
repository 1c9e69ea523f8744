"""File loading source for indexing pipelines."""
import logging
import os
from typing import Iterable, Iterator, Tuple

from ragask.errors import LoadError
from ragask.models.unit import ContentClass, Unit, fingerprint_of
from ragask.services.pipeline import Source

logger = logging.getLogger(__name__)


class FileLoader(Source):
    """Enumerates files under a root directory and loads them as units."""

    name = "loader"

    def __init__(
        self,
        root: str,
        extensions: Iterable[str],
        content_class: ContentClass = ContentClass.PROSE,
    ):
        """
        Initialize FileLoader.

        Args:
            root: Directory to walk (recursively)
            extensions: Accepted file extensions, with or without the leading dot
            content_class: Class assigned to every loaded unit
        """
        self.root = root
        self.extensions: Tuple[str, ...] = tuple(
            "." + ext.lstrip(".").lower() for ext in extensions
        )
        self.content_class = content_class

    def units(self) -> Iterator[Unit]:
        """
        Start a new pass over the corpus.

        Returns:
            Lazy iterator yielding one unit per matching file

        Raises:
            LoadError: If the root directory is missing or unreadable
        """
        if not os.path.isdir(self.root):
            raise LoadError(f"Corpus root not found: {self.root}", details={"root": self.root})
        if not os.access(self.root, os.R_OK | os.X_OK):
            raise LoadError(f"Corpus root is not readable: {self.root}", details={"root": self.root})

        return self._walk()

    def _walk(self) -> Iterator[Unit]:
        count = 0
        for dirpath, dirnames, filenames in os.walk(self.root, onerror=self._on_walk_error):
            # Hidden directories (.git, .venv, ...) are never part of the corpus
            dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))

            for filename in sorted(filenames):
                if not filename.lower().endswith(self.extensions):
                    continue
                count += 1
                yield self._load_file(os.path.join(dirpath, filename))

        logger.info(f"Found {count} {self.content_class.value} files under {self.root}")

    def _load_file(self, filepath: str) -> Unit:
        """
        Load a single file.

        Read and decode failures are attached to the unit instead of raised.
        """
        relpath = os.path.relpath(filepath, self.root)
        try:
            with open(filepath, "rb") as f:
                raw = f.read()
            content = raw.decode("utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.error(f"Failed to load {relpath}: {str(e)}")
            return Unit(
                unit_id=relpath,
                path=relpath,
                content="",
                fingerprint="",
                content_class=self.content_class,
                error=LoadError(f"Could not read {relpath}: {e}", unit_id=relpath),
            )

        fingerprint = fingerprint_of(raw)
        logger.debug(f"Loaded {relpath}: {len(raw)} bytes")
        return Unit(
            unit_id=f"{relpath}:{fingerprint[:16]}",
            path=relpath,
            content=content,
            fingerprint=fingerprint,
            content_class=self.content_class,
        )

    @staticmethod
    def _on_walk_error(error: OSError) -> None:
        logger.warning(f"Skipping unreadable directory {error.filename}: {error.strerror}")
