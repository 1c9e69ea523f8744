"""Outline extraction for source files."""
import logging
from typing import List, Optional

from ragask.errors import ChunkError
from ragask.models.unit import Unit
from ragask.services import code_structure
from ragask.services.pipeline import Transform

logger = logging.getLogger(__name__)

OUTLINE_KEY = "Outline"


class OutlineExtractor(Transform):
    """
    Attaches a structural outline of the whole file to the unit.

    Runs before chunking so every chunk inherits the outline through its
    metadata. A file that cannot be analysed passes through without one.
    """

    name = "outline"

    def __init__(self, max_chars: Optional[int] = None, language: Optional[str] = None):
        """
        Initialize OutlineExtractor.

        Args:
            max_chars: Truncate outlines to this many characters
            language: Force a language; detected from the file extension otherwise
        """
        self.max_chars = max_chars
        self.language = language

    def extract(self, source: str, language: str) -> str:
        entries = code_structure.outline(source, language)
        text = "\n".join(entries)
        if self.max_chars is not None and len(text) > self.max_chars:
            cut = text.rfind("\n", 0, self.max_chars)
            text = text[:cut if cut > 0 else self.max_chars]
        return text

    async def transform(self, unit: Unit) -> List[Unit]:
        language = self.language or code_structure.language_for(unit.path)
        if language is None:
            logger.debug(f"No outline support for {unit.path}")
            return [unit]

        try:
            text = self.extract(unit.content, language)
        except (SyntaxError, ChunkError) as e:
            logger.warning(f"Could not outline {unit.path}, continuing without one: {e}")
            return [unit]

        if text:
            unit.metadata[OUTLINE_KEY] = text
        return [unit]
