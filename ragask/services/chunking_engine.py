"""Content-aware chunking for prose and source code."""
import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

from ragask.errors import ChunkError
from ragask.models.unit import Unit
from ragask.services import code_structure
from ragask.services.pipeline import Transform

logger = logging.getLogger(__name__)

# Prose boundary strengths, weakest first
CHARACTER = -1
WORD = 0
SENTENCE = 1
LINE = 2
PARAGRAPH = 3
SECTION = 4

_WORD_RE = re.compile(r"\S+\s*|\s+")
_SENTENCE_END_RE = re.compile(r"[.!?][\"')\]]*$")
_PARAGRAPH_RE = re.compile(r"\n[ \t]*\n")
_HEADING_RE = re.compile(r"#{1,6}\s")


@dataclass
class Atom:
    """Smallest piece of text the packer moves around, with the boundary strength after it."""
    text: str
    level: int


@dataclass
class Piece:
    """A packed span of atoms."""
    text: str
    offset: int


def split_atom(text: str, level: int, max_atom: int) -> List[Atom]:
    """Cut ``text`` into runs of at most ``max_atom`` characters; only the last keeps ``level``."""
    if len(text) <= max_atom:
        return [Atom(text, level)]
    atoms = []
    for start in range(0, len(text), max_atom):
        last = start + max_atom >= len(text)
        atoms.append(Atom(text[start:start + max_atom], level if last else CHARACTER))
    return atoms


def pack(atoms: List[Atom], min_size: int, max_size: int) -> List[Piece]:
    """
    Greedily pack atoms into pieces of ``min_size..max_size`` characters.

    From each starting atom the packer looks at every cut that keeps the piece
    within ``max_size`` and at least ``min_size`` long, and picks the one with
    the strongest boundary (the latest among equals). The remainder of the text
    becomes the final piece when it fits, even below ``min_size``.

    Callers cut atoms to at most ``max_size - min_size`` characters (see
    ``split_atom``), so every piece but the last is at least ``min_size`` long.

    Raises:
        ValueError: If an atom is longer than ``max_size``
    """
    pieces: List[Piece] = []
    offsets = []
    position = 0
    for atom in atoms:
        if len(atom.text) > max_size:
            raise ValueError(f"Atom of {len(atom.text)} characters exceeds max_size {max_size}")
        offsets.append(position)
        position += len(atom.text)

    i, n = 0, len(atoms)
    while i < n:
        total = 0
        k = i
        best: Optional[int] = None
        best_level = CHARACTER
        while k < n and total + len(atoms[k].text) <= max_size:
            total += len(atoms[k].text)
            k += 1
            if total >= min_size and (best is None or atoms[k - 1].level >= best_level):
                best, best_level = k, atoms[k - 1].level

        end = k if (k == n or best is None) else best
        pieces.append(Piece("".join(a.text for a in atoms[i:end]), offsets[i]))
        i = end

    return pieces


def prose_atoms(text: str, max_atom: int) -> List[Atom]:
    """
    Split prose into word atoms rated by the break that follows them.

    Markdown headings start a new section; blank lines end a paragraph.
    Words longer than ``max_atom`` are cut into character runs.
    """
    atoms: List[Atom] = []
    matches = _WORD_RE.findall(text)
    for index, token in enumerate(matches):
        word = token.rstrip()
        trailing = token[len(word):]
        next_token = matches[index + 1] if index + 1 < len(matches) else ""

        if "\n" in trailing and _HEADING_RE.match(next_token + " "):
            level = SECTION
        elif _PARAGRAPH_RE.search(trailing) or trailing.count("\n") >= 2:
            level = PARAGRAPH
        elif "\n" in trailing:
            level = LINE
        elif word and _SENTENCE_END_RE.search(word):
            level = SENTENCE
        else:
            level = WORD

        atoms.extend(split_atom(token, level, max_atom))
    return atoms


def code_atoms(text: str, language: Optional[str], max_atom: int) -> List[Atom]:
    """
    Split source code into line atoms rated by syntactic boundaries.

    Lines longer than ``max_atom`` are cut into character runs.

    Raises:
        ChunkError: If the file cannot be analysed for its language
    """
    lines = text.splitlines(keepends=True)
    levels = code_structure.boundary_levels(lines, language)
    atoms: List[Atom] = []
    for line, level in zip(lines, levels):
        atoms.extend(split_atom(line, level, max_atom))
    return atoms


def _validate_range(chunk_range: Tuple[int, int]) -> Tuple[int, int]:
    min_size, max_size = chunk_range
    if min_size < 0 or max_size <= 0 or min_size > max_size:
        raise ValueError(f"Invalid chunk range: {min_size}..{max_size}")
    return min_size, max_size


class ProseChunker(Transform):
    """Splits prose along section, paragraph, line and sentence breaks."""

    name = "chunk_prose"

    def __init__(self, chunk_range: Tuple[int, int]):
        """
        Initialize ProseChunker.

        Args:
            chunk_range: (min, max) chunk length in characters
        """
        self.min_size, self.max_size = _validate_range(chunk_range)
        self.max_atom = max(1, self.max_size - self.min_size)

    def chunk_text(self, text: str) -> List[Piece]:
        if not text.strip():
            return []
        pieces = pack(prose_atoms(text, self.max_atom), self.min_size, self.max_size)
        return [p for p in pieces if p.text.strip()]

    async def transform(self, unit: Unit) -> List[Unit]:
        pieces = self.chunk_text(unit.content)
        logger.debug(f"Split {unit.path} into {len(pieces)} prose chunks")
        return [
            unit.derive(piece.text, unit.offset + piece.offset, position)
            for position, piece in enumerate(pieces)
        ]


class CodeChunker(Transform):
    """
    Splits source code preferring item boundaries over line boundaries.

    A file that cannot be analysed for its language is split on blank lines and
    line breaks instead. Lines longer than the maximum are cut by position.
    """

    name = "chunk_code"

    def __init__(self, chunk_range: Tuple[int, int], language: Optional[str] = None):
        """
        Initialize CodeChunker.

        Args:
            chunk_range: (min, max) chunk length in characters
            language: Force a language; detected from the file extension otherwise
        """
        self.min_size, self.max_size = _validate_range(chunk_range)
        self.max_atom = max(1, self.max_size - self.min_size)
        self.language = language

    def chunk_text(self, text: str, language: Optional[str]) -> List[Piece]:
        """
        Raises:
            ChunkError: If the text cannot be analysed as ``language``
        """
        if not text.strip():
            return []
        pieces = pack(code_atoms(text, language, self.max_atom), self.min_size, self.max_size)
        return [p for p in pieces if p.text.strip()]

    async def transform(self, unit: Unit) -> List[Unit]:
        language = self.language or code_structure.language_for(unit.path)
        try:
            pieces = self.chunk_text(unit.content, language)
        except ChunkError as e:
            logger.warning(f"Could not analyse {unit.path} as {language}, splitting on lines instead: {e}")
            pieces = self.chunk_text(unit.content, None)

        chunks = [
            unit.derive(piece.text, unit.offset + piece.offset, position)
            for position, piece in enumerate(pieces)
        ]

        logger.debug(f"Split {unit.path} ({language or 'plain'}) into {len(chunks)} code chunks")
        return chunks
