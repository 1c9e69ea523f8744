"""Unit data models."""
import hashlib
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class ContentClass(str, Enum):
    """Kind of content a unit carries."""
    PROSE = "prose"
    CODE = "code"


def fingerprint_of(raw: bytes) -> str:
    """Deterministic hash of raw content."""
    return hashlib.sha256(raw).hexdigest()


@dataclass
class Unit:
    """
    Atomic item flowing through an indexing pipeline.

    Loaded files and the chunks derived from them are both units. Chunks keep
    ``origin_id`` and ``parent_fingerprint`` pointing back at the loaded file.
    """
    unit_id: str
    path: str
    content: str
    fingerprint: str
    content_class: ContentClass
    offset: int = 0
    end_offset: Optional[int] = None
    position: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)
    embedding: Optional[List[float]] = None
    error: Optional[Exception] = None
    origin_id: Optional[str] = None
    parent_fingerprint: Optional[str] = None

    def __post_init__(self) -> None:
        if self.end_offset is None:
            self.end_offset = self.offset + len(self.content)
        if self.origin_id is None:
            self.origin_id = self.unit_id

    @property
    def lineage_fingerprint(self) -> str:
        """Fingerprint of the loaded file this unit descends from."""
        return self.parent_fingerprint or self.fingerprint

    def derive(self, content: str, offset: int, position: int) -> "Unit":
        """
        Create a chunk of this unit.

        The chunk identifier is deterministic in (path, offset, content) so
        re-indexing the same file produces the same identifiers.
        """
        digest = hashlib.sha256(
            f"{self.path}:{offset}:{content}".encode("utf-8")
        ).hexdigest()[:32]
        return Unit(
            unit_id=digest,
            path=self.path,
            content=content,
            fingerprint=fingerprint_of(content.encode("utf-8")),
            content_class=self.content_class,
            offset=offset,
            position=position,
            metadata=dict(self.metadata),
            origin_id=self.origin_id,
            parent_fingerprint=self.lineage_fingerprint,
        )

    def as_embeddable(self) -> str:
        """Text sent to the embedding model: metadata entries followed by content."""
        parts = [f"{key}: {value}" for key, value in self.metadata.items()]
        parts.append(self.content)
        return "\n".join(parts)

    def as_record_metadata(self) -> Dict[str, Any]:
        """Metadata persisted alongside the vector."""
        record = dict(self.metadata)
        record.update({
            "path": self.path,
            "content": self.content,
            "content_class": self.content_class.value,
            "offset": self.offset,
            "end_offset": self.end_offset,
            "parent_fingerprint": self.lineage_fingerprint,
        })
        return record
