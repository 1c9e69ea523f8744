"""Run report for indexing pipelines."""
from dataclasses import dataclass, field
from typing import List


@dataclass
class RunReport:
    """Counts collected while an indexing pipeline runs."""
    pipeline: str = "pipeline"
    loaded: int = 0
    skipped: int = 0
    errored: int = 0
    stored: int = 0
    committed: int = 0
    errors: List[str] = field(default_factory=list)

    def merge(self, other: "RunReport") -> "RunReport":
        return RunReport(
            pipeline=f"{self.pipeline}+{other.pipeline}",
            loaded=self.loaded + other.loaded,
            skipped=self.skipped + other.skipped,
            errored=self.errored + other.errored,
            stored=self.stored + other.stored,
            committed=self.committed + other.committed,
            errors=self.errors + other.errors,
        )
