"""Question/answer metadata generation for chunks."""
import logging
import re
from typing import List, Protocol

from ragask.errors import EnrichmentError, GenerationError
from ragask.models.unit import ContentClass, Unit
from ragask.services.llm_client import LLMClientError
from ragask.services.outline import OUTLINE_KEY
from ragask.services.pipeline import Transform
from ragask.services.retry import call_with_retry

logger = logging.getLogger(__name__)

QA_TEXT_KEY = "Questions and Answers (text)"
QA_CODE_KEY = "Questions and Answers (code)"

_QA_PAIR_RE = re.compile(r"^\s*Q\d+[:.]\s*(.+?)\s*\n\s*A\d+[:.]\s*(.+?)\s*$", re.MULTILINE)

TEXT_PROMPT = """You are an assistant preparing documentation for a search index.

Generate up to {count} question and answer pairs that the text below answers.
Questions should be ones a user might ask; answers must come from the text only.

Format every pair on two lines exactly like this:
Q1: <question>
A1: <answer>

## Text
{content}
"""

CODE_PROMPT = """You are an assistant preparing a codebase for a search index.

Generate up to {count} question and answer pairs about what the code below does,
which symbols it defines and how they are used. Answers must come from the code
(and the file outline, if given) only.

Format every pair on two lines exactly like this:
Q1: <question>
A1: <answer>
{outline}
## Code
```
{content}
```
"""


class Completer(Protocol):
    """Anything that turns a prompt into generated text."""

    async def complete(self, prompt: str) -> str: ...


def parse_qa(text: str) -> List[str]:
    """Extract ``Q: ... A: ...`` pairs; returns them normalised, one string per pair."""
    return [f"Q: {q} A: {a}" for q, a in _QA_PAIR_RE.findall(text or "")]


class MetadataQA(Transform):
    """
    Asks the LLM for question/answer pairs describing each chunk.

    Failures are retried with exponential backoff; a chunk whose generation still
    fails is dropped with ``EnrichmentError`` while its siblings continue.
    """

    name = "metadata_qa"

    def __init__(
        self,
        llm: Completer,
        question_count: int = 5,
        attempts: int = 3,
        initial_delay: float = 1.0,
        timeout: float = 60.0,
    ):
        self.llm = llm
        self.question_count = question_count
        self.attempts = attempts
        self.initial_delay = initial_delay
        self.timeout = timeout

    def build_prompt(self, unit: Unit) -> str:
        if unit.content_class is ContentClass.CODE:
            outline = unit.metadata.get(OUTLINE_KEY)
            outline_section = f"\n## File outline\n{outline}\n" if outline else ""
            return CODE_PROMPT.format(
                count=self.question_count, outline=outline_section, content=unit.content
            )
        return TEXT_PROMPT.format(count=self.question_count, content=unit.content)

    async def _generate(self, prompt: str) -> str:
        text = await self.llm.complete(prompt)
        pairs = parse_qa(text)
        if not pairs:
            raise GenerationError("Response contained no question/answer pairs", {"response": text[:200]})
        return "\n".join(pairs[: self.question_count])

    async def transform(self, unit: Unit) -> List[Unit]:
        prompt = self.build_prompt(unit)
        try:
            qa = await call_with_retry(
                lambda: self._generate(prompt),
                attempts=self.attempts,
                initial_delay=self.initial_delay,
                timeout=self.timeout,
                retry_on=(GenerationError, LLMClientError),
                label=f"metadata_qa[{unit.path}]",
            )
        except (GenerationError, LLMClientError, TimeoutError) as e:
            raise EnrichmentError(
                f"Could not generate metadata for chunk of {unit.path}: {e}",
                unit_id=unit.unit_id,
            ) from e

        key = QA_CODE_KEY if unit.content_class is ContentClass.CODE else QA_TEXT_KEY
        unit.metadata[key] = qa
        return [unit]
