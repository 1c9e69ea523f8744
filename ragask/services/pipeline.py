"""
Stage abstractions and the engine that runs an indexing pipeline.

A pipeline is a Source, an ordered tuple of stages and a Sink. Stages are
either per-unit Transforms (run by a bounded worker pool) or BatchTransforms
(buffered until a batch fills or the stream ends). Stages are connected by
bounded queues, so units stream through without the whole corpus being held
in memory.

Unit-scoped failures (any ``UnitError``) drop the unit and the run continues.
Anything else raised by a stage aborts the run: remaining tasks are cancelled
and the caller receives ``PipelineRunError`` carrying the partial report.
Batches stored before the failure, and their fingerprint commits, stay in place.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Set, Tuple, Union

from ragask.errors import PipelineRunError, RagAskError, UnitError
from ragask.models.report import RunReport
from ragask.models.unit import Unit

logger = logging.getLogger(__name__)

_DONE = object()


class Source(ABC):
    """Produces the units a pipeline starts from."""

    name = "source"

    @abstractmethod
    def units(self) -> Iterator[Unit]:
        """Return a fresh, lazy iterator over units.

        Raising here aborts the run; units carrying ``error`` are counted as
        errored and dropped.
        """


class Transform(ABC):
    """Maps one unit to zero or more units."""

    name = "transform"
    concurrency: Optional[int] = None

    @abstractmethod
    async def transform(self, unit: Unit) -> List[Unit]:
        """Process ``unit``. Returned units with ``error`` set are dropped."""

    async def on_persisted(self, origin: Unit) -> None:
        """Called once every chunk derived from ``origin`` has been stored."""


class Filter(Transform):
    """A transform that either passes a unit through or drops it as skipped."""

    name = "filter"

    @abstractmethod
    async def keep(self, unit: Unit) -> bool:
        """Whether ``unit`` continues down the pipeline."""

    async def transform(self, unit: Unit) -> List[Unit]:
        if await self.keep(unit):
            return [unit]
        return []


class BatchTransform(ABC):
    """Processes units in fixed-size batches."""

    name = "batch"
    batch_size: int = 1

    @abstractmethod
    async def transform_batch(self, units: List[Unit]) -> List[Unit]:
        """Process a batch; any exception is fatal for the run."""


class Sink(ABC):
    """Persists batches of units."""

    name = "sink"
    batch_size: int = 1

    async def setup(self) -> None:
        """Prepare the destination before any unit is written."""

    @abstractmethod
    async def store(self, units: List[Unit]) -> None:
        """Persist a batch; any exception is fatal for the run."""


Stage = Union[Transform, BatchTransform]


@dataclass(frozen=True)
class Pipeline:
    """An immutable description of an indexing pipeline."""
    name: str
    source: Source
    stages: Tuple[Stage, ...]
    sink: Sink
    concurrency: int = 4

    async def run(self) -> RunReport:
        return await run_pipeline(self)


class _CommitLedger:
    """
    Tracks outstanding descendants of every loaded unit.

    When the last descendant of an origin is stored, each transform's
    ``on_persisted`` hook fires for that origin (the cache filter commits its
    fingerprint there). Origins with any failed descendant, and origins dropped
    by a filter, never reach the hook.
    """

    def __init__(self, stages: Tuple[Stage, ...], report: RunReport) -> None:
        self._transforms = [s for s in stages if isinstance(s, Transform)]
        self._report = report
        self._origins: Dict[str, Unit] = {}
        self._pending: Dict[str, int] = {}
        self._failed: Set[str] = set()

    def register(self, unit: Unit) -> None:
        self._origins[unit.origin_id] = unit
        self._pending[unit.origin_id] = 1

    async def skip(self, unit: Unit) -> None:
        if unit.unit_id == unit.origin_id:
            self._forget(unit.origin_id)
        else:
            await self.replace(unit, 0)

    async def replace(self, unit: Unit, produced: int, failed: bool = False) -> None:
        origin_id = unit.origin_id
        if origin_id not in self._pending:
            return
        if failed:
            self._failed.add(origin_id)
        self._pending[origin_id] += produced - 1
        if self._pending[origin_id] == 0:
            await self._settle(origin_id)

    async def persisted(self, unit: Unit) -> None:
        await self.replace(unit, 0)

    async def _settle(self, origin_id: str) -> None:
        origin = self._origins[origin_id]
        failed = origin_id in self._failed
        self._forget(origin_id)
        if failed:
            logger.info(f"Not committing {origin.path}: some of its chunks failed")
            return
        for stage in self._transforms:
            await stage.on_persisted(origin)
        self._report.committed += 1

    def _forget(self, origin_id: str) -> None:
        self._origins.pop(origin_id, None)
        self._pending.pop(origin_id, None)
        self._failed.discard(origin_id)


def _record_unit_error(report: RunReport, stage_name: str, unit: Unit, error: Exception) -> None:
    unit.error = error
    report.errored += 1
    report.errors.append(f"{stage_name}: {unit.path}: {error}")
    logger.warning(f"Dropping unit {unit.unit_id} from {unit.path} at {stage_name}: {error}")


async def _supervise(tasks: List["asyncio.Task"]) -> None:
    """Wait for all tasks; on the first failure cancel the rest and re-raise."""
    try:
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        for task in done:
            if not task.cancelled() and task.exception() is not None:
                raise task.exception()
    finally:
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


async def _feed(source: Source, outbox: asyncio.Queue, ledger: _CommitLedger, report: RunReport) -> None:
    iterator = await asyncio.to_thread(source.units)
    while True:
        unit = await asyncio.to_thread(next, iterator, _DONE)
        if unit is _DONE:
            break
        report.loaded += 1
        if unit.error is not None:
            _record_unit_error(report, source.name, unit, unit.error)
            continue
        ledger.register(unit)
        await outbox.put(unit)
    await outbox.put(_DONE)


async def _transform_worker(
    stage: Transform,
    inbox: asyncio.Queue,
    outbox: asyncio.Queue,
    ledger: _CommitLedger,
    report: RunReport,
) -> None:
    while True:
        unit = await inbox.get()
        if unit is _DONE:
            # Leave the marker for sibling workers
            await inbox.put(_DONE)
            return

        try:
            outputs = await stage.transform(unit)
        except UnitError as exc:
            _record_unit_error(report, stage.name, unit, exc)
            await ledger.replace(unit, 0, failed=True)
            continue

        if not outputs and isinstance(stage, Filter):
            report.skipped += 1
            await ledger.skip(unit)
            continue

        passed = []
        for output in outputs:
            if output.error is not None:
                _record_unit_error(report, stage.name, output, output.error)
            else:
                passed.append(output)

        await ledger.replace(unit, len(passed), failed=len(passed) < len(outputs))
        for output in passed:
            await outbox.put(output)


async def _run_transform(
    stage: Transform,
    inbox: asyncio.Queue,
    outbox: asyncio.Queue,
    ledger: _CommitLedger,
    report: RunReport,
    concurrency: int,
) -> None:
    workers = [
        asyncio.create_task(_transform_worker(stage, inbox, outbox, ledger, report))
        for _ in range(max(1, concurrency))
    ]
    await _supervise(workers)
    await outbox.put(_DONE)


async def _drain_batches(inbox: asyncio.Queue, batch_size: int):
    """Yield lists of at most ``batch_size`` units until the stream ends."""
    buffer: List[Unit] = []
    while True:
        unit = await inbox.get()
        if unit is _DONE:
            break
        buffer.append(unit)
        if len(buffer) >= batch_size:
            yield buffer
            buffer = []
    if buffer:
        yield buffer


async def _run_batch_transform(
    stage: BatchTransform,
    inbox: asyncio.Queue,
    outbox: asyncio.Queue,
) -> None:
    async for batch in _drain_batches(inbox, stage.batch_size):
        outputs = await stage.transform_batch(batch)
        for output in outputs:
            await outbox.put(output)
    await outbox.put(_DONE)


async def _run_sink(sink: Sink, inbox: asyncio.Queue, ledger: _CommitLedger, report: RunReport) -> None:
    async for batch in _drain_batches(inbox, sink.batch_size):
        await sink.store(batch)
        report.stored += len(batch)
        for unit in batch:
            await ledger.persisted(unit)


async def run_pipeline(pipeline: Pipeline) -> RunReport:
    """
    Run ``pipeline`` to completion.

    Returns:
        RunReport with loaded, skipped, errored, stored and committed counts

    Raises:
        PipelineRunError: If a fatal error aborts the run
    """
    report = RunReport(pipeline=pipeline.name)
    ledger = _CommitLedger(pipeline.stages, report)
    logger.info(f"Starting pipeline {pipeline.name} with {len(pipeline.stages)} stages")

    queues = [
        asyncio.Queue(maxsize=max(1, pipeline.concurrency) * 2)
        for _ in range(len(pipeline.stages) + 1)
    ]

    try:
        await pipeline.sink.setup()

        tasks = [asyncio.create_task(_feed(pipeline.source, queues[0], ledger, report))]
        for index, stage in enumerate(pipeline.stages):
            inbox, outbox = queues[index], queues[index + 1]
            if isinstance(stage, BatchTransform):
                coro = _run_batch_transform(stage, inbox, outbox)
            else:
                coro = _run_transform(
                    stage, inbox, outbox, ledger, report,
                    stage.concurrency or pipeline.concurrency,
                )
            tasks.append(asyncio.create_task(coro))
        tasks.append(asyncio.create_task(_run_sink(pipeline.sink, queues[-1], ledger, report)))

        await _supervise(tasks)
    except RagAskError as exc:
        logger.error(
            f"Pipeline {pipeline.name} aborted: {exc}",
            extra={"loaded": report.loaded, "stored": report.stored, "errored": report.errored},
        )
        raise PipelineRunError(exc, report) from exc

    logger.info(
        f"Pipeline {pipeline.name} finished: loaded={report.loaded}, skipped={report.skipped}, "
        f"errored={report.errored}, stored={report.stored}, committed={report.committed}"
    )
    return report
