"""Block recorder: a flat, strictly sequential timeline of named phases.

Design by Contract:
- At most one block is open at any time; opening a block closes the open one
- Blocks are append-only; closing replaces the block at its own index
- Each boundary takes one sensor reading, shared by the block it closes and
  the block it opens, so consecutive blocks abut exactly
- Sensor peak memory MUST NOT decrease (crash if it does)

Lifecycle errors (AlreadyStartedError, NotStartedError, NoOpenBlockError)
are raised to the caller; start_block() auto-starts instead of raising.
"""

import sys
from collections.abc import Callable, Generator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

from beartype import beartype
from loguru import logger

from blkarbs_block_profiler._block import (
    BOOTSTRAP_BLOCK_NAME,
    END_BLOCK_NAME,
    START_BLOCK_NAME,
    Block,
    BlockKind,
    Reading,
)
from blkarbs_block_profiler._errors import (
    AlreadyStartedError,
    NoOpenBlockError,
    NotStartedError,
)
from blkarbs_block_profiler._report import (
    DEFAULT_SETTINGS,
    ReportSettings,
    log_report,
    render,
)
from blkarbs_block_profiler._sensors import PsutilSensor, Sensor

AUTO_START_TITLE = "Auto start"


@dataclass(frozen=True)
class BootstrapMark:
    """Time and memory captured before the recorder existed."""

    time: float
    memory: int
    modules: int


class BootstrapHandoff:
    """One-shot handoff of a BootstrapMark to the next Recorder.

    Single writer, single consumer: mark() once early in the process, the
    first Recorder built with this handoff consumes it. A second mark() before
    consumption overwrites the pending one. Constructing two recorders
    concurrently on one handoff is undefined.
    """

    def __init__(self) -> None:
        self._pending: BootstrapMark | None = None

    @property
    def pending(self) -> BootstrapMark | None:
        return self._pending

    @beartype
    def mark(self, sensor: Sensor) -> BootstrapMark:
        if self._pending is not None:
            logger.debug("Overwriting pending bootstrap mark")
        self._pending = BootstrapMark(
            time=sensor.now(),
            memory=sensor.current_memory(),
            modules=len(sys.modules),
        )
        return self._pending

    def consume(self) -> BootstrapMark | None:
        mark, self._pending = self._pending, None
        return mark


default_handoff = BootstrapHandoff()


@beartype
def mark_bootstrap_start(
    sensor: Sensor | None = None,
    handoff: BootstrapHandoff | None = None,
) -> BootstrapMark:
    """Record 'now' so the next Recorder opens with a bootstrap block.

    Call this as early as possible (e.g. first line of the entry point) to
    measure the time spent before instrumentation exists.

    Args:
        sensor: Sensor to read; must share a clock with the Recorder's sensor
        handoff: Handoff to store the mark in (default: module-level handoff)
    """
    sensor = sensor if sensor is not None else PsutilSensor()
    handoff = handoff if handoff is not None else default_handoff
    return handoff.mark(sensor)


@dataclass(frozen=True)
class RecorderSnapshot:
    """Immutable copy of a recorder's state, as handed to the report."""

    title: str | None
    metadata: dict[str, str] = field(default_factory=dict)
    blocks: tuple[Block, ...] = ()

    def as_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "metadata": dict(self.metadata),
            "blocks": [
                {
                    "number": block.number,
                    "name": block.name,
                    "kind": block.kind.value,
                    "is_external": block.is_external,
                    "start_time": block.start_time,
                    "end_time": block.end_time,
                    "start_memory": block.start_memory,
                    "end_memory": block.end_memory,
                    "peak_memory": block.peak_memory,
                    "modules_loaded": block.modules_loaded,
                }
                for block in self.blocks
            ],
        }


class Recorder:
    """Records a sequence of blocks for one run.

    Not thread-safe: use one Recorder per run (and per thread).

    Example:
        recorder = Recorder()
        recorder.start("GET /orders")
        recorder.start_block("parse")
        parse()
        recorder.start_external_block("db query")
        query()
        recorder.start_block("render")
        render()
        recorder.log_report()
    """

    @beartype
    def __init__(
        self,
        sensor: Sensor | None = None,
        handoff: BootstrapHandoff | None = None,
    ) -> None:
        self._sensor: Sensor = sensor if sensor is not None else PsutilSensor()
        self._blocks: list[Block] = []
        self._metadata: dict[str, str] = {}
        self._is_started = False
        self._title: str | None = None
        self._last_peak = 0

        mark = (handoff if handoff is not None else default_handoff).consume()
        if mark is not None:
            logger.debug(f"Opening bootstrap block from mark at t={mark.time:.6f}")
            self._blocks.append(
                Block(
                    number=0,
                    name=BOOTSTRAP_BLOCK_NAME,
                    kind=BlockKind.BOOTSTRAP,
                    is_external=False,
                    start_time=mark.time,
                    start_memory=mark.memory,
                    start_modules=mark.modules,
                )
            )

    @property
    def is_started(self) -> bool:
        return self._is_started

    @property
    def title(self) -> str | None:
        return self._title

    @property
    def metadata(self) -> dict[str, str]:
        return dict(self._metadata)

    @property
    def blocks(self) -> tuple[Block, ...]:
        return tuple(self._blocks)

    @property
    def open_block(self) -> Block | None:
        """The block currently open, if any. Only the last block can be open."""
        if self._blocks and not self._blocks[-1].is_closed:
            return self._blocks[-1]
        return None

    def _read(self) -> Reading:
        reading = Reading(
            time=self._sensor.now(),
            memory=self._sensor.current_memory(),
            peak_memory=self._sensor.peak_memory(),
            modules=len(sys.modules),
        )
        assert reading.peak_memory >= self._last_peak, (
            f"Peak memory went backwards: {reading.peak_memory} < {self._last_peak}. "
            f"Sensor peak must be a process-wide running maximum."
        )
        self._last_peak = reading.peak_memory
        return reading

    def _close_open(self, reading: Reading) -> None:
        if self._blocks:
            self._blocks[-1] = self._blocks[-1].closed(reading)

    def _open(self, name: str, kind: BlockKind, is_external: bool, reading: Reading) -> int:
        self._close_open(reading)
        number = len(self._blocks)
        self._blocks.append(
            Block(
                number=number,
                name=name,
                kind=kind,
                is_external=is_external,
                start_time=reading.time,
                start_memory=reading.memory,
                start_modules=reading.modules,
            )
        )
        return number

    @beartype
    def set_metadata_value(self, key: str, value: str) -> None:
        """Set a 'key: value' annotation printed above the report table."""
        self._metadata[key] = value

    @beartype
    def start(self, title: str | None = None) -> None:
        """Start recording.

        Raises:
            AlreadyStartedError: If the recorder was already started
        """
        if self._is_started:
            raise AlreadyStartedError("Recorder has already started")

        self._title = title
        self._open(START_BLOCK_NAME, BlockKind.START, False, self._read())
        self._is_started = True
        logger.debug(f"Profiler started: {title or '<untitled>'}")

    def _ensure_started(self) -> None:
        if not self._is_started:
            logger.debug("start_block() before start(): auto-starting")
            self.start(AUTO_START_TITLE)

    @beartype
    def start_block(self, name: str) -> int:
        """Close the open block and open a new one. Auto-starts if needed.

        Returns:
            Sequence number of the new block.
        """
        self._ensure_started()
        return self._open(name, BlockKind.BLOCK, False, self._read())

    @beartype
    def start_external_block(self, name: str) -> int:
        """Like start_block(), for time spent waiting on an external system (DB, HTTP, ...)."""
        self._ensure_started()
        return self._open(name, BlockKind.BLOCK, True, self._read())

    def end_block(self) -> None:
        """Close the open block.

        Raises:
            NotStartedError: If the recorder was never started
            NoOpenBlockError: If no block is open (e.g. end_block() twice)
        """
        if not self._is_started:
            raise NotStartedError("Recorder has not started yet")

        if self.open_block is None:
            raise NoOpenBlockError("Block cannot be ended: no block was started")

        self._close_open(self._read())

    def _snapshot(self) -> RecorderSnapshot:
        return RecorderSnapshot(
            title=self._title,
            metadata=dict(self._metadata),
            blocks=tuple(self._blocks),
        )

    def finalize(self) -> RecorderSnapshot:
        """Close the open block and append a closed END sentinel.

        Safe to call repeatedly: a recorder already ending in a closed END
        sentinel is returned as-is.
        """
        if self._blocks and self._blocks[-1].kind is BlockKind.END and self._blocks[-1].is_closed:
            return self._snapshot()

        reading = self._read()
        open_block = self.open_block
        if open_block is not None:
            logger.debug(f"Finalize closes open block #{open_block.number} '{open_block.name}'")

        self._open(END_BLOCK_NAME, BlockKind.END, False, reading)
        self._close_open(reading)
        return self._snapshot()

    @beartype
    def report(self, settings: ReportSettings | None = None) -> str:
        """Finalize and render the report text."""
        snapshot = self.finalize()
        return render(
            snapshot.blocks, snapshot.metadata, snapshot.title, settings or DEFAULT_SETTINGS
        )

    @beartype
    def log_report(
        self,
        sink: Callable[[str], object] | None = None,
        settings: ReportSettings | None = None,
    ) -> None:
        """Finalize and send the report to sink line by line (default: logger.info)."""
        snapshot = self.finalize()
        log_report(
            snapshot.blocks,
            snapshot.metadata,
            sink,
            snapshot.title,
            settings or DEFAULT_SETTINGS,
        )


@contextmanager
@beartype
def profile_block(
    name: str,
    recorder: Recorder | None,
    external: bool = False,
) -> Generator[int | None, None, None]:
    """Context manager wrapping a block around the body.

    When recorder is None the body still runs but nothing is recorded, so call
    sites need no ``if recorder:`` branching. On exit the block is ended only
    if it is still the open one (a block started inside the body already
    closed it).

    Yields:
        Sequence number of the block, or None without a recorder
    """
    if recorder is None:
        yield None
        return

    number = recorder.start_external_block(name) if external else recorder.start_block(name)
    try:
        yield number
    finally:
        open_block = recorder.open_block
        if open_block is not None and open_block.number == number:
            recorder.end_block()
