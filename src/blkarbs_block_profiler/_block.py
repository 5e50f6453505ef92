"""Block record shared by the recorder and the report."""

from dataclasses import dataclass, replace
from enum import Enum
from typing import NamedTuple

BOOTSTRAP_BLOCK_NAME = "Bootstrap / Routing"
START_BLOCK_NAME = "start"
END_BLOCK_NAME = "::END::"


class BlockKind(Enum):
    BOOTSTRAP = "bootstrap"
    START = "start"
    BLOCK = "block"
    END = "end"


class Reading(NamedTuple):
    """One sample of every sensor, taken at a block boundary."""

    time: float
    memory: int
    peak_memory: int
    modules: int


@dataclass(frozen=True)
class Block:
    """One measured phase of a run.

    Blocks are immutable; closing produces a new Block that the recorder
    stores at the same index. end_time is None while the block is open.

    Attributes:
        number: Sequence number, equal to the block's index in the recorder
        name: Display label
        kind: Bootstrap, start/end sentinel or a regular block
        is_external: True when the block is time spent waiting on an
            external system
        start_time / end_time: Sensor timestamps in seconds
        start_memory / end_memory: Resident memory in bytes
        start_modules / end_modules: Size of sys.modules at each boundary
        peak_memory: Process-wide peak reading taken when the block closed
    """

    number: int
    name: str
    kind: BlockKind
    is_external: bool
    start_time: float
    start_memory: int
    start_modules: int
    end_time: float | None = None
    end_memory: int | None = None
    end_modules: int | None = None
    peak_memory: int = 0

    @property
    def is_closed(self) -> bool:
        return self.end_time is not None

    @property
    def is_sentinel(self) -> bool:
        return self.kind in (BlockKind.START, BlockKind.END)

    @property
    def duration(self) -> float:
        if self.end_time is None:
            return 0.0
        return self.end_time - self.start_time

    @property
    def modules_loaded(self) -> int:
        if self.end_modules is None:
            return 0
        return max(self.end_modules - self.start_modules, 0)

    def closed(self, reading: Reading) -> "Block":
        """Return a closed copy of this block. Closing twice is a no-op."""
        if self.is_closed:
            return self

        elapsed = reading.time - self.start_time
        assert elapsed >= 0, (
            f"Block '{self.name}' would end before it started ({elapsed:.6f}s). "
            f"Sensor clock went backwards."
        )

        return replace(
            self,
            end_time=reading.time,
            end_memory=reading.memory,
            end_modules=reading.modules,
            peak_memory=reading.peak_memory,
        )
