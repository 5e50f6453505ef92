"""Turns recorded blocks into a performance report.

Design by Contract:
- Pure: nothing here reads a sensor, mutates a block or performs I/O
  (log_report hands lines to a caller-supplied sink)
- Rows keep block order (sequence number), never resorted by cost
- Zero totals yield 0%, never a ZeroDivisionError
"""

import math
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum

from beartype import beartype
from loguru import logger

from blkarbs_block_profiler._block import Block

BYTES_PER_MB = 1024 * 1024

COLOR_END = "\033[0m"


class Color(Enum):
    """Outlier classification, valued by its ANSI foreground escape."""

    RED = "\033[31m"
    BROWN = "\033[33m"
    YELLOW = "\033[93m"


@dataclass(frozen=True)
class ReportSettings:
    """Presentation knobs for a report.

    Args:
        red_threshold: Percentage above which a row is RED
        brown_threshold: Percentage above which a row is BROWN
        yellow_threshold: Percentage above which a row is YELLOW
        name_width: Titles are cut to this many characters (no ellipsis)
        external_prefix: Prepended to external block titles before cutting
        colorize: Wrap flagged cells in ANSI colour escapes
        show_cumulative: Add a "Proc Time Total" column (ms since first block)
        show_imports: Add an "Imports" column (modules imported per block)
    """

    red_threshold: int = 40
    brown_threshold: int = 20
    yellow_threshold: int = 10
    name_width: int = 69
    external_prefix: str = "EXT: "
    colorize: bool = False
    show_cumulative: bool = False
    show_imports: bool = False

    def __post_init__(self) -> None:
        assert self.red_threshold > self.brown_threshold > self.yellow_threshold >= 0, (
            f"Thresholds must satisfy red > brown > yellow >= 0, got "
            f"{self.red_threshold}/{self.brown_threshold}/{self.yellow_threshold}"
        )
        assert self.name_width > 0, f"name_width must be positive: {self.name_width}"


DEFAULT_SETTINGS = ReportSettings()


@dataclass(frozen=True)
class ReportRow:
    number: int
    name: str
    is_external: bool
    duration_ms: int
    time_percentage: int
    memory_delta: int
    memory_percentage: int
    peak_memory: int
    cumulative_ms: int
    modules_loaded: int
    time_color: Color | None
    memory_color: Color | None

    @property
    def name_color(self) -> Color | None:
        """Colour of the larger flagged percentage; time wins ties."""
        if self.time_color is not None and self.memory_color is not None:
            if self.memory_percentage > self.time_percentage:
                return self.memory_color
            return self.time_color
        return self.time_color or self.memory_color


@dataclass(frozen=True)
class Report:
    title: str | None
    metadata: dict[str, str]
    rows: tuple[ReportRow, ...]
    total_time: float
    total_external_time: float
    total_peak_memory: int


def _round_half_away(value: float) -> int:
    return int(math.copysign(math.floor(abs(value) + 0.5), value))


def _percentage(part: float, total: float) -> int:
    if total == 0:
        return 0
    return _round_half_away(part / total * 100)


def _format_mb(num_bytes: int) -> str:
    return f"{num_bytes / BYTES_PER_MB:.2f}MB"


@beartype
def classify_percentage(
    percentage: int, settings: ReportSettings = DEFAULT_SETTINGS
) -> Color | None:
    """Map a share of the total to a colour. Comparisons are strict: 40% is not RED."""
    if percentage > settings.red_threshold:
        return Color.RED
    if percentage > settings.brown_threshold:
        return Color.BROWN
    if percentage > settings.yellow_threshold:
        return Color.YELLOW
    return None


@beartype
def aggregate(
    blocks: Sequence[Block],
    metadata: Mapping[str, str],
    title: str | None = None,
    settings: ReportSettings = DEFAULT_SETTINGS,
) -> Report:
    """Compute report rows and totals from a finalized block sequence.

    Peak memory is a process-wide high-water mark, so a block's memory delta
    uses its peak reading as end memory when that peak rose above the previous
    block's peak. This attributes a transient spike to the block it happened in.

    Args:
        blocks: Blocks in recording order, normally ending with the END sentinel
        metadata: Free-form annotations, copied into the report
        title: Run title shown in the summary line
        settings: Colour thresholds and name formatting

    Returns:
        Report with one row per closed, non-sentinel block.
    """
    if not blocks:
        return Report(title, dict(metadata), (), 0.0, 0.0, 0)

    first, last = blocks[0], blocks[-1]
    run_end = last.end_time if last.end_time is not None else last.start_time
    total_time = run_end - first.start_time
    total_peak_memory = last.peak_memory

    total_external_time = 0.0
    previous_peak = 0
    rows: list[ReportRow] = []
    for block in blocks:
        if block.is_external:
            total_external_time += block.duration

        end_memory = block.end_memory if block.end_memory is not None else block.start_memory
        if block.peak_memory > previous_peak:
            end_memory = block.peak_memory
        previous_peak = block.peak_memory

        if block.is_sentinel or not block.is_closed:
            continue

        memory_delta = end_memory - block.start_memory
        time_percentage = _percentage(block.duration, total_time)
        memory_percentage = _percentage(memory_delta, total_peak_memory)

        name = block.name
        if block.is_external:
            name = settings.external_prefix + name

        rows.append(
            ReportRow(
                number=block.number,
                name=name[: settings.name_width],
                is_external=block.is_external,
                duration_ms=_round_half_away(block.duration * 1000),
                time_percentage=time_percentage,
                memory_delta=memory_delta,
                memory_percentage=memory_percentage,
                peak_memory=block.peak_memory,
                cumulative_ms=_round_half_away((block.end_time - first.start_time) * 1000),
                modules_loaded=block.modules_loaded,
                time_color=classify_percentage(time_percentage, settings),
                memory_color=classify_percentage(memory_percentage, settings),
            )
        )

    # Sort by number (recording order) - never by time or memory
    rows.sort(key=lambda row: row.number)

    return Report(
        title=title,
        metadata=dict(metadata),
        rows=tuple(rows),
        total_time=total_time,
        total_external_time=total_external_time,
        total_peak_memory=total_peak_memory,
    )


def _table_lines(
    headers: list[str],
    right_aligned: list[bool],
    rows: list[list[tuple[str, Color | None]]],
    colorize: bool,
) -> list[str]:
    widths = [len(header) for header in headers]
    for row in rows:
        for i, (text, _) in enumerate(row):
            widths[i] = max(widths[i], len(text))

    border = "+" + "+".join("-" * (width + 2) for width in widths) + "+"

    def line(cells: list[tuple[str, Color | None]]) -> str:
        padded = []
        for (text, color), width, right in zip(cells, widths, right_aligned):
            cell = f"{text:>{width}}" if right else f"{text:<{width}}"
            if colorize and color is not None:
                cell = f"{color.value}{cell}{COLOR_END}"
            padded.append(cell)
        return "| " + " | ".join(padded) + " |"

    lines = [border, line([(header, None) for header in headers]), border]
    lines.extend(line(row) for row in rows)
    lines.append(border)
    return lines


@beartype
def format_report(report: Report, settings: ReportSettings = DEFAULT_SETTINGS) -> str:
    """Render a Report as summary line, '+ key: value' metadata lines and an ASCII table."""
    finished = "Profiling finished" if report.title is None else f"Profiling finished [{report.title}]"
    lines = [
        f"{finished}: {report.total_time:.2f}s total, "
        f"{report.total_external_time:.2f}s external, "
        f"{_format_mb(report.total_peak_memory)} peak"
    ]
    lines.extend(f"+ {key}: {value}" for key, value in report.metadata.items())
    lines.append("")

    headers = ["Nr", "Proc Time", "Memo diff.", "Peak mem"]
    if settings.show_cumulative:
        headers.append("Proc Time Total")
    if settings.show_imports:
        headers.append("Imports")
    headers.append("Title")
    right_aligned = [True] * (len(headers) - 1) + [False]

    table_rows = []
    for row in report.rows:
        cells: list[tuple[str, Color | None]] = [
            (str(row.number), None),
            (f"{row.duration_ms}ms ({row.time_percentage}%)", row.time_color),
            (f"{_format_mb(row.memory_delta)} ({row.memory_percentage}%)", row.memory_color),
            (_format_mb(row.peak_memory), None),
        ]
        if settings.show_cumulative:
            cells.append((f"{row.cumulative_ms}ms", None))
        if settings.show_imports:
            cells.append((str(row.modules_loaded), None))
        cells.append((row.name, row.name_color))
        table_rows.append(cells)

    lines.extend(_table_lines(headers, right_aligned, table_rows, settings.colorize))
    return "\n".join(lines)


@beartype
def render(
    blocks: Sequence[Block],
    metadata: Mapping[str, str],
    title: str | None = None,
    settings: ReportSettings = DEFAULT_SETTINGS,
) -> str:
    """Aggregate and format in one step."""
    return format_report(aggregate(blocks, metadata, title, settings), settings)


@beartype
def log_report(
    blocks: Sequence[Block],
    metadata: Mapping[str, str],
    sink: Callable[[str], object] | None = None,
    title: str | None = None,
    settings: ReportSettings = DEFAULT_SETTINGS,
) -> None:
    """Send the rendered report to sink one line at a time, blank lines included.

    Args:
        blocks: Finalized block sequence
        metadata: Annotations printed above the table
        sink: Called once per line; defaults to loguru's logger.info
        title: Run title shown in the summary line
        settings: Report settings
    """
    if sink is None:
        sink = logger.info

    for line in render(blocks, metadata, title, settings).split("\n"):
        sink(line)
