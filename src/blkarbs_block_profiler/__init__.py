"""blkarbs-block-profiler: phase timing and memory report for a single run.

Provides:
- Recorder: Marks sequential named blocks, snapshotting time and memory at each boundary
- mark_bootstrap_start: Captures 'now' before the Recorder exists (bootstrap block)
- profile_block: Context manager wrapping a block around a code section
- render / log_report: Tabular report with per-block time/memory share and outlier colours

Usage:
    from blkarbs_block_profiler import Recorder, mark_bootstrap_start

    mark_bootstrap_start()
    ...
    recorder = Recorder()
    recorder.start("nightly import")
    recorder.start_block("load")
    rows = load()
    recorder.start_external_block("upload")
    upload(rows)
    recorder.set_metadata_value("rows", str(len(rows)))
    recorder.log_report()
"""

from blkarbs_block_profiler._block import Block, BlockKind
from blkarbs_block_profiler._errors import (
    AlreadyStartedError,
    NoOpenBlockError,
    NotStartedError,
    ProfilerError,
)
from blkarbs_block_profiler._recorder import (
    BootstrapHandoff,
    BootstrapMark,
    Recorder,
    RecorderSnapshot,
    default_handoff,
    mark_bootstrap_start,
    profile_block,
)
from blkarbs_block_profiler._report import (
    Color,
    Report,
    ReportRow,
    ReportSettings,
    aggregate,
    classify_percentage,
    format_report,
    log_report,
    render,
)
from blkarbs_block_profiler._sensors import PsutilSensor, Sensor

__all__ = [
    "AlreadyStartedError",
    "Block",
    "BlockKind",
    "BootstrapHandoff",
    "BootstrapMark",
    "Color",
    "NoOpenBlockError",
    "NotStartedError",
    "ProfilerError",
    "PsutilSensor",
    "Recorder",
    "RecorderSnapshot",
    "Report",
    "ReportRow",
    "ReportSettings",
    "Sensor",
    "aggregate",
    "classify_percentage",
    "default_handoff",
    "format_report",
    "log_report",
    "mark_bootstrap_start",
    "profile_block",
    "render",
]

__version__ = "0.1.0"
