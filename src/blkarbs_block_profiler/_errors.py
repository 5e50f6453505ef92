"""Exceptions raised by the recorder.

Only misuse of the block lifecycle is signalled. Everything else (auto-start,
double close, zero totals in the report) degrades gracefully.
"""


class ProfilerError(RuntimeError):
    """Base class for recorder lifecycle errors."""


class AlreadyStartedError(ProfilerError):
    """start() called on a recorder that is already started."""


class NotStartedError(ProfilerError):
    """end_block() called before the recorder was started."""


class NoOpenBlockError(ProfilerError):
    """end_block() called while no block is open."""
