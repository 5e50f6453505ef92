"""Clock and memory sensors consumed by the recorder.

The recorder never touches the clock or the OS directly; it asks a Sensor.
PsutilSensor is the production implementation, tests substitute their own.

Design by Contract:
- now() is monotonic
- peak_memory() never decreases for the lifetime of the sensor
"""

import sys
import time
from typing import Protocol, runtime_checkable

import psutil

if sys.platform != "win32":
    import resource


@runtime_checkable
class Sensor(Protocol):
    """Source of time and memory readings (bytes)."""

    def now(self) -> float: ...

    def current_memory(self) -> int: ...

    def peak_memory(self) -> int: ...


def _os_peak_rss() -> int:
    """Process high-water mark as reported by the OS, 0 if unavailable."""
    if sys.platform == "win32":
        return 0
    max_rss = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    # Linux reports kilobytes, macOS bytes
    if sys.platform == "darwin":
        return max_rss
    return max_rss * 1024


class PsutilSensor:
    """Sensor backed by time.perf_counter() and psutil.

    Peak memory is the largest of: current RSS, the OS high-water mark
    (ru_maxrss on POSIX, peak_wset on Windows) and every value returned
    before. It is process-wide and cannot be reset per block.
    """

    def __init__(self) -> None:
        self._process = psutil.Process()
        self._high_water: int = 0

    def now(self) -> float:
        return time.perf_counter()

    def current_memory(self) -> int:
        return self._process.memory_info().rss

    def peak_memory(self) -> int:
        info = self._process.memory_info()
        peak = max(info.rss, getattr(info, "peak_wset", 0), _os_peak_rss())
        self._high_water = max(self._high_water, peak)
        return self._high_water
