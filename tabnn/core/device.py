"""Execution context shared by every tensor primitive."""

from __future__ import annotations

import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Sequence, TypeVar

T = TypeVar("T")

# Row blocks smaller than this are not worth a task submission.
MINIMUM_BLOCK_ROWS = 128


class DeviceMode(Enum):
    SINGLE_THREADED = "SingleThreaded"
    THREAD_POOL = "ThreadPool"


@dataclass
class Device:
    """Process-level worker pool passed explicitly to tensor operations.

    numpy releases the GIL inside its kernels, so splitting large row blocks
    across threads gives real parallelism for matrix products and maps.
    Block boundaries depend only on the row count and ``threads``; results are
    therefore reproducible for a fixed thread count.
    """

    mode: DeviceMode = DeviceMode.SINGLE_THREADED
    threads: int | None = None
    _executor: ThreadPoolExecutor | None = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.mode is DeviceMode.SINGLE_THREADED:
            self.threads = 1
        elif self.threads is None:
            self.threads = os.cpu_count() or 1
        if self.threads < 1:
            raise ValueError("Device requires at least one thread")

    @classmethod
    def single_threaded(cls) -> "Device":
        return cls(DeviceMode.SINGLE_THREADED)

    @classmethod
    def thread_pool(cls, threads: int | None = None) -> "Device":
        return cls(DeviceMode.THREAD_POOL, threads)

    @property
    def parallel(self) -> bool:
        return self.mode is DeviceMode.THREAD_POOL and (self.threads or 1) > 1

    def blocks(self, rows: int) -> List[slice]:
        """Split ``rows`` into at most ``threads`` contiguous blocks."""

        if rows <= 0:
            return [slice(0, 0)]
        count = 1
        if self.parallel:
            count = max(1, min(int(self.threads), rows // MINIMUM_BLOCK_ROWS))
        bounds = [rows * idx // count for idx in range(count + 1)]
        return [slice(bounds[idx], bounds[idx + 1]) for idx in range(count)]

    def map(self, fn: Callable[[T], object], items: Sequence[T]) -> list:
        """Apply ``fn`` to ``items`` preserving order."""

        if not self.parallel or len(items) <= 1:
            return [fn(item) for item in items]
        return list(self._pool().map(fn, items))

    def _pool(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=int(self.threads), thread_name_prefix="tabnn"
            )
        return self._executor

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def __enter__(self) -> "Device":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def __deepcopy__(self, memo) -> "Device":
        # Snapshots of networks share the process-level device.
        return self


__all__ = ["Device", "DeviceMode", "MINIMUM_BLOCK_ROWS"]
