from __future__ import annotations

import time
from typing import Callable


class ProgressState:
    """Run counters owned by the orchestrator.

    ``current_index`` is the number of finished items, so
    ``success + failed == current_index`` always holds. The ETA is the
    average duration of finished items times the number of items left.
    """

    def __init__(self, total: int, clock: Callable[[], float] = time.monotonic) -> None:
        self._total = max(total, 0)
        self._success = 0
        self._failed = 0
        self._clock = clock
        self._started_at: float | None = None

    @property
    def total(self) -> int:
        return self._total

    @property
    def success(self) -> int:
        return self._success

    @property
    def failed(self) -> int:
        return self._failed

    @property
    def current_index(self) -> int:
        return self._success + self._failed

    @property
    def remaining(self) -> int:
        return max(self._total - self.current_index, 0)

    def start(self) -> None:
        self._started_at = self._clock()

    def elapsed(self) -> float:
        if self._started_at is None:
            return 0.0
        return max(self._clock() - self._started_at, 0.0)

    def record_success(self) -> None:
        self._check_capacity()
        self._success += 1

    def record_failure(self) -> None:
        self._check_capacity()
        self._failed += 1

    def percent(self, position: int | None = None) -> int:
        if self._total == 0:
            return 100
        position = self.current_index if position is None else position
        return position * 100 // self._total

    def eta_seconds(self) -> float | None:
        done = self.current_index
        if done == 0:
            return None
        return self.elapsed() / done * self.remaining

    def status_line(self) -> str:
        # 展示的是即将开始处理的第几个
        position = min(self.current_index + 1, self._total)
        return (
            f"[{position}/{self._total} - {self.percent(position)}%] "
            f"ETA: {format_eta(self.eta_seconds())}"
        )

    def _check_capacity(self) -> None:
        if self.current_index >= self._total:
            raise ValueError("已处理数量超过总数")


def format_eta(seconds: float | None) -> str:
    if seconds is None:
        return "计算中..."
    total_seconds = int(seconds)
    hours = total_seconds // 3600
    minutes = (total_seconds % 3600) // 60
    return f"{hours}h {minutes}m"


def format_size(num_bytes: int) -> str:
    if num_bytes < 1024:
        return f"{num_bytes}B"
    value = float(num_bytes)
    for unit in ("K", "M", "G", "T", "P"):
        value /= 1024
        if value < 1024 or unit == "P":
            break
    if value < 10:
        return f"{value:.1f}{unit}"
    return f"{value:.0f}{unit}"


def size_reduction_percent(original_size: int, new_size: int) -> float | None:
    if original_size <= 0:
        return None
    return round((1 - new_size / original_size) * 100, 1)


def format_reduction(original_size: int, new_size: int) -> str:
    reduction = size_reduction_percent(original_size, new_size)
    if reduction is None:
        return "N/A"
    return f"{reduction:.1f}%"
