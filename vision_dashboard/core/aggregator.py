from collections import deque
from dataclasses import dataclass

from vision_dashboard.core.postprocess import count_by_label
from vision_dashboard.core.types import DetectionResult


@dataclass(frozen=True)
class VideoCounters:
    total_frames: int = 0
    processed_frames: int = 0
    detected_objects: int = 0


@dataclass(frozen=True)
class ResultSummary:
    count: int
    average_confidence: float | None
    by_label: dict[str, int]


class ResultAggregator:
    """Holds the results of the current input.

    With a ``capacity`` the aggregator is a newest-first ring buffer fed one
    result at a time; without one it holds the single batch a job delivers.
    """

    def __init__(self, capacity: int | None = None) -> None:
        if capacity is not None and capacity <= 0:
            raise ValueError('capacity must be positive')
        self._capacity = capacity
        self._results: deque[DetectionResult] = deque(maxlen=capacity)
        self._counters = VideoCounters()

    @property
    def capacity(self) -> int | None:
        return self._capacity

    @property
    def results(self) -> tuple[DetectionResult, ...]:
        return tuple(self._results)

    @property
    def counters(self) -> VideoCounters:
        return self._counters

    def __len__(self) -> int:
        return len(self._results)

    def replace(self, batch: list[DetectionResult]) -> None:
        fresh: deque[DetectionResult] = deque(batch, maxlen=self._capacity)
        self._results = fresh

    def push(self, result: DetectionResult) -> None:
        # deque(maxlen) drops from the right when appending on the left.
        self._results.appendleft(result)

    def update_counters(self, processed: int, total: int | None, detected: int) -> VideoCounters:
        current = self._counters
        total_frames = max(current.total_frames, int(total or 0))
        processed_frames = min(max(current.processed_frames, int(processed)), total_frames)
        self._counters = VideoCounters(
            total_frames=total_frames,
            processed_frames=processed_frames,
            detected_objects=max(current.detected_objects, int(detected)),
        )
        return self._counters

    def clear(self) -> None:
        self._results = deque(maxlen=self._capacity)
        self._counters = VideoCounters()

    def summary(self) -> ResultSummary:
        results = self._results
        if not results:
            return ResultSummary(count=0, average_confidence=None, by_label={})
        average = sum(r.confidence for r in results) / len(results)
        return ResultSummary(count=len(results), average_confidence=round(average, 4), by_label=count_by_label(results))
