from collections import defaultdict
from datetime import datetime, timezone

from vision_dashboard.core.types import DetectionResult, Modality, SessionState

WEEKDAYS = ('mon', 'tue', 'wed', 'thu', 'fri', 'sat', 'sun')


class StatisticsTracker:
    """Aggregate detection statistics across all sessions, kept in memory."""

    def __init__(self) -> None:
        self._total = 0
        self._confidence_sum = 0.0
        self._by_label: dict[str, int] = defaultdict(int)
        self._by_hour = [0] * 24
        self._by_weekday = [0] * 7
        self._model_detections: dict[str, int] = defaultdict(int)
        self._model_confidence: dict[str, float] = defaultdict(float)
        self._model_runs: dict[str, int] = defaultdict(int)
        self._outcomes: dict[str, dict[str, int]] = {m.value: defaultdict(int) for m in Modality}

    def record_results(self, model_id: str, results: list[DetectionResult], at: datetime | None = None) -> None:
        if not results:
            return
        when = at or datetime.now(timezone.utc)
        for result in results:
            self._total += 1
            self._confidence_sum += result.confidence
            self._by_label[result.label] += 1
            self._model_detections[model_id] += 1
            self._model_confidence[model_id] += result.confidence
        self._by_hour[when.hour] += len(results)
        self._by_weekday[when.weekday()] += len(results)

    def record_run(self, modality: Modality, model_id: str, outcome: SessionState) -> None:
        self._model_runs[model_id] += 1
        self._outcomes[modality.value][outcome.value] += 1

    def snapshot(self) -> dict:
        by_model = {}
        for model_id in sorted(set(self._model_detections) | set(self._model_runs)):
            detections = self._model_detections.get(model_id, 0)
            by_model[model_id] = {
                'detections': detections,
                'runs': self._model_runs.get(model_id, 0),
                'average_confidence': round(self._model_confidence[model_id] / detections, 4) if detections else None,
            }
        return {
            'total_detections': self._total,
            'average_confidence': round(self._confidence_sum / self._total, 4) if self._total else None,
            'by_label': dict(sorted(self._by_label.items(), key=lambda row: row[1], reverse=True)),
            'by_model': by_model,
            'by_hour': {f'{hour:02d}:00': count for hour, count in enumerate(self._by_hour)},
            'by_weekday': dict(zip(WEEKDAYS, self._by_weekday)),
            'runs': {modality: dict(outcomes) for modality, outcomes in self._outcomes.items()},
        }
