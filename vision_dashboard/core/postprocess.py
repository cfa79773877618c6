from collections import defaultdict
from datetime import datetime

from vision_dashboard.core.types import BoundingBox, Detection, DetectionResult


def _normalize_label(label: str) -> str:
    return ' '.join((label or '').strip().split())


def filter_detections(detections: list[Detection], threshold: float) -> list[Detection]:
    return [d for d in detections if d.confidence >= threshold]


def to_results(
    detections: list[Detection],
    threshold: float,
    frame_index: int | None = None,
    detected_at: datetime | None = None,
) -> list[DetectionResult]:
    results: list[DetectionResult] = []
    for detection in filter_detections(detections, threshold):
        label = _normalize_label(detection.label)
        bbox = BoundingBox.from_xyxy(detection.bbox)
        # Boxes are required downstream; providers that return none are dropped here.
        if not label or bbox is None:
            continue
        results.append(
            DetectionResult(
                label=label,
                confidence=max(0.0, min(1.0, float(detection.confidence))),
                bbox=bbox,
                frame_index=frame_index,
                detected_at=detected_at,
            )
        )
    return sorted(results, key=lambda item: item.confidence, reverse=True)


def count_by_label(results) -> dict[str, int]:
    counts: dict[str, int] = defaultdict(int)
    for result in results:
        counts[result.label] += 1
    return dict(sorted(counts.items(), key=lambda row: row[1], reverse=True))
