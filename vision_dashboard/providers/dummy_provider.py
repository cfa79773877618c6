import time

from vision_dashboard.core.detector import Detector
from vision_dashboard.core.types import Detection, DetectionBatch


class DummyProvider(Detector):
    def __init__(self, model_id: str = 'dummy-v1') -> None:
        self._model_id = model_id

    @property
    def model_id(self) -> str:
        return self._model_id

    def detect(self, image, model_id: str | None = None) -> DetectionBatch:
        start = time.perf_counter()
        width, height = image.size
        detections = [
            Detection(label='person', confidence=0.95, bbox=[min(100, width - 2), min(50, height - 2), min(250, width - 1), min(350, height - 1)]),
            Detection(label='car', confidence=0.88, bbox=[min(300, width - 2), min(200, height - 2), min(500, width - 1), min(350, height - 1)]),
            Detection(label='bicycle', confidence=0.76, bbox=[min(150, width - 2), min(280, height - 2), min(230, width - 1), min(400, height - 1)]),
        ]
        latency_ms = int((time.perf_counter() - start) * 1000)
        return DetectionBatch(
            detections=detections,
            model_id=model_id or self.model_id,
            latency_ms=max(latency_ms, 1),
            image_size=(width, height),
        )
