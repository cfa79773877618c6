import threading
import time
from pathlib import Path

from vision_dashboard.core.detector import Detector
from vision_dashboard.core.types import Detection, DetectionBatch


class YoloProvider(Detector):
    def __init__(self, model_id: str = 'yolov8n', models_dir: str = 'model_store') -> None:
        try:
            from ultralytics import YOLO
        except ImportError as exc:
            raise RuntimeError('ultralytics is required for PROVIDER=yolo. Install it first.') from exc

        self._yolo_cls = YOLO
        self._model_id = model_id
        self._models_dir = Path(models_dir)
        self._models: dict[str, object] = {}
        self._lock = threading.Lock()

    @property
    def model_id(self) -> str:
        return self._model_id

    def is_loaded(self, model_id: str) -> bool:
        with self._lock:
            return model_id in self._models

    def _weights_for(self, model_id: str) -> str:
        candidate = Path(model_id)
        if candidate.exists():
            return str(candidate.resolve())
        # Uploaded weights are stored as <model_id><suffix> under models_dir.
        for stored in sorted(self._models_dir.glob(f'{model_id}.*')):
            return str(stored.resolve())
        return model_id if candidate.suffix else f'{model_id}.pt'

    def _load(self, model_id: str):
        with self._lock:
            model = self._models.get(model_id)
            if model is None:
                model = self._yolo_cls(self._weights_for(model_id))
                self._models[model_id] = model
            return model

    def detect(self, image, model_id: str | None = None) -> DetectionBatch:
        start = time.perf_counter()
        resolved_id = model_id or self._model_id
        width, height = image.size
        prediction = self._load(resolved_id)(image, verbose=False)

        detections: list[Detection] = []
        if prediction:
            result = prediction[0]
            names = result.names
            boxes = result.boxes
            if boxes is not None:
                for cls_id, conf, xyxy in zip(boxes.cls.tolist(), boxes.conf.tolist(), boxes.xyxy.tolist()):
                    label = str(names.get(int(cls_id), int(cls_id)))
                    detections.append(
                        Detection(
                            label=label,
                            confidence=float(conf),
                            bbox=[float(v) for v in xyxy],
                        )
                    )

        latency_ms = int((time.perf_counter() - start) * 1000)
        return DetectionBatch(
            detections=detections,
            model_id=resolved_id,
            latency_ms=max(latency_ms, 1),
            image_size=(width, height),
        )
