import logging
import threading
import time

import httpx

from vision_dashboard.core.detector import Detector
from vision_dashboard.core.errors import ProcessingError
from vision_dashboard.core.types import Detection, DetectionBatch
from vision_dashboard.utils.image_io import to_jpeg_bytes

logger = logging.getLogger('vision_dashboard.providers.remote')

MODEL_PLACEHOLDER = '{model_id}'


def _max_box_to_xyxy(box, width: int, height: int) -> list[float] | None:
    # MAX reports [ymin, xmin, ymax, xmax] as fractions of the frame.
    if not isinstance(box, (list, tuple)) or len(box) != 4:
        return None
    ymin, xmin, ymax, xmax = (min(1.0, max(0.0, float(v))) for v in box)
    return [xmin * width, ymin * height, xmax * width, ymax * height]


class RemoteProvider(Detector):
    """Object detector served over HTTP by a MAX-compatible backend.

    One backend can serve several catalog models. When ``predict_path``
    contains ``{model_id}`` the model is routed by URL, e.g.
    ``/models/{model_id}/predict``; otherwise it is sent as the ``model``
    form field next to the frame.
    """

    def __init__(
        self,
        base_url: str = 'http://127.0.0.1:5000',
        predict_path: str = '/model/predict',
        timeout_ms: int = 12000,
        threshold: float = 0.35,
    ) -> None:
        self._base_url = base_url.rstrip('/')
        self._predict_path = '/' + predict_path.lstrip('/')
        self._timeout = max(int(timeout_ms), 1000) / 1000.0
        self._threshold = float(threshold)
        self._http: httpx.Client | None = None
        self._lock = threading.Lock()

    @property
    def model_id(self) -> str:
        return 'remote-object-detector'

    def _client(self) -> httpx.Client:
        with self._lock:
            if self._http is None:
                self._http = httpx.Client(base_url=self._base_url, timeout=self._timeout)
            return self._http

    def close(self) -> None:
        with self._lock:
            if self._http is not None:
                self._http.close()
                self._http = None

    def _route(self, model_id: str | None) -> tuple[str, dict[str, str]]:
        form = {'threshold': str(self._threshold)}
        if MODEL_PLACEHOLDER in self._predict_path:
            return self._predict_path.replace(MODEL_PLACEHOLDER, model_id or self.model_id), form
        if model_id:
            form['model'] = model_id
        return self._predict_path, form

    def detect(self, image, model_id: str | None = None) -> DetectionBatch:
        start = time.perf_counter()
        width, height = image.size
        path, form = self._route(model_id)
        try:
            response = self._client().post(
                path,
                files={'image': ('frame.jpg', to_jpeg_bytes(image), 'image/jpeg')},
                data=form,
            )
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPStatusError as exc:
            raise ProcessingError(
                f'Remote detector answered {exc.response.status_code}.',
                details={'path': path, 'status_code': exc.response.status_code},
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise ProcessingError(f'Remote detector unreachable: {exc}', details={'path': path}) from exc

        if body.get('status', 'ok') != 'ok':
            raise ProcessingError(
                f"Remote detector rejected the frame: {body.get('message') or body.get('status')}",
                details={'path': path},
            )

        detections = [
            Detection(
                label=str(row.get('label') or ''),
                confidence=float(row.get('probability') or 0.0),
                bbox=_max_box_to_xyxy(row.get('detection_box'), width, height),
            )
            for row in body.get('predictions') or []
        ]
        latency_ms = max(int((time.perf_counter() - start) * 1000), 1)
        logger.debug('remote detect path=%s detections=%s latency_ms=%s', path, len(detections), latency_ms)
        return DetectionBatch(
            detections=detections,
            model_id=model_id or self.model_id,
            latency_ms=latency_ms,
            image_size=(width, height),
        )
