from abc import ABC, abstractmethod

from vision_dashboard.config import Settings
from vision_dashboard.core.types import DetectionBatch


class Detector(ABC):
    @abstractmethod
    def detect(self, image, model_id: str | None = None) -> DetectionBatch:
        raise NotImplementedError

    @property
    @abstractmethod
    def model_id(self) -> str:
        raise NotImplementedError

    def is_loaded(self, model_id: str) -> bool:
        """Whether ``model_id`` is ready to serve without a cold load."""
        return True

    def close(self) -> None:
        return None


def create_detector(settings: Settings) -> Detector:
    provider = settings.provider.strip().lower()
    if provider == 'dummy':
        from vision_dashboard.providers.dummy_provider import DummyProvider

        return DummyProvider(model_id=settings.default_model_id)
    if provider == 'yolo':
        from vision_dashboard.providers.yolo_provider import YoloProvider

        return YoloProvider(model_id=settings.default_model_id, models_dir=settings.models_dir)
    if provider == 'remote':
        from vision_dashboard.providers.remote_provider import RemoteProvider

        return RemoteProvider(
            base_url=settings.remote_base_url,
            predict_path=settings.remote_predict_path,
            timeout_ms=settings.remote_timeout_ms,
            threshold=settings.conf_threshold,
        )
    raise ValueError(f'Unsupported PROVIDER={settings.provider!r}')
