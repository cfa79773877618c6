from io import BytesIO

import pytest
from PIL import Image

from vision_dashboard.core.detector import Detector
from vision_dashboard.core.jobs import DetectionJobRunner
from vision_dashboard.core.model_registry import ModelRegistry
from vision_dashboard.core.resources import ResourceAcquirer
from vision_dashboard.core.types import Detection, DetectionBatch


def make_image_bytes(size=(120, 80), fmt='JPEG') -> bytes:
    image = Image.new('RGB', size, color='white')
    buf = BytesIO()
    image.save(buf, format=fmt)
    return buf.getvalue()


class FakeVideoSource:
    def __init__(self, frame_count: int, fps: float = 30.0) -> None:
        self.frame_count = frame_count
        self.fps = fps
        self.position = 0
        self.close_calls = 0

    def read(self):
        if self.position >= self.frame_count:
            return None
        self.position += 1
        return Image.new('RGB', (64, 48), color='white')

    def seek(self, index: int) -> None:
        self.position = index

    def close(self) -> None:
        self.close_calls += 1


class FakeCamera:
    def __init__(self) -> None:
        self.close_calls = 0

    def read(self):
        return Image.new('RGB', (64, 48), color='black')

    def close(self) -> None:
        self.close_calls += 1


class ScriptedDetector(Detector):
    """One detection per call for the first ``limit`` calls, labelled by call number."""

    def __init__(self, limit: int | None = None, fail_on: int | None = None) -> None:
        self.limit = limit
        self.fail_on = fail_on
        self.calls = 0

    @property
    def model_id(self) -> str:
        return 'scripted'

    def detect(self, image, model_id: str | None = None) -> DetectionBatch:
        self.calls += 1
        if self.fail_on is not None and self.calls == self.fail_on:
            raise RuntimeError('backend unavailable')
        detections = []
        if self.limit is None or self.calls <= self.limit:
            detections.append(Detection(label=f'obj-{self.calls}', confidence=0.9, bbox=[1, 1, 11, 21]))
        return DetectionBatch(detections=detections, model_id=model_id or self.model_id, latency_ms=1, image_size=image.size)


@pytest.fixture
def registry(tmp_path):
    return ModelRegistry('vision_dashboard/data/models.json', models_dir=str(tmp_path / 'models'))


@pytest.fixture
def video_sources():
    return []


@pytest.fixture
def cameras():
    return []


@pytest.fixture
def acquirer(video_sources, cameras):
    def open_video(path, frame_count=450):
        source = FakeVideoSource(frame_count)
        video_sources.append(source)
        return source

    def open_camera(index, width, height):
        camera = FakeCamera()
        cameras.append(camera)
        return camera

    return ResourceAcquirer(video_opener=open_video, camera_opener=open_camera)


def make_runner(detector: Detector) -> DetectionJobRunner:
    return DetectionJobRunner(detector, conf_threshold=0.35, realtime_interval_s=0.0)
