from dataclasses import dataclass
from datetime import datetime
from enum import Enum


@dataclass
class Detection:
    label: str
    confidence: float
    bbox: list[float] | None = None


@dataclass
class DetectionBatch:
    detections: list[Detection]
    model_id: str
    latency_ms: int
    image_size: tuple[int, int]


@dataclass(frozen=True)
class BoundingBox:
    x: float
    y: float
    w: float
    h: float

    @classmethod
    def from_xyxy(cls, bbox: list[float] | tuple[float, ...] | None) -> 'BoundingBox | None':
        if not bbox or len(bbox) != 4:
            return None
        x1, y1, x2, y2 = [float(v) for v in bbox]
        x1, y1 = max(0.0, x1), max(0.0, y1)
        width = x2 - x1
        height = y2 - y1
        if width <= 0 or height <= 0:
            return None
        return cls(x=x1, y=y1, w=width, h=height)


@dataclass(frozen=True)
class DetectionResult:
    label: str
    confidence: float
    bbox: BoundingBox
    frame_index: int | None = None
    detected_at: datetime | None = None

    def __post_init__(self) -> None:
        if not self.label:
            raise ValueError('DetectionResult.label must be non-empty')
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f'DetectionResult.confidence out of range: {self.confidence}')


@dataclass(frozen=True)
class ModalityPolicy:
    bounded: bool
    history_capacity: int | None
    supports_pause: bool
    retain_on_complete: bool


class Modality(str, Enum):
    IMAGE = 'image'
    VIDEO = 'video'
    REALTIME = 'realtime'

    @property
    def policy(self) -> ModalityPolicy:
        return _POLICIES[self]


REALTIME_HISTORY_SIZE = 20

_POLICIES = {
    Modality.IMAGE: ModalityPolicy(bounded=True, history_capacity=None, supports_pause=False, retain_on_complete=False),
    Modality.VIDEO: ModalityPolicy(bounded=True, history_capacity=None, supports_pause=True, retain_on_complete=True),
    Modality.REALTIME: ModalityPolicy(
        bounded=False,
        history_capacity=REALTIME_HISTORY_SIZE,
        supports_pause=False,
        retain_on_complete=False,
    ),
}


class SessionState(str, Enum):
    IDLE = 'idle'
    RESOURCE_ACQUIRED = 'resource_acquired'
    RUNNING = 'running'
    PAUSED = 'paused'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'
    FAILED = 'failed'

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.COMPLETED, SessionState.CANCELLED, SessionState.FAILED)

    @property
    def is_busy(self) -> bool:
        return self in (SessionState.RUNNING, SessionState.PAUSED)


class ModelStatus(str, Enum):
    ACTIVE = 'active'
    INACTIVE = 'inactive'
    LOADING = 'loading'


@dataclass
class Model:
    id: str
    name: str
    version: str
    size_bytes: int = 0
    accuracy: float | None = None
    throughput_fps: float | None = None
    framework: str | None = None
    status: ModelStatus = ModelStatus.INACTIVE
    last_used_at: datetime | None = None
    weights_path: str | None = None
    sha256: str | None = None
