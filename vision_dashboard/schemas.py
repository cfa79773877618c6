from datetime import datetime

from pydantic import BaseModel, Field


class BoundingBoxOut(BaseModel):
    x: float = Field(ge=0.0)
    y: float = Field(ge=0.0)
    w: float = Field(gt=0.0)
    h: float = Field(gt=0.0)


class DetectionOut(BaseModel):
    label: str
    confidence: float = Field(ge=0.0, le=1.0)
    bbox: BoundingBoxOut
    frame_index: int | None = None
    detected_at: datetime | None = None


class ProgressOut(BaseModel):
    processed_units: int
    total_units: int | None = None
    percent: int | None = None
    rate: float | None = None


class SummaryOut(BaseModel):
    count: int
    average_confidence: float | None = None
    by_label: dict[str, int] = {}


class CountersOut(BaseModel):
    total_frames: int
    processed_frames: int
    detected_objects: int


class SessionErrorOut(BaseModel):
    code: str
    message: str


class SessionOut(BaseModel):
    ok: bool = True
    modality: str
    state: str
    progress: ProgressOut
    results: list[DetectionOut] = []
    summary: SummaryOut
    counters: CountersOut | None = None
    last_error: SessionErrorOut | None = None
    selected_model_id: str | None = None
    input_name: str | None = None
    resource_held: bool = False


class ModelOut(BaseModel):
    id: str
    name: str
    version: str
    size_bytes: int
    accuracy: float | None = None
    throughput_fps: float | None = None
    framework: str | None = None
    status: str
    last_used_at: datetime | None = None
    sha256: str | None = None


class ModelListResponse(BaseModel):
    ok: bool = True
    active_model_id: str | None = None
    models: list[ModelOut]


class ModelResponse(BaseModel):
    ok: bool = True
    model: ModelOut


class HealthResponse(BaseModel):
    ok: bool
    version: str
    provider: str
    model_loaded: bool
    model: str | None = None
    active_model_id: str | None = None
    catalog_size: int
    busy_sessions: list[str] = []
    uptime_s: float


class StatisticsResponse(BaseModel):
    ok: bool = True
    total_detections: int
    average_confidence: float | None = None
    by_label: dict[str, int]
    by_model: dict[str, dict]
    by_hour: dict[str, int]
    by_weekday: dict[str, int]
    runs: dict[str, dict[str, int]]


class ErrorResponse(BaseModel):
    ok: bool = False
    error: str
    message: str
    details: dict | None = None
    request_id: str | None = None
