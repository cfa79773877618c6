import asyncio
import logging
import time
import uuid

from fastapi import FastAPI, File, Form, Query, Request, UploadFile, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse, Response

from vision_dashboard.config import get_settings
from vision_dashboard.core.dashboard import DetectionDashboard
from vision_dashboard.core.errors import DashboardError
from vision_dashboard.core.resources import MediaPayload
from vision_dashboard.core.session import SessionSnapshot
from vision_dashboard.core.types import Modality, Model
from vision_dashboard.logging_setup import setup_logging
from vision_dashboard.schemas import (
    ErrorResponse,
    HealthResponse,
    ModelListResponse,
    ModelOut,
    ModelResponse,
    SessionOut,
    StatisticsResponse,
)
from vision_dashboard.utils.image_io import to_jpeg_bytes

settings = get_settings()
setup_logging(settings.log_level)
logger = logging.getLogger('vision_dashboard')

app = FastAPI(title='Vision Dashboard', version=settings.version)
started_at = time.time()

EVENT_QUEUE_SIZE = 64


def _dashboard() -> DetectionDashboard:
    return app.state.dashboard


def _session_out(snapshot: SessionSnapshot) -> SessionOut:
    return SessionOut(
        modality=snapshot.modality.value,
        state=snapshot.state.value,
        progress={
            'processed_units': snapshot.progress.processed_units,
            'total_units': snapshot.progress.total_units,
            'percent': snapshot.progress.percent,
            'rate': snapshot.progress.rate,
        },
        results=[
            {
                'label': r.label,
                'confidence': r.confidence,
                'bbox': {'x': r.bbox.x, 'y': r.bbox.y, 'w': r.bbox.w, 'h': r.bbox.h},
                'frame_index': r.frame_index,
                'detected_at': r.detected_at,
            }
            for r in snapshot.results
        ],
        summary={
            'count': snapshot.summary.count,
            'average_confidence': snapshot.summary.average_confidence,
            'by_label': snapshot.summary.by_label,
        },
        counters=(
            {
                'total_frames': snapshot.counters.total_frames,
                'processed_frames': snapshot.counters.processed_frames,
                'detected_objects': snapshot.counters.detected_objects,
            }
            if snapshot.counters
            else None
        ),
        last_error=(
            {'code': snapshot.last_error.code, 'message': snapshot.last_error.message}
            if snapshot.last_error
            else None
        ),
        selected_model_id=snapshot.selected_model_id,
        input_name=snapshot.input_name,
        resource_held=snapshot.resource_held,
    )


def _model_out(model: Model) -> ModelOut:
    return ModelOut(
        id=model.id,
        name=model.name,
        version=model.version,
        size_bytes=model.size_bytes,
        accuracy=model.accuracy,
        throughput_fps=model.throughput_fps,
        framework=model.framework,
        status=model.status.value,
        last_used_at=model.last_used_at,
        sha256=model.sha256,
    )


@app.on_event('startup')
def startup_event() -> None:
    dashboard = DetectionDashboard.from_settings(settings)
    app.state.dashboard = dashboard
    active = dashboard.registry.active()
    logger.info(
        'Dashboard initialized provider=%s detector=%s catalog_size=%s active_model=%s',
        settings.provider,
        dashboard.runner.detector.model_id,
        dashboard.registry.size,
        active.id if active else None,
    )


@app.on_event('shutdown')
async def shutdown_event() -> None:
    dashboard = getattr(app.state, 'dashboard', None)
    if dashboard is not None:
        await dashboard.shutdown()


@app.exception_handler(DashboardError)
async def dashboard_error_handler(request: Request, exc: DashboardError):
    request_id = request.headers.get('x-request-id') or str(uuid.uuid4())
    payload = ErrorResponse(
        error=exc.code,
        message=exc.message,
        details=exc.details or None,
        request_id=request_id,
    )
    return JSONResponse(status_code=exc.status_code, content=payload.model_dump())


@app.exception_handler(Exception)
async def generic_error_handler(request: Request, exc: Exception):
    request_id = request.headers.get('x-request-id') or str(uuid.uuid4())
    logger.exception('Unhandled exception request_id=%s', request_id)
    payload = ErrorResponse(
        error='UNEXPECTED_SERVER_ERROR',
        message='Unexpected server error.',
        request_id=request_id,
    )
    return JSONResponse(status_code=500, content=payload.model_dump())


@app.get('/health', response_model=HealthResponse)
def health():
    dashboard = _dashboard()
    active = dashboard.registry.active()
    return HealthResponse(
        ok=True,
        version=settings.version,
        provider=settings.provider,
        model_loaded=active is not None and dashboard.runner.detector.is_loaded(active.id),
        model=dashboard.runner.detector.model_id,
        active_model_id=active.id if active else None,
        catalog_size=dashboard.registry.size,
        busy_sessions=dashboard.busy_sessions(),
        uptime_s=round(time.time() - started_at, 3),
    )


@app.get('/models', response_model=ModelListResponse)
def list_models():
    registry = _dashboard().registry
    active = registry.active()
    return ModelListResponse(
        ok=True,
        active_model_id=active.id if active else None,
        models=[_model_out(model) for model in registry.list_models()],
    )


@app.post('/models', response_model=ModelResponse, status_code=201)
async def upload_model(
    file: UploadFile = File(...),
    name: str | None = Form(default=None),
    version: str = Form(default='v1.0.0'),
    framework: str | None = Form(default=None),
):
    payload = await file.read()
    model = _dashboard().registry.upload(
        filename=file.filename or 'model.bin',
        payload=payload,
        name=name,
        version=version,
        framework=framework,
    )
    return ModelResponse(ok=True, model=_model_out(model))


@app.post('/models/{model_id}/activate', response_model=ModelResponse)
def activate_model(model_id: str):
    model = _dashboard().switch_model(model_id)
    return ModelResponse(ok=True, model=_model_out(model))


@app.delete('/models/{model_id}', response_model=ModelResponse)
def delete_model(model_id: str):
    model = _dashboard().delete_model(model_id)
    return ModelResponse(ok=True, model=_model_out(model))


@app.get('/sessions/{modality}', response_model=SessionOut)
def get_session(modality: Modality):
    return _session_out(_dashboard().session(modality).snapshot())


@app.post('/sessions/{modality}/input', response_model=SessionOut)
async def acquire_input(modality: Modality, file: UploadFile | None = File(default=None)):
    source = None
    if file is not None:
        source = MediaPayload(data=await file.read(), content_type=file.content_type, filename=file.filename)
    snapshot = await _dashboard().session(modality).acquire_input(source)
    logger.info('input acquired modality=%s filename=%s', modality.value, snapshot.input_name)
    return _session_out(snapshot)


@app.delete('/sessions/{modality}/input', response_model=SessionOut)
def clear_input(modality: Modality):
    return _session_out(_dashboard().session(modality).clear_input())


@app.post('/sessions/{modality}/start', response_model=SessionOut)
async def start_detection(modality: Modality, confidence_threshold: float | None = Form(default=None, ge=0.0, le=1.0)):
    return _session_out(_dashboard().session(modality).start_detection(confidence_threshold=confidence_threshold))


@app.post('/sessions/{modality}/stop', response_model=SessionOut)
async def stop_detection(modality: Modality):
    return _session_out(_dashboard().session(modality).stop())


@app.post('/sessions/{modality}/pause', response_model=SessionOut)
async def pause_detection(modality: Modality):
    return _session_out(_dashboard().session(modality).pause())


@app.post('/sessions/{modality}/resume', response_model=SessionOut)
async def resume_detection(modality: Modality):
    return _session_out(_dashboard().session(modality).resume())


@app.post('/sessions/{modality}/reset', response_model=SessionOut)
async def reset_session(modality: Modality):
    return _session_out(_dashboard().session(modality).reset())


@app.get('/sessions/video/frame')
async def video_frame(index: int = Query(default=0, ge=0)):
    frame = await _dashboard().session(Modality.VIDEO).preview_frame(index)
    if frame is None:
        raise DashboardError('FRAME_NOT_FOUND', f'No frame at index={index}.', status_code=404)
    return Response(content=to_jpeg_bytes(frame), media_type='image/jpeg')


@app.websocket('/sessions/{modality}/events')
async def session_events(websocket: WebSocket, modality: Modality):
    await websocket.accept()
    session = _dashboard().session(modality)
    queue: asyncio.Queue[SessionSnapshot] = asyncio.Queue(maxsize=EVENT_QUEUE_SIZE)

    def listener(snapshot: SessionSnapshot) -> None:
        if queue.full():
            queue.get_nowait()
        queue.put_nowait(snapshot)

    unsubscribe = session.subscribe(listener)
    try:
        await websocket.send_json(_session_out(session.snapshot()).model_dump(mode='json'))
        while True:
            snapshot = await queue.get()
            await websocket.send_json(_session_out(snapshot).model_dump(mode='json'))
    except WebSocketDisconnect:
        logger.info('event subscriber disconnected modality=%s', modality.value)
    finally:
        unsubscribe()


@app.get('/statistics', response_model=StatisticsResponse)
def statistics():
    return StatisticsResponse(ok=True, **_dashboard().statistics.snapshot())


def run() -> None:
    import uvicorn

    uvicorn.run('vision_dashboard.main:app', host=settings.host, port=settings.port, log_level=settings.log_level.lower())
