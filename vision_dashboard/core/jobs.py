import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable

from vision_dashboard.core.detector import Detector
from vision_dashboard.core.errors import DashboardError, ProcessingError, ResourceError, ResourceErrorKind
from vision_dashboard.core.postprocess import to_results
from vision_dashboard.core.resources import ResourceHandle
from vision_dashboard.core.types import DetectionResult, Modality, Model

logger = logging.getLogger('vision_dashboard.jobs')


class JobOutcome(str, Enum):
    COMPLETED = 'completed'
    FAILED = 'failed'


@dataclass(frozen=True)
class JobProgress:
    processed_units: int
    total_units: int | None
    detected_objects: int


class JobHandle:
    def __init__(self, modality: Modality, model_id: str) -> None:
        self.id = uuid.uuid4().hex
        self.modality = modality
        self.model_id = model_id
        self.started_at = time.monotonic()
        self.task: asyncio.Task | None = None
        self._cancelled = False
        self._resume = asyncio.Event()
        self._resume.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def paused(self) -> bool:
        return not self._resume.is_set()

    @property
    def elapsed_s(self) -> float:
        return time.monotonic() - self.started_at

    async def wait(self) -> None:
        if self.task is not None:
            await asyncio.gather(self.task, return_exceptions=True)


ProgressCallback = Callable[[JobHandle, JobProgress], None]
ResultCallback = Callable[[JobHandle, list[DetectionResult]], None]
FinishCallback = Callable[[JobHandle, JobOutcome, DashboardError | None], None]


class DetectionJobRunner:
    """Runs detection jobs as asyncio tasks and reports back through callbacks.

    ``start`` and ``cancel`` never block. Blocking work (frame reads, detector
    calls) runs in worker threads; whatever such a call returns after the job
    was cancelled is dropped, so no callback fires once ``cancel`` returns.
    """

    def __init__(
        self,
        detector: Detector,
        conf_threshold: float = 0.35,
        frame_stride: int = 1,
        tick_interval_s: float = 0.0,
        realtime_interval_s: float = 1.0,
    ) -> None:
        self._detector = detector
        self._conf_threshold = conf_threshold
        self._frame_stride = max(1, int(frame_stride))
        self._tick_interval_s = max(0.0, float(tick_interval_s))
        self._realtime_interval_s = max(0.0, float(realtime_interval_s))

    @property
    def detector(self) -> Detector:
        return self._detector

    def start(
        self,
        handle: ResourceHandle,
        model: Model,
        on_progress: ProgressCallback,
        on_result: ResultCallback,
        on_finish: FinishCallback,
        confidence_threshold: float | None = None,
    ) -> JobHandle:
        job = JobHandle(handle.modality, model.id)
        threshold = self._conf_threshold if confidence_threshold is None else float(confidence_threshold)
        loop = asyncio.get_running_loop()
        job.task = loop.create_task(
            self._run(job, handle, threshold, on_progress, on_result, on_finish),
            name=f'detection-job-{job.id}',
        )
        logger.info('job started job_id=%s modality=%s model=%s threshold=%s', job.id, job.modality.value, job.model_id, threshold)
        return job

    def cancel(self, job: JobHandle) -> None:
        if job.cancelled:
            return
        job._cancelled = True
        job._resume.set()
        if job.task is not None and not job.task.done():
            job.task.cancel()
        logger.info('job cancelled job_id=%s modality=%s', job.id, job.modality.value)

    def pause(self, job: JobHandle) -> None:
        job._resume.clear()

    def resume(self, job: JobHandle) -> None:
        job._resume.set()

    async def _run(
        self,
        job: JobHandle,
        handle: ResourceHandle,
        threshold: float,
        on_progress: ProgressCallback,
        on_result: ResultCallback,
        on_finish: FinishCallback,
    ) -> None:
        def emit(callback, *args) -> None:
            if not job.cancelled:
                callback(job, *args)

        try:
            if job.modality is Modality.IMAGE:
                await self._run_image(job, handle, threshold, emit, on_progress, on_result)
            elif job.modality is Modality.VIDEO:
                await self._run_video(job, handle, threshold, emit, on_progress, on_result)
            else:
                await self._run_realtime(job, handle, threshold, emit, on_progress, on_result)
        except asyncio.CancelledError:
            if not job.cancelled:
                raise
            return
        except DashboardError as exc:
            logger.warning('job failed job_id=%s code=%s message=%s', job.id, exc.code, exc.message)
            emit(on_finish, JobOutcome.FAILED, exc)
            return
        except Exception as exc:
            logger.exception('job crashed job_id=%s', job.id)
            emit(on_finish, JobOutcome.FAILED, ProcessingError(f'Detection job failed: {exc}'))
            return
        if not job.cancelled:
            logger.info('job completed job_id=%s elapsed_s=%.3f', job.id, job.elapsed_s)
        emit(on_finish, JobOutcome.COMPLETED, None)

    async def _detect(self, job: JobHandle, image, threshold: float, frame_index: int | None = None, handle: ResourceHandle | None = None) -> list[DetectionResult]:
        try:
            if handle is None:
                batch = await asyncio.to_thread(self._detector.detect, image, job.model_id)
            else:
                # The image belongs to the handle, so it must outlive the detector call.
                batch = await asyncio.to_thread(handle.use, self._detector.detect, image, job.model_id)
        except DashboardError:
            raise
        except Exception as exc:
            raise ProcessingError(f'Detector failed: {exc}', details={'model_id': job.model_id}) from exc
        logger.debug('detect job_id=%s frame=%s detections=%s latency_ms=%s', job.id, frame_index, len(batch.detections), batch.latency_ms)
        return to_results(batch.detections, threshold, frame_index=frame_index, detected_at=datetime.now(timezone.utc))

    async def _read_frame(self, handle, kind: ResourceErrorKind):
        try:
            return await asyncio.to_thread(handle.read_frame)
        except ResourceError:
            raise
        except Exception as exc:
            raise ResourceError(kind, f'Could not read frame: {exc}') from exc

    async def _run_image(self, job, handle, threshold, emit, on_progress, on_result) -> None:
        results = await self._detect(job, handle.image, threshold, handle=handle)
        emit(on_result, results)
        emit(on_progress, JobProgress(processed_units=1, total_units=1, detected_objects=len(results)))

    async def _run_video(self, job, handle, threshold, emit, on_progress, on_result) -> None:
        total = handle.total_units
        collected: list[DetectionResult] = []
        processed = 0
        try:
            await asyncio.to_thread(handle.rewind)
        except ResourceError:
            raise
        except Exception as exc:
            raise ResourceError(ResourceErrorKind.DECODE_FAILED, f'Could not rewind video: {exc}') from exc
        for index in range(total):
            await job._resume.wait()
            if job.cancelled:
                return
            frame = await self._read_frame(handle, ResourceErrorKind.DECODE_FAILED)
            if frame is None:
                if processed == 0:
                    raise ResourceError(ResourceErrorKind.DECODE_FAILED, 'Video has no decodable frames.')
                logger.warning('video ended early job_id=%s processed=%s total=%s', job.id, processed, total)
                break
            if index % self._frame_stride == 0:
                collected.extend(await self._detect(job, frame, threshold, frame_index=index))
            processed += 1
            emit(on_progress, JobProgress(processed_units=processed, total_units=total, detected_objects=len(collected)))
            if self._tick_interval_s:
                await asyncio.sleep(self._tick_interval_s)
        emit(on_result, collected)

    async def _run_realtime(self, job, handle, threshold, emit, on_progress, on_result) -> None:
        ticks = 0
        detected = 0
        while not job.cancelled:
            frame = await self._read_frame(handle, ResourceErrorKind.DEVICE_UNAVAILABLE)
            if frame is None:
                raise ResourceError(ResourceErrorKind.DEVICE_UNAVAILABLE, 'Camera stopped delivering frames.')
            results = await self._detect(job, frame, threshold, frame_index=ticks)
            ticks += 1
            detected += len(results)
            emit(on_result, results)
            emit(on_progress, JobProgress(processed_units=ticks, total_units=None, detected_objects=detected))
            await asyncio.sleep(self._realtime_interval_s)
