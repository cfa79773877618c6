"""Detection session state machine, one controller per input modality.

    idle --acquire_input--> resource_acquired --start_detection--> running
    resource_acquired --clear_input--> idle
    running --pause--> paused --resume--> running          (video only)
    running --complete--> completed
    running|paused --stop--> cancelled
    running --error--> failed
    completed|cancelled|failed --reset--> idle

Job events reach the controller through ``_on_progress``, ``_on_result`` and
``_on_finish``. Events from a job that is no longer current, or that arrive
after the session left running/paused, are dropped.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable

from vision_dashboard.core.aggregator import ResultAggregator, ResultSummary, VideoCounters
from vision_dashboard.core.errors import DashboardError, InvalidTransitionError, ResourceError
from vision_dashboard.core.jobs import DetectionJobRunner, JobHandle, JobOutcome, JobProgress
from vision_dashboard.core.model_registry import ModelRegistry
from vision_dashboard.core.progress import ProgressReport, ProgressReporter
from vision_dashboard.core.resources import MediaPayload, ResourceAcquirer, ResourceHandle
from vision_dashboard.core.statistics import StatisticsTracker
from vision_dashboard.core.types import DetectionResult, Modality, SessionState

logger = logging.getLogger('vision_dashboard.session')


@dataclass(frozen=True)
class ErrorInfo:
    code: str
    message: str

    @classmethod
    def from_error(cls, error: DashboardError) -> 'ErrorInfo':
        return cls(code=error.code, message=error.message)


@dataclass(frozen=True)
class SessionSnapshot:
    modality: Modality
    state: SessionState
    progress: ProgressReport
    results: tuple[DetectionResult, ...]
    summary: ResultSummary
    counters: VideoCounters | None
    last_error: ErrorInfo | None
    selected_model_id: str | None
    input_name: str | None
    resource_held: bool


Listener = Callable[[SessionSnapshot], None]

_RESETTABLE = (SessionState.IDLE, SessionState.COMPLETED, SessionState.CANCELLED, SessionState.FAILED)


class SessionController:
    def __init__(
        self,
        modality: Modality,
        acquirer: ResourceAcquirer,
        runner: DetectionJobRunner,
        registry: ModelRegistry,
        statistics: StatisticsTracker | None = None,
        reporter: ProgressReporter | None = None,
        history_size: int | None = None,
    ) -> None:
        self._modality = modality
        self._policy = modality.policy
        self._acquirer = acquirer
        self._runner = runner
        self._registry = registry
        self._statistics = statistics
        self._reporter = reporter or ProgressReporter()
        capacity = self._policy.history_capacity
        if capacity is not None and history_size:
            capacity = history_size
        self._aggregator = ResultAggregator(capacity)
        self._state = SessionState.IDLE
        self._handle: ResourceHandle | None = None
        self._job: JobHandle | None = None
        self._acquiring = False
        self._previews = 0
        self._processed = 0
        self._total: int | None = None
        self._elapsed_s = 0.0
        self._last_error: DashboardError | None = None
        self._selected_model_id: str | None = None
        self._input_name: str | None = None
        self._listeners: list[Listener] = []

    @property
    def modality(self) -> Modality:
        return self._modality

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def handle(self) -> ResourceHandle | None:
        return self._handle

    @property
    def job(self) -> JobHandle | None:
        return self._job

    @property
    def results(self) -> tuple[DetectionResult, ...]:
        return self._aggregator.results

    @property
    def last_error(self) -> DashboardError | None:
        return self._last_error

    @property
    def selected_model_id(self) -> str | None:
        return self._selected_model_id

    @property
    def is_busy(self) -> bool:
        return self._state.is_busy

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            modality=self._modality,
            state=self._state,
            progress=self._reporter.report(self._processed, self._total, self._elapsed_s),
            results=self._aggregator.results,
            summary=self._aggregator.summary(),
            counters=self._aggregator.counters if self._modality is Modality.VIDEO else None,
            last_error=ErrorInfo.from_error(self._last_error) if self._last_error else None,
            selected_model_id=self._selected_model_id,
            input_name=self._input_name,
            resource_held=self._handle is not None,
        )

    def _notify(self) -> None:
        if not self._listeners:
            return
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception('session listener failed modality=%s', self._modality.value)

    def _transition(self, new_state: SessionState) -> None:
        logger.info('session transition modality=%s from=%s to=%s', self._modality.value, self._state.value, new_state.value)
        self._state = new_state

    def _require(self, command: str, *states: SessionState) -> None:
        if self._acquiring or self._state not in states:
            state = 'acquiring' if self._acquiring else self._state.value
            raise InvalidTransitionError(command, state, self._modality.value)

    def _require_no_preview(self, command: str) -> None:
        # A preview seeks the shared capture, so nothing may reposition or release it meanwhile.
        if self._previews:
            raise InvalidTransitionError(command, 'previewing', self._modality.value)

    def _release(self) -> None:
        handle, self._handle = self._handle, None
        self._acquirer.release(handle)

    def _discard_input(self) -> None:
        self._release()
        self._aggregator.clear()
        self._processed = 0
        self._total = None
        self._elapsed_s = 0.0
        self._last_error = None
        self._input_name = None

    async def acquire_input(self, source: MediaPayload | None = None) -> SessionSnapshot:
        self._require('acquire input', SessionState.RESOURCE_ACQUIRED, *_RESETTABLE)
        self._require_no_preview('acquire input')
        if self._state is not SessionState.IDLE:
            # Selecting a new input drops the previous one and its results.
            self._discard_input()
            self._transition(SessionState.IDLE)
        self._acquiring = True
        self._last_error = None
        try:
            handle = await self._acquirer.acquire(self._modality, source)
        except ResourceError as exc:
            logger.warning('acquire failed modality=%s code=%s message=%s', self._modality.value, exc.code, exc.message)
            self._last_error = exc
            self._notify()
            raise
        finally:
            self._acquiring = False
        self._handle = handle
        self._total = handle.total_units
        self._input_name = getattr(handle, 'filename', None)
        self._transition(SessionState.RESOURCE_ACQUIRED)
        self._notify()
        return self.snapshot()

    def clear_input(self) -> SessionSnapshot:
        self._require('clear input', SessionState.RESOURCE_ACQUIRED)
        self._require_no_preview('clear input')
        self._discard_input()
        self._transition(SessionState.IDLE)
        self._notify()
        return self.snapshot()

    def start_detection(self, confidence_threshold: float | None = None) -> SessionSnapshot:
        self._require('start detection', SessionState.RESOURCE_ACQUIRED)
        self._require_no_preview('start detection')
        model = self._registry.active()
        if model is None:
            raise DashboardError('NO_ACTIVE_MODEL', 'No active model is selected.', status_code=409)
        self._registry.touch(model.id)
        self._selected_model_id = model.id
        self._last_error = None
        self._processed = 0
        self._elapsed_s = 0.0
        # The task cannot run before this method returns, so the state below is
        # in place before the first job event.
        self._job = self._runner.start(
            self._handle,
            model,
            self._on_progress,
            self._on_result,
            self._on_finish,
            confidence_threshold=confidence_threshold,
        )
        self._transition(SessionState.RUNNING)
        self._notify()
        return self.snapshot()

    def pause(self) -> SessionSnapshot:
        if not self._policy.supports_pause:
            raise InvalidTransitionError('pause', self._state.value, self._modality.value)
        self._require('pause', SessionState.RUNNING)
        self._runner.pause(self._job)
        self._transition(SessionState.PAUSED)
        self._notify()
        return self.snapshot()

    def resume(self) -> SessionSnapshot:
        self._require('resume', SessionState.PAUSED)
        self._runner.resume(self._job)
        self._transition(SessionState.RUNNING)
        self._notify()
        return self.snapshot()

    def stop(self) -> SessionSnapshot:
        self._require('stop', SessionState.RUNNING, SessionState.PAUSED)
        job, self._job = self._job, None
        self._runner.cancel(job)
        self._elapsed_s = job.elapsed_s
        self._release()
        self._transition(SessionState.CANCELLED)
        self._record_run(job, SessionState.CANCELLED)
        self._notify()
        return self.snapshot()

    def reset(self) -> SessionSnapshot:
        self._require('reset', *_RESETTABLE)
        if self._state is not SessionState.IDLE:
            self._discard_input()
            self._transition(SessionState.IDLE)
            self._notify()
        return self.snapshot()

    async def preview_frame(self, index: int):
        if self._modality is not Modality.VIDEO:
            raise InvalidTransitionError('preview a frame of', self._state.value, self._modality.value)
        self._require('preview a frame of', SessionState.RESOURCE_ACQUIRED, SessionState.COMPLETED)
        handle = self._handle
        self._previews += 1
        try:
            return await asyncio.to_thread(handle.frame_at, index)
        finally:
            self._previews -= 1

    async def wait(self) -> None:
        if self._job is not None:
            await self._job.wait()

    def _accepts(self, job: JobHandle) -> bool:
        if job is not self._job or not self._state.is_busy:
            logger.debug('discarding stale job event modality=%s job_id=%s', self._modality.value, job.id)
            return False
        return True

    def _on_progress(self, job: JobHandle, progress: JobProgress) -> None:
        if not self._accepts(job):
            return
        self._processed = progress.processed_units
        self._total = progress.total_units
        self._elapsed_s = job.elapsed_s
        if self._modality is Modality.VIDEO:
            self._aggregator.update_counters(progress.processed_units, progress.total_units, progress.detected_objects)
        self._notify()

    def _on_result(self, job: JobHandle, results: list[DetectionResult]) -> None:
        """Fold a job's results into the aggregator.

        Bounded modalities replace the whole list. Realtime history is kept per
        detection, not per tick: a tick with k detections pushes k entries, so
        the 20-entry window may span fewer than 20 ticks.
        """
        if not self._accepts(job):
            return
        if self._aggregator.capacity is None:
            self._aggregator.replace(results)
        else:
            # Pushed lowest-confidence first so the strongest hit of the newest tick leads.
            for result in reversed(results):
                self._aggregator.push(result)
        if self._statistics is not None:
            self._statistics.record_results(job.model_id, results)
        self._notify()

    def _on_finish(self, job: JobHandle, outcome: JobOutcome, error: DashboardError | None) -> None:
        if not self._accepts(job):
            return
        self._job = None
        self._elapsed_s = job.elapsed_s
        if outcome is JobOutcome.COMPLETED:
            if not self._policy.retain_on_complete:
                self._release()
            self._transition(SessionState.COMPLETED)
        else:
            self._last_error = error
            self._release()
            self._transition(SessionState.FAILED)
        self._record_run(job, self._state)
        self._notify()

    def _record_run(self, job: JobHandle, outcome: SessionState) -> None:
        if self._statistics is not None:
            self._statistics.record_run(self._modality, job.model_id, outcome)
