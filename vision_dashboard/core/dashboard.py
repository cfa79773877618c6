import logging

from vision_dashboard.config import Settings
from vision_dashboard.core.detector import Detector, create_detector
from vision_dashboard.core.errors import ModelSwitchRejectedError
from vision_dashboard.core.jobs import DetectionJobRunner
from vision_dashboard.core.model_registry import ModelRegistry
from vision_dashboard.core.resources import ResourceAcquirer
from vision_dashboard.core.session import SessionController
from vision_dashboard.core.statistics import StatisticsTracker
from vision_dashboard.core.types import Modality, Model, SessionState

logger = logging.getLogger('vision_dashboard.dashboard')


class DetectionDashboard:
    """One session controller per modality sharing a detector, registry and stats."""

    def __init__(
        self,
        runner: DetectionJobRunner,
        registry: ModelRegistry,
        acquirer: ResourceAcquirer,
        statistics: StatisticsTracker | None = None,
        realtime_history_size: int | None = None,
    ) -> None:
        self.runner = runner
        self.registry = registry
        self.acquirer = acquirer
        self.statistics = statistics or StatisticsTracker()
        self.sessions = {
            modality: SessionController(
                modality,
                acquirer=acquirer,
                runner=runner,
                registry=registry,
                statistics=self.statistics,
                history_size=realtime_history_size if modality is Modality.REALTIME else None,
            )
            for modality in Modality
        }

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        detector: Detector | None = None,
        acquirer: ResourceAcquirer | None = None,
    ) -> 'DetectionDashboard':
        runner = DetectionJobRunner(
            detector or create_detector(settings),
            conf_threshold=settings.conf_threshold,
            frame_stride=settings.video_frame_stride,
            tick_interval_s=settings.video_tick_interval_s,
            realtime_interval_s=settings.realtime_interval_s,
        )
        registry = ModelRegistry(settings.model_catalog_path, models_dir=settings.models_dir, max_model_bytes=settings.max_model_bytes)
        if acquirer is None:
            acquirer = ResourceAcquirer(
                max_image_bytes=settings.max_image_bytes,
                max_video_bytes=settings.max_video_bytes,
                camera_index=settings.camera_index,
                camera_size=(settings.camera_width, settings.camera_height),
            )
        return cls(runner, registry, acquirer, realtime_history_size=settings.realtime_history_size)

    def session(self, modality: Modality) -> SessionController:
        return self.sessions[modality]

    def busy_sessions(self) -> list[str]:
        return [modality.value for modality, session in self.sessions.items() if session.is_busy]

    def switch_model(self, model_id: str) -> Model:
        busy = self.busy_sessions()
        if busy:
            raise ModelSwitchRejectedError(model_id, busy)
        return self.registry.set_active(model_id)

    def delete_model(self, model_id: str) -> Model:
        return self.registry.remove(model_id)

    async def shutdown(self) -> None:
        for session in self.sessions.values():
            job = session.job
            if session.is_busy:
                session.stop()
            elif session.state is SessionState.RESOURCE_ACQUIRED:
                session.clear_input()
            elif session.handle is not None:
                session.reset()
            if job is not None:
                await job.wait()
        self.runner.detector.close()
        logger.info('dashboard shut down')
