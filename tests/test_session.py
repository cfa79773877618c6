import asyncio
import threading
import time

import pytest
from PIL import Image

from conftest import ScriptedDetector, make_image_bytes, make_runner
from vision_dashboard.core.dashboard import DetectionDashboard
from vision_dashboard.core.errors import InvalidTransitionError, ModelSwitchRejectedError, ResourceError, ResourceErrorKind
from vision_dashboard.core.resources import MediaPayload, ResourceAcquirer
from vision_dashboard.core.types import Modality, SessionState
from vision_dashboard.providers.dummy_provider import DummyProvider

IMAGE = MediaPayload(data=make_image_bytes(), content_type='image/jpeg', filename='street.jpg')
VIDEO = MediaPayload(data=b'\x00' * 64, content_type='video/mp4', filename='traffic.mp4')


def _dashboard(detector, acquirer, registry) -> DetectionDashboard:
    return DetectionDashboard(make_runner(detector), registry, acquirer)


def test_image_session_completes_and_releases_input(acquirer, registry):
    dashboard = _dashboard(DummyProvider(), acquirer, registry)
    session = dashboard.session(Modality.IMAGE)

    async def scenario():
        await session.acquire_input(IMAGE)
        assert session.state is SessionState.RESOURCE_ACQUIRED
        session.start_detection()
        assert session.state is SessionState.RUNNING
        await session.wait()

    asyncio.run(scenario())

    snapshot = session.snapshot()
    assert snapshot.state is SessionState.COMPLETED
    assert [r.label for r in snapshot.results] == ['person', 'car', 'bicycle']
    assert snapshot.progress.percent == 100
    assert snapshot.selected_model_id == 'yolov8n'
    assert session.handle is None
    assert snapshot.input_name == 'street.jpg'


def test_video_scenario_reaches_completed_with_aggregated_results(acquirer, registry, video_sources):
    dashboard = _dashboard(ScriptedDetector(limit=127), acquirer, registry)
    session = dashboard.session(Modality.VIDEO)
    processed_seen: list[int] = []
    session.subscribe(lambda snap: processed_seen.append(snap.counters.processed_frames))

    async def scenario():
        await session.acquire_input(VIDEO)
        session.start_detection()
        await session.wait()

    asyncio.run(scenario())

    snapshot = session.snapshot()
    assert snapshot.state is SessionState.COMPLETED
    assert len(snapshot.results) == 127
    assert snapshot.counters.processed_frames == snapshot.counters.total_frames == 450
    assert snapshot.counters.detected_objects == 127
    assert processed_seen == sorted(processed_seen)
    assert max(processed_seen) <= 450
    # Video keeps its input after completion so frames can be previewed.
    assert session.handle is not None
    session.reset()
    assert session.handle is None
    assert video_sources[0].close_calls == 1


def test_realtime_history_keeps_last_twenty_events(acquirer, registry, cameras):
    dashboard = _dashboard(ScriptedDetector(), acquirer, registry)
    session = dashboard.session(Modality.REALTIME)
    lengths: list[int] = []

    def stop_after_25(snapshot):
        lengths.append(len(snapshot.results))
        if snapshot.state is SessionState.RUNNING and snapshot.progress.processed_units == 25:
            session.stop()

    session.subscribe(stop_after_25)

    async def scenario():
        await session.acquire_input()
        session.start_detection()
        job = session.job
        await job.wait()

    asyncio.run(scenario())

    results = session.results
    assert session.state is SessionState.CANCELLED
    assert len(results) == 20
    assert results[0].label == 'obj-25'
    assert results[-1].label == 'obj-6'
    assert max(lengths) <= 20
    assert session.last_error is None
    assert session.handle is None
    assert cameras[0].close_calls == 1


def test_camera_permission_denied_leaves_session_idle(registry):
    def deny(index, width, height):
        raise PermissionError('permission denied')

    acquirer = ResourceAcquirer(video_opener=lambda path: None, camera_opener=deny)
    session = _dashboard(ScriptedDetector(), acquirer, registry).session(Modality.REALTIME)

    with pytest.raises(ResourceError) as excinfo:
        asyncio.run(session.acquire_input())

    assert excinfo.value.kind is ResourceErrorKind.DEVICE_UNAVAILABLE
    assert session.state is SessionState.IDLE
    assert session.handle is None
    assert session.snapshot().last_error.code == 'DEVICE_UNAVAILABLE'


@pytest.mark.parametrize('modality, payload', [(Modality.IMAGE, IMAGE), (Modality.VIDEO, VIDEO), (Modality.REALTIME, None)])
def test_cancelling_running_session_releases_resource(acquirer, registry, modality, payload):
    session = _dashboard(ScriptedDetector(), acquirer, registry).session(modality)
    snapshots = []

    async def scenario():
        await session.acquire_input(payload)
        session.start_detection()
        job = session.job
        session.stop()
        session.subscribe(snapshots.append)
        await job.wait()

    asyncio.run(scenario())

    assert session.state is SessionState.CANCELLED
    assert session.handle is None
    assert session.last_error is None
    assert snapshots == []


def test_video_cancel_mid_run_drops_later_events(acquirer, registry):
    session = _dashboard(ScriptedDetector(), acquirer, registry).session(Modality.VIDEO)
    seen = []

    def stop_at_ten(snapshot):
        seen.append(snapshot.state)
        if snapshot.state is SessionState.RUNNING and snapshot.progress.processed_units == 10:
            session.stop()

    session.subscribe(stop_at_ten)

    async def scenario():
        await session.acquire_input(VIDEO)
        session.start_detection()
        job = session.job
        await job.wait()

    asyncio.run(scenario())

    assert seen[-1] is SessionState.CANCELLED
    assert session.snapshot().counters.processed_frames == 10
    assert session.results == ()


def test_model_switch_rejected_while_running(acquirer, registry):
    dashboard = _dashboard(ScriptedDetector(), acquirer, registry)
    session = dashboard.session(Modality.VIDEO)

    async def scenario():
        await session.acquire_input(VIDEO)
        session.start_detection()
        session.pause()
        with pytest.raises(ModelSwitchRejectedError):
            dashboard.switch_model('yolov8s')
        assert session.selected_model_id == 'yolov8n'
        assert registry.active().id == 'yolov8n'
        session.resume()
        with pytest.raises(ModelSwitchRejectedError):
            dashboard.switch_model('yolov8s')
        job = session.job
        session.stop()
        await job.wait()

    asyncio.run(scenario())

    assert dashboard.switch_model('yolov8s').id == 'yolov8s'
    assert session.selected_model_id == 'yolov8n'


def test_processing_error_fails_session(acquirer, registry):
    session = _dashboard(ScriptedDetector(fail_on=1), acquirer, registry).session(Modality.IMAGE)

    async def scenario():
        await session.acquire_input(IMAGE)
        session.start_detection()
        await session.wait()

    asyncio.run(scenario())

    assert session.state is SessionState.FAILED
    assert session.last_error.code == 'PROCESSING_FAILED'
    assert session.handle is None


def test_invalid_commands_are_rejected_without_side_effects(acquirer, registry):
    session = _dashboard(ScriptedDetector(), acquirer, registry).session(Modality.IMAGE)

    with pytest.raises(InvalidTransitionError):
        session.start_detection()
    with pytest.raises(InvalidTransitionError):
        session.stop()
    with pytest.raises(InvalidTransitionError):
        session.pause()

    assert session.state is SessionState.IDLE
    assert session.reset().state is SessionState.IDLE


def test_new_input_after_completion_resets_previous_run(acquirer, registry):
    session = _dashboard(DummyProvider(), acquirer, registry).session(Modality.IMAGE)

    async def scenario():
        await session.acquire_input(IMAGE)
        session.start_detection()
        await session.wait()
        assert len(session.results) == 3
        await session.acquire_input(IMAGE)

    asyncio.run(scenario())

    assert session.state is SessionState.RESOURCE_ACQUIRED
    assert session.results == ()
    session.clear_input()
    assert session.state is SessionState.IDLE
    assert session.handle is None


def test_preview_then_start_still_processes_every_frame(acquirer, registry, video_sources):
    session = _dashboard(ScriptedDetector(limit=127), acquirer, registry).session(Modality.VIDEO)

    async def scenario():
        await session.acquire_input(VIDEO)
        frame = await session.preview_frame(300)
        assert frame is not None
        session.start_detection()
        await session.wait()

    asyncio.run(scenario())

    counters = session.snapshot().counters
    assert session.state is SessionState.COMPLETED
    assert counters.processed_frames == counters.total_frames == 450
    assert len(session.results) == 127


def test_preview_is_limited_to_idle_video_input(acquirer, registry):
    dashboard = _dashboard(ScriptedDetector(), acquirer, registry)
    video = dashboard.session(Modality.VIDEO)

    async def scenario():
        with pytest.raises(InvalidTransitionError):
            await dashboard.session(Modality.IMAGE).preview_frame(0)
        with pytest.raises(InvalidTransitionError):
            await video.preview_frame(0)
        await video.acquire_input(VIDEO)
        assert await video.preview_frame(9999) is None
        video.start_detection()
        with pytest.raises(InvalidTransitionError):
            await video.preview_frame(0)
        await video.wait()
        assert await video.preview_frame(10) is not None

    asyncio.run(scenario())

    assert video.state is SessionState.COMPLETED


def test_start_and_clear_wait_for_in_flight_preview(acquirer, registry):
    session = _dashboard(ScriptedDetector(), acquirer, registry).session(Modality.VIDEO)

    async def scenario():
        await session.acquire_input(VIDEO)
        preview = asyncio.create_task(session.preview_frame(5))
        await asyncio.sleep(0)
        with pytest.raises(InvalidTransitionError) as excinfo:
            session.start_detection()
        assert excinfo.value.details['state'] == 'previewing'
        with pytest.raises(InvalidTransitionError):
            session.clear_input()
        assert await preview is not None
        session.start_detection()
        await session.wait()

    asyncio.run(scenario())

    assert session.snapshot().counters.processed_frames == 450


class SlowCamera:
    def __init__(self, delay: float = 0.2) -> None:
        self.delay = delay
        self.reading = threading.Event()
        self.closed = threading.Event()
        self.in_read = False
        self.closed_during_read = False
        self.close_calls = 0

    def read(self):
        self.in_read = True
        self.reading.set()
        time.sleep(self.delay)
        self.in_read = False
        return Image.new('RGB', (64, 48), color='black')

    def close(self) -> None:
        self.closed_during_read = self.closed_during_read or self.in_read
        self.close_calls += 1
        self.closed.set()


def test_stop_during_camera_read_defers_close_until_read_returns(registry):
    camera = SlowCamera()
    acquirer = ResourceAcquirer(video_opener=lambda path: None, camera_opener=lambda index, width, height: camera)
    session = _dashboard(ScriptedDetector(), acquirer, registry).session(Modality.REALTIME)

    async def scenario():
        await session.acquire_input()
        session.start_detection()
        assert await asyncio.to_thread(camera.reading.wait, 2)
        session.stop()
        assert session.handle is None
        assert camera.close_calls == 0
        assert await asyncio.to_thread(camera.closed.wait, 2)

    asyncio.run(scenario())

    assert session.state is SessionState.CANCELLED
    assert camera.close_calls == 1
    assert not camera.closed_during_read
    assert not acquirer.camera_in_use


class SlowDetector(ScriptedDetector):
    def __init__(self, delay: float = 0.2) -> None:
        super().__init__()
        self.delay = delay
        self.started = threading.Event()
        self.handle = None
        self.torn_down_during_detect = None

    def detect(self, image, model_id=None):
        self.started.set()
        time.sleep(self.delay)
        self.torn_down_during_detect = self.handle.torn_down
        return super().detect(image, model_id)


def test_stop_during_image_detection_keeps_image_open_until_detector_returns(acquirer, registry):
    detector = SlowDetector()
    session = _dashboard(detector, acquirer, registry).session(Modality.IMAGE)

    async def scenario():
        await session.acquire_input(IMAGE)
        detector.handle = handle = session.handle
        session.start_detection()
        assert await asyncio.to_thread(detector.started.wait, 2)
        session.stop()
        assert session.handle is None
        assert handle.released
        while not handle.torn_down:
            await asyncio.sleep(0.01)

    asyncio.run(scenario())

    assert detector.torn_down_during_detect is False
    assert session.results == ()


def test_realtime_history_holds_detections_not_ticks(acquirer, registry):
    session = _dashboard(DummyProvider(), acquirer, registry).session(Modality.REALTIME)

    def stop_after_ten(snapshot):
        if snapshot.state is SessionState.RUNNING and snapshot.progress.processed_units == 10:
            session.stop()

    session.subscribe(stop_after_ten)

    async def scenario():
        await session.acquire_input()
        session.start_detection()
        job = session.job
        await job.wait()

    asyncio.run(scenario())

    results = session.results
    assert len(results) == 20
    assert [r.label for r in results[:3]] == ['person', 'car', 'bicycle']
    assert results[0].frame_index == 9
    assert [(r.label, r.frame_index) for r in results[-2:]] == [('person', 3), ('car', 3)]
