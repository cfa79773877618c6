import asyncio

from conftest import FakeCamera, FakeVideoSource, ScriptedDetector
from vision_dashboard.core.jobs import DetectionJobRunner, JobOutcome
from vision_dashboard.core.resources import CameraHandle, VideoHandle
from vision_dashboard.core.types import Model, ModelStatus

MODEL = Model(id='yolov8n', name='YOLOv8-nano', version='v8.0.1', status=ModelStatus.ACTIVE)


class Recorder:
    def __init__(self) -> None:
        self.events: list[tuple] = []

    def progress(self, job, progress) -> None:
        self.events.append(('progress', progress.processed_units))

    def result(self, job, results) -> None:
        self.events.append(('result', len(results)))

    def finish(self, job, outcome, error) -> None:
        self.events.append(('finish', outcome, error))


def test_video_job_reports_each_frame_then_one_batch():
    runner = DetectionJobRunner(ScriptedDetector(limit=3), frame_stride=2)
    recorder = Recorder()

    async def scenario():
        job = runner.start(VideoHandle(FakeVideoSource(6)), MODEL, recorder.progress, recorder.result, recorder.finish)
        await job.wait()

    asyncio.run(scenario())

    assert [e for e in recorder.events if e[0] == 'progress'] == [('progress', n) for n in range(1, 7)]
    assert recorder.events[-2] == ('result', 3)
    assert recorder.events[-1] == ('finish', JobOutcome.COMPLETED, None)


def test_paused_video_job_makes_no_progress_until_resumed():
    runner = DetectionJobRunner(ScriptedDetector())
    recorder = Recorder()

    async def scenario():
        job = runner.start(VideoHandle(FakeVideoSource(5)), MODEL, recorder.progress, recorder.result, recorder.finish)
        runner.pause(job)
        await asyncio.sleep(0.05)
        assert recorder.events == []
        runner.resume(job)
        await job.wait()

    asyncio.run(scenario())

    assert recorder.events[-1][1] is JobOutcome.COMPLETED


def test_realtime_job_emits_nothing_after_cancel():
    runner = DetectionJobRunner(ScriptedDetector(), realtime_interval_s=0.0)
    recorder = Recorder()
    holder = {}

    def progress(job, progress):
        recorder.progress(job, progress)
        if progress.processed_units == 3:
            runner.cancel(holder['job'])

    async def scenario():
        holder['job'] = runner.start(CameraHandle(FakeCamera()), MODEL, progress, recorder.result, recorder.finish)
        await holder['job'].wait()
        await asyncio.sleep(0.01)

    asyncio.run(scenario())

    assert recorder.events[-1] == ('progress', 3)
    assert not any(event[0] == 'finish' for event in recorder.events)


def test_detector_failure_is_reported_as_processing_error():
    runner = DetectionJobRunner(ScriptedDetector(fail_on=2))
    recorder = Recorder()

    async def scenario():
        job = runner.start(VideoHandle(FakeVideoSource(4)), MODEL, recorder.progress, recorder.result, recorder.finish)
        await job.wait()

    asyncio.run(scenario())

    kind, outcome, error = recorder.events[-1]
    assert outcome is JobOutcome.FAILED
    assert error.code == 'PROCESSING_FAILED'
    assert ('result', 0) not in recorder.events
