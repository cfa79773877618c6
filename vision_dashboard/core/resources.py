"""Acquisition and release of the inputs a detection session runs against.

Every handle is released exactly once: later ``release()`` calls are no-ops,
and teardown waits for any worker thread still reading the resource. The camera is exclusive, so a second
realtime acquisition while one handle is live fails with ``DEVICE_BUSY``.
"""

import asyncio
import logging
import mimetypes
import os
import tempfile
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from vision_dashboard.core.errors import ResourceError, ResourceErrorKind
from vision_dashboard.core.types import Modality
from vision_dashboard.utils.image_io import load_image_from_bytes

logger = logging.getLogger('vision_dashboard.resources')

IMAGE_MEDIA_TYPES = {'image/jpeg', 'image/png', 'image/bmp', 'image/webp'}
VIDEO_MEDIA_TYPES = {'video/mp4', 'video/x-msvideo', 'video/quicktime', 'video/webm', 'video/x-matroska'}
_VIDEO_EXTENSIONS = {'.mp4': 'video/mp4', '.avi': 'video/x-msvideo', '.mov': 'video/quicktime', '.webm': 'video/webm', '.mkv': 'video/x-matroska'}


@dataclass
class MediaPayload:
    data: bytes
    content_type: str | None = None
    filename: str | None = None

    def media_type(self) -> str | None:
        declared = (self.content_type or '').split(';')[0].strip().lower()
        if declared and declared != 'application/octet-stream':
            return declared
        if not self.filename:
            return None
        suffix = Path(self.filename).suffix.lower()
        if suffix in _VIDEO_EXTENSIONS:
            return _VIDEO_EXTENSIONS[suffix]
        guessed, _ = mimetypes.guess_type(self.filename)
        return guessed


class ResourceHandle:
    """Base for acquired inputs.

    Worker threads touch the underlying resource only inside ``in_use()``.
    Those sections are serialized per handle, and a ``release()`` that lands
    while one is running only marks the handle; the last section to exit
    tears the resource down.
    """

    modality: Modality
    released_kind = ResourceErrorKind.DECODE_FAILED

    def __init__(self, on_release: Callable[['ResourceHandle'], None] | None = None) -> None:
        self._released = False
        self._torn_down = False
        self._users = 0
        self._state_lock = threading.Lock()
        self._io_lock = threading.Lock()
        self._on_release = on_release

    @property
    def released(self) -> bool:
        return self._released

    @property
    def torn_down(self) -> bool:
        return self._torn_down

    def release(self) -> None:
        with self._state_lock:
            if self._released:
                return
            self._released = True
            deferred = self._users > 0
        if deferred:
            logger.debug('release deferred until in-flight read returns modality=%s', self.modality.value)
            return
        self._finish_release()

    @contextmanager
    def in_use(self):
        with self._state_lock:
            if self._released:
                raise ResourceError(self.released_kind, 'Input has already been released.')
            self._users += 1
        try:
            with self._io_lock:
                if self._released:
                    raise ResourceError(self.released_kind, 'Input has already been released.')
                yield self
        finally:
            with self._state_lock:
                self._users -= 1
                pending = self._released and self._users == 0
            if pending:
                self._finish_release()

    def use(self, fn: Callable, *args):
        with self.in_use():
            return fn(*args)

    def _finish_release(self) -> None:
        with self._state_lock:
            if self._torn_down:
                return
            self._torn_down = True
        try:
            self._teardown()
        finally:
            if self._on_release is not None:
                self._on_release(self)

    def _teardown(self) -> None:
        raise NotImplementedError


class ImageHandle(ResourceHandle):
    modality = Modality.IMAGE

    def __init__(self, image, filename: str | None = None) -> None:
        super().__init__()
        self.image = image
        self.filename = filename

    @property
    def total_units(self) -> int:
        return 1

    def _teardown(self) -> None:
        self.image.close()


class VideoHandle(ResourceHandle):
    modality = Modality.VIDEO

    def __init__(self, source, path: str | None = None, filename: str | None = None) -> None:
        super().__init__()
        self.source = source
        self.path = path
        self.filename = filename

    @property
    def total_units(self) -> int:
        return int(self.source.frame_count)

    @property
    def fps(self) -> float:
        return float(getattr(self.source, 'fps', 0.0) or 0.0)

    def rewind(self) -> None:
        with self.in_use():
            self.source.seek(0)

    def read_frame(self):
        with self.in_use():
            return self.source.read()

    def frame_at(self, index: int):
        """Random access read; the next ``read_frame`` continues from ``index + 1``."""
        with self.in_use():
            self.source.seek(index)
            return self.source.read()

    def _teardown(self) -> None:
        try:
            self.source.close()
        finally:
            if self.path:
                Path(self.path).unlink(missing_ok=True)


class CameraHandle(ResourceHandle):
    modality = Modality.REALTIME
    released_kind = ResourceErrorKind.DEVICE_UNAVAILABLE

    def __init__(self, source, on_release: Callable[[ResourceHandle], None] | None = None) -> None:
        super().__init__(on_release=on_release)
        self.source = source

    @property
    def total_units(self) -> None:
        return None

    def read_frame(self):
        with self.in_use():
            return self.source.read()

    def _teardown(self) -> None:
        self.source.close()


def _spool_to_tempfile(data: bytes, suffix: str) -> str:
    fd, path = tempfile.mkstemp(prefix='vision-dashboard-', suffix=suffix)
    with os.fdopen(fd, 'wb') as fh:
        fh.write(data)
    return path


class ResourceAcquirer:
    def __init__(
        self,
        max_image_bytes: int = 8 * 1024 * 1024,
        max_video_bytes: int = 256 * 1024 * 1024,
        camera_index: int = 0,
        camera_size: tuple[int, int] = (1280, 720),
        video_opener: Callable | None = None,
        camera_opener: Callable | None = None,
    ) -> None:
        if video_opener is None or camera_opener is None:
            from vision_dashboard.utils.video_io import open_camera, open_video_file

            video_opener = video_opener or open_video_file
            camera_opener = camera_opener or open_camera
        self._max_image_bytes = max_image_bytes
        self._max_video_bytes = max_video_bytes
        self._camera_index = camera_index
        self._camera_size = camera_size
        self._video_opener = video_opener
        self._camera_opener = camera_opener
        self._camera_reserved = False
        self._camera_handle: CameraHandle | None = None

    @property
    def camera_in_use(self) -> bool:
        return self._camera_reserved

    async def acquire(self, modality: Modality, source: MediaPayload | None = None) -> ResourceHandle:
        if modality is Modality.IMAGE:
            return await self._acquire_image(source)
        if modality is Modality.VIDEO:
            return await self._acquire_video(source)
        return await self._acquire_camera()

    def release(self, handle: ResourceHandle | None) -> None:
        if handle is None:
            return
        handle.release()

    def _check_payload(self, source: MediaPayload | None, allowed: set[str], max_bytes: int, kind: str) -> str:
        if source is None or not source.data:
            raise ResourceError(ResourceErrorKind.EMPTY_INPUT, f'Missing {kind} upload (field name: file).')
        media_type = source.media_type()
        if media_type not in allowed:
            raise ResourceError(
                ResourceErrorKind.UNSUPPORTED_MEDIA,
                f'Unsupported {kind} type {media_type!r}.',
                details={'supported': sorted(allowed)},
            )
        if len(source.data) > max_bytes:
            raise ResourceError(ResourceErrorKind.INPUT_TOO_LARGE, f'{kind.capitalize()} too large. Max {max_bytes} bytes.')
        return media_type

    async def _acquire_image(self, source: MediaPayload | None) -> ImageHandle:
        self._check_payload(source, IMAGE_MEDIA_TYPES, self._max_image_bytes, 'image')
        image = await asyncio.to_thread(load_image_from_bytes, source.data, self._max_image_bytes)
        logger.info('image acquired filename=%s size=%s', source.filename, image.size)
        return ImageHandle(image, filename=source.filename)

    def _open_video(self, data: bytes, suffix: str):
        path = _spool_to_tempfile(data, suffix)
        try:
            return self._video_opener(path), path
        except BaseException:
            Path(path).unlink(missing_ok=True)
            raise

    async def _acquire_video(self, source: MediaPayload | None) -> VideoHandle:
        media_type = self._check_payload(source, VIDEO_MEDIA_TYPES, self._max_video_bytes, 'video')
        suffix = mimetypes.guess_extension(media_type) or '.mp4'
        try:
            frame_source, path = await asyncio.to_thread(self._open_video, source.data, suffix)
        except ResourceError:
            raise
        except Exception as exc:
            raise ResourceError(ResourceErrorKind.DECODE_FAILED, 'Could not open video stream.') from exc
        handle = VideoHandle(frame_source, path=path, filename=source.filename)
        if handle.total_units <= 0:
            handle.release()
            raise ResourceError(ResourceErrorKind.DECODE_FAILED, 'Video has no decodable frames.')
        logger.info('video acquired filename=%s frames=%s fps=%s', source.filename, handle.total_units, handle.fps)
        return handle

    async def _acquire_camera(self) -> CameraHandle:
        if self._camera_reserved:
            raise ResourceError(ResourceErrorKind.DEVICE_BUSY, 'Camera is already in use by another session.')
        self._camera_reserved = True
        width, height = self._camera_size
        opened = False
        try:
            frame_source = await asyncio.to_thread(self._camera_opener, self._camera_index, width, height)
            opened = True
        except ResourceError:
            raise
        except Exception as exc:
            raise ResourceError(
                ResourceErrorKind.DEVICE_UNAVAILABLE,
                f'Camera {self._camera_index} is unavailable: {exc}',
            ) from exc
        finally:
            if not opened:
                self._camera_reserved = False
        handle = CameraHandle(frame_source, on_release=self._camera_released)
        self._camera_handle = handle
        return handle

    def _camera_released(self, handle: ResourceHandle) -> None:
        if handle is self._camera_handle:
            self._camera_handle = None
            self._camera_reserved = False
