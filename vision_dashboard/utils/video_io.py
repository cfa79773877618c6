"""OpenCV-backed frame sources for uploaded videos and the local camera.

Both sources hand out Pillow RGB images so every detector provider sees the
same input type regardless of modality.
"""

import logging

import cv2
from PIL import Image

from vision_dashboard.core.errors import ResourceError, ResourceErrorKind

logger = logging.getLogger('vision_dashboard.video_io')


def _to_pil(frame) -> Image.Image:
    return Image.fromarray(cv2.cvtColor(frame, cv2.COLOR_BGR2RGB))


class OpenCVVideoSource:
    def __init__(self, path: str) -> None:
        self.path = path
        self._cap = cv2.VideoCapture(path)
        if not self._cap.isOpened():
            self._cap.release()
            raise ResourceError(ResourceErrorKind.DECODE_FAILED, 'Could not open video stream.')
        self.frame_count = int(self._cap.get(cv2.CAP_PROP_FRAME_COUNT) or 0)
        self.fps = float(self._cap.get(cv2.CAP_PROP_FPS) or 0.0)
        if self.frame_count <= 0:
            self._cap.release()
            raise ResourceError(ResourceErrorKind.DECODE_FAILED, 'Video has no decodable frames.')

    def read(self) -> Image.Image | None:
        ok, frame = self._cap.read()
        if not ok or frame is None:
            return None
        return _to_pil(frame)

    def seek(self, index: int) -> None:
        self._cap.set(cv2.CAP_PROP_POS_FRAMES, max(0, int(index)))

    def close(self) -> None:
        if self._cap.isOpened():
            self._cap.release()


class OpenCVCameraSource:
    def __init__(self, index: int, width: int, height: int) -> None:
        self.index = index
        self._cap = cv2.VideoCapture(index)
        if not self._cap.isOpened():
            # A capture that failed to open may still hold a backend handle.
            self._cap.release()
            raise ResourceError(
                ResourceErrorKind.DEVICE_UNAVAILABLE,
                f'Camera {index} is unavailable. Check that it is connected and access is permitted.',
            )
        self._cap.set(cv2.CAP_PROP_FRAME_WIDTH, width)
        self._cap.set(cv2.CAP_PROP_FRAME_HEIGHT, height)
        self.width = int(self._cap.get(cv2.CAP_PROP_FRAME_WIDTH) or width)
        self.height = int(self._cap.get(cv2.CAP_PROP_FRAME_HEIGHT) or height)
        logger.info('camera opened index=%s width=%s height=%s', index, self.width, self.height)

    def read(self) -> Image.Image | None:
        ok, frame = self._cap.read()
        if not ok or frame is None:
            return None
        return _to_pil(frame)

    def close(self) -> None:
        if self._cap.isOpened():
            self._cap.release()
            logger.info('camera released index=%s', self.index)


def open_video_file(path: str) -> OpenCVVideoSource:
    return OpenCVVideoSource(path)


def open_camera(index: int, width: int, height: int) -> OpenCVCameraSource:
    return OpenCVCameraSource(index, width, height)
