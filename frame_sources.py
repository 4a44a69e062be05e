"""
Frame sources feeding the frame loop.

Every source offers open(), read() and close(). read() returns a Frame or
raises one of the FrameSourceError subclasses below.
"""

import logging
import queue
import threading
import time
from typing import Iterable, Optional, Union

import cv2
import numpy as np

from frame import Frame

logger = logging.getLogger(__name__)


class FrameSourceError(Exception):
    """Base class for acquisition failures"""


class FrameUnavailable(FrameSourceError):
    """No frame is ready yet; the caller may retry"""


class EndOfStream(FrameSourceError):
    """The source has no more frames (end of a video file)"""


class StreamLostError(FrameSourceError):
    """The source failed and cannot deliver more frames (device lost, open failure)"""


class FrameSource:
    """Common interface and context-manager support for frame sources"""

    name = "source"

    def open(self) -> None:
        pass

    def read(self) -> Frame:
        raise NotImplementedError

    def close(self) -> None:
        pass

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


class VideoCaptureSource(FrameSource):
    """
    OpenCV capture over a camera index or a video file path.

    Camera read failures are transient (FrameUnavailable); for files a failed
    read means the end of the video.
    """

    def __init__(self, source: Union[int, str], width: Optional[int] = None,
                 height: Optional[int] = None, fps: Optional[float] = 30,
                 channel_order: str = "BGR"):
        self.source = source
        self.width = width
        self.height = height
        self.fps = fps
        self.channel_order = channel_order
        self.is_camera = isinstance(source, int)
        self.name = f"camera {source}" if self.is_camera else str(source)
        self.cap = None
        self.frame_index = 0

    def open(self) -> None:
        self.cap = cv2.VideoCapture(self.source)
        if not self.cap.isOpened():
            self.cap = None
            raise StreamLostError(f"Could not open video source: {self.source}")

        if self.is_camera:
            # Set camera properties (only for cameras, not video files)
            if self.width and self.height:
                self.cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
                self.cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
            if self.fps:
                self.cap.set(cv2.CAP_PROP_FPS, self.fps)
            self.cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)
        else:
            frame_count = self.cap.get(cv2.CAP_PROP_FRAME_COUNT)
            fps = self.cap.get(cv2.CAP_PROP_FPS)
            logger.info("Video properties: %d frames, %.1f FPS, %dx%d", frame_count, fps,
                        self.cap.get(cv2.CAP_PROP_FRAME_WIDTH), self.cap.get(cv2.CAP_PROP_FRAME_HEIGHT))

        logger.info("Opened %s", self.name)

    def read(self) -> Frame:
        if self.cap is None:
            raise StreamLostError(f"{self.name} is not open")

        ret, image = self.cap.read()
        if not ret or image is None:
            if self.is_camera:
                raise FrameUnavailable(f"No frame from {self.name}")
            raise EndOfStream(f"End of video {self.name}")

        self.frame_index += 1
        return Frame.from_array(image, self.channel_order, index=self.frame_index)

    def close(self) -> None:
        if self.cap is not None:
            self.cap.release()
            self.cap = None
            logger.info("Released %s", self.name)


class PiCameraSource(FrameSource):
    """
    Raspberry Pi camera through picamera2, delivering RGB frames.

    picamera2 is imported on open() so the module works without it.
    """

    name = "Pi camera"

    def __init__(self, width: int = 640, height: int = 480, buffer_count: int = 2):
        self.width = width
        self.height = height
        self.buffer_count = buffer_count
        self.picam2 = None
        self.frame_index = 0

    def open(self) -> None:
        try:
            from picamera2 import Picamera2
        except ImportError as e:
            raise StreamLostError("picamera2 is not installed; install the 'pi' extra on a Raspberry Pi") from e

        try:
            self.picam2 = Picamera2()
            camera_config = self.picam2.create_video_configuration(
                main={"size": (self.width, self.height), "format": "RGB888"},
                buffer_count=self.buffer_count
            )
            self.picam2.configure(camera_config)
            self.picam2.start()
        except Exception as e:
            self.picam2 = None
            raise StreamLostError(f"Failed to initialize Pi camera: {e}") from e

        logger.info("Pi camera started at %dx%d", self.width, self.height)

    def read(self) -> Frame:
        if self.picam2 is None:
            raise StreamLostError("Pi camera is not open")
        try:
            image = self.picam2.capture_array("main")
        except Exception as e:
            raise StreamLostError(f"Pi camera capture failed: {e}") from e

        self.frame_index += 1
        return Frame.from_array(image, "RGB", index=self.frame_index)

    def close(self) -> None:
        if self.picam2 is not None:
            self.picam2.stop()
            self.picam2 = None
            logger.info("Pi camera stopped")


class ArraySource(FrameSource):
    """Replays in-memory images or prepared Frames; EndOfStream when exhausted"""

    name = "in-memory frames"

    def __init__(self, items: Iterable[Union[np.ndarray, Frame]], channel_order: str = "BGR"):
        self.items = list(items)
        self.channel_order = channel_order
        self.position = 0
        self.closed = False

    def read(self) -> Frame:
        if self.position >= len(self.items):
            raise EndOfStream("No more frames")
        item = self.items[self.position]
        self.position += 1
        if isinstance(item, Frame):
            return item
        return Frame.from_array(item, self.channel_order, index=self.position)

    def close(self) -> None:
        self.closed = True


class LatestFrameSource(FrameSource):
    """
    Threaded capture that always hands out the freshest frame.

    A background thread reads from the wrapped source into a one-slot queue.
    When the consumer is slower than the camera, the undelivered frame is
    replaced, so at most one frame is buffered and stale frames are dropped.
    """

    def __init__(self, inner: FrameSource, timeout: float = 0.5, join_timeout: float = 1.0):
        self.inner = inner
        self.timeout = timeout
        self.join_timeout = join_timeout
        self.name = f"threaded {inner.name}"
        self.frame_queue = queue.Queue(maxsize=1)
        self.capture_thread = None
        self.shutdown_flag = threading.Event()
        self.terminal_error = None
        self.dropped_frames = 0
        self.release_lock = threading.Lock()
        self.inner_released = False

    def open(self) -> None:
        self.inner.open()
        self.inner_released = False
        self.shutdown_flag.clear()
        self.capture_thread = threading.Thread(target=self._capture_frames, daemon=True)
        self.capture_thread.start()
        logger.info("Threaded frame capture started")

    def _offer(self, frame: Frame) -> None:
        # Replace the pending frame instead of blocking the capture thread
        while True:
            try:
                self.frame_queue.put_nowait(frame)
                return
            except queue.Full:
                try:
                    self.frame_queue.get_nowait()
                    self.dropped_frames += 1
                except queue.Empty:
                    pass

    def _capture_frames(self) -> None:
        """Thread function for frame capture"""
        try:
            self._capture_loop()
        finally:
            # Stopped by close(), which may have stopped waiting for this read
            if self.shutdown_flag.is_set():
                self._release_inner()

        logger.debug("Capture thread stopped (dropped %d frames)", self.dropped_frames)

    def _capture_loop(self) -> None:
        while not self.shutdown_flag.is_set():
            try:
                frame = self.inner.read()
            except FrameUnavailable:
                time.sleep(0.001)
                continue
            except (EndOfStream, StreamLostError) as e:
                self.terminal_error = e
                break
            except Exception as e:
                self.terminal_error = StreamLostError(f"Error in capture thread: {e}")
                break
            self._offer(frame)

    def _release_inner(self) -> None:
        with self.release_lock:
            if not self.inner_released:
                self.inner_released = True
                self.inner.close()

    def read(self) -> Frame:
        if self.terminal_error is not None and self.frame_queue.empty():
            raise self.terminal_error
        try:
            return self.frame_queue.get(timeout=self.timeout)
        except queue.Empty:
            pass

        if self.terminal_error is not None:
            raise self.terminal_error
        raise FrameUnavailable(f"No frame from {self.inner.name} within {self.timeout:.2f}s")

    def close(self) -> None:
        self.shutdown_flag.set()
        if self.capture_thread is not None:
            self.capture_thread.join(timeout=self.join_timeout)
            still_running = self.capture_thread.is_alive()
            self.capture_thread = None
            if still_running:
                # Releasing now would pull the device out from under a pending read
                logger.warning("Capture thread still inside %s; it is released when the read returns",
                               self.inner.name)
                return
        self._release_inner()
