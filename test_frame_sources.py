import importlib.util
import threading

import numpy as np
import pytest

from demo_video import write_demo_video
from frame import Frame
from frame_sources import (ArraySource, EndOfStream, FrameSource, FrameUnavailable, LatestFrameSource,
                           PiCameraSource, StreamLostError, VideoCaptureSource)


class CountingSource(FrameSource):
    name = "counting"

    def __init__(self, count):
        self.count = count
        self.produced = 0
        self.closed = False

    def read(self):
        if self.produced >= self.count:
            raise EndOfStream("done")
        self.produced += 1
        return Frame.from_array(np.full((4, 4, 3), self.produced, dtype=np.uint8), index=self.produced)

    def close(self):
        self.closed = True


class NeverReadySource(FrameSource):
    name = "never ready"

    def read(self):
        raise FrameUnavailable("nothing yet")


class BrokenSource(FrameSource):
    name = "broken"

    def read(self):
        raise RuntimeError("driver crashed")


class BlockingSource(FrameSource):
    name = "blocking"

    def __init__(self):
        self.reading = threading.Event()
        self.unblock = threading.Event()
        self.closed = False

    def read(self):
        self.reading.set()
        self.unblock.wait(timeout=5)
        if self.closed:
            raise StreamLostError("read on a released device")
        raise FrameUnavailable("still waiting")

    def close(self):
        self.closed = True


def test_array_source_replays_then_ends():
    source = ArraySource([np.zeros((2, 2, 3), dtype=np.uint8)] * 2, "RGB")
    with source:
        first = source.read()
        second = source.read()
        with pytest.raises(EndOfStream):
            source.read()

    assert (first.index, second.index) == (1, 2)
    assert first.channel_order == "RGB"
    assert source.closed


def test_latest_frame_source_drops_stale_frames():
    inner = CountingSource(10)
    source = LatestFrameSource(inner, timeout=0.5)
    source.open()
    source.capture_thread.join(timeout=5)

    frame = source.read()
    assert frame.index == 10
    assert source.dropped_frames == 9

    with pytest.raises(EndOfStream):
        source.read()

    source.close()
    assert inner.closed


def test_latest_frame_source_times_out():
    source = LatestFrameSource(NeverReadySource(), timeout=0.05)
    source.open()
    try:
        with pytest.raises(FrameUnavailable):
            source.read()
    finally:
        source.close()
    assert source.capture_thread is None


def test_latest_frame_source_surfaces_backend_crash():
    source = LatestFrameSource(BrokenSource(), timeout=0.05)
    source.open()
    source.capture_thread.join(timeout=5)
    try:
        with pytest.raises(StreamLostError, match="driver crashed"):
            source.read()
    finally:
        source.close()


def test_latest_frame_source_keeps_device_until_read_returns(caplog):
    inner = BlockingSource()
    source = LatestFrameSource(inner, timeout=0.05, join_timeout=0.05)
    source.open()
    assert inner.reading.wait(timeout=5)
    thread = source.capture_thread

    source.close()
    assert not inner.closed
    assert "still inside blocking" in caplog.text

    inner.unblock.set()
    thread.join(timeout=5)
    assert not thread.is_alive()
    assert inner.closed
    assert source.terminal_error is None


def test_video_capture_open_failure(tmp_path):
    source = VideoCaptureSource(str(tmp_path / "missing.mp4"))
    with pytest.raises(StreamLostError):
        source.open()
    with pytest.raises(StreamLostError):
        source.read()


def test_video_file_reads_until_end(tmp_path):
    path = str(tmp_path / "clip.avi")
    try:
        written = write_demo_video(path, duration=1, fps=5, width=160, height=120)
    except RuntimeError:
        pytest.skip("no video codec available")

    frames = []
    with VideoCaptureSource(path) as source:
        while True:
            try:
                frames.append(source.read())
            except EndOfStream:
                break

    assert written == 5
    assert 0 < len(frames) <= written
    assert frames[0].size == (160, 120)
    assert frames[0].channel_order == "BGR"
    assert [frame.index for frame in frames] == list(range(1, len(frames) + 1))


@pytest.mark.skipif(importlib.util.find_spec("picamera2") is not None, reason="picamera2 installed")
def test_pi_camera_without_picamera2():
    with pytest.raises(StreamLostError, match="picamera2"):
        PiCameraSource().open()
