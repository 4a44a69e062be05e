import numpy as np
import pytest

import demo_video
from demo_video import render_demo_frame, target_position
from frame import Frame
from red_detector import RedDetector


def test_demo_frames_are_deterministic():
    assert np.array_equal(render_demo_frame(12, 320, 240), render_demo_frame(12, 320, 240))
    assert not np.array_equal(render_demo_frame(12, 320, 240), render_demo_frame(13, 320, 240))


def test_detector_finds_demo_target_not_decoy():
    detector = RedDetector()
    for frame_num in (0, 17, 45, 90):
        image = render_demo_frame(frame_num, 320, 240)
        result = detector.process(Frame.from_array(image, "BGR", index=frame_num), annotate=False)

        (x, y), radius = target_position(frame_num, 320, 240, 30)
        cx, cy = result.detection.centroid
        assert abs(cx - x) <= 1 and abs(cy - y) <= 1
        expected = (x - radius, y - radius, x + radius, y + radius)
        assert all(abs(got - want) <= 1 for got, want in zip(result.detection.bbox, expected))


@pytest.mark.parametrize("width, height", [(40, 40), (32, 24), (8, 6), (1, 1)])
def test_small_demo_frames_render(width, height):
    frame = render_demo_frame(5, width, height)
    assert frame.shape == (height, width, 3)
    assert frame.dtype == np.uint8


@pytest.mark.parametrize("flag", ["--width", "--height", "--fps"])
def test_demo_main_rejects_non_positive_sizes(flag, tmp_path):
    with pytest.raises(SystemExit):
        demo_video.main(["--output", str(tmp_path / "demo.avi"), flag, "0"])
