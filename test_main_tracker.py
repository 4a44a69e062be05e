import pytest

import main_tracker
from frame_sources import LatestFrameSource, PiCameraSource, VideoCaptureSource


def test_config_from_args_defaults():
    config = main_tracker.config_from_args(main_tracker.parse_arguments(["--source", "clip.mp4"]))

    assert config.VIDEO_SOURCE == "clip.mp4"
    assert config.CHANNEL_ORDER == "BGR"
    assert config.DENOISE
    assert config.MAX_FRAMES is None


def test_config_from_args_overrides():
    args = main_tracker.parse_arguments([
        "--source", "2", "--rgb", "--no-denoise", "--min-area", "40", "--max-frames", "10",
        "--snapshot-interval", "5", "--connectivity", "4", "--kernel-size", "5", "--saturation-min", "0.35",
    ])
    config = main_tracker.config_from_args(args)

    assert config.VIDEO_SOURCE == 2
    assert config.CHANNEL_ORDER == "RGB"
    assert not config.DENOISE
    assert config.MIN_AREA == 40
    assert config.MAX_FRAMES == 10
    assert config.SNAPSHOT_INTERVAL == 5
    assert config.CONNECTIVITY == 4
    assert config.MORPH_KERNEL_SIZE == 5
    assert config.SATURATION_MIN == 0.35


def test_build_source_variants():
    config = main_tracker.config_from_args(main_tracker.parse_arguments(["--camera"]))
    camera = main_tracker.build_source(config)
    assert isinstance(camera, VideoCaptureSource) and camera.is_camera

    threaded = main_tracker.build_source(config, threaded=True)
    assert isinstance(threaded, LatestFrameSource)

    pi = main_tracker.build_source(config, picamera=True)
    assert isinstance(pi, PiCameraSource)


def test_missing_source_exits_with_failure(tmp_path, monkeypatch):
    monkeypatch.setattr(main_tracker.signal, "signal", lambda *args: None)
    code = main_tracker.main(["--source", str(tmp_path / "missing.mp4"), "--output-dir", str(tmp_path),
                              "--no-report"])
    assert code == 1


def test_invalid_configuration_exit_code(tmp_path, monkeypatch):
    monkeypatch.setattr(main_tracker.signal, "signal", lambda *args: None)
    assert main_tracker.main(["--saturation-min", "2", "--output-dir", str(tmp_path)]) == 2


def test_unknown_flag_rejected():
    with pytest.raises(SystemExit):
        main_tracker.parse_arguments(["--bogus"])
