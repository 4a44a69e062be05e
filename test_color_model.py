import numpy as np
import pytest

from red_detector import frame_to_hsv, rgb_to_hsv

SAMPLES = list(range(0, 256, 15)) + [254, 255]


def test_hsv_ranges_for_all_sampled_pixels():
    for r in SAMPLES:
        for g in SAMPLES:
            for b in SAMPLES:
                h, s, v = rgb_to_hsv(r, g, b)
                assert 0.0 <= h < 360.0
                assert 0.0 <= s <= 1.0
                assert 0.0 <= v <= 1.0


@pytest.mark.parametrize("level", [0, 1, 64, 128, 255])
def test_gray_has_zero_saturation_and_hue(level):
    h, s, v = rgb_to_hsv(level, level, level)
    assert h == 0.0
    assert s == 0.0
    assert v == pytest.approx(level / 255.0)


@pytest.mark.parametrize("rgb, hue", [
    ((255, 0, 0), 0.0),
    ((255, 255, 0), 60.0),
    ((0, 255, 0), 120.0),
    ((0, 255, 255), 180.0),
    ((0, 0, 255), 240.0),
    ((255, 0, 255), 300.0),
])
def test_primary_and_secondary_hues(rgb, hue):
    h, s, v = rgb_to_hsv(*rgb)
    assert h == pytest.approx(hue)
    assert s == pytest.approx(1.0)
    assert v == pytest.approx(1.0)


def test_negative_hue_wraps_below_360():
    # Red max with blue slightly above green lands just under 360
    h, _, _ = rgb_to_hsv(255, 0, 10)
    assert 350.0 < h < 360.0


def test_black_is_zero():
    assert rgb_to_hsv(0, 0, 0) == (0.0, 0.0, 0.0)


def test_red_wins_ties_with_green():
    # r == g == max: the red sector formula applies, giving 60 degrees
    h, _, _ = rgb_to_hsv(200, 200, 0)
    assert h == pytest.approx(60.0)


def test_frame_conversion_matches_scalar():
    rng = np.random.default_rng(7)
    pixels = rng.integers(0, 256, size=(1, 500, 3), dtype=np.uint8)
    pixels[0, :5] = [[255, 0, 0], [0, 0, 0], [90, 90, 90], [255, 0, 10], [10, 200, 200]]

    hsv = frame_to_hsv(pixels, "RGB")
    assert hsv.dtype == np.float64
    assert hsv.shape == (1, 500, 3)

    for i in range(pixels.shape[1]):
        expected = rgb_to_hsv(*[int(c) for c in pixels[0, i]])
        assert tuple(hsv[0, i]) == expected


def test_frame_conversion_honors_channel_order():
    bgr = np.array([[[0, 0, 255]]], dtype=np.uint8)
    rgb = np.array([[[255, 0, 0]]], dtype=np.uint8)
    assert frame_to_hsv(bgr, "BGR")[0, 0] == pytest.approx(frame_to_hsv(rgb, "RGB")[0, 0])
    assert frame_to_hsv(bgr, "RGB")[0, 0, 0] == 240.0


@pytest.mark.parametrize("rgb, hue", [
    ((60, 45, 40), 15.0),
    ((255, 0, 85), 340.0),
    ((255, 0, 0), 0.0),
])
def test_boundary_hues_are_exact(rgb, hue):
    assert rgb_to_hsv(*rgb)[0] == hue


@pytest.mark.parametrize("rgb, saturation", [
    ((255, 204, 204), 0.2),
    ((75, 60, 60), 0.2),
    ((255, 0, 0), 1.0),
])
def test_boundary_saturations_are_exact(rgb, saturation):
    assert rgb_to_hsv(*rgb)[1] == saturation
    assert frame_to_hsv(np.array([[rgb]], dtype=np.uint8), "RGB")[0, 0, 1] == saturation
