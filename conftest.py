import numpy as np
import pytest

from frame import Frame
from red_detector import Config

RED_RGB = (255, 0, 0)
GREEN_RGB = (0, 255, 0)


def draw_rects(width, height, rects, background=(0, 0, 0)):
    """RGB image with filled rectangles given as (x0, y0, x1, y1, rgb), inclusive corners"""
    image = np.zeros((height, width, 3), dtype=np.uint8)
    image[:] = background
    for x0, y0, x1, y1, color in rects:
        image[y0:y1 + 1, x0:x1 + 1] = color
    return image


def rgb_frame(width, height, rects, index=0):
    return Frame.from_array(draw_rects(width, height, rects), "RGB", index=index)


def mask_with_rects(width, height, rects):
    """uint8 0/1 mask with filled rectangles given as (x0, y0, x1, y1), inclusive corners"""
    mask = np.zeros((height, width), dtype=np.uint8)
    for x0, y0, x1, y1 in rects:
        mask[y0:y1 + 1, x0:x1 + 1] = 1
    return mask


@pytest.fixture
def config():
    return Config()


@pytest.fixture
def red_square_frame():
    """100x100 black frame with a solid red square on rows 10-20, columns 10-20"""
    return rgb_frame(100, 100, [(10, 10, 20, 20, RED_RGB)])
