"""
Red Target Detection Pipeline

Per-frame color detection: HSV conversion, dual-range hue segmentation,
morphological noise filtering, connected-region extraction and
bounding-box/centroid summary. Every frame is processed from scratch;
nothing is carried over between frames.
"""

import logging
import math
import os
from enum import Enum
from typing import List, NamedTuple, Optional, Sequence, Tuple

import cv2
import numpy as np

from frame import CHANNEL_ORDERS, Frame, MalformedFrameError

logger = logging.getLogger(__name__)

# =============================================================================
# CONFIGURATION & PARAMETERS
# =============================================================================

class Config:
    """
    Configuration parameters for red target detection.

    Class attributes hold the defaults. Instances accept keyword overrides of
    the same names, e.g. Config(MIN_AREA=50, DENOISE=False).
    """

    # Video source: camera index or video file path
    VIDEO_SOURCE = os.getenv("RED_TRACKER_SOURCE", "0")
    if VIDEO_SOURCE.isdigit():
        VIDEO_SOURCE = int(VIDEO_SOURCE)

    # Capture size requested from cameras (video files keep their own size)
    FRAME_WIDTH = 640
    FRAME_HEIGHT = 480
    CHANNEL_ORDER = "BGR"

    # Red wraps around 0/360 degrees in HSV, so two hue ranges are needed.
    # Hue in degrees [0, 360), saturation and value in [0, 1].
    HUE_RANGES = ((0.0, 15.0), (345.0, 360.0))
    SATURATION_MIN = 0.2
    VALUE_MIN = 0.2

    # Noise filtering (open, then close)
    DENOISE = True
    MORPH_SHAPE = "rect"        # "rect" or "ellipse"
    MORPH_KERNEL_SIZE = 3       # odd, 3-5 pixels

    # Region extraction
    CONNECTIVITY = 8            # 4 or 8
    MIN_AREA = 1                # minimum region area in pixels

    # Frame loop
    ANNOTATE = True
    DISPLAY = False
    CSV_OUTPUT = False
    MAX_FRAMES = None           # None = run until stopped
    SNAPSHOT_INTERVAL = 0       # save every Nth frame, 0 = never
    STATUS_INTERVAL = 150       # log a status line every N frames
    OUTPUT_DIR = "tracker_output"
    SAVE_REPORT = True
    ACQUIRE_RETRY_DELAY = 0.01  # seconds between retries when no frame is ready
    ACQUIRE_MAX_RETRIES = 500   # None = retry forever

    def __init__(self, **overrides):
        for name, value in overrides.items():
            if not name.isupper() or not hasattr(Config, name):
                raise TypeError(f"Unknown configuration parameter: {name}")
            setattr(self, name, value)
        self.HUE_RANGES = tuple((float(low), float(high)) for low, high in self.HUE_RANGES)
        self.validate()

    def validate(self):
        """Raise ValueError for out-of-range parameters"""
        if not self.HUE_RANGES:
            raise ValueError("At least one hue range is required")
        for low, high in self.HUE_RANGES:
            if not 0.0 <= low <= high <= 360.0:
                raise ValueError(f"Invalid hue range ({low}, {high}): need 0 <= low <= high <= 360")
        if not 0.0 <= self.SATURATION_MIN <= 1.0:
            raise ValueError(f"SATURATION_MIN must be in [0, 1], got {self.SATURATION_MIN}")
        if not 0.0 <= self.VALUE_MIN <= 1.0:
            raise ValueError(f"VALUE_MIN must be in [0, 1], got {self.VALUE_MIN}")
        if self.MORPH_SHAPE not in ("rect", "ellipse"):
            raise ValueError(f"MORPH_SHAPE must be 'rect' or 'ellipse', got {self.MORPH_SHAPE!r}")
        if self.MORPH_KERNEL_SIZE not in (3, 5):
            raise ValueError(f"MORPH_KERNEL_SIZE must be 3 or 5, got {self.MORPH_KERNEL_SIZE}")
        if self.CONNECTIVITY not in (4, 8):
            raise ValueError(f"CONNECTIVITY must be 4 or 8, got {self.CONNECTIVITY}")
        if self.MIN_AREA < 1:
            raise ValueError(f"MIN_AREA must be at least 1, got {self.MIN_AREA}")
        if self.CHANNEL_ORDER not in CHANNEL_ORDERS:
            raise ValueError(f"CHANNEL_ORDER must be one of {CHANNEL_ORDERS}, got {self.CHANNEL_ORDER!r}")
        if self.SNAPSHOT_INTERVAL < 0:
            raise ValueError(f"SNAPSHOT_INTERVAL must be >= 0, got {self.SNAPSHOT_INTERVAL}")
        if self.STATUS_INTERVAL < 0:
            raise ValueError(f"STATUS_INTERVAL must be >= 0, got {self.STATUS_INTERVAL}")
        if self.MAX_FRAMES is not None and self.MAX_FRAMES < 0:
            raise ValueError(f"MAX_FRAMES must be >= 0, got {self.MAX_FRAMES}")
        if self.ACQUIRE_MAX_RETRIES is not None and self.ACQUIRE_MAX_RETRIES < 0:
            raise ValueError(f"ACQUIRE_MAX_RETRIES must be >= 0, got {self.ACQUIRE_MAX_RETRIES}")

    def as_dict(self) -> dict:
        """Current parameter values, used in session reports"""
        return {name.lower(): getattr(self, name) for name in dir(Config) if name.isupper()}

# =============================================================================
# COLOR MODEL
# =============================================================================

def rgb_to_hsv(r: int, g: int, b: int) -> Tuple[float, float, float]:
    """
    Convert one 8-bit RGB sample to HSV.

    Args:
        r, g, b: Channel values in [0, 255]

    Returns:
        (hue, saturation, value) with hue in [0, 360) degrees and
        saturation/value in [0, 1]
    """
    r, g, b = int(r), int(g), int(b)
    high = max(r, g, b)
    low = min(r, g, b)
    delta = high - low

    # Integer channel differences keep exact boundary hues and saturations exact
    if delta == 0:
        hue = 0.0
    elif high == r:
        hue = 60 * (g - b) / delta
    elif high == g:
        hue = 60 * (b - r) / delta + 120.0
    else:
        hue = 60 * (r - g) / delta + 240.0

    if hue < 0:
        hue += 360.0

    saturation = 0.0 if high == 0 else delta / high
    return hue, saturation, high / 255.0


def frame_to_hsv(image: np.ndarray, channel_order: str = "BGR") -> np.ndarray:
    """
    Convert a whole uint8 image to float64 HSV in the same convention as rgb_to_hsv.

    Uses the same integer formulas per pixel, so a pixel sitting exactly on a
    saturation, value or hue boundary classifies the same way in both paths.
    """
    first, second, third = (channel.astype(np.int32) for channel in cv2.split(image))
    r, g, b = (third, second, first) if channel_order == "BGR" else (first, second, third)

    high = np.maximum(np.maximum(r, g), b)
    low = np.minimum(np.minimum(r, g), b)
    delta = high - low
    safe_delta = np.where(delta == 0, 1, delta)

    # Max channel picked in r, g, b order
    hue = np.where(high == r, 60 * (g - b) / safe_delta,
                   np.where(high == g, 60 * (b - r) / safe_delta + 120.0,
                            60 * (r - g) / safe_delta + 240.0))
    hue[delta == 0] = 0.0
    hue[hue < 0] += 360.0

    saturation = np.where(high == 0, 0.0, delta / np.where(high == 0, 1, high))
    value = high / 255.0
    return cv2.merge((hue, saturation, value))

# =============================================================================
# SEGMENTATION
# =============================================================================

def is_target_hsv(hue: float, saturation: float, value: float, config: Config) -> bool:
    """Classify a single HSV pixel with the same rule segment() applies to a frame"""
    if saturation < config.SATURATION_MIN or value < config.VALUE_MIN:
        return False
    return any(low <= hue <= high for low, high in config.HUE_RANGES)


def segment(hsv: np.ndarray, config: Config) -> np.ndarray:
    """
    Create binary mask for target color detection using HSV thresholding.
    Handles red color which wraps around in HSV space.

    Args:
        hsv: float64 HSV frame from frame_to_hsv
        config: Detection configuration

    Returns:
        uint8 mask of shape (height, width) with 1 for target pixels
    """
    hsv = np.asarray(hsv, dtype=np.float64)
    mask = np.zeros(hsv.shape[:2], dtype=np.uint8)

    # One mask per hue range, combined with OR (ranges are inclusive)
    for low, high in config.HUE_RANGES:
        range_mask = cv2.inRange(hsv, (low, config.SATURATION_MIN, config.VALUE_MIN), (high, 1.0, 1.0))
        cv2.bitwise_or(mask, range_mask, dst=mask)

    mask[mask > 0] = 1
    return mask

# =============================================================================
# NOISE FILTER
# =============================================================================

def build_kernel(config: Config) -> np.ndarray:
    shape = cv2.MORPH_RECT if config.MORPH_SHAPE == "rect" else cv2.MORPH_ELLIPSE
    size = config.MORPH_KERNEL_SIZE
    return cv2.getStructuringElement(shape, (size, size))


def denoise(mask: np.ndarray, kernel: np.ndarray) -> np.ndarray:
    """
    Morphological open (removes speckle) followed by close (fills small holes).

    OpenCV's default constant border is neutral for morphology: pixels outside
    the frame never add foreground when dilating and never remove it when
    eroding, so blobs touching the edge keep their size.
    """
    opened = cv2.morphologyEx(mask, cv2.MORPH_OPEN, kernel)
    return cv2.morphologyEx(opened, cv2.MORPH_CLOSE, kernel)

# =============================================================================
# REGION EXTRACTION
# =============================================================================

class Region:
    """
    One connected component of a mask.

    Pixel coordinates are computed on demand from the label image, restricted
    to the component's bounding rectangle.
    """

    def __init__(self, label: int, labels: np.ndarray, area: int,
                 rect: Tuple[int, int, int, int], first_index: int):
        self.label = label
        self.area = area
        self.rect = rect                # (left, top, width, height) from OpenCV stats
        self.first_index = first_index  # row-major index of the first pixel
        self._labels = labels

    def __repr__(self) -> str:
        return f"Region(label={self.label}, area={self.area}, rect={self.rect})"

    def _local_mask(self) -> np.ndarray:
        left, top, width, height = self.rect
        return self._labels[top:top + height, left:left + width] == self.label

    def pixels(self) -> Tuple[np.ndarray, np.ndarray]:
        """Return (xs, ys) of every pixel in the region, in row-major order"""
        left, top, _, _ = self.rect
        ys, xs = np.nonzero(self._local_mask())
        return xs + left, ys + top

    def boundary(self) -> List[np.ndarray]:
        """Outer boundary polygon(s) in frame coordinates, for drawing"""
        left, top, _, _ = self.rect
        local = self._local_mask().astype(np.uint8)
        contours, _ = cv2.findContours(local, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE,
                                       offset=(left, top))
        return list(contours)


def extract_regions(mask: np.ndarray, connectivity: int = 8, min_area: int = 1) -> List[Region]:
    """
    Find connected foreground components with at least min_area pixels.

    Returns:
        Regions ordered by the row-major position of their first pixel
    """
    count, labels, stats, _ = cv2.connectedComponentsWithStats(mask, connectivity=connectivity)
    width = mask.shape[1]

    regions = []
    for label in range(1, count):  # label 0 is background
        area = int(stats[label, cv2.CC_STAT_AREA])
        if area < min_area:
            continue

        left = int(stats[label, cv2.CC_STAT_LEFT])
        top = int(stats[label, cv2.CC_STAT_TOP])
        rect = (left, top, int(stats[label, cv2.CC_STAT_WIDTH]), int(stats[label, cv2.CC_STAT_HEIGHT]))

        # First pixel lies on the component's top row
        first_x = int(np.flatnonzero(labels[top] == label)[0])
        regions.append(Region(label, labels, area, rect, top * width + first_x))

    regions.sort(key=lambda region: region.first_index)
    return regions


def select_largest_region(regions: Sequence[Region]) -> Optional[Region]:
    """Largest region by area; on equal areas the first in scan order wins"""
    best = None
    for region in regions:
        if best is None or region.area > best.area:
            best = region
    return best

# =============================================================================
# DETECTION SUMMARY
# =============================================================================

class DetectionResult(NamedTuple):
    bbox: Tuple[int, int, int, int]   # (x0, y0, x1, y1), inclusive
    centroid: Tuple[int, int]
    area: int


def summarize(region: Optional[Region]) -> Optional[DetectionResult]:
    """
    Bounding box, centroid and pixel count of the selected region.

    The centroid is the mean pixel position rounded half-up to the nearest
    integer, so it always falls inside the bounding box.
    """
    if region is None:
        return None

    xs, ys = region.pixels()
    bbox = (int(xs.min()), int(ys.min()), int(xs.max()), int(ys.max()))
    centroid = (int(math.floor(xs.mean() + 0.5)), int(math.floor(ys.mean() + 0.5)))
    return DetectionResult(bbox, centroid, int(xs.size))

# =============================================================================
# ANNOTATION
# =============================================================================

GREEN = (0, 255, 0)
RED = (0, 0, 255)
YELLOW = (0, 255, 255)


def _in_order(bgr: Tuple[int, int, int], channel_order: str) -> Tuple[int, int, int]:
    return bgr if channel_order == "BGR" else bgr[::-1]


def annotate_detection(image: np.ndarray, detection: Optional[DetectionResult],
                       region: Optional[Region] = None, channel_order: str = "BGR") -> np.ndarray:
    """
    Draw the detection onto a copy of the image.

    Args:
        image: Source pixels (left untouched)
        detection: Result from summarize() or None
        region: Selected region, outlined when given
        channel_order: Channel order of image, so colors come out right

    Returns:
        Annotated copy of the image
    """
    annotated = np.array(image, copy=True)
    green = _in_order(GREEN, channel_order)

    if detection is None:
        cv2.putText(annotated, "NO TARGET", (10, 30), cv2.FONT_HERSHEY_SIMPLEX, 0.6,
                    _in_order(RED, channel_order), 2)
        return annotated

    x0, y0, x1, y1 = detection.bbox
    cx, cy = detection.centroid

    if region is not None:
        cv2.drawContours(annotated, region.boundary(), -1, _in_order(YELLOW, channel_order), 1)

    cv2.rectangle(annotated, (x0, y0), (x1, y1), green, 2)

    # Crosshair and center point
    cv2.line(annotated, (cx - 10, cy), (cx + 10, cy), green, 2)
    cv2.line(annotated, (cx, cy - 10), (cx, cy + 10), green, 2)
    cv2.circle(annotated, (cx, cy), 2, green, -1)

    info_text = f"TARGET ({cx}, {cy}) area={detection.area}"
    cv2.putText(annotated, info_text, (10, 30), cv2.FONT_HERSHEY_SIMPLEX, 0.6, green, 2)
    return annotated

# =============================================================================
# DETECTOR
# =============================================================================

class FrameStatus(Enum):
    DETECTED = "detected"
    NO_DETECTION = "no_detection"
    MALFORMED = "malformed"


class FrameResult:
    """Outcome of processing one frame"""

    def __init__(self, status: FrameStatus, frame: Frame,
                 detection: Optional[DetectionResult] = None,
                 annotated: Optional[np.ndarray] = None,
                 mask: Optional[np.ndarray] = None,
                 error: Optional[str] = None):
        self.status = status
        self.frame = frame
        self.detection = detection
        self.annotated = annotated
        self.mask = mask
        self.error = error

    def __repr__(self) -> str:
        return f"FrameResult(status={self.status.name}, frame={self.frame.index}, detection={self.detection})"

    @property
    def detected(self) -> bool:
        return self.status is FrameStatus.DETECTED

    @property
    def malformed(self) -> bool:
        return self.status is FrameStatus.MALFORMED


class RedDetector:
    """
    Stateless red region detector.

    process() depends only on the frame and the configuration; the
    structuring element is the only thing precomputed.
    """

    def __init__(self, config: Optional[Config] = None):
        self.config = config if config is not None else Config()
        self.morph_kernel = build_kernel(self.config)
        logger.debug("Detector ready: hue ranges %s, s>=%.2f, v>=%.2f, denoise=%s (%s %dx%d), "
                     "connectivity=%d, min area=%d",
                     self.config.HUE_RANGES, self.config.SATURATION_MIN, self.config.VALUE_MIN,
                     self.config.DENOISE, self.config.MORPH_SHAPE, self.config.MORPH_KERNEL_SIZE,
                     self.config.MORPH_KERNEL_SIZE, self.config.CONNECTIVITY, self.config.MIN_AREA)

    def process(self, frame: Frame, annotate: Optional[bool] = None) -> FrameResult:
        """
        Run the full detection pipeline on one frame.

        Args:
            frame: Captured frame
            annotate: Draw the result on a copy of the frame (defaults to Config.ANNOTATE)

        Returns:
            FrameResult with status DETECTED, NO_DETECTION or MALFORMED
        """
        if annotate is None:
            annotate = self.config.ANNOTATE

        # Step 1: Validate the buffer before any pixel is read
        try:
            if frame.channels != 3:
                raise MalformedFrameError(f"Expected 3 channels, frame {frame.index} has {frame.channels}")
            image = frame.image()
        except MalformedFrameError as e:
            return FrameResult(FrameStatus.MALFORMED, frame, error=str(e))

        # Step 2: Color conversion and dual-range segmentation
        hsv = frame_to_hsv(image, frame.channel_order)
        mask = segment(hsv, self.config)

        # Step 3: Noise suppression
        if self.config.DENOISE:
            mask = denoise(mask, self.morph_kernel)

        # Step 4: Largest connected region
        regions = extract_regions(mask, self.config.CONNECTIVITY, self.config.MIN_AREA)
        region = select_largest_region(regions)

        # Step 5: Summary
        detection = summarize(region)
        status = FrameStatus.DETECTED if detection is not None else FrameStatus.NO_DETECTION

        annotated = None
        if annotate:
            annotated = annotate_detection(image, detection, region, frame.channel_order)

        return FrameResult(status, frame, detection, annotated, mask)
