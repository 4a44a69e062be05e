"""
Frame value passed from capture sources to the red detector.

A frame never changes after it is created. Drawing happens on copies.
"""

import time
from typing import Optional, Tuple, Union

import numpy as np

CHANNEL_ORDERS = ("BGR", "RGB")


class MalformedFrameError(ValueError):
    """Raised when a frame buffer does not match its declared dimensions"""


class Frame:
    """
    One captured image with its declared layout.

    Attributes:
        data: Pixel buffer (numpy array or bytes-like), interleaved channels
        width: Frame width in pixels
        height: Frame height in pixels
        channels: Channels per pixel
        channel_order: "BGR" (OpenCV capture) or "RGB" (Pi camera)
        index: Sequence number assigned by the source
        timestamp: Capture time as returned by time.time()
    """

    __slots__ = ("data", "width", "height", "channels", "channel_order", "index", "timestamp")

    def __init__(self, data: Union[np.ndarray, bytes, bytearray, memoryview],
                 width: int, height: int, channels: int = 3,
                 channel_order: str = "BGR", index: int = 0,
                 timestamp: Optional[float] = None):
        if width <= 0 or height <= 0 or channels <= 0:
            raise ValueError(f"Invalid frame dimensions: {width}x{height}x{channels}")
        if channel_order not in CHANNEL_ORDERS:
            raise ValueError(f"Unsupported channel order: {channel_order}")

        object.__setattr__(self, "data", data)
        object.__setattr__(self, "width", int(width))
        object.__setattr__(self, "height", int(height))
        object.__setattr__(self, "channels", int(channels))
        object.__setattr__(self, "channel_order", channel_order)
        object.__setattr__(self, "index", int(index))
        object.__setattr__(self, "timestamp", time.time() if timestamp is None else float(timestamp))

    def __setattr__(self, name, value):
        raise AttributeError("Frame is immutable")

    def __repr__(self) -> str:
        return (f"Frame(index={self.index}, size={self.width}x{self.height}x{self.channels}, "
                f"order={self.channel_order})")

    @classmethod
    def from_array(cls, image: np.ndarray, channel_order: str = "BGR",
                   index: int = 0, timestamp: Optional[float] = None) -> "Frame":
        """Wrap an (H, W, C) image array, e.g. the output of cv2.VideoCapture.read()"""
        if image.ndim != 3:
            raise MalformedFrameError(f"Expected an (H, W, C) image, got shape {image.shape}")
        height, width, channels = image.shape
        return cls(image, width, height, channels, channel_order, index, timestamp)

    @property
    def expected_length(self) -> int:
        return self.width * self.height * self.channels

    @property
    def size(self) -> Tuple[int, int]:
        """Return (width, height)"""
        return (self.width, self.height)

    def buffer_length(self) -> int:
        if isinstance(self.data, np.ndarray):
            return int(self.data.size)
        return len(memoryview(self.data).cast("B"))

    def validate(self) -> None:
        """Raise MalformedFrameError unless the buffer holds exactly width*height*channels samples"""
        if isinstance(self.data, np.ndarray) and self.data.dtype != np.uint8:
            raise MalformedFrameError(f"Expected uint8 samples, got {self.data.dtype}")

        length = self.buffer_length()
        if length < self.expected_length:
            raise MalformedFrameError(
                f"Truncated frame {self.index}: buffer has {length} bytes, "
                f"expected {self.expected_length} ({self.width}x{self.height}x{self.channels})"
            )
        if length > self.expected_length:
            raise MalformedFrameError(
                f"Oversized frame {self.index}: buffer has {length} bytes, "
                f"expected {self.expected_length} ({self.width}x{self.height}x{self.channels})"
            )

    def image(self) -> np.ndarray:
        """
        Return the pixels as a read-only (height, width, channels) uint8 array.

        Raises:
            MalformedFrameError: buffer length does not match the declared size
        """
        self.validate()

        if isinstance(self.data, np.ndarray):
            pixels = np.ascontiguousarray(self.data).reshape(self.height, self.width, self.channels)
            view = pixels.view()
        else:
            view = np.frombuffer(self.data, dtype=np.uint8).reshape(self.height, self.width, self.channels)

        view.flags.writeable = False
        return view

    def copy_image(self) -> np.ndarray:
        """Writable copy of the pixels, used for annotation and snapshots"""
        return np.array(self.image(), copy=True)
