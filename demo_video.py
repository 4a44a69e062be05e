"""
Create demo videos for exercising the red detector.

Each frame shows a red disc moving on an orbit, a smaller red decoy (so the
largest-region selection matters) and non-red distractors on a noisy
background. Frames are deterministic for a given frame number.
"""

import argparse
import logging
import math

import cv2
import numpy as np

logger = logging.getLogger(__name__)

TARGET_COLOR = (0, 0, 255)  # Red in BGR
DECOY_COLOR = (20, 20, 230)
DISTRACTOR_COLORS = [(255, 0, 0), (0, 255, 0), (255, 255, 0), (255, 0, 255), (0, 255, 255)]


def target_position(frame_num: int, width: int, height: int, fps: int):
    """Center and radius of the main target at a given frame"""
    t = frame_num / fps
    angle = 2 * math.pi * t / 4
    orbit_radius = min(width, height) // 4
    x = int(width // 2 + orbit_radius * math.cos(angle))
    y = int(height // 2 + orbit_radius * math.sin(angle))
    radius = max(8, min(width, height) // 12)
    return (x, y), radius


def render_demo_frame(frame_num: int, width: int = 640, height: int = 480, fps: int = 30) -> np.ndarray:
    """
    Draw one BGR demo frame.

    Args:
        frame_num: Frame number, drives target motion and the noise seed
        width, height: Frame size in pixels
        fps: Frames per second the motion is timed against

    Returns:
        uint8 array of shape (height, width, 3)
    """
    rng = np.random.default_rng(frame_num)

    # Dark noisy background
    frame = rng.integers(10, 50, size=(height, width, 3), dtype=np.uint8)

    # Non-red distractors, kept off the edges when the frame is large enough
    margin_x = min(20, width // 4)
    margin_y = min(20, height // 4)
    for _ in range(4):
        x = int(rng.integers(margin_x, width - margin_x))
        y = int(rng.integers(margin_y, height - margin_y))
        size = int(rng.integers(5, 15))
        color = DISTRACTOR_COLORS[int(rng.integers(len(DISTRACTOR_COLORS)))]
        cv2.circle(frame, (x, y), size, color, -1)

    # Small red decoy in a fixed corner
    decoy_radius = max(3, min(width, height) // 40)
    cv2.circle(frame, (decoy_radius * 3, decoy_radius * 3), decoy_radius, DECOY_COLOR, -1)

    # Main target
    center, radius = target_position(frame_num, width, height, fps)
    cv2.circle(frame, center, radius, TARGET_COLOR, -1)
    return frame


def write_demo_video(filename: str = "demo.mp4", duration: int = 10, fps: int = 30,
                     width: int = 640, height: int = 480) -> int:
    """
    Write a demo clip and return the number of frames written.

    Raises:
        RuntimeError: no usable video codec
    """
    fourcc = cv2.VideoWriter_fourcc(*'XVID')
    out = cv2.VideoWriter(filename, fourcc, fps, (width, height))

    if not out.isOpened():
        logger.warning("Could not open video writer with XVID, trying mp4v...")
        fourcc = cv2.VideoWriter_fourcc(*'mp4v')
        out = cv2.VideoWriter(filename, fourcc, fps, (width, height))

    if not out.isOpened():
        raise RuntimeError(f"Could not initialize video writer for {filename}")

    total_frames = duration * fps
    logger.info("Creating demo video %s: %ds at %d FPS, %dx%d", filename, duration, fps, width, height)
    try:
        for frame_num in range(total_frames):
            out.write(render_demo_frame(frame_num, width, height, fps))
    finally:
        out.release()

    return total_frames


def main(argv=None):
    """Create a demo video"""
    parser = argparse.ArgumentParser(description='Create a demo video for the red tracker')
    parser.add_argument('--output', type=str, default='demo.mp4', help='Output video filename')
    parser.add_argument('--duration', type=int, default=10, help='Video duration in seconds')
    parser.add_argument('--fps', type=int, default=30, help='Frames per second')
    parser.add_argument('--width', type=int, default=640, help='Frame width')
    parser.add_argument('--height', type=int, default=480, help='Frame height')
    args = parser.parse_args(argv)
    if args.width < 1 or args.height < 1 or args.fps < 1:
        parser.error("width, height and fps must be positive")

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    frames = write_demo_video(args.output, args.duration, args.fps, args.width, args.height)

    print(f"Demo video created: {args.output} ({frames} frames)")
    print("\nRecommended test commands:")
    print(f"  Basic test:  python main_tracker.py --source {args.output} --display")
    print(f"  Headless:    python main_tracker.py --source {args.output} --snapshot-interval 30")


if __name__ == "__main__":
    main()
