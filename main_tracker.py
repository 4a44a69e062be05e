#!/usr/bin/env python3
"""
Red Target Tracker command line entry point.

Works with a webcam, a video file or the Raspberry Pi camera, headless or
with a preview window, and optionally saves periodic snapshots.
"""

import argparse
import logging
import signal
import sys

from frame_loop import FrameLoop, SnapshotWriter
from frame_sources import LatestFrameSource, PiCameraSource, VideoCaptureSource
from red_detector import Config, RedDetector


def parse_arguments(argv=None):
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(description='Red Target Tracker')
    parser.add_argument('--source', type=str, help='Video file path or camera index')
    parser.add_argument('--camera', action='store_true', help='Use camera 0 instead of the configured source')
    parser.add_argument('--picamera', action='store_true', help='Use the Raspberry Pi camera (picamera2)')
    parser.add_argument('--width', type=int, default=Config.FRAME_WIDTH, help='Camera capture width')
    parser.add_argument('--height', type=int, default=Config.FRAME_HEIGHT, help='Camera capture height')
    parser.add_argument('--rgb', action='store_true', help='Source delivers RGB instead of BGR frames')
    parser.add_argument('--max-frames', type=int, help='Stop after this many frames')
    parser.add_argument('--snapshot-interval', type=int, default=Config.SNAPSHOT_INTERVAL,
                        help='Save every Nth frame (0 disables)')
    parser.add_argument('--status-interval', type=int, default=Config.STATUS_INTERVAL,
                        help='Log a status line every N frames (0 disables)')
    parser.add_argument('--output-dir', type=str, default=Config.OUTPUT_DIR, help='Snapshot and report directory')
    parser.add_argument('--min-area', type=int, default=Config.MIN_AREA, help='Minimum region area in pixels')
    parser.add_argument('--saturation-min', type=float, default=Config.SATURATION_MIN,
                        help='Saturation floor in [0, 1]')
    parser.add_argument('--value-min', type=float, default=Config.VALUE_MIN, help='Value floor in [0, 1]')
    parser.add_argument('--kernel-size', type=int, choices=(3, 5), default=Config.MORPH_KERNEL_SIZE,
                        help='Morphology kernel size')
    parser.add_argument('--kernel-shape', choices=('rect', 'ellipse'), default=Config.MORPH_SHAPE,
                        help='Morphology kernel shape')
    parser.add_argument('--connectivity', type=int, choices=(4, 8), default=Config.CONNECTIVITY,
                        help='Pixel connectivity for regions')
    parser.add_argument('--no-denoise', action='store_true', help='Skip morphological noise filtering')
    parser.add_argument('--no-annotate', action='store_true', help='Save raw frames instead of annotated ones')
    parser.add_argument('--display', action='store_true', help='Show a preview window (q=quit, s=save)')
    parser.add_argument('--csv', action='store_true', help='Print detections as CSV to stdout')
    parser.add_argument('--threaded', action='store_true', help='Capture on a background thread, dropping stale frames')
    parser.add_argument('--no-report', action='store_true', help='Do not write a JSON session report')
    parser.add_argument('--log-level', default='INFO', choices=('DEBUG', 'INFO', 'WARNING', 'ERROR'),
                        help='Logging level')
    return parser.parse_args(argv)


def config_from_args(args) -> Config:
    """Build a Config from parsed command line arguments"""
    if args.camera:
        video_source = 0
    elif args.source is not None:
        video_source = int(args.source) if args.source.isdigit() else args.source
    else:
        video_source = Config.VIDEO_SOURCE

    return Config(
        VIDEO_SOURCE=video_source,
        FRAME_WIDTH=args.width,
        FRAME_HEIGHT=args.height,
        CHANNEL_ORDER="RGB" if args.rgb or args.picamera else "BGR",
        SATURATION_MIN=args.saturation_min,
        VALUE_MIN=args.value_min,
        DENOISE=not args.no_denoise,
        MORPH_SHAPE=args.kernel_shape,
        MORPH_KERNEL_SIZE=args.kernel_size,
        CONNECTIVITY=args.connectivity,
        MIN_AREA=args.min_area,
        ANNOTATE=not args.no_annotate,
        DISPLAY=args.display,
        CSV_OUTPUT=args.csv,
        MAX_FRAMES=args.max_frames,
        SNAPSHOT_INTERVAL=args.snapshot_interval,
        STATUS_INTERVAL=args.status_interval,
        OUTPUT_DIR=args.output_dir,
        SAVE_REPORT=not args.no_report,
    )


def build_source(config: Config, picamera: bool = False, threaded: bool = False):
    if picamera:
        source = PiCameraSource(config.FRAME_WIDTH, config.FRAME_HEIGHT)
    else:
        source = VideoCaptureSource(config.VIDEO_SOURCE, config.FRAME_WIDTH, config.FRAME_HEIGHT,
                                    channel_order=config.CHANNEL_ORDER)
    if threaded:
        source = LatestFrameSource(source)
    return source


def main(argv=None) -> int:
    """Main application entry point"""
    args = parse_arguments(argv)
    logging.basicConfig(level=getattr(logging, args.log_level),
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    try:
        config = config_from_args(args)
    except (TypeError, ValueError) as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2

    source = build_source(config, args.picamera, args.threaded)
    loop = FrameLoop(source, RedDetector(config), config, SnapshotWriter(config.OUTPUT_DIR))

    # Ctrl+C / SIGTERM request a stop at the next frame boundary
    def signal_handler(sig, frame):
        print("\nShutdown signal received...")
        loop.stop()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    print("=" * 60)
    print("RED TARGET TRACKER")
    print("=" * 60)
    print(f"Source: {source.name}")
    print(f"Target: red hue {config.HUE_RANGES}, s>={config.SATURATION_MIN}, v>={config.VALUE_MIN}")
    print(f"Min area: {config.MIN_AREA} pixels, denoise: {'ON' if config.DENOISE else 'OFF'}")
    if config.SNAPSHOT_INTERVAL:
        print(f"Snapshots: every {config.SNAPSHOT_INTERVAL} frames -> {config.OUTPUT_DIR}/")
    if config.DISPLAY:
        print("Controls: 'q'=quit, 's'=save frame")
    else:
        print("Press Ctrl+C to stop...")

    outcome = loop.run()

    if outcome.failed:
        print(f"Tracker stopped: camera/stream failure ({outcome.error})", file=sys.stderr)
        return 1

    print(f"Tracker stopped ({outcome.reason.value}) after {outcome.frames_processed} frames")
    return 0


if __name__ == "__main__":
    sys.exit(main())
