"""
Frame loop: acquire, detect, annotate, snapshot, report.

The loop is single-threaded. Each frame is fully processed before the next
one is requested, and nothing from one frame is reused for the next.
"""

import json
import logging
import os
import time
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

import cv2
import numpy as np

from frame import Frame
from frame_sources import EndOfStream, FrameSource, FrameSourceError, FrameUnavailable, StreamLostError
from red_detector import Config, FrameResult, RedDetector

logger = logging.getLogger(__name__)

WINDOW_NAME = "Red Tracker"


class LoopState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"


class StopReason(Enum):
    USER_REQUESTED = "user_requested"
    FRAME_LIMIT = "frame_limit"
    END_OF_STREAM = "end_of_stream"
    STREAM_LOST = "stream_lost"


class LoopOutcome:
    """How and why a run ended. Only STREAM_LOST counts as a failure."""

    def __init__(self, reason: StopReason, frames_processed: int, error: Optional[str] = None,
                 report_path: Optional[str] = None):
        self.reason = reason
        self.frames_processed = frames_processed
        self.error = error
        self.report_path = report_path

    def __repr__(self) -> str:
        return f"LoopOutcome(reason={self.reason.name}, frames={self.frames_processed}, error={self.error!r})"

    @property
    def failed(self) -> bool:
        return self.reason is StopReason.STREAM_LOST

# =============================================================================
# SNAPSHOTS
# =============================================================================

class SnapshotWriter:
    """Writes frames to disk with cv2.imwrite; failures are logged, never raised"""

    def __init__(self, output_dir: str, prefix: str = "snapshot", extension: str = "jpg"):
        self.output_dir = output_dir
        self.prefix = prefix
        self.extension = extension

    def save(self, image: np.ndarray, frame_index: int, status: str = "") -> Optional[str]:
        """
        Save one BGR image.

        Returns:
            Path of the written file, or None when writing failed
        """
        timestamp = datetime.now().strftime("%H%M%S")
        suffix = f"_{status}" if status else ""
        filename = f"{self.prefix}_f{frame_index:06d}_{timestamp}{suffix}.{self.extension}"
        filepath = os.path.join(self.output_dir, filename)

        try:
            os.makedirs(self.output_dir, exist_ok=True)
            ok = cv2.imwrite(filepath, image)
        except (cv2.error, OSError) as e:
            logger.warning("Snapshot for frame %d failed: %s", frame_index, e)
            return None

        if not ok:
            logger.warning("Snapshot for frame %d failed: encoder could not write %s", frame_index, filepath)
            return None
        return filepath

# =============================================================================
# SESSION STATISTICS
# =============================================================================

class SessionStats:
    """
    Throughput and detection statistics for one run.
    Keeps a rolling window of the last 100 instantaneous FPS samples.
    """

    FPS_WINDOW = 100

    def __init__(self, source_name: str = ""):
        self.source_name = source_name
        self.session_start = datetime.now()
        self.start_time = time.time()

        self.total_frames = 0
        self.frames_with_detection = 0
        self.malformed_frames = 0
        self.snapshots_written = 0
        self.snapshots_failed = 0

        self.fps_samples = []
        self.last_frame_time = None

    def update(self, result: FrameResult):
        """Update frame-level metrics"""
        current_time = time.time()
        if self.last_frame_time is not None and current_time > self.last_frame_time:
            self.fps_samples.append(1.0 / (current_time - self.last_frame_time))
            if len(self.fps_samples) > self.FPS_WINDOW:
                self.fps_samples.pop(0)
        self.last_frame_time = current_time

        self.total_frames += 1
        if result.malformed:
            self.malformed_frames += 1
        elif result.detected:
            self.frames_with_detection += 1

    def record_snapshot(self, written: bool):
        if written:
            self.snapshots_written += 1
        else:
            self.snapshots_failed += 1

    def get_current_stats(self) -> Dict[str, Any]:
        """Get current performance statistics"""
        avg_fps = sum(self.fps_samples) / len(self.fps_samples) if self.fps_samples else 0.0
        elapsed = time.time() - self.start_time
        detection_rate = (self.frames_with_detection / self.total_frames * 100) if self.total_frames > 0 else 0.0

        return {
            'total_frames': self.total_frames,
            'frames_with_detection': self.frames_with_detection,
            'malformed_frames': self.malformed_frames,
            'snapshots_written': self.snapshots_written,
            'snapshots_failed': self.snapshots_failed,
            'avg_fps': avg_fps,
            'overall_fps': self.total_frames / elapsed if elapsed > 0 else 0.0,
            'detection_rate': detection_rate,
            'elapsed_seconds': elapsed,
        }

    def save_report(self, output_dir: str, config: Optional[Config] = None,
                    stop_reason: Optional[StopReason] = None) -> str:
        """Save final session report as JSON and return its path"""
        stats = self.get_current_stats()
        report = {
            'session_info': {
                'start_time': self.session_start.isoformat(),
                'end_time': datetime.now().isoformat(),
                'duration_seconds': stats['elapsed_seconds'],
                'video_source': self.source_name,
                'stop_reason': stop_reason.value if stop_reason is not None else None,
            },
            'performance_metrics': stats,
            'configuration': config.as_dict() if config is not None else {},
        }

        os.makedirs(output_dir, exist_ok=True)
        timestamp = self.session_start.strftime("%Y%m%d_%H%M%S")
        report_file = os.path.join(output_dir, f"{timestamp}_session_report.json")
        with open(report_file, 'w') as f:
            json.dump(report, f, indent=2, default=str)

        logger.info("Session report saved: %s", report_file)
        return report_file

# =============================================================================
# FRAME LOOP
# =============================================================================

class FrameLoop:
    """
    Drives the per-frame cycle: IDLE -> RUNNING -> STOPPED.

    Stops on stop() (checked once per iteration), the frame limit, end of
    stream, or a lost stream. A lost stream is reported as a failure so
    callers can tell it apart from a normal shutdown.
    """

    def __init__(self, source: FrameSource, detector: Optional[RedDetector] = None,
                 config: Optional[Config] = None, snapshot_writer: Optional[SnapshotWriter] = None,
                 stats: Optional[SessionStats] = None, sleep=time.sleep):
        self.config = config if config is not None else (detector.config if detector else Config())
        self.source = source
        self.detector = detector if detector is not None else RedDetector(self.config)
        self.snapshot_writer = snapshot_writer or SnapshotWriter(self.config.OUTPUT_DIR)
        self.stats = stats or SessionStats(getattr(source, "name", ""))
        self.sleep = sleep

        self.state = LoopState.IDLE
        self.frames_processed = 0
        self.last_result = None
        self._stop_requested = False

    def stop(self):
        """Request a stop; honored at the next iteration boundary"""
        self._stop_requested = True

    def run(self) -> LoopOutcome:
        if self.state is not LoopState.IDLE:
            raise RuntimeError(f"FrameLoop already {self.state.value}")

        try:
            self.source.open()
        except FrameSourceError as e:
            logger.error("Could not start %s: %s", self.stats.source_name, e)
            self.state = LoopState.STOPPED
            return LoopOutcome(StopReason.STREAM_LOST, 0, str(e))

        self.state = LoopState.RUNNING
        if self.config.CSV_OUTPUT:
            print("frame,cx,cy,x0,y0,x1,y1,area")

        error = None
        try:
            reason, error = self._loop()
        except KeyboardInterrupt:
            logger.info("Interrupted by user")
            reason = StopReason.USER_REQUESTED
        finally:
            self.source.close()
            if self.config.DISPLAY:
                cv2.destroyAllWindows()
            self.state = LoopState.STOPPED

        return self._finish(reason, error)

    def _loop(self):
        while True:
            if self._stop_requested:
                return StopReason.USER_REQUESTED, None
            if self.config.MAX_FRAMES is not None and self.frames_processed >= self.config.MAX_FRAMES:
                return StopReason.FRAME_LIMIT, None

            try:
                frame = self._acquire()
            except EndOfStream:
                logger.info("End of stream after %d frames", self.frames_processed)
                return StopReason.END_OF_STREAM, None
            except StreamLostError as e:
                logger.error("Stream lost after %d frames: %s", self.frames_processed, e)
                return StopReason.STREAM_LOST, str(e)

            if frame is None:
                continue
            self._handle(frame)

    def _acquire(self) -> Optional[Frame]:
        """
        Read the next frame, retrying while the source has nothing ready.

        Returns:
            The frame, or None if a stop was requested while waiting

        Raises:
            EndOfStream, StreamLostError (also when the retry budget runs out)
        """
        retries = 0
        while True:
            try:
                return self.source.read()
            except FrameUnavailable as e:
                if self._stop_requested:
                    return None
                retries += 1
                max_retries = self.config.ACQUIRE_MAX_RETRIES
                if max_retries is not None and retries > max_retries:
                    raise StreamLostError(f"No frame after {max_retries} retries: {e}") from e
                self.sleep(self.config.ACQUIRE_RETRY_DELAY)

    def _handle(self, frame: Frame):
        annotate = self.config.ANNOTATE or self.config.DISPLAY
        result = self.detector.process(frame, annotate=annotate)
        self.frames_processed += 1
        self.last_result = result
        self.stats.update(result)

        if result.malformed:
            logger.warning("Skipping frame %d: %s", frame.index, result.error)
            return

        detection = result.detection
        if detection is not None:
            logger.debug("Frame %d: target at %s bbox=%s area=%d",
                         frame.index, detection.centroid, detection.bbox, detection.area)
        if self.config.CSV_OUTPUT:
            self._print_csv_row(frame, result)

        image = result.annotated if result.annotated is not None else result.frame.image()
        if frame.channel_order == "RGB":
            # Encoder and preview window expect BGR
            image = cv2.cvtColor(image, cv2.COLOR_RGB2BGR)

        interval = self.config.SNAPSHOT_INTERVAL
        if interval and self.frames_processed % interval == 0:
            self._save_snapshot(image, frame, result)

        interval = self.config.STATUS_INTERVAL
        if interval and self.frames_processed % interval == 0:
            self._log_status(result)

        if self.config.DISPLAY:
            self._show(image, frame, result)

    def _print_csv_row(self, frame: Frame, result: FrameResult):
        detection = result.detection
        if detection is None:
            print(f"{frame.index},-1,-1,-1,-1,-1,-1,0")
            return
        cx, cy = detection.centroid
        x0, y0, x1, y1 = detection.bbox
        print(f"{frame.index},{cx},{cy},{x0},{y0},{x1},{y1},{detection.area}")

    def _save_snapshot(self, image: np.ndarray, frame: Frame, result: FrameResult):
        status = "FOUND" if result.detected else "NONE"
        path = self.snapshot_writer.save(image, frame.index, status)
        self.stats.record_snapshot(path is not None)
        if path is not None:
            logger.info("Snapshot saved: %s", path)

    def _log_status(self, result: FrameResult):
        stats = self.stats.get_current_stats()
        target = result.detection.centroid if result.detection is not None else "none"
        logger.info("Frame %d: %.1f FPS, detection rate %.1f%%, target %s",
                    self.frames_processed, stats['avg_fps'], stats['detection_rate'], target)

    def _show(self, image: np.ndarray, frame: Frame, result: FrameResult):
        cv2.imshow(WINDOW_NAME, image)

        key = cv2.waitKey(1) & 0xFF
        if key == ord('q'):
            logger.info("Quit requested by user")
            self.stop()
        elif key == ord('s'):
            self._save_snapshot(image, frame, result)

    def _finish(self, reason: StopReason, error: Optional[str]) -> LoopOutcome:
        stats = self.stats.get_current_stats()
        logger.info("Stopped (%s): %d frames, %.1f FPS, detection rate %.1f%%, %d malformed, %d snapshots",
                    reason.value, stats['total_frames'], stats['overall_fps'], stats['detection_rate'],
                    stats['malformed_frames'], stats['snapshots_written'])

        report_path = None
        if self.config.SAVE_REPORT:
            try:
                report_path = self.stats.save_report(self.config.OUTPUT_DIR, self.config, reason)
            except OSError as e:
                logger.warning("Could not save session report: %s", e)

        return LoopOutcome(reason, self.frames_processed, error, report_path)
