"""
Hand tracker: feeds camera frames to a landmark detector at a capped rate and
hands normalized results to a callback. No gesture logic lives here.

The detector is any object with detect(frame) -> (hands, handedness) and
close(); camera.MediaPipeHandDetector is the real one. The frame source is
anything with read() -> (ok, frame) and release(), like cv2.VideoCapture.
"""

import logging
import time
from typing import Callable, List, Optional, Sequence, Tuple

from config import (
    FPS_LIMIT,
    MAX_NUM_HANDS,
    MIN_DETECTION_CONFIDENCE,
    MIN_TRACKING_CONFIDENCE,
    MODEL_COMPLEXITY,
)
from landmarks import Hand, Handedness, to_hand

logger = logging.getLogger(__name__)

HandsCallback = Callable[[List[Hand], List[Handedness]], None]


class HandTracker:
    def __init__(self, detector_factory: Callable[..., object], fps_limit: float = FPS_LIMIT,
                 clock: Callable[[], float] = time.monotonic,
                 max_num_hands: int = MAX_NUM_HANDS,
                 model_complexity: int = MODEL_COMPLEXITY,
                 min_detection_confidence: float = MIN_DETECTION_CONFIDENCE,
                 min_tracking_confidence: float = MIN_TRACKING_CONFIDENCE):
        self.detector_factory = detector_factory
        self.fps_limit = fps_limit
        self.clock = clock
        self.max_num_hands = max_num_hands
        self.model_complexity = model_complexity
        self.min_detection_confidence = min_detection_confidence
        self.min_tracking_confidence = min_tracking_confidence

        self.running = False
        self.frame_source = None
        self.last_hands: List[Hand] = []
        self.last_handedness: List[Handedness] = []
        self._detector = None
        self._callback: Optional[HandsCallback] = None
        self._last_process: Optional[float] = None
        self._busy = False

    @property
    def min_interval(self) -> float:
        """Minimum seconds between detector calls"""
        return 1.0 / self.fps_limit if self.fps_limit > 0 else 0.0

    def start(self, frame_source, callback: Optional[HandsCallback] = None):
        """Create the detector and begin accepting frames. Detector errors propagate."""
        if self.running:
            return
        self._detector = self.detector_factory(
            max_num_hands=self.max_num_hands,
            model_complexity=self.model_complexity,
            min_detection_confidence=self.min_detection_confidence,
            min_tracking_confidence=self.min_tracking_confidence,
        )
        self.frame_source = frame_source
        self._callback = callback
        self._last_process = None
        self.running = True
        logger.info("Hand tracker started (max %s fps)", self.fps_limit)

    def stop(self):
        """Stop accepting frames and release the detector and the camera"""
        self.running = False
        detector, self._detector = self._detector, None
        source, self.frame_source = self.frame_source, None
        if detector is not None:
            try:
                detector.close()
            except Exception as e:
                logger.debug("Detector close failed: %s", e)
        if source is not None:
            try:
                source.release()
            except Exception as e:
                logger.debug("Frame source release failed: %s", e)
        logger.info("Hand tracker stopped")

    def process_frame(self, frame) -> bool:
        """
        Run detection on `frame` unless the fps cap says it is too soon or a
        detection is already in progress. Returns True if the callback ran.
        """
        if not self.running or self._busy:
            return False
        now = self.clock()
        if self._last_process is not None and now - self._last_process < self.min_interval:
            return False

        self._busy = True
        try:
            try:
                raw_hands, raw_handedness = self._detector.detect(frame)
            except Exception as e:
                logger.warning("Hand detection failed, skipping frame: %s", e)
                return False

            hands, handedness = self.normalize(raw_hands, raw_handedness)
            self.last_hands = hands
            self.last_handedness = handedness
            if self._callback is not None:
                try:
                    self._callback(hands, handedness)
                except Exception:
                    logger.exception("Hand tracker callback error")
            return True
        finally:
            self._last_process = now
            self._busy = False

    def poll(self):
        """Read one frame from the source and process it. Returns the frame, or None."""
        if not self.running or self.frame_source is None:
            return None
        success, frame = self.frame_source.read()
        if not success:
            return None
        self.process_frame(frame)
        return frame

    def run(self, on_frame: Optional[Callable[[object], bool]] = None, max_failures: int = 30):
        """
        Cooperative loop: read, detect, dispatch, repeat until stopped.
        `on_frame` sees every frame (e.g. for a preview window) and may
        return False to end the loop.
        """
        failures = 0
        while self.running:
            frame = self.poll()
            if frame is None:
                if not self.running:
                    break
                failures += 1
                if failures >= max_failures:
                    logger.error("Failed to capture video frame %d times, stopping", failures)
                    break
                continue
            failures = 0
            if on_frame is not None and on_frame(frame) is False:
                break

    def normalize(self, raw_hands: Optional[Sequence],
                  raw_handedness: Optional[Sequence] = None) -> Tuple[List[Hand], List[Handedness]]:
        """Validate detector output into fixed-size hands plus a handedness per hand"""
        raw_hands = list(raw_hands or [])
        raw_handedness = list(raw_handedness or [])
        hands: List[Hand] = []
        handedness: List[Handedness] = []
        for i, raw in enumerate(raw_hands):
            if len(hands) >= self.max_num_hands:
                break
            try:
                hand = to_hand(raw)
            except (TypeError, ValueError) as e:
                logger.debug("Dropping malformed hand %d: %s", i, e)
                continue
            hands.append(hand)
            label = raw_handedness[i] if i < len(raw_handedness) else None
            handedness.append(Handedness.parse(label))
        return hands, handedness
