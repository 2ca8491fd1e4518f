"""
Gesture mapping: turns per-frame hand landmarks into deck controls.

- per-finger calibration capture, persisted as JSON
- EMA smoothing of continuous values
- hold detection (300ms) for discrete gestures
- deck assignment with hysteresis around the centre line
"""

import json
import logging
import math
import os
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Sequence

from config import (
    ASSIGN_LEFT_THRESHOLD,
    ASSIGN_RIGHT_THRESHOLD,
    CALIBRATION_FILE,
    CALIBRATION_KEY,
    EQ_MAX_DB,
    EQ_MIN_DB,
    FALLBACK_RANGE_MAX,
    FALLBACK_RANGE_MIN,
    FIST_SPREAD_THRESHOLD,
    HOLD_MS,
    NEUTRAL_VOLUME,
    PINCH_THRESHOLD,
    SMOOTHING_ALPHA,
)
from deck import DeckId, EQSettings
from landmarks import (
    FINGER_TIP_INDICES,
    INDEX_TIP,
    MIDDLE_MCP,
    THUMB_TIP,
    WRIST,
    Finger,
    Landmark,
    centroid_x,
    distance,
)
from mapping import clamp, ema, inv_lerp, remap

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Calibration data
# ---------------------------------------------------------------------------
@dataclass
class FingerRange:
    min: float
    max: float

    def extend(self, value: float):
        self.min = min(self.min, value)
        self.max = max(self.max, value)


@dataclass
class Calibration:
    """Observed vertical range per finger tip, captured during a calibration session"""
    sample_count: int = 0
    ranges: Dict[Finger, Optional[FingerRange]] = field(
        default_factory=lambda: {finger: None for finger in Finger})
    timestamp: float = 0.0  # ms since epoch

    def to_dict(self) -> dict:
        return {
            "sample_count": self.sample_count,
            "ranges": {
                finger.value: (None if r is None else {"min": r.min, "max": r.max})
                for finger, r in self.ranges.items()
            },
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Calibration":
        ranges = {finger: None for finger in Finger}
        for name, r in data.get("ranges", {}).items():
            if r is not None:
                ranges[Finger(name)] = FingerRange(float(r["min"]), float(r["max"]))
        return cls(
            sample_count=int(data.get("sample_count", 0)),
            ranges=ranges,
            timestamp=float(data.get("timestamp", 0.0)),
        )

    @classmethod
    def fallback(cls, timestamp: float = 0.0) -> "Calibration":
        """Fingers usually span from ~0.3 (top) to ~0.8 (bottom) of the frame"""
        return cls(
            sample_count=1,
            ranges={finger: FingerRange(FALLBACK_RANGE_MIN, FALLBACK_RANGE_MAX) for finger in Finger},
            timestamp=timestamp,
        )


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------
class MemoryStore:
    """Key-value store kept in a dict (tests, --no-save runs)"""

    def __init__(self, data: Optional[dict] = None):
        self.data = dict(data or {})

    def get(self, key: str) -> Optional[dict]:
        return self.data.get(key)

    def set(self, key: str, value: dict):
        self.data[key] = value


class JsonFileStore:
    """Key-value records kept in a single JSON file"""

    def __init__(self, path: str = CALIBRATION_FILE):
        self.path = path

    def get(self, key: str) -> Optional[dict]:
        if not os.path.exists(self.path):
            return None
        with open(self.path, 'r') as f:
            return json.load(f).get(key)

    def set(self, key: str, value: dict):
        data = {}
        if os.path.exists(self.path):
            try:
                with open(self.path, 'r') as f:
                    data = json.load(f)
            except ValueError:
                logger.debug("Replacing unreadable %s", self.path)
        data[key] = value
        with open(self.path, 'w') as f:
            json.dump(data, f, indent=4)


# ---------------------------------------------------------------------------
# Per-frame outputs
# ---------------------------------------------------------------------------
@dataclass
class DeckControls:
    """Continuous controls for one deck in one frame"""
    assigned: bool = False
    volume: float = NEUTRAL_VOLUME
    eq: EQSettings = field(default_factory=EQSettings)
    scrub_delta: float = 0.0


# ---------------------------------------------------------------------------
# Gesture predicates
# ---------------------------------------------------------------------------
def finger_spread(hand: Sequence[Landmark]) -> Optional[float]:
    """Mean distance from the wrist to each visible finger tip"""
    if len(hand) <= WRIST:
        return None
    wrist = hand[WRIST]
    tips = [hand[i] for i in FINGER_TIP_INDICES if i < len(hand)]
    if not tips:
        return None
    return sum(distance(p, wrist) for p in tips) / len(tips)


def is_fist(hand: Sequence[Landmark], threshold: float = FIST_SPREAD_THRESHOLD) -> bool:
    spread = finger_spread(hand)
    return spread is not None and spread < threshold


def is_pinch(hand: Sequence[Landmark], threshold: float = PINCH_THRESHOLD) -> bool:
    if len(hand) <= INDEX_TIP:
        return False
    return distance(hand[THUMB_TIP], hand[INDEX_TIP]) < threshold


def palm_angle(hand: Sequence[Landmark]) -> Optional[float]:
    """Angle of the wrist -> middle knuckle vector, in radians"""
    if len(hand) <= MIDDLE_MCP:
        return None
    wrist, knuckle = hand[WRIST], hand[MIDDLE_MCP]
    return math.atan2(knuckle.y - wrist.y, knuckle.x - wrist.x)


def wrap_angle(delta: float) -> float:
    """Wrap an angle difference into [-pi, pi]"""
    while delta > math.pi:
        delta -= 2 * math.pi
    while delta < -math.pi:
        delta += 2 * math.pi
    return delta


# ---------------------------------------------------------------------------
# Mapper
# ---------------------------------------------------------------------------
class GestureMapper:
    def __init__(self, store=None, clock: Callable[[], float] = time.monotonic,
                 wall_clock: Callable[[], float] = time.time,
                 smoothing_alpha: float = SMOOTHING_ALPHA,
                 left_threshold: float = ASSIGN_LEFT_THRESHOLD,
                 right_threshold: float = ASSIGN_RIGHT_THRESHOLD,
                 storage_key: str = CALIBRATION_KEY):
        self.store = store if store is not None else MemoryStore()
        self.clock = clock
        self.wall_clock = wall_clock
        self.smoothing_alpha = smoothing_alpha
        self.left_threshold = left_threshold
        self.right_threshold = right_threshold
        self.storage_key = storage_key

        self._capture: Optional[Calibration] = None
        self._smoothed: Dict[str, float] = {}
        self._hold_started: Dict[str, float] = {}
        self._last_assigned: Dict[int, DeckId] = {}

        self._saved: Optional[Calibration] = None
        self.load()

    # ------------------------------------------------------------------
    # Calibration
    # ------------------------------------------------------------------
    @property
    def calibrating(self) -> bool:
        return self._capture is not None

    @property
    def capture(self) -> Optional[Calibration]:
        """The in-progress calibration session, if any"""
        return self._capture

    def start_calibration(self):
        self._capture = Calibration(timestamp=self._now_ms())
        logger.info("Calibration started")

    def absorb_sample(self, hand: Sequence[Landmark]):
        """Extend each finger's observed range with this frame's tip heights"""
        if self._capture is None:
            return
        for finger in Finger:
            if finger.tip >= len(hand):
                continue
            y = hand[finger.tip].y
            current = self._capture.ranges.get(finger)
            if current is None:
                self._capture.ranges[finger] = FingerRange(y, y)
            else:
                current.extend(y)
        self._capture.sample_count += 1

    def finish_calibration(self) -> Optional[Calibration]:
        """Save the captured ranges and end the session"""
        if self._capture is None:
            return None
        result = self._capture
        result.timestamp = self._now_ms()
        self._capture = None
        self._saved = result
        self._write(result)
        logger.info("Calibration finished with %d samples", result.sample_count)
        return result

    def load(self) -> Optional[Calibration]:
        """(Re)read the saved calibration from the store"""
        self._saved = self._read()
        return self._saved

    def get_saved(self) -> Optional[Calibration]:
        return self._saved

    def ensure_calibration(self):
        """Install the fallback range if nothing has been saved"""
        if self._saved is not None:
            return
        fallback = Calibration.fallback(self._now_ms())
        self._saved = fallback
        self._write(fallback)
        logger.info("No saved calibration, using fallback finger range %.1f-%.1f",
                    FALLBACK_RANGE_MIN, FALLBACK_RANGE_MAX)

    # ------------------------------------------------------------------
    # Continuous mapping
    # ------------------------------------------------------------------
    def map_finger_y(self, finger, y: float) -> float:
        """
        Map a raw finger tip height to a smoothed 0..1 control value.

        Uses the saved range for the finger when there is one, inverted so a
        raised finger (small y) gives a larger value. A degenerate range maps
        to 0.5. Without a range the raw height is used directly.
        """
        finger = Finger(finger)
        saved = self._saved.ranges.get(finger) if self._saved is not None else None
        if saved is not None:
            t = 0.5 if saved.max == saved.min else inv_lerp(saved.min, saved.max, y)
            mapped = clamp(1.0 - t, 0.0, 1.0)
        else:
            mapped = clamp(1.0 - y, 0.0, 1.0)

        key = finger.value
        smoothed = ema(self._smoothed.get(key, mapped), mapped, self.smoothing_alpha)
        self._smoothed[key] = smoothed
        return smoothed

    def reset_smoothing(self):
        self._smoothed.clear()

    # ------------------------------------------------------------------
    # Discrete gestures
    # ------------------------------------------------------------------
    def check_hold(self, hold_id: str, condition: bool, ms: float = HOLD_MS) -> bool:
        """
        True once `condition` has been continuously true for at least `ms`.
        The first true frame only arms the timer; any false frame resets it.
        """
        if not condition:
            self._hold_started.pop(hold_id, None)
            return False

        started = self._hold_started.get(hold_id)
        if started is None:
            self._hold_started[hold_id] = self.clock()
            return False
        return (self.clock() - started) * 1000.0 >= ms

    def reset_holds(self):
        self._hold_started.clear()

    # ------------------------------------------------------------------
    # Deck assignment
    # ------------------------------------------------------------------
    def assign_deck(self, hand_index: int, centroid: float) -> DeckId:
        """
        Deck for a hand at horizontal centroid `centroid`. Between the two
        thresholds the hand keeps its previous deck, or takes the nearer side
        if it has none yet.
        """
        if centroid <= self.left_threshold:
            deck = DeckId.A
        elif centroid >= self.right_threshold:
            deck = DeckId.B
        else:
            previous = self._last_assigned.get(hand_index)
            if previous is not None:
                return previous
            return DeckId.A if centroid < 0.5 else DeckId.B
        self._last_assigned[hand_index] = deck
        return deck

    def forget_hand(self, hand_index: int):
        self._last_assigned.pop(hand_index, None)

    def map_hands_to_controls(self, hands: Sequence[Sequence[Landmark]],
                              handedness=None) -> Dict[DeckId, DeckControls]:
        """
        Controls for both decks from this frame's hands.

        Index finger height drives volume; thumb, middle and ring finger
        heights drive the high, low and mid EQ bands. A deck no hand landed
        on comes back with assigned=False and neutral values.
        """
        controls = {deck_id: DeckControls() for deck_id in DeckId}

        for i, hand in enumerate(hands):
            if not hand:
                continue
            deck = self.assign_deck(i, centroid_x(hand))

            volume = self._finger_value(hand, Finger.INDEX, NEUTRAL_VOLUME)
            high = self._finger_db(hand, Finger.THUMB)
            low = self._finger_db(hand, Finger.MIDDLE)
            mid = self._finger_db(hand, Finger.RING)

            controls[deck] = DeckControls(
                assigned=True,
                volume=volume,
                eq=EQSettings(low=low, mid=mid, high=high),
                scrub_delta=0.0,
            )
        return controls

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _finger_value(self, hand, finger: Finger, default: float) -> float:
        if finger.tip >= len(hand):
            return default
        return self.map_finger_y(finger, hand[finger.tip].y)

    def _finger_db(self, hand, finger: Finger) -> float:
        if finger.tip >= len(hand):
            return 0.0
        return remap(self.map_finger_y(finger, hand[finger.tip].y), 0.0, 1.0, EQ_MIN_DB, EQ_MAX_DB)

    def _now_ms(self) -> float:
        return self.wall_clock() * 1000.0

    def _read(self) -> Optional[Calibration]:
        try:
            data = self.store.get(self.storage_key)
            return Calibration.from_dict(data) if data else None
        except Exception as e:
            logger.debug("Could not read saved calibration: %s", e)
            return None

    def _write(self, calibration: Calibration):
        try:
            self.store.set(self.storage_key, calibration.to_dict())
        except Exception as e:
            logger.debug("Could not save calibration: %s", e)
