"""
Hand landmark types shared by the tracker, the gesture mapper and the HUD.

Landmarks follow the MediaPipe Hands ordering: 21 normalized points per
hand, origin top-left, x to the right and y downward.
"""

import math
from enum import Enum
from typing import NamedTuple, Sequence, Tuple

NUM_LANDMARKS = 21

WRIST = 0
THUMB_TIP = 4
INDEX_TIP = 8
MIDDLE_MCP = 9
MIDDLE_TIP = 12
RING_TIP = 16
PINKY_TIP = 20

FINGER_TIP_INDICES = (THUMB_TIP, INDEX_TIP, MIDDLE_TIP, RING_TIP, PINKY_TIP)


class Landmark(NamedTuple):
    x: float
    y: float
    z: float = 0.0


# Exactly NUM_LANDMARKS points, validated by to_hand()
Hand = Tuple[Landmark, ...]


class Handedness(Enum):
    LEFT = "Left"
    RIGHT = "Right"
    UNKNOWN = "Unknown"

    @classmethod
    def parse(cls, label) -> "Handedness":
        if isinstance(label, cls):
            return label
        for member in cls:
            if isinstance(label, str) and label.strip().lower() == member.value.lower():
                return member
        return cls.UNKNOWN


class Finger(str, Enum):
    """Fingers tracked for continuous control, with their tip landmark"""
    THUMB = "thumb"
    INDEX = "index"
    MIDDLE = "middle"
    RING = "ring"

    @property
    def tip(self) -> int:
        return _TIPS[self]


_TIPS = {
    Finger.THUMB: THUMB_TIP,
    Finger.INDEX: INDEX_TIP,
    Finger.MIDDLE: MIDDLE_TIP,
    Finger.RING: RING_TIP,
}


def to_landmark(point) -> Landmark:
    """Accepts an object with x/y(/z) attributes or an (x, y[, z]) sequence"""
    if hasattr(point, "x") and hasattr(point, "y"):
        return Landmark(float(point.x), float(point.y), float(getattr(point, "z", 0.0) or 0.0))
    values = tuple(point)
    if len(values) == 2:
        return Landmark(float(values[0]), float(values[1]))
    if len(values) == 3:
        return Landmark(float(values[0]), float(values[1]), float(values[2]))
    raise ValueError(f"Landmark needs 2 or 3 coordinates, got {len(values)}")


def to_hand(points: Sequence) -> Hand:
    """Validate and convert one detector hand into a fixed-size Hand"""
    landmarks = tuple(to_landmark(p) for p in points)
    if len(landmarks) != NUM_LANDMARKS:
        raise ValueError(f"Expected {NUM_LANDMARKS} landmarks, got {len(landmarks)}")
    return landmarks


def centroid_x(hand: Sequence[Landmark]) -> float:
    if not hand:
        return 0.5
    return sum(p.x for p in hand) / len(hand)


def distance(a: Landmark, b: Landmark) -> float:
    """2-D distance in normalized image units"""
    return math.hypot(a.x - b.x, a.y - b.y)
