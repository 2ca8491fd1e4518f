"""
Camera and landmark detection (OpenCV + MediaPipe), plus the preview overlay.
"""

import logging
from typing import List, Optional, Sequence, Tuple

import cv2
import mediapipe as mp
import numpy as np

from config import (
    CAMERA_HEIGHT,
    CAMERA_WIDTH,
    MAX_NUM_HANDS,
    MIN_DETECTION_CONFIDENCE,
    MIN_TRACKING_CONFIDENCE,
    MODEL_COMPLEXITY,
)
from errors import CameraUnavailable
from landmarks import FINGER_TIP_INDICES, Hand

logger = logging.getLogger(__name__)

HAND_CONNECTIONS = mp.solutions.hands.HAND_CONNECTIONS

# BGR colors per deck
DECK_COLORS = {
    "A": (241, 102, 99),
    "B": (153, 72, 236),
}
TEXT_COLOR = (255, 255, 255)


class CameraCapture:
    """
    Webcam reader:
    - requests the target resolution
    - mirrors every frame so moving a hand right moves it right on screen
    """

    def __init__(self, device_index: int = 0, width: int = CAMERA_WIDTH,
                 height: int = CAMERA_HEIGHT, mirror: bool = True):
        self.device_index = device_index
        self.width = width
        self.height = height
        self.mirror = mirror
        self.cap = None

    def open(self) -> "CameraCapture":
        self.cap = cv2.VideoCapture(self.device_index)
        if not self.cap or not self.cap.isOpened():
            self.cap = None
            raise CameraUnavailable(f"Could not open camera device {self.device_index}")

        self.cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
        self.cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
        actual_width = int(self.cap.get(cv2.CAP_PROP_FRAME_WIDTH))
        actual_height = int(self.cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
        logger.info("Camera %d opened at %dx%d", self.device_index, actual_width, actual_height)
        return self

    def is_opened(self) -> bool:
        return self.cap is not None and self.cap.isOpened()

    def read(self) -> Tuple[bool, Optional[np.ndarray]]:
        if not self.is_opened():
            return False, None
        ret, frame = self.cap.read()
        if not ret or frame is None:
            return False, None
        if self.mirror:
            frame = cv2.flip(frame, 1)
        return True, frame

    def release(self):
        if self.cap is not None:
            self.cap.release()
            self.cap = None
            logger.info("Camera released")


class MediaPipeHandDetector:
    """Runs mp.solutions.hands on BGR frames"""

    def __init__(self, max_num_hands: int = MAX_NUM_HANDS, model_complexity: int = MODEL_COMPLEXITY,
                 min_detection_confidence: float = MIN_DETECTION_CONFIDENCE,
                 min_tracking_confidence: float = MIN_TRACKING_CONFIDENCE):
        self.hands = mp.solutions.hands.Hands(
            static_image_mode=False,
            max_num_hands=max_num_hands,
            model_complexity=model_complexity,
            min_detection_confidence=min_detection_confidence,
            min_tracking_confidence=min_tracking_confidence,
        )

    def detect(self, frame: np.ndarray) -> Tuple[List[Sequence], List[str]]:
        """Landmark lists and handedness labels ("Left"/"Right") for each detected hand"""
        rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        results = self.hands.process(rgb)

        hands = []
        labels = []
        if results.multi_hand_landmarks:
            for i, hand_landmarks in enumerate(results.multi_hand_landmarks):
                hands.append(list(hand_landmarks.landmark))
                label = None
                if results.multi_handedness and i < len(results.multi_handedness):
                    label = results.multi_handedness[i].classification[0].label
                labels.append(label)
        return hands, labels

    def close(self):
        self.hands.close()


def draw_hands(image: np.ndarray, hands: Sequence[Hand], decks: Optional[Sequence[str]] = None):
    """Draw the landmark skeleton of each hand, colored by its deck"""
    h, w = image.shape[:2]
    for i, hand in enumerate(hands):
        deck = decks[i] if decks is not None and i < len(decks) else ("A" if i == 0 else "B")
        color = DECK_COLORS.get(deck, TEXT_COLOR)
        points = [(int(p.x * w), int(p.y * h)) for p in hand]
        for a, b in HAND_CONNECTIONS:
            if a < len(points) and b < len(points):
                cv2.line(image, points[a], points[b], color, 2)
        for idx in FINGER_TIP_INDICES:
            if idx < len(points):
                cv2.circle(image, points[idx], 8, color, -1)
        if points:
            cv2.putText(image, f"DECK {deck}", (points[0][0] - 30, points[0][1] + 30),
                        cv2.FONT_HERSHEY_SIMPLEX, 0.7, color, 2)


def draw_status(image: np.ndarray, lines: Sequence[str], origin: Tuple[int, int] = (20, 40)):
    """Semi-transparent status panel in the top-left corner"""
    if not lines:
        return image
    x, y = origin
    overlay = image.copy()
    cv2.rectangle(overlay, (0, 0), (max(420, image.shape[1] // 3), y + 30 * len(lines)), (0, 0, 0), -1)
    image[:] = cv2.addWeighted(overlay, 0.5, image, 0.5, 0)
    for i, line in enumerate(lines):
        cv2.putText(image, line, (x, y + 30 * i), cv2.FONT_HERSHEY_SIMPLEX, 0.7, TEXT_COLOR, 2)
    return image


def draw_meter(image: np.ndarray, level: float, origin: Tuple[int, int] = (20, 200),
               size: Tuple[int, int] = (20, 150)):
    """Vertical master level bar"""
    x, y = origin
    bw, bh = size
    filled = int(bh * max(0.0, min(1.0, level)))
    cv2.rectangle(image, (x, y), (x + bw, y + bh), (80, 80, 80), 1)
    color = (0, 255, 0) if level < 0.8 else (0, 0, 255)
    cv2.rectangle(image, (x, y + bh - filled), (x + bw, y + bh), color, -1)
    return image
