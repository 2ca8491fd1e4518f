"""
Camera HUD controller: the glue between hand tracking and the audio engine.

Each tracker frame goes through the gesture mapper; the resulting continuous
controls and held gestures are dispatched to the engine:

    fist (held)       -> play/pause the hand's deck
    pinch (held)      -> 2 s loop from the current position
    palm rotation     -> jog
    finger heights    -> volume and three-band EQ
"""

import logging
import time
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence

from config import (
    CALIBRATION_SECONDS,
    DECAY_ALPHA,
    GESTURE_LOOP_LENGTH,
    HOLD_MS,
    JOG_DEADZONE,
    JOG_SENSITIVITY,
    NEUTRAL_VOLUME,
)
from deck import DeckId, EQSettings
from gesture_mapper import (
    DeckControls,
    GestureMapper,
    is_fist,
    is_pinch,
    palm_angle,
    wrap_angle,
)
from landmarks import Hand, Handedness, centroid_x
from mapping import ema

logger = logging.getLogger(__name__)


class UnassignedPolicy(Enum):
    """What happens to a deck no hand is controlling this frame"""
    HOLD = "hold"    # keep the last applied values
    DECAY = "decay"  # ease volume toward 0.5 and EQ toward 0 dB


class CameraHUDController:
    def __init__(self, engine, mapper: GestureMapper, tracker=None,
                 unassigned_policy: UnassignedPolicy = UnassignedPolicy.HOLD,
                 clock: Callable[[], float] = time.monotonic,
                 hold_ms: float = HOLD_MS,
                 jog_sensitivity: float = JOG_SENSITIVITY,
                 loop_length: float = GESTURE_LOOP_LENGTH,
                 decay_alpha: float = DECAY_ALPHA):
        self.engine = engine
        self.mapper = mapper
        self.tracker = tracker
        self.unassigned_policy = UnassignedPolicy(unassigned_policy)
        self.clock = clock
        self.hold_ms = hold_ms
        self.jog_sensitivity = jog_sensitivity
        self.loop_length = loop_length
        self.decay_alpha = decay_alpha

        self.running = False
        self.last_controls: Dict[DeckId, DeckControls] = {}
        self.last_hands: List[Hand] = []
        self.last_hand_decks: List[DeckId] = []
        self.last_handedness: List[Handedness] = []

        self._hold_triggered: Dict[str, bool] = {}
        self._last_angle: Dict[int, float] = {}
        self._hand_count = 0
        self._applied: Dict[DeckId, DeckControls] = {}
        self._calibration_deadline: Optional[float] = None
        self._calibration_started: Optional[float] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self, frame_source):
        if self.running:
            return
        self.mapper.ensure_calibration()
        self.tracker.start(frame_source, self.on_hands)
        self.running = True

    def stop(self):
        self.running = False
        if self.tracker is not None:
            self.tracker.stop()
        self._last_angle.clear()
        self._hand_count = 0
        self._hold_triggered.clear()
        self.mapper.reset_holds()
        self.mapper.reset_smoothing()

    # ------------------------------------------------------------------
    # Calibration flow
    # ------------------------------------------------------------------
    def start_calibration_flow(self, seconds: float = CALIBRATION_SECONDS):
        """Capture finger ranges from the first hand for `seconds`, then save"""
        self.mapper.start_calibration()
        now = self.clock()
        self._calibration_started = now
        self._calibration_deadline = now + seconds

    @property
    def calibration_progress(self) -> Optional[float]:
        """0..1 while a timed calibration runs, None otherwise"""
        if self._calibration_deadline is None:
            return None
        span = self._calibration_deadline - self._calibration_started
        if span <= 0:
            return 1.0
        return min(1.0, (self.clock() - self._calibration_started) / span)

    def finish_calibration_flow(self):
        self._calibration_deadline = None
        self._calibration_started = None
        return self.mapper.finish_calibration()

    # ------------------------------------------------------------------
    # Per-frame dispatch
    # ------------------------------------------------------------------
    def on_hands(self, hands: Sequence[Hand], handedness: Optional[Sequence[Handedness]] = None):
        """Tracker callback: map this frame's hands and apply them to the engine"""
        hands = list(hands)
        if self.mapper.calibrating and hands:
            self.mapper.absorb_sample(hands[0])
        if self._calibration_deadline is not None and self.clock() >= self._calibration_deadline:
            result = self.finish_calibration_flow()
            if result is not None:
                logger.info("Calibration saved (%d samples)", result.sample_count)

        controls = self.mapper.map_hands_to_controls(hands, handedness)

        hand_decks = []
        for i, hand in enumerate(hands):
            if not hand:
                continue
            deck = self.mapper.assign_deck(i, centroid_x(hand))
            hand_decks.append(deck)
            self._handle_fist(i, deck, hand)
            self._handle_pinch(i, deck, hand)
            delta = self._jog_delta(i, hand)
            if abs(delta) > JOG_DEADZONE:
                self.engine.jog(deck, delta)
                controls[deck].scrub_delta += delta

        # Hands that left the frame start a fresh rotation and deck assignment next time
        for i in range(len(hands), self._hand_count):
            self._last_angle.pop(i, None)
            self.mapper.forget_hand(i)
        self._hand_count = len(hands)

        self._apply_controls(controls)

        self.last_controls = controls
        self.last_hands = hands
        self.last_hand_decks = hand_decks
        self.last_handedness = list(handedness or [])

    def _handle_fist(self, index: int, deck: DeckId, hand: Hand):
        hold_id = f"fist_{index}_{deck.value}"
        fist = is_fist(hand)
        if self._held_once(hold_id, fist):
            self.engine.toggle(deck)
            logger.info("Fist on deck %s: toggled playback", deck.value)

    def _handle_pinch(self, index: int, deck: DeckId, hand: Hand):
        hold_id = f"pinch_{index}_{deck.value}"
        pinch = is_pinch(hand)
        if self._held_once(hold_id, pinch):
            self.engine.set_loop(deck, True, self.loop_length)
            logger.info("Pinch on deck %s: %.1fs loop", deck.value, self.loop_length)

    def _held_once(self, hold_id: str, condition: bool) -> bool:
        """True on the first frame a hold completes, then not again until released"""
        held = self.mapper.check_hold(hold_id, condition, self.hold_ms)
        if not condition:
            self._hold_triggered[hold_id] = False
            return False
        if held and not self._hold_triggered.get(hold_id, False):
            self._hold_triggered[hold_id] = True
            return True
        return False

    def _jog_delta(self, index: int, hand: Hand) -> float:
        angle = palm_angle(hand)
        if angle is None:
            return 0.0
        last = self._last_angle.get(index, angle)
        self._last_angle[index] = angle
        return wrap_angle(angle - last) * self.jog_sensitivity

    def _apply_controls(self, controls: Dict[DeckId, DeckControls]):
        for deck_id, control in controls.items():
            if control.assigned:
                self.engine.set_volume(deck_id, control.volume)
                self.engine.set_eq(deck_id, control.eq)
                self._applied[deck_id] = control
            elif self.unassigned_policy is UnassignedPolicy.DECAY:
                current = self._applied.get(deck_id)
                if current is None:
                    continue
                alpha = self.decay_alpha
                decayed = DeckControls(
                    assigned=False,
                    volume=ema(current.volume, NEUTRAL_VOLUME, alpha),
                    eq=EQSettings(
                        low=ema(current.eq.low, 0.0, alpha),
                        mid=ema(current.eq.mid, 0.0, alpha),
                        high=ema(current.eq.high, 0.0, alpha),
                    ),
                )
                self.engine.set_volume(deck_id, decayed.volume)
                self.engine.set_eq(deck_id, decayed.eq)
                self._applied[deck_id] = decayed
