"""
Two-deck audio engine: owns the processing context, both decks, the
equal-power crossfade and the master bus with its level meter.

Construct one engine at the top of the application and call
ensure_initialized() before use. Every control call takes the context lock,
so it is safe to call from the camera/UI thread while the device thread
renders.
"""

import logging
import math
from typing import Callable, Dict, Optional, Tuple

import numpy as np

from audio_graph import AudioBuffer, AudioContext, Analyser, Gain
from config import (
    CROSSFADE_STEP,
    DEFAULT_CROSSFADE,
    FADE_SECONDS,
    METER_SCALE,
    METER_WINDOW,
    RENDER_BLOCK_SIZE,
    SAMPLE_RATE,
)
from deck import Deck, DeckId, DeckInfo, EQSettings
from mapping import clamp
from track_loader import load_audio_file

logger = logging.getLogger(__name__)


def equal_power_gains(x: float) -> Tuple[float, float]:
    """Equal-power crossfade law: returns (left, right) gains for position x in [0, 1]"""
    x = clamp(x, 0.0, 1.0)
    left = math.cos(x * math.pi / 2)
    right = math.cos((1.0 - x) * math.pi / 2)
    return left, right


class AudioEngine:
    """
    Owns the AudioContext and the two decks.

    `output_factory` is called with the context during ensure_initialized()
    and must return an object with start()/stop() (see audio_output.PyoOutput).
    Without one the engine runs offline and the caller drives the clock with
    context.advance().
    """

    def __init__(self, sample_rate: int = SAMPLE_RATE, block_size: int = RENDER_BLOCK_SIZE,
                 output_factory: Optional[Callable[[AudioContext], object]] = None,
                 fade_seconds: float = FADE_SECONDS):
        self.sample_rate = sample_rate
        self.block_size = block_size
        self.fade_seconds = fade_seconds
        self._output_factory = output_factory

        self.context: Optional[AudioContext] = None
        self.decks: Dict[DeckId, Deck] = {}
        self.master: Optional[Gain] = None
        self.analyser: Optional[Analyser] = None
        self.output = None

        self.crossfade = DEFAULT_CROSSFADE
        self.master_volume = 1.0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    @property
    def initialized(self) -> bool:
        return self.context is not None

    def ensure_initialized(self) -> AudioContext:
        """
        Create the context, decks and master bus on first call, then start
        the output device. A device failure propagates from this first call
        only; the engine stays constructed but silent.
        """
        if self.context is not None:
            return self.context

        context = AudioContext(self.sample_rate, self.block_size)
        self.decks = {
            deck_id: Deck(context, deck_id, fade_seconds=self.fade_seconds)
            for deck_id in DeckId
        }
        self.master = Gain(context, self.master_volume)
        self.analyser = Analyser(context, METER_WINDOW)
        context.destination = self
        self.context = context
        self._apply_crossfade()
        logger.info("Audio engine initialized (%d Hz, %d frame blocks)",
                    context.sample_rate, context.block_size)

        if self._output_factory is not None:
            output = self._output_factory(context)
            output.start()
            self.output = output
        return context

    def close(self):
        """Release the output device and stop rendering"""
        if self.output is not None:
            try:
                self.output.stop()
            except Exception as e:
                logger.warning("Error stopping audio output: %s", e)
            self.output = None
        if self.context is not None:
            self.context.close()
        logger.info("Audio engine closed")

    def process(self, frames: int) -> np.ndarray:
        """Render one block of the master bus (called by the context)"""
        mix = self.decks[DeckId.A].process(frames) + self.decks[DeckId.B].process(frames)
        return self.analyser.process(self.master.process(mix))

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------
    def load_track(self, deck_id, buffer: AudioBuffer):
        deck = self._deck(deck_id)
        if deck is None:
            return
        with self.context.lock:
            deck.load(buffer)

    def load_file(self, deck_id, path: str):
        """
        Decode and load a file. Decoding happens before the deck is touched,
        so a TrackLoadError leaves the deck's previous track in place.
        """
        deck = self._deck(deck_id)
        if deck is None:
            return
        buffer = load_audio_file(path, sample_rate=self.context.sample_rate)
        with self.context.lock:
            deck.load(buffer)

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------
    def play(self, deck_id):
        self._call(deck_id, Deck.play)

    def pause(self, deck_id):
        self._call(deck_id, Deck.pause)

    def toggle(self, deck_id):
        deck = self._deck(deck_id)
        if deck is None:
            return
        with self.context.lock:
            if deck.is_playing:
                deck.pause()
            else:
                deck.play()

    def toggle_all(self):
        """Pause both decks if either is playing, otherwise start both"""
        if not self._check_initialized():
            return
        with self.context.lock:
            any_playing = any(deck.is_playing for deck in self.decks.values())
            for deck in self.decks.values():
                if any_playing:
                    deck.pause()
                else:
                    deck.play()

    def seek(self, deck_id, seconds: float):
        self._call(deck_id, Deck.seek, seconds)

    def jog(self, deck_id, delta_seconds: float):
        self._call(deck_id, Deck.jog, delta_seconds)

    # ------------------------------------------------------------------
    # Parameters
    # ------------------------------------------------------------------
    def set_volume(self, deck_id, volume: float):
        self._call(deck_id, Deck.set_volume, volume)

    def set_eq(self, deck_id, eq: EQSettings):
        self._call(deck_id, Deck.set_eq, eq)

    def set_fx(self, deck_id, **changes):
        deck = self._deck(deck_id)
        if deck is None:
            return
        with self.context.lock:
            deck.set_fx(**changes)

    def set_loop(self, deck_id, enabled: bool, length: Optional[float] = None):
        self._call(deck_id, Deck.set_loop, enabled, length)

    def set_crossfade(self, x: float):
        self.crossfade = clamp(x, 0.0, 1.0)
        if self.context is None:
            return
        with self.context.lock:
            self._apply_crossfade()

    def nudge_crossfade(self, delta: float = CROSSFADE_STEP):
        self.set_crossfade(self.crossfade + delta)

    def set_master_volume(self, volume: float):
        self.master_volume = clamp(volume, 0.0, 1.0)
        if self.context is None:
            return
        with self.context.lock:
            self.master.gain.value = self.master_volume

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def get_current_time(self, deck_id) -> float:
        deck = self._deck(deck_id)
        if deck is None:
            return 0.0
        with self.context.lock:
            return deck.current_time()

    def get_deck_info(self, deck_id) -> DeckInfo:
        deck = self._deck(deck_id)
        if deck is None:
            return DeckInfo()
        with self.context.lock:
            return deck.info()

    def get_master_level(self) -> float:
        """Meter level in [0, 1] from the RMS of the last METER_WINDOW master samples"""
        if self.context is None:
            return 0.0
        with self.context.lock:
            rms = self.analyser.rms()
        return clamp(rms * METER_SCALE, 0.0, 1.0)

    def is_playing(self, deck_id) -> bool:
        return self.get_deck_info(deck_id).is_playing

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _apply_crossfade(self):
        left, right = equal_power_gains(self.crossfade)
        self.decks[DeckId.A].set_crossfade_gain(left)
        self.decks[DeckId.B].set_crossfade_gain(right)

    def _check_initialized(self) -> bool:
        if self.context is None:
            logger.debug("Audio engine not initialized, ignoring call")
            return False
        return True

    def _deck(self, deck_id) -> Optional[Deck]:
        deck_id = DeckId(deck_id)
        if not self._check_initialized():
            return None
        return self.decks[deck_id]

    def _call(self, deck_id, method, *args):
        deck = self._deck(deck_id)
        if deck is None:
            return
        with self.context.lock:
            method(deck, *args)
