"""
One playback deck: a buffer source feeding a fixed EQ/FX chain.

Transport and seek changes that would interrupt a playing source go through
a fade-replace: ramp the deck gain to zero, swap the source once the ramp has
finished (scheduled on the audio clock), then ramp back up to the volume.
"""

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional

import numpy as np

from audio_graph import (
    AudioBuffer,
    AudioContext,
    BiquadFilter,
    BufferSource,
    Convolver,
    FeedbackDelay,
    Gain,
    ScheduledTask,
    make_reverb_impulse,
)
from config import (
    DEFAULT_DELAY_FEEDBACK,
    DEFAULT_DELAY_TIME,
    DEFAULT_FX_WET,
    DEFAULT_LOOP_LENGTH,
    DEFAULT_LOWPASS_CUTOFF,
    DEFAULT_REVERB_WET,
    DEFAULT_VOLUME,
    DELAY_MAX_SECONDS,
    EQ_MAX_DB,
    EQ_MIN_DB,
    FADE_SECONDS,
    FEEDBACK_MAX,
    HIGH_SHELF_FREQ,
    JOG_MAX_STEP,
    LOW_SHELF_FREQ,
    LOWPASS_MAX_HZ,
    LOWPASS_MIN_HZ,
    MID_PEAK_FREQ,
    MID_PEAK_Q,
    SHELF_Q,
)
from mapping import clamp
from track_analyzer import analyze

logger = logging.getLogger(__name__)


class DeckId(str, Enum):
    A = "A"
    B = "B"


class TransportState(Enum):
    """States for each deck"""
    STOPPED = "stopped"
    PLAYING = "playing"


@dataclass(frozen=True)
class EQSettings:
    """Three-band EQ gains in dB"""
    low: float = 0.0
    mid: float = 0.0
    high: float = 0.0

    def clamped(self) -> "EQSettings":
        return EQSettings(
            low=clamp(self.low, EQ_MIN_DB, EQ_MAX_DB),
            mid=clamp(self.mid, EQ_MIN_DB, EQ_MAX_DB),
            high=clamp(self.high, EQ_MIN_DB, EQ_MAX_DB),
        )


@dataclass(frozen=True)
class FXSettings:
    delay_time: float = DEFAULT_DELAY_TIME          # seconds
    delay_feedback: float = DEFAULT_DELAY_FEEDBACK  # 0..0.6
    lowpass_cutoff: float = DEFAULT_LOWPASS_CUTOFF  # Hz
    reverb_wet: float = DEFAULT_REVERB_WET          # share of the send that goes through the reverb
    wet: float = DEFAULT_FX_WET                     # overall wet/dry mix

    def clamped(self) -> "FXSettings":
        return FXSettings(
            delay_time=clamp(self.delay_time, 0.0, DELAY_MAX_SECONDS),
            delay_feedback=clamp(self.delay_feedback, 0.0, FEEDBACK_MAX),
            lowpass_cutoff=clamp(self.lowpass_cutoff, LOWPASS_MIN_HZ, LOWPASS_MAX_HZ),
            reverb_wet=clamp(self.reverb_wet, 0.0, 1.0),
            wet=clamp(self.wet, 0.0, 1.0),
        )


@dataclass(frozen=True)
class LoopWindow:
    enabled: bool = False
    start: float = 0.0
    end: float = 0.0


@dataclass
class DeckInfo:
    """Snapshot for the deck display"""
    peaks: Optional[np.ndarray] = None
    rms: Optional[float] = None
    duration: Optional[float] = None
    is_playing: bool = False


class Deck:
    """
    Signal chain:
        source -> low shelf -> mid peak -> high shelf -+-> dry ----------------------------+
                                                       +-> delay -> lowpass -> reverb -> wet +-> gain -> crossfade -> out
    """

    def __init__(self, context: AudioContext, deck_id, fade_seconds: float = FADE_SECONDS,
                 impulse: Optional[np.ndarray] = None):
        self.context = context
        self.id = DeckId(deck_id)
        self.fade_seconds = fade_seconds

        self.buffer: Optional[AudioBuffer] = None
        self.peaks: Optional[np.ndarray] = None
        self.rms: Optional[float] = None
        self.duration: Optional[float] = None

        self.volume = DEFAULT_VOLUME
        self.eq = EQSettings()
        self.fx = FXSettings()
        self.loop = LoopWindow()
        self.state = TransportState.STOPPED

        # EQ
        self.low_eq = BiquadFilter(context, "lowshelf", LOW_SHELF_FREQ, SHELF_Q)
        self.mid_eq = BiquadFilter(context, "peaking", MID_PEAK_FREQ, MID_PEAK_Q)
        self.high_eq = BiquadFilter(context, "highshelf", HIGH_SHELF_FREQ, SHELF_Q)

        # FX send
        self.delay = FeedbackDelay(context, max_delay=DELAY_MAX_SECONDS)
        self.fx_lowpass = BiquadFilter(context, "lowpass", DEFAULT_LOWPASS_CUTOFF, SHELF_Q)
        if impulse is None:
            impulse = make_reverb_impulse(context.sample_rate)
        self.convolver = Convolver(context, impulse)

        self.dry_gain = Gain(context, 1.0)
        self.wet_gain = Gain(context, 0.0)
        self.gain = Gain(context, self.volume)
        self.crossfade_gain = Gain(context, 1.0)

        self._source: Optional[BufferSource] = None
        self._position = 0.0       # seconds, authoritative while stopped
        self._start_time = 0.0     # context time at which offset 0 would have played
        self._restart_task: Optional[ScheduledTask] = None
        self._pending_offset: Optional[float] = None
        self._fade_in_until = 0.0

        self._apply_fx()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------
    @property
    def is_playing(self) -> bool:
        return self.state is TransportState.PLAYING

    @property
    def restart_pending(self) -> bool:
        return self._restart_task is not None and self._restart_task.pending

    def load(self, buffer: AudioBuffer):
        """Replace the track. Stops playback and resets position and loop."""
        self._cancel_restart()
        self._teardown_source()
        self.state = TransportState.STOPPED
        self.buffer = buffer
        self._position = 0.0
        self.loop = LoopWindow()

        try:
            analysis = analyze(buffer)
            self.peaks = analysis.peaks
            self.rms = analysis.rms
            self.duration = analysis.duration
        except Exception as e:
            logger.warning("Deck %s: analysis failed (%s), playback still available", self.id.value, e)
            self.peaks = None
            self.rms = None
            self.duration = buffer.duration

        logger.info("Deck %s loaded %.1fs track", self.id.value, buffer.duration)

    def play(self):
        if self.buffer is None or self.is_playing:
            return

        duration = self.buffer.duration
        start_at = self._position % duration if duration > 0 else 0.0

        if self.restart_pending:
            # Still fading out from a pause - bring the new source in once that fade is done
            when = self._restart_task.when
            self._cancel_restart()
            self._schedule_swap(start_at, when)
            self.state = TransportState.PLAYING
            return

        self._teardown_source()
        source = self._create_source()
        now = self.context.current_time
        param = self.gain.gain
        param.cancel_scheduled_values(now)
        param.set_value_at_time(self.volume, now)
        source.start(start_at)
        self._start_time = now - start_at
        self.state = TransportState.PLAYING
        logger.info("Deck %s PLAYING from %.2fs", self.id.value, start_at)

    def pause(self):
        if not self.is_playing:
            return

        if self._pending_offset is not None:
            position = self._pending_offset
        else:
            position = self.current_time()
        self._position = max(0.0, position)
        self.state = TransportState.STOPPED

        # Fade out, then tear the source down on the audio clock
        when = self._fade_out()
        self._restart_task = self.context.call_at(when, self._finish_pause)
        logger.info("Deck %s PAUSED at %.2fs", self.id.value, self._position)

    def seek(self, seconds: float):
        if self.buffer is None:
            return
        target = clamp(seconds, 0.0, self.buffer.duration)
        self._position = target
        if self.is_playing:
            self._fade_replace(target)
        logger.debug("Deck %s SEEK %.2fs", self.id.value, target)

    def jog(self, delta_seconds: float):
        """Relative seek for scrub gestures, limited to JOG_MAX_STEP per call"""
        if self.buffer is None:
            return
        step = clamp(delta_seconds, -JOG_MAX_STEP, JOG_MAX_STEP)
        target = clamp(self.current_time() + step, 0.0, self.buffer.duration)
        if self.is_playing:
            self._position = target
            self._fade_replace(target)
        else:
            self.seek(target)

    def current_time(self) -> float:
        """Playback position in track seconds"""
        if self._pending_offset is not None:
            return self._pending_offset
        if not self.is_playing or self._source is None:
            return self._position

        position = self.context.current_time - self._start_time
        loop = self.loop
        if loop.enabled and loop.end > loop.start and position >= loop.end:
            position = loop.start + (position - loop.start) % (loop.end - loop.start)
        duration = self.buffer.duration if self.buffer is not None else position
        return clamp(position, 0.0, duration)

    # ------------------------------------------------------------------
    # Parameters
    # ------------------------------------------------------------------
    def set_volume(self, volume: float):
        """Immediate gain set - slider/gesture control, not for transport changes"""
        self.volume = clamp(volume, 0.0, 1.0)
        if self.restart_pending:
            # The pending fade-in ramps to the stored volume
            return

        now = self.context.current_time
        param = self.gain.gain
        if now < self._fade_in_until:
            current = param.value
            param.cancel_scheduled_values(now)
            param.set_value_at_time(current, now)
            param.linear_ramp_to_value_at_time(self.volume, self._fade_in_until)
        else:
            param.cancel_scheduled_values(now)
            param.set_value_at_time(self.volume, now)

    def set_eq(self, eq: EQSettings):
        self.eq = eq.clamped()
        self.low_eq.gain = self.eq.low
        self.mid_eq.gain = self.eq.mid
        self.mid_eq.frequency = MID_PEAK_FREQ
        self.mid_eq.q = MID_PEAK_Q
        self.high_eq.gain = self.eq.high

    def set_fx(self, **changes):
        """Merge changes into the current FX settings"""
        reverb_was_on = self.fx.reverb_wet > 0
        self.fx = replace(self.fx, **changes).clamped()
        if reverb_was_on and self.fx.reverb_wet == 0:
            self.convolver.reset()
        self._apply_fx()

    def set_loop(self, enabled: bool, length: Optional[float] = None):
        """
        Enabling captures the current position as loop start and start + length
        as loop end (clamped to the track). While playing, the source is
        recreated with the new loop flags through a fade-replace.
        """
        position = self.current_time()
        if enabled:
            length = length if length and length > 0 else DEFAULT_LOOP_LENGTH
            end = position + length
            if self.buffer is not None and end > self.buffer.duration:
                end = self.buffer.duration
            if end <= position:
                logger.info("Deck %s LOOP ignored at the end of the track", self.id.value)
                return
            self.loop = LoopWindow(True, position, end)
            logger.info("Deck %s LOOP %.2fs -> %.2fs", self.id.value, position, end)
        else:
            self.loop = replace(self.loop, enabled=False)
            logger.info("Deck %s LOOP off", self.id.value)

        if self.is_playing:
            self._position = position
            self._fade_replace(position)

    def set_crossfade_gain(self, value: float):
        self.crossfade_gain.gain.value = clamp(value, 0.0, 1.0)

    def info(self) -> DeckInfo:
        return DeckInfo(peaks=self.peaks, rms=self.rms, duration=self.duration,
                        is_playing=self.is_playing)

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------
    def process(self, frames: int) -> np.ndarray:
        source = self._source
        if source is not None:
            block = source.process(frames)
        else:
            block = np.zeros((self.context.channels, frames), dtype=np.float32)

        # The chain keeps running while silent so filter and echo tails ring out
        x = self.high_eq.process(self.mid_eq.process(self.low_eq.process(block)))
        dry = self.dry_gain.process(x)

        send = self.fx_lowpass.process(self.delay.process(x))
        reverb = self.fx.reverb_wet
        if reverb > 0:
            send = (1.0 - reverb) * send + reverb * self.convolver.process(send)
        wet = self.wet_gain.process(send)

        return self.crossfade_gain.process(self.gain.process(dry + wet))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _apply_fx(self):
        fx = self.fx
        self.delay.delay_time = fx.delay_time
        self.delay.feedback = fx.delay_feedback
        self.fx_lowpass.frequency = fx.lowpass_cutoff
        self.wet_gain.gain.value = fx.wet
        self.dry_gain.gain.value = 1.0 - fx.wet

    def _create_source(self) -> BufferSource:
        source = BufferSource(self.context, self.buffer)
        source.loop = self.loop.enabled
        if self.loop.enabled:
            source.loop_start = self.loop.start
            source.loop_end = self.loop.end or self.loop.start + DEFAULT_LOOP_LENGTH
        source.on_ended = lambda: self._source_ended(source)
        self._source = source
        return source

    def _teardown_source(self):
        if self._source is not None:
            self._source.on_ended = None
            self._source.stop()
            self._source = None

    def _cancel_restart(self):
        if self._restart_task is not None:
            self._restart_task.cancel()
            self._restart_task = None
        self._pending_offset = None

    def _fade_out(self) -> float:
        """Ramp the deck gain to zero; returns when the fade completes"""
        if self.restart_pending:
            # Already fading out for a pending swap - reuse that deadline
            when = self._restart_task.when
            self._cancel_restart()
            return when

        now = self.context.current_time
        param = self.gain.gain
        current = param.value
        param.cancel_scheduled_values(now)
        param.set_value_at_time(current, now)
        param.linear_ramp_to_value_at_time(0.0, now + self.fade_seconds)
        return now + self.fade_seconds

    def _fade_replace(self, offset: float):
        when = self._fade_out()
        self._schedule_swap(offset, when)

    def _schedule_swap(self, offset: float, when: float):
        self._pending_offset = offset
        self._restart_task = self.context.call_at(when, lambda: self._swap(offset))

    def _swap(self, offset: float):
        self._restart_task = None
        self._pending_offset = None
        self._teardown_source()
        if self.buffer is None:
            return

        source = self._create_source()
        now = self.context.current_time
        param = self.gain.gain
        param.cancel_scheduled_values(now)
        param.set_value_at_time(0.0, now)
        source.start(offset)
        self._start_time = now - offset
        self.state = TransportState.PLAYING
        param.linear_ramp_to_value_at_time(self.volume, now + self.fade_seconds)
        self._fade_in_until = now + self.fade_seconds

    def _finish_pause(self):
        self._restart_task = None
        self._teardown_source()

    def _source_ended(self, source: BufferSource):
        if source is not self._source:
            return
        self._source = None
        if self.restart_pending:
            # A swap or pause teardown is already scheduled and owns the transport
            return
        self.state = TransportState.STOPPED
        self._position = self.buffer.duration if self.buffer is not None else 0.0
        logger.info("Deck %s reached the end of the track", self.id.value)
