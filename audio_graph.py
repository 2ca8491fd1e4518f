"""
Block-based audio processing timeline for the Air DJ decks.

AudioContext owns the audio clock (frames rendered / sample rate), a queue of
tasks scheduled on that clock, and the output node that gets pulled once per
render block. Parameter changes are expressed as AudioParam automation events
so fades land on exact sample times no matter when the control thread calls in.

Everything here is plain numpy/scipy - the device layer (audio_output.py)
only copies the rendered blocks out to the sound card, and tests drive the
clock with AudioContext.advance().
"""

import bisect
import heapq
import itertools
import logging
import math
import threading
from typing import Callable, List, Optional, Tuple, Union

import numpy as np
import scipy.signal as sps

from config import (
    DELAY_MAX_SECONDS,
    METER_WINDOW,
    OUTPUT_CHANNELS,
    RENDER_BLOCK_SIZE,
    REVERB_DECAY,
    REVERB_SECONDS,
    SAMPLE_RATE,
)
from mapping import clamp

logger = logging.getLogger(__name__)

BlockValue = Union[float, np.ndarray]


class AudioBuffer:
    """Decoded, read-only linear PCM. Samples are shaped (channels, frames)."""

    def __init__(self, samples, sample_rate: int):
        data = np.array(samples, dtype=np.float32)
        if data.ndim == 1:
            data = data[np.newaxis, :]
        if data.ndim != 2 or data.shape[0] == 0:
            raise ValueError(f"samples must be shaped (channels, frames), got {data.shape}")
        if data.shape[1] == 0:
            raise ValueError("buffer has no frames")
        if sample_rate <= 0:
            raise ValueError(f"sample_rate must be positive, got {sample_rate}")
        data.flags.writeable = False
        self.samples = data
        self.sample_rate = int(sample_rate)

    @property
    def number_of_channels(self) -> int:
        return self.samples.shape[0]

    @property
    def length(self) -> int:
        return self.samples.shape[1]

    @property
    def duration(self) -> float:
        return self.length / self.sample_rate

    def channel(self, index: int) -> np.ndarray:
        return self.samples[index]

    def __repr__(self):
        return (f"AudioBuffer(channels={self.number_of_channels}, "
                f"frames={self.length}, sample_rate={self.sample_rate})")


class AudioParam:
    """
    A value with an automation timeline on the audio clock.

    Supports immediate sets, sets at a time, linear ramps from the previous
    event, and cancellation of everything scheduled at or after a time.
    Events older than HISTORY_SECONDS are pruned as new ones arrive.
    """

    SET = "set"
    RAMP = "ramp"
    HISTORY_SECONDS = 1.0

    def __init__(self, context: "AudioContext", value: float = 0.0):
        self._context = context
        self._default = float(value)
        self._times: List[float] = []
        self._events: List[Tuple[float, int, str, float]] = []  # (time, seq, kind, value)
        self._seq = itertools.count()

    @property
    def value(self) -> float:
        return self.value_at(self._context.current_time)

    @value.setter
    def value(self, new_value: float):
        self.set_value_at_time(new_value, self._context.current_time)

    def set_value_at_time(self, value: float, when: float):
        self._insert(when, self.SET, value)

    def linear_ramp_to_value_at_time(self, value: float, when: float):
        now = self._context.current_time
        if bisect.bisect_left(self._times, when) == 0:
            # Nothing to ramp from - anchor on the value heard right now
            self._insert(min(now, when), self.SET, self.value_at(now))
        self._insert(when, self.RAMP, value)

    def cancel_scheduled_values(self, when: float):
        idx = bisect.bisect_left(self._times, when)
        del self._times[idx:]
        del self._events[idx:]

    def value_at(self, when: float) -> float:
        idx = bisect.bisect_right(self._times, when)
        if idx > 0:
            prev_time, _, _, prev_value = self._events[idx - 1]
        else:
            prev_time, prev_value = None, self._default

        if idx < len(self._events):
            next_time, _, kind, next_value = self._events[idx]
            if kind == self.RAMP and prev_time is not None and next_time > prev_time:
                t = (when - prev_time) / (next_time - prev_time)
                return prev_value + (next_value - prev_value) * t
        return prev_value

    def block(self, frames: int) -> BlockValue:
        """Values for the block starting at the current time - a float when constant"""
        start = self._context.current_time
        sample_rate = self._context.sample_rate
        end = start + frames / sample_rate
        idx = bisect.bisect_right(self._times, start)
        if idx >= len(self._events):
            return self.value_at(start)
        next_time, _, kind, _ = self._events[idx]
        if kind == self.SET and next_time >= end:
            return self.value_at(start)
        times = start + np.arange(frames) / sample_rate
        return np.fromiter((self.value_at(t) for t in times), dtype=np.float64, count=frames)

    @property
    def events(self) -> List[Tuple[float, str, float]]:
        return [(t, kind, v) for t, _, kind, v in self._events]

    def _insert(self, when: float, kind: str, value: float):
        event = (float(when), next(self._seq), kind, float(value))
        idx = bisect.bisect_right(self._times, event[0])
        self._times.insert(idx, event[0])
        self._events.insert(idx, event)
        self._prune()

    def _prune(self):
        horizon = self._context.current_time - self.HISTORY_SECONDS
        idx = bisect.bisect_right(self._times, horizon)
        if idx > 1:
            # Keep the last event before the horizon as the anchor value
            del self._times[:idx - 1]
            del self._events[:idx - 1]


class ScheduledTask:
    """Handle for a callback queued on the audio clock"""

    def __init__(self, when: float, callback: Callable[[], None]):
        self.when = when
        self.callback = callback
        self.cancelled = False
        self.done = False

    def cancel(self):
        self.cancelled = True

    @property
    def pending(self) -> bool:
        return not self.cancelled and not self.done

    def __repr__(self):
        state = "cancelled" if self.cancelled else ("done" if self.done else "pending")
        return f"ScheduledTask(when={self.when:.4f}, {state})"


class AudioContext:
    """
    The audio clock plus the render loop.

    `destination` is any object with process(frames) -> ndarray(channels, frames);
    it is pulled once per render block. Scheduled tasks run at the start of the
    first block whose start time has reached the task's time.
    """

    def __init__(self, sample_rate: int = SAMPLE_RATE, block_size: int = RENDER_BLOCK_SIZE,
                 channels: int = OUTPUT_CHANNELS):
        self.sample_rate = int(sample_rate)
        self.block_size = int(block_size)
        self.channels = int(channels)
        self.destination = None
        self.lock = threading.RLock()
        self.closed = False
        self._frames = 0
        self._tasks: List[Tuple[float, int, ScheduledTask]] = []
        self._seq = itertools.count()

    @property
    def current_time(self) -> float:
        return self._frames / self.sample_rate

    @property
    def frames_rendered(self) -> int:
        return self._frames

    def call_at(self, when: float, callback: Callable[[], None]) -> ScheduledTask:
        task = ScheduledTask(float(when), callback)
        with self.lock:
            heapq.heappush(self._tasks, (task.when, next(self._seq), task))
        return task

    def create_param(self, value: float = 0.0) -> AudioParam:
        return AudioParam(self, value)

    def render(self, frames: int) -> np.ndarray:
        """Render `frames` frames of output, advancing the audio clock"""
        out = np.zeros((self.channels, frames), dtype=np.float32)
        with self.lock:
            if self.closed:
                return out
            done = 0
            while done < frames:
                n = min(self.block_size, frames - done)
                self._run_due_tasks()
                if self.destination is not None:
                    out[:, done:done + n] = self.destination.process(n)
                self._frames += n
                done += n
        return out

    def advance(self, seconds: float):
        """Render and discard `seconds` of audio (offline use)"""
        remaining = int(round(seconds * self.sample_rate))
        chunk = self.block_size * 64
        while remaining > 0:
            n = min(chunk, remaining)
            self.render(n)
            remaining -= n

    def close(self):
        with self.lock:
            self.closed = True
            for _, _, task in self._tasks:
                task.cancel()
            self._tasks.clear()

    def _run_due_tasks(self):
        # Half a sample of tolerance so a task due "now" is not pushed a block late
        now = self.current_time + 0.5 / self.sample_rate
        while self._tasks and self._tasks[0][0] <= now:
            _, _, task = heapq.heappop(self._tasks)
            if task.cancelled:
                continue
            task.done = True
            try:
                task.callback()
            except Exception:
                logger.exception("Scheduled audio task failed")


def to_stereo(block: np.ndarray, channels: int = OUTPUT_CHANNELS) -> np.ndarray:
    """Duplicate mono to every output channel, drop extra channels"""
    if block.shape[0] == channels:
        return block
    if block.shape[0] == 1:
        return np.repeat(block, channels, axis=0)
    return block[:channels]


class BufferSource:
    """
    One-shot player for an AudioBuffer, like a turntable needle drop.

    start() may only be called once; a new source is created for every
    restart. Loop flags are read on every block but the deck treats them as
    fixed once started. on_ended fires when a non-looping source runs off
    the end of the buffer.
    """

    def __init__(self, context: AudioContext, buffer: AudioBuffer):
        self.context = context
        self.buffer = buffer
        self.loop = False
        self.loop_start = 0.0
        self.loop_end = 0.0
        self.on_ended: Optional[Callable[[], None]] = None
        self._rate = buffer.sample_rate / context.sample_rate
        self._position = 0.0  # In buffer frames
        self._started = False
        self._stopped = False

    @property
    def playing(self) -> bool:
        return self._started and not self._stopped

    def start(self, offset: float = 0.0):
        if self._started:
            raise RuntimeError("BufferSource can only be started once")
        self._position = clamp(offset, 0.0, self.buffer.duration) * self.buffer.sample_rate
        self._started = True

    def stop(self):
        self._stopped = True

    def process(self, frames: int) -> np.ndarray:
        out = np.zeros((self.context.channels, frames), dtype=np.float32)
        if not self.playing:
            return out

        length = self.buffer.length
        raw = self._position + np.arange(frames + 1) * self._rate
        if self.loop:
            idx = self._wrap_loop(raw)
        else:
            idx = raw

        positions = idx[:frames]
        i0 = np.floor(positions).astype(np.int64)
        frac = (positions - i0).astype(np.float32)
        valid = i0 < length
        i0 = np.minimum(i0, length - 1)
        i1 = np.minimum(i0 + 1, length - 1)
        data = self.buffer.samples
        block = data[:, i0] * (1.0 - frac) + data[:, i1] * frac
        block[:, ~valid] = 0.0
        out[:] = to_stereo(block, self.context.channels)

        self._position = float(idx[frames])
        if not self.loop and self._position >= length:
            self._stopped = True
            if self.on_ended is not None:
                self.on_ended()
        return out

    def _wrap_loop(self, raw: np.ndarray) -> np.ndarray:
        sr = self.buffer.sample_rate
        length = self.buffer.length
        start = clamp(self.loop_start * sr, 0, length)
        end = clamp(self.loop_end * sr, 0, length)
        if end <= start:
            start, end = 0.0, float(length)
        span = end - start
        wrapped = raw.copy()
        over = wrapped >= end
        wrapped[over] = start + np.mod(wrapped[over] - start, span)
        return wrapped


class Gain:
    """Multiply the signal by an automatable gain"""

    def __init__(self, context: AudioContext, value: float = 1.0):
        self.context = context
        self.gain = AudioParam(context, value)

    def process(self, block: np.ndarray) -> np.ndarray:
        g = self.gain.block(block.shape[1])
        return (block * g).astype(np.float32, copy=False)


def biquad_sos(filter_type: str, frequency: float, q: float, gain_db: float,
               sample_rate: int) -> np.ndarray:
    """RBJ cookbook biquad as a single normalized second-order section"""
    frequency = clamp(frequency, 10.0, 0.49 * sample_rate)
    q = max(q, 1e-4)
    A = 10 ** (gain_db / 40.0)
    w0 = 2 * math.pi * frequency / sample_rate
    cosw = math.cos(w0)
    sinw = math.sin(w0)

    if filter_type == "lowpass":
        alpha = sinw / (2 * q)
        b0 = (1 - cosw) / 2
        b1 = 1 - cosw
        b2 = (1 - cosw) / 2
        a0 = 1 + alpha
        a1 = -2 * cosw
        a2 = 1 - alpha
    elif filter_type == "peaking":
        alpha = sinw / (2 * q)
        b0 = 1 + alpha * A
        b1 = -2 * cosw
        b2 = 1 - alpha * A
        a0 = 1 + alpha / A
        a1 = -2 * cosw
        a2 = 1 - alpha / A
    elif filter_type == "lowshelf":
        alpha = sinw / (2 * q)
        sq = 2 * math.sqrt(A) * alpha
        b0 = A * ((A + 1) - (A - 1) * cosw + sq)
        b1 = 2 * A * ((A - 1) - (A + 1) * cosw)
        b2 = A * ((A + 1) - (A - 1) * cosw - sq)
        a0 = (A + 1) + (A - 1) * cosw + sq
        a1 = -2 * ((A - 1) + (A + 1) * cosw)
        a2 = (A + 1) + (A - 1) * cosw - sq
    elif filter_type == "highshelf":
        alpha = sinw / (2 * q)
        sq = 2 * math.sqrt(A) * alpha
        b0 = A * ((A + 1) + (A - 1) * cosw + sq)
        b1 = -2 * A * ((A - 1) + (A + 1) * cosw)
        b2 = A * ((A + 1) + (A - 1) * cosw - sq)
        a0 = (A + 1) - (A - 1) * cosw + sq
        a1 = 2 * ((A - 1) - (A + 1) * cosw)
        a2 = (A + 1) - (A - 1) * cosw - sq
    else:
        raise ValueError(f"Unknown filter type: {filter_type}")

    return np.array([[b0 / a0, b1 / a0, b2 / a0, 1.0, a1 / a0, a2 / a0]])


class BiquadFilter:
    """Stateful biquad (lowpass / peaking / lowshelf / highshelf) over stereo blocks"""

    TYPES = ("lowpass", "peaking", "lowshelf", "highshelf")

    def __init__(self, context: AudioContext, filter_type: str, frequency: float = 350.0,
                 q: float = 1.0, gain: float = 0.0):
        if filter_type not in self.TYPES:
            raise ValueError(f"Unknown filter type: {filter_type}")
        self.context = context
        self.type = filter_type
        self._frequency = float(frequency)
        self._q = float(q)
        self._gain = float(gain)
        self._sos = None
        self._zi = np.zeros((1, context.channels, 2))

    @property
    def frequency(self) -> float:
        return self._frequency

    @frequency.setter
    def frequency(self, value: float):
        self._frequency = float(value)
        self._sos = None

    @property
    def q(self) -> float:
        return self._q

    @q.setter
    def q(self, value: float):
        self._q = float(value)
        self._sos = None

    @property
    def gain(self) -> float:
        return self._gain

    @gain.setter
    def gain(self, value: float):
        self._gain = float(value)
        self._sos = None

    @property
    def sos(self) -> np.ndarray:
        if self._sos is None:
            self._sos = biquad_sos(self.type, self._frequency, self._q, self._gain,
                                   self.context.sample_rate)
        return self._sos

    def process(self, block: np.ndarray) -> np.ndarray:
        y, self._zi = sps.sosfilt(self.sos, block, axis=-1, zi=self._zi)
        return y.astype(np.float32)

    def reset(self):
        self._zi[:] = 0.0


class FeedbackDelay:
    """
    Delay line with a feedback path: line_in = x + feedback * line_out.

    Works in chunks no longer than the delay so every read comes from
    samples that have already been written.
    """

    def __init__(self, context: AudioContext, delay_time: float = 0.25, feedback: float = 0.0,
                 max_delay: float = DELAY_MAX_SECONDS):
        self.context = context
        self.max_delay = float(max_delay)
        self.delay_time = float(delay_time)
        self.feedback = float(feedback)
        self._capacity = int(self.max_delay * context.sample_rate) + context.block_size + 1
        self._line = np.zeros((context.channels, self._capacity), dtype=np.float32)
        self._write = 0

    @property
    def delay_frames(self) -> int:
        seconds = clamp(self.delay_time, 0.0, self.max_delay)
        return max(1, int(round(seconds * self.context.sample_rate)))

    def process(self, block: np.ndarray) -> np.ndarray:
        frames = block.shape[1]
        out = np.empty_like(block, dtype=np.float32)
        delay = self.delay_frames
        done = 0
        while done < frames:
            n = min(delay, frames - done)
            read_idx = (self._write - delay + np.arange(n)) % self._capacity
            write_idx = (self._write + np.arange(n)) % self._capacity
            delayed = self._line[:, read_idx]
            self._line[:, write_idx] = block[:, done:done + n] + self.feedback * delayed
            out[:, done:done + n] = delayed
            self._write = (self._write + n) % self._capacity
            done += n
        return out

    def reset(self):
        self._line[:] = 0.0


def make_reverb_impulse(sample_rate: int, seconds: float = REVERB_SECONDS,
                        decay: float = REVERB_DECAY, channels: int = OUTPUT_CHANNELS,
                        seed: Optional[int] = None) -> np.ndarray:
    """Decaying white-noise impulse response, shaped (channels, frames)"""
    length = max(1, int(sample_rate * seconds))
    rng = np.random.default_rng(seed)
    envelope = np.power(1.0 - np.arange(length) / length, decay)
    noise = rng.uniform(-1.0, 1.0, size=(channels, length))
    return (noise * envelope).astype(np.float32)


class Convolver:
    """Overlap-add FFT convolution with a fixed impulse response"""

    def __init__(self, context: AudioContext, impulse: np.ndarray):
        impulse = np.atleast_2d(np.asarray(impulse, dtype=np.float32))
        self.context = context
        self.impulse = to_stereo(impulse, context.channels)
        self._tail = np.zeros((context.channels, self.impulse.shape[1] - 1), dtype=np.float32)

    def process(self, block: np.ndarray) -> np.ndarray:
        frames = block.shape[1]
        full = sps.fftconvolve(block, self.impulse, mode="full", axes=-1)
        tail_len = self._tail.shape[1]
        full[:, :tail_len] += self._tail
        self._tail = full[:, frames:].astype(np.float32)
        return full[:, :frames].astype(np.float32)

    def reset(self):
        self._tail[:] = 0.0


class Analyser:
    """Keeps the most recent `window` samples (channel average) for metering"""

    def __init__(self, context: AudioContext, window: int = METER_WINDOW):
        self.context = context
        self.window = int(window)
        self._ring = np.zeros(self.window, dtype=np.float32)

    def process(self, block: np.ndarray) -> np.ndarray:
        mono = block.mean(axis=0)
        n = mono.shape[0]
        if n >= self.window:
            self._ring[:] = mono[-self.window:]
        else:
            self._ring = np.concatenate((self._ring[n:], mono)).astype(np.float32)
        return block

    def rms(self) -> float:
        return float(np.sqrt(np.mean(np.square(self._ring, dtype=np.float64))))
