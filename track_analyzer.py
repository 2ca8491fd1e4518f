"""
Track analysis for the deck display: a fixed-length peak envelope for the
waveform and a single RMS loudness value. Computed once per load.
"""

from dataclasses import dataclass
from typing import Optional

import numpy as np

from audio_graph import AudioBuffer
from config import PEAK_COUNT


@dataclass
class TrackAnalysis:
    """Analysis results for one loaded track"""
    peaks: Optional[np.ndarray]
    rms: Optional[float]
    duration: float


def compute_peaks(buffer: AudioBuffer, peak_count: int = 1024) -> np.ndarray:
    """Max absolute sample of the first channel over `peak_count` equal blocks"""
    channel = buffer.channel(0) if buffer.number_of_channels > 0 else np.zeros(0, dtype=np.float32)
    block_size = len(channel) // peak_count or 1
    peaks = np.zeros(peak_count, dtype=np.float32)

    # Only whole blocks that fit in the data; trailing peaks stay at 0 for short buffers
    usable = min(peak_count, len(channel) // block_size)
    if usable > 0:
        blocks = np.abs(channel[:usable * block_size]).reshape(usable, block_size)
        peaks[:usable] = blocks.max(axis=1)
    return peaks


def compute_rms(buffer: AudioBuffer) -> float:
    """Root mean square over every sample of every channel"""
    samples = buffer.samples.astype(np.float64)
    count = max(1, samples.size)
    return float(np.sqrt(np.sum(np.square(samples)) / count))


def analyze(buffer: AudioBuffer, peak_count: int = PEAK_COUNT) -> TrackAnalysis:
    return TrackAnalysis(
        peaks=compute_peaks(buffer, peak_count),
        rms=compute_rms(buffer),
        duration=buffer.duration,
    )
