import numpy as np
import pytest

from audio_graph import AudioBuffer
from track_analyzer import analyze, compute_peaks, compute_rms


def test_peaks_are_block_maxima():
    samples = np.zeros(4096, dtype=np.float32)
    for block in range(4):
        samples[block * 1024 + 10] = -0.1 * (block + 1)
    peaks = compute_peaks(AudioBuffer(samples, 44100), peak_count=4)
    assert peaks == pytest.approx([0.1, 0.2, 0.3, 0.4])


def test_peaks_use_first_channel():
    left = np.full(100, 0.25, dtype=np.float32)
    right = np.full(100, 0.9, dtype=np.float32)
    peaks = compute_peaks(AudioBuffer(np.stack([left, right]), 44100), peak_count=10)
    assert np.allclose(peaks, 0.25)


def test_short_buffer_leaves_trailing_peaks_empty():
    buffer = AudioBuffer(np.array([0.5, -0.75, 0.25], dtype=np.float32), 44100)
    peaks = compute_peaks(buffer, peak_count=8)
    assert len(peaks) == 8
    assert peaks[:3] == pytest.approx([0.5, 0.75, 0.25])
    assert np.all(peaks[3:] == 0.0)


def test_rms_over_all_channels():
    data = np.stack([np.full(1000, 0.5), np.full(1000, -0.5)])
    assert compute_rms(AudioBuffer(data, 44100)) == pytest.approx(0.5)

    mixed = np.stack([np.ones(10), np.zeros(10)])
    assert compute_rms(AudioBuffer(mixed, 44100)) == pytest.approx(np.sqrt(0.5))


def test_analyze():
    buffer = AudioBuffer(np.full(22050, 0.1, dtype=np.float32), 44100)
    analysis = analyze(buffer)
    assert analysis.duration == pytest.approx(0.5)
    assert analysis.rms == pytest.approx(0.1)
    assert len(analysis.peaks) == 2048
