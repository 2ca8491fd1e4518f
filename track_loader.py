"""
Decoding audio files into AudioBuffers, plus finding audio files on disk.
"""

import glob
import logging
import os
from typing import List, Optional, Sequence

import librosa
import numpy as np

from audio_graph import AudioBuffer
from config import AUDIO_EXTENSIONS
from errors import TrackLoadError

logger = logging.getLogger(__name__)


def load_audio_file(path: str, sample_rate: Optional[int] = None) -> AudioBuffer:
    """
    Decode an audio file to linear PCM.

    Keeps every channel and the file's native sample rate unless `sample_rate`
    is given. Any decoder failure is raised as TrackLoadError.
    """
    if not os.path.exists(path):
        raise TrackLoadError(path, "file not found")

    try:
        audio_data, rate = librosa.load(path, sr=sample_rate, mono=False)
    except Exception as e:
        raise TrackLoadError(path, str(e)) from e

    audio_data = np.atleast_2d(audio_data)
    if audio_data.shape[-1] == 0:
        raise TrackLoadError(path, "no audio frames decoded")

    buffer = AudioBuffer(audio_data, rate)
    logger.info("Decoded %s: %.1fs, %d channel(s) @ %d Hz",
                os.path.basename(path), buffer.duration, buffer.number_of_channels, rate)
    return buffer


def find_audio_files(search_dir: str, extensions: Sequence[str] = AUDIO_EXTENSIONS) -> List[str]:
    """Recursively find audio files under search_dir, sorted and de-duplicated"""
    if not os.path.isdir(search_dir):
        logger.warning("Audio folder not found: %s", search_dir)
        return []

    all_files = []
    for ext in extensions:
        all_files.extend(glob.glob(os.path.join(search_dir, f"**/*{ext}"), recursive=True))
        all_files.extend(glob.glob(os.path.join(search_dir, f"**/*{ext.upper()}"), recursive=True))

    return sorted(set(all_files))
