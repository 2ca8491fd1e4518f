"""
Sound card output through pyo.

The pyo server drives the clock: on every server buffer its process
callback renders one block from the AudioContext into a shared DataTable,
and a looping TableRead plays the table to the outputs.
"""

import logging
from typing import List, Optional, Tuple

import numpy as np
from pyo import DataTable, Server, TableRead, pa_get_output_devices

from audio_graph import AudioContext
from config import OUTPUT_BUFFER_SIZE
from errors import AudioDeviceUnavailable

logger = logging.getLogger(__name__)


def list_output_devices() -> List[Tuple[int, str]]:
    """(device index, name) for every PortAudio output"""
    try:
        names, indexes = pa_get_output_devices()
    except Exception as e:
        logger.warning("Device enumeration failed: %s", e)
        return []
    return list(zip(indexes, names))


class PyoOutput:
    def __init__(self, context: AudioContext, device: Optional[int] = None,
                 buffer_size: int = OUTPUT_BUFFER_SIZE, audio: str = "portaudio"):
        self.context = context
        self.device = device
        self.buffer_size = buffer_size
        self.audio = audio
        self.server = None
        self._table = None
        self._reader = None
        self._buffers: List[np.ndarray] = []

    def start(self):
        channels = self.context.channels
        try:
            server = Server(
                sr=self.context.sample_rate,
                nchnls=channels,
                buffersize=self.buffer_size,
                duplex=0,
                audio=self.audio,
            )
            if self.device is not None:
                server.setOutputDevice(self.device)
            server.boot()
        except Exception as e:
            raise AudioDeviceUnavailable(f"Could not start audio server: {e}") from e
        if not server.getIsBooted():
            raise AudioDeviceUnavailable("Audio server failed to boot")

        # Share the table memory with numpy so the callback writes straight into it
        self._table = DataTable(size=self.buffer_size, chnls=channels)
        self._buffers = [np.asarray(self._table.getBuffer(i)) for i in range(channels)]
        self._reader = TableRead(self._table, freq=self._table.getRate(), loop=True).out()

        server.setCallback(self._process)
        server.start()
        self.server = server
        logger.info("Audio server started: %d Hz, %d channels, buffer %d",
                    server.getSamplingRate(), server.getNchnls(), server.getBufferSize())

    def stop(self):
        if self.server is None:
            return
        self.server.stop()
        self.server.shutdown()
        self.server = None
        logger.info("Audio server stopped")

    def _process(self):
        try:
            block = self.context.render(self.buffer_size)
        except Exception:
            logger.exception("Audio render failed, writing silence")
            block = np.zeros((len(self._buffers), self.buffer_size), dtype=np.float32)
        for channel, buffer in enumerate(self._buffers):
            buffer[:] = block[channel]
