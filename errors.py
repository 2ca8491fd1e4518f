"""Exceptions raised by the Air DJ engine and camera layers."""


class AirDJError(Exception):
    """Base class for all Air DJ errors"""


class TrackLoadError(AirDJError):
    """An audio file could not be decoded - the target deck is left untouched"""

    def __init__(self, path, reason):
        self.path = path
        self.reason = reason
        super().__init__(f"Could not load {path}: {reason}")


class AudioDeviceUnavailable(AirDJError):
    """No usable audio output device - decks stay silent"""


class CameraUnavailable(AirDJError):
    """The camera could not be opened - the tracker never calls back"""
