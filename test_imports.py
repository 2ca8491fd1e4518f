#!/usr/bin/env python3
import importlib
import importlib.util

import pytest

CORE_PACKAGES = [
    ("numpy", "NumPy"),
    ("scipy.signal", "SciPy"),
    ("librosa", "librosa"),
]

# Needed for the camera and the sound card only; the engine runs without them
DEVICE_PACKAGES = [
    ("cv2", "OpenCV"),
    ("mediapipe", "MediaPipe"),
    ("pyo", "Pyo"),
]

PROJECT_MODULES = [
    "mapping",
    "config",
    "errors",
    "audio_graph",
    "track_analyzer",
    "track_loader",
    "deck",
    "audio_engine",
    "landmarks",
    "gesture_mapper",
    "hand_tracker",
    "camera_hud",
]


@pytest.mark.parametrize("module, label", CORE_PACKAGES)
def test_core_imports(module, label):
    """Test if the packages the engine needs can be imported."""
    importlib.import_module(module)
    print(f"✓ {label} imported successfully")


@pytest.mark.parametrize("module", PROJECT_MODULES)
def test_project_imports(module):
    importlib.import_module(module)


def test_device_packages():
    """Report which camera/audio device packages are installed."""
    print("Checking device packages...")
    for module, label in DEVICE_PACKAGES:
        if importlib.util.find_spec(module) is not None:
            print(f"✓ {label} available")
        else:
            print(f"✗ {label} not installed")


if __name__ == "__main__":
    for module, label in CORE_PACKAGES:
        test_core_imports(module, label)
    test_device_packages()
