#!/usr/bin/env python3
"""
Finger range calibration.

Shows the camera with the detected hand and records how high and low each
finger tip (thumb, index, middle, ring) travels. Press 's' to save the ranges
to calibration.json, 'r' to restart the capture, 'q' to quit without saving.
"""

import argparse

import cv2

from camera import CameraCapture, MediaPipeHandDetector, draw_hands, draw_status
from config import CALIBRATION_FILE, configure_logging
from errors import CameraUnavailable
from gesture_mapper import GestureMapper, JsonFileStore
from hand_tracker import HandTracker
from landmarks import Finger

INSTRUCTIONS = [
    "Show one hand to the camera",
    "Raise and lower each finger through its full range",
    "Press 's' to save, 'r' to restart, 'q' to quit",
]


def range_lines(mapper):
    capture = mapper.capture
    lines = [f"Samples: {capture.sample_count}"]
    for finger in Finger:
        r = capture.ranges.get(finger)
        text = "-" if r is None else f"{r.min:.3f} - {r.max:.3f}"
        lines.append(f"{finger.value.capitalize():<7} {text}")
    return lines


def main():
    parser = argparse.ArgumentParser(description="Air DJ finger range calibration")
    parser.add_argument('--camera-index', type=int, default=0, help='OpenCV camera index')
    parser.add_argument('--calibration', default=CALIBRATION_FILE, help='Calibration JSON file')
    parser.add_argument('--verbose', action='store_true', help='Debug logging')
    args = parser.parse_args()

    configure_logging(args.verbose)

    try:
        camera = CameraCapture(args.camera_index).open()
    except CameraUnavailable as e:
        print(f"Error: {e}")
        return

    mapper = GestureMapper(JsonFileStore(args.calibration))
    mapper.start_calibration()

    def on_hands(hands, handedness):
        if hands:
            mapper.absorb_sample(hands[0])

    tracker = HandTracker(MediaPipeHandDetector, fps_limit=30)
    saved = False

    def on_frame(frame):
        nonlocal saved
        draw_hands(frame, tracker.last_hands[:1], ["A"])
        draw_status(frame, INSTRUCTIONS + range_lines(mapper))
        cv2.imshow('Air DJ Calibration', frame)

        key = cv2.waitKey(5) & 0xFF
        if key == ord('s'):
            calibration = mapper.finish_calibration()
            saved = True
            print(f"Calibration values saved to {args.calibration} ({calibration.sample_count} samples)")
            for finger, r in calibration.ranges.items():
                if r is not None:
                    print(f"{finger.value} range: {r.min:.3f} - {r.max:.3f}")
            return False
        if key == ord('r'):
            mapper.start_calibration()
        elif key == ord('q'):
            return False
        return True

    print("Starting calibration...")
    print("Follow the on-screen instructions.")
    try:
        tracker.start(camera, on_hands)
        tracker.run(on_frame)
    finally:
        tracker.stop()
        camera.release()
        cv2.destroyAllWindows()

    if not saved:
        print("Calibration was not completed. The fallback range will be used.")


if __name__ == "__main__":
    main()
