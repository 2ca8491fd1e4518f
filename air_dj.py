#!/usr/bin/env python3
"""
Air DJ Launcher
Two decks controlled by hand gestures through the webcam
"""

import argparse
import os
import random
import sys

import cv2
import numpy as np

from audio_engine import AudioEngine
from audio_output import PyoOutput, list_output_devices
from camera import CameraCapture, MediaPipeHandDetector, draw_hands, draw_meter, draw_status
from camera_hud import CameraHUDController, UnassignedPolicy
from config import (
    CALIBRATION_FILE,
    CAMERA_HEIGHT,
    CAMERA_WIDTH,
    CROSSFADE_STEP,
    FPS_LIMIT,
    SONGS_FOLDER,
    configure_logging,
)
from deck import DeckId
from errors import AudioDeviceUnavailable, CameraUnavailable, TrackLoadError
from gesture_mapper import GestureMapper, JsonFileStore
from hand_tracker import HandTracker
from track_loader import find_audio_files

WINDOW_NAME = "Air DJ"

# cv2.waitKeyEx codes for the arrow keys (Linux, macOS, Windows)
LEFT_KEYS = {65361, 63234, 2424832, ord(',')}
RIGHT_KEYS = {65363, 63235, 2555904, ord('.')}


def interactive_song_selection(songs):
    """Pick a track for each deck from the songs folder"""
    print(f"\n🎵 Choose Your Songs ({len(songs)} available)")
    print("=" * 50)
    for i, song in enumerate(songs):
        print(f"  {i+1:2d}. {os.path.basename(song)}")
    print()

    def select_song(deck_name):
        while True:
            try:
                choice = input(f"Select song for {deck_name} (1-{len(songs)}, or Enter for random): ").strip()
                if not choice:
                    selected = random.choice(songs)
                    print(f"🎲 Random: {os.path.basename(selected)}")
                    return selected
                idx = int(choice) - 1
                if 0 <= idx < len(songs):
                    return songs[idx]
                print(f"❌ Please enter 1-{len(songs)}")
            except ValueError:
                print("❌ Invalid input")
            except EOFError:
                return None

    deck_a = select_song("DECK A")
    if deck_a is None:
        return None, None
    deck_b = select_song("DECK B")
    return deck_a, deck_b


def choose_tracks(args):
    if args.deck_a or args.deck_b:
        return args.deck_a, args.deck_b
    songs = find_audio_files(args.songs)
    if not songs:
        print(f"❌ No audio files found in '{args.songs}'")
        return None, None
    if args.default:
        return songs[0], songs[1 % len(songs)]
    return interactive_song_selection(songs)


def handle_key(key, engine, hud):
    """Keyboard shortcuts. Returns False to quit."""
    if key == -1:
        return True
    char = key & 0xFF
    if char == ord('q'):
        return False
    if char == ord(' '):
        engine.toggle_all()
    elif char == ord('1'):
        engine.toggle(DeckId.A)
    elif char == ord('2'):
        engine.toggle(DeckId.B)
    elif char == ord('c') and hud is not None:
        print("✋ Calibrating - move each finger through its full range...")
        hud.start_calibration_flow()
    elif key in LEFT_KEYS:
        engine.nudge_crossfade(-CROSSFADE_STEP)
    elif key in RIGHT_KEYS:
        engine.nudge_crossfade(CROSSFADE_STEP)
    return True


def status_lines(engine, hud):
    lines = []
    for deck_id in DeckId:
        info = engine.get_deck_info(deck_id)
        state = "PLAYING" if info.is_playing else "PAUSED"
        duration = info.duration or 0.0
        lines.append(f"DECK {deck_id.value}: {state} {engine.get_current_time(deck_id):6.1f}/{duration:.1f}s")
    lines.append(f"XFADE {engine.crossfade:.2f}")
    if hud is not None and hud.calibration_progress is not None:
        lines.append(f"CALIBRATING {hud.calibration_progress * 100:.0f}%")
    return lines


def run_keyboard_only(engine):
    """No camera: a blank window that still takes the keyboard shortcuts"""
    while True:
        frame = np.zeros((CAMERA_HEIGHT // 2, CAMERA_WIDTH // 2, 3), dtype=np.uint8)
        draw_status(frame, status_lines(engine, None))
        draw_meter(frame, engine.get_master_level())
        cv2.imshow(WINDOW_NAME, frame)
        if not handle_key(cv2.waitKeyEx(30), engine, None):
            break


def run_with_camera(engine, args):
    camera = CameraCapture(args.camera_index).open()
    mapper = GestureMapper(JsonFileStore(args.calibration))
    tracker = HandTracker(MediaPipeHandDetector, fps_limit=args.fps)
    hud = CameraHUDController(engine, mapper, tracker, unassigned_policy=UnassignedPolicy(args.policy))

    def on_frame(frame):
        draw_hands(frame, hud.last_hands, [d.value for d in hud.last_hand_decks])
        draw_status(frame, status_lines(engine, hud))
        draw_meter(frame, engine.get_master_level())
        cv2.imshow(WINDOW_NAME, frame)
        return handle_key(cv2.waitKeyEx(1), engine, hud)

    try:
        hud.start(camera)
        tracker.run(on_frame)
    finally:
        hud.stop()
        camera.release()


def main():
    parser = argparse.ArgumentParser(
        description="Air DJ - Hand Tracking DJ",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python air_dj.py                          # Pick songs from ./songs
  python air_dj.py --default                # First two songs, no prompt
  python air_dj.py --deck-a a.mp3 --deck-b b.wav
  python air_dj.py --no-camera              # Keyboard only

Keys: space play/pause both, 1/2 play/pause a deck, arrows crossfade,
      c calibrate, q quit
        """
    )
    parser.add_argument('--deck-a', help='Audio file for deck A')
    parser.add_argument('--deck-b', help='Audio file for deck B')
    parser.add_argument('--songs', default=SONGS_FOLDER, help='Folder to pick songs from')
    parser.add_argument('--default', action='store_true', help='Use the first songs found (skip interactive)')
    parser.add_argument('--camera-index', type=int, default=0, help='OpenCV camera index')
    parser.add_argument('--fps', type=float, default=FPS_LIMIT, help='Max hand detection rate')
    parser.add_argument('--device', type=int, default=None, help='Audio output device index')
    parser.add_argument('--list-devices', action='store_true', help='List audio output devices and exit')
    parser.add_argument('--calibration', default=CALIBRATION_FILE, help='Calibration JSON file')
    parser.add_argument('--policy', choices=['hold', 'decay'], default='hold',
                        help='What a deck does when no hand controls it')
    parser.add_argument('--no-camera', action='store_true', help='Keyboard control only')
    parser.add_argument('--verbose', action='store_true', help='Debug logging')
    args = parser.parse_args()

    configure_logging(args.verbose)

    if args.list_devices:
        for index, name in list_output_devices():
            print(f"  {index:2d}. {name}")
        return

    print("🎧 AIR DJ - Hand Tracking DJ Controller")
    print("✊ FIST play/pause • 🤏 PINCH loop • 🔄 ROTATE jog • Press 'q' to quit\n")

    engine = AudioEngine(output_factory=lambda context: PyoOutput(context, device=args.device))
    try:
        engine.ensure_initialized()
        print("✅ Audio server initialized")
    except AudioDeviceUnavailable as e:
        print(f"❌ {e}")
        print("🔇 Continuing without sound")

    deck_a, deck_b = choose_tracks(args)
    for deck_id, path in ((DeckId.A, deck_a), (DeckId.B, deck_b)):
        if not path:
            continue
        try:
            engine.load_file(deck_id, path)
            print(f"💿 Deck {deck_id.value}: {os.path.basename(path)}")
        except TrackLoadError as e:
            print(f"❌ {e}")

    try:
        if args.no_camera:
            run_keyboard_only(engine)
        else:
            try:
                run_with_camera(engine, args)
            except CameraUnavailable as e:
                print(f"❌ {e}")
                print("⌨️  Falling back to keyboard control")
                run_keyboard_only(engine)
    except KeyboardInterrupt:
        pass
    finally:
        engine.close()
        cv2.destroyAllWindows()
        print("👋 Air DJ stopped")


if __name__ == "__main__":
    sys.exit(main())
