from types import SimpleNamespace

import pytest

from hand_tracker import HandTracker
from landmarks import Handedness, Landmark, NUM_LANDMARKS


def raw_hand(x=0.5, y=0.5, count=NUM_LANDMARKS):
    return [SimpleNamespace(x=x, y=y, z=0.0) for _ in range(count)]


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


class FakeDetector:
    def __init__(self, hands=None, handedness=None, **kwargs):
        self.kwargs = kwargs
        self.hands = hands if hands is not None else [raw_hand()]
        self.handedness = handedness if handedness is not None else ["Right"]
        self.frames = []
        self.error = None
        self.closed = False

    def detect(self, frame):
        self.frames.append(frame)
        if self.error is not None:
            raise self.error
        return self.hands, self.handedness

    def close(self):
        self.closed = True


class FakeSource:
    def __init__(self, frames):
        self.frames = list(frames)
        self.reads = 0
        self.released = False

    def read(self):
        self.reads += 1
        if not self.frames:
            return False, None
        return True, self.frames.pop(0)

    def release(self):
        self.released = True


class Recorder:
    def __init__(self):
        self.calls = []

    def __call__(self, hands, handedness):
        self.calls.append((hands, handedness))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def detectors():
    return []


@pytest.fixture
def tracker(clock, detectors):
    def factory(**kwargs):
        detectors.append(FakeDetector(**kwargs))
        return detectors[-1]

    return HandTracker(factory, fps_limit=8, clock=clock)


def test_start_builds_detector_with_settings(tracker, detectors):
    tracker.start(FakeSource([]))
    assert tracker.running
    assert detectors[0].kwargs == {
        "max_num_hands": 2,
        "model_complexity": 1,
        "min_detection_confidence": 0.7,
        "min_tracking_confidence": 0.5,
    }
    # Second start is a no-op
    tracker.start(FakeSource([]))
    assert len(detectors) == 1


def test_detector_factory_error_propagates(clock):
    def factory(**kwargs):
        raise RuntimeError("no model")

    tracker = HandTracker(factory, clock=clock)
    with pytest.raises(RuntimeError):
        tracker.start(FakeSource([]))
    assert not tracker.running


def test_frames_ignored_before_start(tracker):
    assert tracker.process_frame("frame") is False


def test_process_frame_delivers_normalized_hands(tracker):
    recorder = Recorder()
    tracker.start(FakeSource([]), recorder)
    assert tracker.process_frame("frame") is True

    hands, handedness = recorder.calls[0]
    assert len(hands) == 1
    assert len(hands[0]) == NUM_LANDMARKS
    assert hands[0][0] == Landmark(0.5, 0.5, 0.0)
    assert handedness == [Handedness.RIGHT]
    assert tracker.last_hands == hands


def test_fps_cap(tracker, clock, detectors):
    tracker.start(FakeSource([]), Recorder())
    assert tracker.min_interval == 0.125

    assert tracker.process_frame(1) is True
    clock.now = 0.0625
    assert tracker.process_frame(2) is False
    clock.now = 0.125
    assert tracker.process_frame(3) is True
    assert detectors[0].frames == [1, 3]


def test_no_fps_cap(clock):
    tracker = HandTracker(lambda **kw: FakeDetector(**kw), fps_limit=0, clock=clock)
    tracker.start(FakeSource([]))
    assert tracker.min_interval == 0.0
    assert tracker.process_frame(1) is True
    assert tracker.process_frame(2) is True


def test_detector_error_skips_frame(tracker, clock, detectors):
    recorder = Recorder()
    tracker.start(FakeSource([]), recorder)
    detectors[0].error = RuntimeError("inference failed")
    assert tracker.process_frame(1) is False
    assert recorder.calls == []

    # The failed attempt still counts toward the fps cap
    detectors[0].error = None
    clock.now = 0.0625
    assert tracker.process_frame(2) is False
    clock.now = 0.25
    assert tracker.process_frame(3) is True
    assert tracker.running


def test_callback_error_is_contained(tracker):
    def broken(hands, handedness):
        raise ValueError("bad callback")

    tracker.start(FakeSource([]), broken)
    assert tracker.process_frame(1) is True
    assert tracker.running


def test_busy_guard_drops_reentrant_frames(clock):
    tracker = HandTracker(lambda **kw: FakeDetector(**kw), fps_limit=0, clock=clock)
    nested = []

    def callback(hands, handedness):
        nested.append(tracker.process_frame("nested"))

    tracker.start(FakeSource([]), callback)
    assert tracker.process_frame("outer") is True
    assert nested == [False]


def test_normalize_drops_malformed_and_caps_count(tracker):
    good_left = raw_hand(x=0.2)
    short = raw_hand(count=5)
    good_right = [(0.8, 0.5) for _ in range(NUM_LANDMARKS)]
    extra = raw_hand(x=0.5)

    hands, handedness = tracker.normalize(
        [good_left, short, good_right, extra], ["Left", "Right", "right", "Left"])
    assert [h[0].x for h in hands] == [0.2, 0.8]
    assert handedness == [Handedness.LEFT, Handedness.RIGHT]


def test_normalize_missing_handedness(tracker):
    hands, handedness = tracker.normalize([raw_hand()], None)
    assert len(hands) == 1
    assert handedness == [Handedness.UNKNOWN]
    assert tracker.normalize(None) == ([], [])


def test_stop_releases_detector_and_source(tracker, detectors):
    source = FakeSource([])
    tracker.start(source)
    tracker.stop()
    assert not tracker.running
    assert detectors[0].closed
    assert source.released
    assert tracker.frame_source is None
    assert tracker.process_frame(1) is False


def test_poll_and_run(tracker, clock, detectors):
    source = FakeSource(["a", "b", "c", "d"])
    recorder = Recorder()
    tracker.start(source, recorder)
    seen = []

    def on_frame(frame):
        seen.append(frame)
        clock.now += 0.5
        return frame != "c"

    tracker.run(on_frame)
    assert seen == ["a", "b", "c"]
    assert detectors[0].frames == ["a", "b", "c"]
    assert len(recorder.calls) == 3


def test_run_gives_up_after_repeated_read_failures(tracker):
    source = FakeSource([])
    tracker.start(source)
    tracker.run(max_failures=5)
    assert source.reads == 5


def test_poll_returns_none_on_failed_read(tracker):
    tracker.start(FakeSource([]))
    assert tracker.poll() is None
