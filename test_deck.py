import numpy as np
import pytest

from audio_graph import AudioBuffer, AudioContext
from deck import Deck, DeckId, EQSettings, FXSettings, LoopWindow, TransportState

SR = 44100
FADE = 0.008


def make_buffer(seconds, sample_rate=SR, channels=1):
    t = np.arange(int(round(seconds * sample_rate))) / sample_rate
    tone = 0.5 * np.sin(2 * np.pi * 220 * t)
    return AudioBuffer(np.tile(tone, (channels, 1)), sample_rate)


@pytest.fixture
def context():
    return AudioContext(sample_rate=SR, block_size=128)


@pytest.fixture
def deck(context):
    d = Deck(context, "A", impulse=np.zeros((2, 16), dtype=np.float32))
    context.destination = d
    return d


def sample_gain(deck, seconds, step_frames=32):
    """Gain value at regular points while rendering `seconds` of audio"""
    context = deck.context
    values = []
    for _ in range(int(seconds * context.sample_rate) // step_frames):
        values.append(deck.gain.gain.value)
        context.render(step_frames)
    return values


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------
def test_new_deck_is_stopped_and_empty(deck):
    assert deck.id is DeckId.A
    assert deck.state is TransportState.STOPPED
    assert deck.current_time() == 0.0
    info = deck.info()
    assert info.duration is None
    assert not info.is_playing


def test_load_computes_analysis(deck):
    deck.load(make_buffer(2.0))
    info = deck.info()
    assert info.duration == pytest.approx(2.0)
    assert info.rms == pytest.approx(0.5 / np.sqrt(2), rel=1e-3)
    assert len(info.peaks) == 2048


def test_load_survives_analysis_failure(deck, monkeypatch):
    def broken(buffer):
        raise RuntimeError("no analysis")

    monkeypatch.setattr("deck.analyze", broken)
    deck.load(make_buffer(1.0))
    assert deck.peaks is None
    assert deck.rms is None
    assert deck.duration == pytest.approx(1.0)
    deck.play()
    assert deck.is_playing


def test_load_stops_playback_and_resets(deck, context):
    deck.load(make_buffer(5.0))
    deck.play()
    context.advance(1.0)
    deck.set_loop(True, 1.0)
    deck.load(make_buffer(3.0))
    assert deck.state is TransportState.STOPPED
    assert deck.current_time() == 0.0
    assert deck.loop == LoopWindow()
    assert not deck.restart_pending


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------
def test_play_without_buffer_is_noop(deck):
    deck.play()
    assert not deck.is_playing


def test_play_sets_volume_immediately(deck, context):
    deck.load(make_buffer(2.0))
    deck.set_volume(0.7)
    deck.play()
    assert deck.gain.gain.value == pytest.approx(0.7)
    out = context.render(1024)
    assert np.abs(out).max() > 0.1


def test_silent_until_played(deck, context):
    deck.load(make_buffer(2.0))
    assert np.all(context.render(512) == 0.0)


def test_play_pause_resumes_from_last_position(deck, context):
    deck.load(make_buffer(10.0))
    deck.play()
    context.advance(4.0)
    deck.pause()
    assert deck.current_time() == pytest.approx(4.0, abs=0.01)

    deck.play()
    context.advance(2.0)
    deck.pause()
    assert deck.current_time() == pytest.approx(6.0, abs=0.02)


def test_pause_fades_out_then_releases_source(deck, context):
    deck.load(make_buffer(5.0))
    deck.play()
    context.advance(1.0)
    deck.pause()
    assert not deck.is_playing
    assert deck.restart_pending

    values = sample_gain(deck, 0.02)
    assert all(b <= a for a, b in zip(values, values[1:]))
    assert values[-1] == 0.0
    assert not deck.restart_pending
    assert np.all(context.render(256) == 0.0)


def test_second_play_and_pause_are_noops(deck, context):
    deck.load(make_buffer(5.0))
    deck.play()
    context.advance(1.0)
    deck.play()
    assert deck.current_time() == pytest.approx(1.0, abs=0.001)
    deck.pause()
    deck.pause()
    assert deck.current_time() == pytest.approx(1.0, abs=0.001)


def test_track_end_stops_the_deck(deck, context):
    deck.load(make_buffer(0.5))
    deck.play()
    context.advance(1.0)
    assert deck.state is TransportState.STOPPED
    assert deck.current_time() == pytest.approx(0.5)

    # Playing again starts over
    deck.play()
    assert deck.current_time() == pytest.approx(0.0, abs=0.001)


def test_track_ending_during_pending_seek_keeps_playing(deck, context):
    deck.load(make_buffer(2.0))
    deck.play()
    context.advance(1.997)
    deck.seek(0.5)
    # Old source runs off the end while the fade-out is still in progress
    context.render(256)
    assert deck.is_playing
    assert deck.restart_pending
    assert deck.current_time() == 0.5

    context.advance(0.1)
    assert deck.is_playing
    assert 0.5 < deck.current_time() < 0.7


def test_pause_after_track_end_during_pending_seek(deck, context):
    deck.load(make_buffer(2.0))
    deck.play()
    context.advance(1.997)
    deck.seek(0.5)
    context.render(256)

    deck.pause()
    context.advance(0.1)
    assert not deck.is_playing
    assert not deck.restart_pending
    assert deck.current_time() == 0.5


def test_seek_while_stopped_updates_position(deck):
    deck.load(make_buffer(10.0))
    deck.seek(3.5)
    assert deck.current_time() == 3.5
    deck.seek(-2.0)
    assert deck.current_time() == 0.0
    deck.seek(99.0)
    assert deck.current_time() == pytest.approx(10.0)


def test_seek_while_playing_fades_out_and_back_in(deck, context):
    deck.load(make_buffer(10.0))
    deck.play()
    context.advance(1.0)

    deck.seek(5.0)
    assert deck.is_playing
    assert deck.current_time() == 5.0

    values = sample_gain(deck, 0.03)
    zeros = [i for i, v in enumerate(values) if v == 0.0]
    assert zeros, "gain never reached zero"
    fade_out = values[:zeros[0] + 1]
    fade_in = values[zeros[-1]:]
    assert all(b <= a for a, b in zip(fade_out, fade_out[1:]))
    assert all(b >= a for a, b in zip(fade_in, fade_in[1:]))
    assert values[0] == pytest.approx(1.0)
    assert values[-1] == pytest.approx(1.0)
    # No step bigger than one ramp increment
    assert max(abs(b - a) for a, b in zip(values, values[1:])) < 0.2

    assert not deck.restart_pending
    # Swap landed roughly one fade after the seek
    assert deck.current_time() == pytest.approx(5.02, abs=0.01)


def test_pause_during_pending_seek_keeps_target(deck, context):
    deck.load(make_buffer(10.0))
    deck.play()
    context.advance(0.5)
    deck.seek(7.0)
    deck.pause()
    assert not deck.is_playing
    assert deck.current_time() == 7.0

    context.advance(0.1)
    assert not deck.is_playing
    assert deck.current_time() == 7.0
    assert not deck.restart_pending


def test_load_during_pending_seek_cancels_swap(deck, context):
    deck.load(make_buffer(10.0))
    deck.play()
    context.advance(0.5)
    deck.seek(7.0)
    deck.load(make_buffer(4.0))
    context.advance(0.1)
    assert not deck.is_playing
    assert deck.current_time() == 0.0


def test_jog_clamps_step_when_stopped(deck):
    deck.load(make_buffer(20.0))
    deck.seek(2.0)
    deck.jog(100.0)
    assert deck.current_time() == pytest.approx(7.0)
    deck.jog(-3.0)
    assert deck.current_time() == pytest.approx(4.0)
    deck.jog(-100.0)
    assert deck.current_time() == 0.0


def test_jog_while_playing_uses_fade_replace(deck, context):
    deck.load(make_buffer(20.0))
    deck.play()
    context.advance(2.0)
    deck.jog(1.5)
    assert deck.restart_pending
    assert deck.current_time() == pytest.approx(3.5, abs=0.001)
    context.advance(0.5)
    assert deck.is_playing
    assert deck.current_time() == pytest.approx(4.0, abs=0.02)


def test_jog_without_buffer_is_noop(deck):
    deck.jog(2.0)
    assert deck.current_time() == 0.0


# ---------------------------------------------------------------------------
# Parameters
# ---------------------------------------------------------------------------
@pytest.mark.parametrize("volume,expected", [(-1.0, 0.0), (0.0, 0.0), (0.3, 0.3), (1.0, 1.0), (7.0, 1.0)])
def test_set_volume_clamps(deck, volume, expected):
    deck.set_volume(volume)
    assert deck.volume == expected
    assert deck.gain.gain.value == expected


def test_volume_during_pending_swap_is_picked_up_by_fade_in(deck, context):
    deck.load(make_buffer(10.0))
    deck.play()
    context.advance(0.5)
    deck.seek(3.0)
    deck.set_volume(0.3)
    assert deck.volume == 0.3
    context.advance(0.05)
    assert deck.gain.gain.value == pytest.approx(0.3)


def test_eq_is_clamped(deck):
    deck.set_eq(EQSettings(low=100, mid=-999, high=5))
    assert deck.eq == EQSettings(low=12, mid=-12, high=5)
    assert deck.low_eq.gain == 12
    assert deck.mid_eq.gain == -12
    assert deck.high_eq.gain == 5
    assert deck.mid_eq.frequency == 1000
    assert deck.mid_eq.q == 1.0


def test_fx_wet_sets_dry_and_wet_gains(deck):
    deck.set_fx(wet=1.0)
    assert deck.dry_gain.gain.value == 0.0
    assert deck.wet_gain.gain.value == 1.0


@pytest.mark.parametrize("wet", [-0.5, 0.0, 0.25, 0.7, 1.0, 3.0])
def test_dry_and_wet_sum_to_one(deck, wet):
    deck.set_fx(wet=wet)
    assert 0.0 <= deck.fx.wet <= 1.0
    assert deck.dry_gain.gain.value + deck.wet_gain.gain.value == pytest.approx(1.0)


def test_fx_merge_and_clamp(deck):
    deck.set_fx(delay_feedback=5.0)
    deck.set_fx(delay_time=-1.0, lowpass_cutoff=5.0)
    assert deck.fx == FXSettings(delay_time=0.0, delay_feedback=0.6, lowpass_cutoff=40.0)
    assert deck.delay.feedback == 0.6
    assert deck.fx_lowpass.frequency == 40.0

    deck.set_fx(delay_time=99.0, lowpass_cutoff=1e6, reverb_wet=2.0)
    assert deck.fx.delay_time == 5.0
    assert deck.fx.lowpass_cutoff == 20000.0
    assert deck.fx.reverb_wet == 1.0
    assert deck.fx.delay_feedback == 0.6


def test_wet_path_adds_echo(deck, context):
    deck.load(make_buffer(0.05))
    deck.set_fx(wet=1.0, delay_time=0.1, delay_feedback=0.0, lowpass_cutoff=20000.0)
    deck.play()
    context.render(int(0.07 * SR))
    # Dry track has ended; the echo arrives 100 ms after the start
    echo = context.render(int(0.06 * SR))
    assert np.abs(echo).max() > 0.05


# ---------------------------------------------------------------------------
# Looping
# ---------------------------------------------------------------------------
def test_loop_window_from_current_position(deck, context):
    deck.load(make_buffer(10.0))
    deck.play()
    context.advance(3.0)
    deck.set_loop(True, 2.0)
    assert deck.loop.enabled
    assert deck.loop.start == pytest.approx(3.0)
    assert deck.loop.end == pytest.approx(5.0)


def test_loop_end_clamps_to_track(deck, context):
    deck.load(make_buffer(4.0))
    deck.play()
    context.advance(3.0)
    deck.set_loop(True, 2.0)
    assert deck.loop.start == pytest.approx(3.0)
    assert deck.loop.end == pytest.approx(4.0)


def test_loop_default_length(deck):
    deck.load(make_buffer(10.0))
    deck.seek(2.0)
    deck.set_loop(True)
    assert deck.loop == LoopWindow(True, 2.0, 3.0)


def test_loop_at_end_of_track_is_ignored(deck):
    deck.load(make_buffer(2.0))
    deck.seek(2.0)
    deck.set_loop(True, 1.0)
    assert deck.loop == LoopWindow()
    assert not deck.loop.enabled


def test_loop_toggle_while_playing_fades_out_before_restart(deck, context):
    deck.load(make_buffer(10.0))
    deck.play()
    context.advance(3.0)
    deck.set_loop(True, 1.0)

    assert deck.restart_pending
    when, kind, value = deck.gain.gain.events[-1]
    assert kind == "ramp"
    assert value == 0.0
    assert when == pytest.approx(3.0 + FADE)


def test_playing_loop_wraps_position(deck, context):
    deck.load(make_buffer(10.0))
    deck.play()
    context.advance(3.0)
    deck.set_loop(True, 1.0)
    context.advance(2.5)
    assert deck.is_playing
    position = deck.current_time()
    assert 3.0 <= position < 4.0
    assert position == pytest.approx(3.5, abs=0.02)


def test_loop_off_continues_from_loop_position(deck, context):
    deck.load(make_buffer(10.0))
    deck.play()
    context.advance(3.0)
    deck.set_loop(True, 1.0)
    context.advance(2.5)
    deck.set_loop(False)
    assert not deck.loop.enabled
    assert 3.0 <= deck.current_time() < 4.0
    context.advance(1.0)
    assert deck.current_time() > 4.0
